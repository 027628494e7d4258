"""
시스템 관리자용 광고 관리 API (FEATURE_ADS)
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query

from johapon import ads
from johapon.auth import require_system_admin
from johapon.schemas import AdIn, AdUpdateIn, ContractUpdateIn, InvoiceGenerateIn, InvoiceUpdateIn

router = APIRouter(prefix="/api/admin", tags=["ads"])


@router.get("/ads")
def ads_list(
    union_id: str = Query("", alias="unionId"),
    is_active: Optional[bool] = Query(None),
    user: dict = Depends(require_system_admin),
):
    return {"ok": True, "items": ads.list_ads(union_id or None, is_active=is_active)}


@router.post("/ads", status_code=201)
def ads_create(payload: AdIn, user: dict = Depends(require_system_admin)):
    return {"ok": True, "item": ads.create_ad(payload.model_dump())}


@router.get("/ads/{ad_id}")
def ads_get(ad_id: int, user: dict = Depends(require_system_admin)):
    return {"ok": True, "item": ads.get_ad(ad_id)}


@router.patch("/ads/{ad_id}")
def ads_update(ad_id: int, payload: AdUpdateIn, user: dict = Depends(require_system_admin)):
    return {"ok": True, "item": ads.update_ad(ad_id, payload.model_dump(exclude_unset=True))}


@router.delete("/ads/{ad_id}")
def ads_delete(ad_id: int, user: dict = Depends(require_system_admin)):
    ads.delete_ad(ad_id)
    return {"ok": True}


# --- contracts ---------------------------------------------------------------

@router.get("/ad-contracts")
def contracts_list(
    union_id: str = Query("", alias="unionId"),
    status: str = Query(""),
    ad_id: Optional[int] = Query(None, alias="adId"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=200, alias="pageSize"),
    user: dict = Depends(require_system_admin),
):
    out = ads.list_contracts(union_id or None, status=status or None, ad_id=ad_id, page=page, page_size=page_size)
    return {"ok": True, **out}


@router.post("/ad-contracts", status_code=201)
def contracts_create(payload: Dict[str, Any] = Body(...), user: dict = Depends(require_system_admin)):
    return {"ok": True, "item": ads.create_contract(payload)}


@router.get("/ad-contracts/{contract_id}")
def contracts_get(contract_id: int, user: dict = Depends(require_system_admin)):
    return {"ok": True, "item": ads.get_contract(contract_id)}


@router.patch("/ad-contracts/{contract_id}")
def contracts_update(contract_id: int, payload: ContractUpdateIn, user: dict = Depends(require_system_admin)):
    return {"ok": True, "item": ads.update_contract(contract_id, payload.model_dump(exclude_unset=True))}


@router.delete("/ad-contracts/{contract_id}")
def contracts_delete(contract_id: int, user: dict = Depends(require_system_admin)):
    ads.delete_contract(contract_id)
    return {"ok": True}


# --- invoices ----------------------------------------------------------------

@router.get("/ad-invoices")
def invoices_list(
    status: str = Query(""),
    contract_id: Optional[int] = Query(None, alias="contractId"),
    month: str = Query(""),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=200, alias="pageSize"),
    user: dict = Depends(require_system_admin),
):
    out = ads.list_invoices(status=status or None, contract_id=contract_id, month=month or None, page=page, page_size=page_size)
    return {"ok": True, **out}


@router.post("/ad-invoices/generate")
def invoices_generate(payload: InvoiceGenerateIn, user: dict = Depends(require_system_admin)):
    return {"ok": True, **ads.generate_invoices(payload.month)}


@router.patch("/ad-invoices/{invoice_id}")
def invoices_update(invoice_id: int, payload: InvoiceUpdateIn, user: dict = Depends(require_system_admin)):
    return {"ok": True, **ads.update_invoice(invoice_id, status=payload.status, paid_at=payload.paid_at, memo=payload.memo)}


@router.get("/ads-dashboard")
def ads_dashboard(month: str = Query(""), user: dict = Depends(require_system_admin)):
    return {"ok": True, **ads.dashboard(month or None)}
