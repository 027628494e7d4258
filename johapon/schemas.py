from __future__ import annotations

from typing import Any, Literal, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from johapon.errors import ValidationError

UserStatus = Literal["PENDING_PROFILE", "PENDING_APPROVAL", "APPROVED", "REJECTED", "PRE_REGISTERED", "TRANSFERRED"]
OwnershipType = Literal["OWNER", "CO_OWNER", "FAMILY", "PROXY"]
ConsentStatus = Literal["AGREED", "DISAGREED"]
AdPlacement = Literal["SIDE", "HOME", "BOARD"]
BillingCycle = Literal["MONTHLY", "YEARLY"]
ContractStatus = Literal["PENDING", "ACTIVE", "EXPIRED", "CANCELLED"]
InvoiceStatus = Literal["DUE", "PAID", "OVERDUE", "CANCELLED"]
CommentEntity = Literal["notice", "question", "free_board"]
MessageType = Literal["KAKAO", "SMS", "LMS"]

ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_body(model: Type[ModelT], payload: Any, message: str = "필수 파라미터가 누락되었습니다.") -> ModelT:
    """dict 본문을 스키마로 검증. 실패는 422 가 아닌 400 (ValidationError) 으로."""
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        fields = [".".join(str(p) for p in err["loc"]) for err in exc.errors()]
        raise ValidationError(message, fields=fields) from exc


class UnionCreateIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    slug: str = Field(..., min_length=2, max_length=50)
    description: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    logo_url: Optional[str] = None
    business_type: Optional[str] = None
    is_active: bool = True
    alimtalk_sender_key: Optional[str] = None
    alimtalk_channel_name: Optional[str] = None
    notice_template_code: Optional[str] = None


class UnionUpdateIn(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    slug: Optional[str] = Field(default=None, min_length=2, max_length=50)
    description: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    logo_url: Optional[str] = None
    business_type: Optional[str] = None
    is_active: Optional[bool] = None
    alimtalk_sender_key: Optional[str] = None
    alimtalk_channel_name: Optional[str] = None
    notice_template_code: Optional[str] = None


class AdminInviteCreateIn(BaseModel):
    union_id: int = Field(..., ge=1)
    name: str = Field(..., min_length=1, max_length=80)
    phone_number: Optional[str] = Field(default=None, max_length=32)
    email: Optional[str] = Field(default=None, max_length=200)


class InviteAcceptIn(BaseModel):
    userId: int = Field(..., ge=1)


class AccessTokenCreateIn(BaseModel):
    name: str = Field(default="", max_length=120)
    union_id: Optional[int] = None
    access_scope: str = Field(default="all", max_length=40)
    allowed_pages: Optional[list[str]] = None
    expires_in_days: Optional[int] = Field(default=None, ge=1, le=3650)
    max_usage: Optional[int] = Field(default=None, ge=1)


class BlockIn(BaseModel):
    reason: str = Field(default="", max_length=500)


class MemberUpdateIn(BaseModel):
    birth_date: Optional[str] = None
    phone_number: Optional[str] = None
    email: Optional[str] = None
    resident_address: Optional[str] = None
    resident_address_detail: Optional[str] = None
    resident_address_road: Optional[str] = None
    resident_address_jibun: Optional[str] = None
    resident_zonecode: Optional[str] = None
    notes: Optional[str] = None


class PropertyUnitIn(BaseModel):
    building_unit_id: Optional[str] = None
    pnu: Optional[str] = None
    dong: Optional[str] = None
    ho: Optional[str] = None
    is_basement: bool = False
    ownership_type: OwnershipType = "OWNER"
    land_ownership_ratio: float = Field(default=100, ge=0, le=100)
    building_ownership_ratio: float = Field(default=100, ge=0, le=100)
    property_address_jibun: Optional[str] = None
    property_address_road: Optional[str] = None
    notes: Optional[str] = None


class ConsentStageIn(BaseModel):
    business_type: str = Field(..., min_length=1, max_length=40)
    stage_code: str = Field(..., min_length=1, max_length=40)
    stage_name: str = Field(..., min_length=1, max_length=120)
    required_rate: float = Field(default=75, ge=0, le=100)
    sort_order: int = 0


class NoticeIn(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    content: str = Field(..., min_length=1)
    is_popup: bool = False
    end_date: Optional[str] = None
    sendNotification: bool = False


class NoticeUpdateIn(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    content: Optional[str] = None
    is_popup: Optional[bool] = None
    end_date: Optional[str] = None


class QuestionIn(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    content: str = Field(..., min_length=1)
    is_secret: bool = False


class AnswerIn(BaseModel):
    answer_content: str = Field(..., min_length=1)


class FreeBoardIn(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    content: str = Field(..., min_length=1)


class FreeBoardUpdateIn(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    content: Optional[str] = None


class CommentIn(BaseModel):
    entity_type: CommentEntity
    entity_id: int = Field(..., ge=1)
    parent_id: Optional[int] = None
    content: str = Field(..., min_length=1, max_length=4000)


class FileIn(BaseModel):
    entity_type: CommentEntity
    entity_id: int = Field(..., ge=1)
    file_name: str = Field(..., min_length=1, max_length=255)
    file_url: str = Field(..., min_length=1)
    file_size: Optional[int] = Field(default=None, ge=0)


class SlideIn(BaseModel):
    image_url: str = Field(..., min_length=1)
    link_url: Optional[str] = None
    title: Optional[str] = None
    starts_at: Optional[str] = None
    ends_at: Optional[str] = None
    sort_order: int = 0
    is_active: bool = True


class SlideUpdateIn(BaseModel):
    image_url: Optional[str] = Field(default=None, min_length=1)
    link_url: Optional[str] = None
    title: Optional[str] = None
    starts_at: Optional[str] = None
    ends_at: Optional[str] = None
    sort_order: Optional[int] = None
    is_active: Optional[bool] = None


class AdIn(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    partner_name: str = Field(..., min_length=1, max_length=120)
    phone: Optional[str] = None
    image_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    detail_image_url: Optional[str] = None
    link_url: Optional[str] = None
    is_desktop_enabled: bool = True
    is_mobile_enabled: bool = True
    is_active: bool = True
    placements: list[AdPlacement] = Field(default_factory=list)
    union_id: Optional[int] = None


class AdUpdateIn(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    partner_name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    phone: Optional[str] = None
    image_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    detail_image_url: Optional[str] = None
    link_url: Optional[str] = None
    is_desktop_enabled: Optional[bool] = None
    is_mobile_enabled: Optional[bool] = None
    is_active: Optional[bool] = None
    placements: Optional[list[AdPlacement]] = None
    union_id: Optional[int] = None


class ContractUpdateIn(BaseModel):
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    billing_cycle: Optional[BillingCycle] = None
    amount: Optional[int] = None
    status: Optional[ContractStatus] = None
    auto_invoice: Optional[bool] = None
    memo: Optional[str] = None


class InvoiceUpdateIn(BaseModel):
    status: Optional[InvoiceStatus] = None
    paid_at: Optional[str] = None
    memo: Optional[str] = None


class InvoiceGenerateIn(BaseModel):
    month: str = Field(..., pattern=r"^\d{4}-(0[1-9]|1[0-2])$")


class PricingIn(BaseModel):
    messageType: MessageType
    unitPrice: int = Field(..., ge=0)
    effectiveFrom: Optional[str] = None


class RegisterIn(BaseModel):
    model_config = ConfigDict(extra="allow")

    provider: Optional[str] = None
    providerUserId: Optional[str] = None
    name: Optional[str] = None
    unionId: Optional[int] = Field(default=None, ge=1)

    @field_validator("unionId", mode="before")
    @classmethod
    def _blank_union(cls, v):
        return None if v in ("", 0) else v


class ConflictResolveIn(BaseModel):
    model_config = ConfigDict(extra="allow")

    pendingUserId: int = Field(..., ge=1)
    existingUserId: int = Field(..., ge=1)
    propertyUnitId: int = Field(..., ge=1)
    action: str = Field(..., min_length=1)


class ConsentBulkUpdateIn(BaseModel):
    unionId: int = Field(..., ge=1)
    stageId: int = Field(..., ge=1)
    memberIds: list[int] = Field(..., min_length=1)
    status: str = ""
