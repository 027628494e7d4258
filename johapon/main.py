from fastapi import FastAPI

from johapon.config import configure_logging, env_flag
from johapon.db import init_db
from johapon.errors import setup_exception_handlers
from johapon.middleware import RequestLogMiddleware
from johapon.routers import (
    access_tokens, admin_invites, alimtalk, auth, consents, member_invites, members, slides, sms, tenant, unions,
)

configure_logging()

app = FastAPI(title="johapon", version="0.1.0")
app.add_middleware(RequestLogMiddleware)
setup_exception_handlers(app)


@app.get("/health", include_in_schema=False)
def health():
    return {"ok": True}


# --- core routers (항상 ON) ---
app.include_router(auth.router)
app.include_router(unions.router)
app.include_router(admin_invites.router)
app.include_router(access_tokens.router)
app.include_router(members.router)
app.include_router(member_invites.router)
app.include_router(consents.router)
app.include_router(slides.router)
app.include_router(alimtalk.router)
app.include_router(sms.router)
app.include_router(tenant.router)

# --- optional routers ---
# 광고 관리는 기본 ON, FEATURE_ADS=0 이면 import 하지 않음
if env_flag("FEATURE_ADS", "1"):
    from johapon.routers import ads
    app.include_router(ads.router)


@app.on_event("startup")
def init_db_on_startup():
    """첫 기동 시 스키마/기본 데이터 보장"""
    init_db()
