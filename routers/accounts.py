"""Account registration and profile router."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, get_auth_context
from routers.rate_limit import rate_limit
from services.ledger import accounts, entitlements
from services.session_token import create_session_token
from services.settings_service import SystemSettingsService, get_system_settings_service

router = APIRouter()


class RegisterRequest(BaseModel):
    email: EmailStr
    first_name: Optional[str] = Field(default=None, max_length=80)
    last_name: Optional[str] = Field(default=None, max_length=80)
    referral_code: Optional[str] = Field(default=None, max_length=32)


@router.post("/register")
async def register(
    request: RegisterRequest,
    _rate_limit: None = Depends(rate_limit("accounts_register", limit=10, window_seconds=3600)),
    db: AsyncSession = Depends(get_db),
    settings_service: SystemSettingsService = Depends(get_system_settings_service),
):
    policy = await settings_service.get_policy(db)
    user = await entitlements.open_account(
        db,
        email=str(request.email),
        policy=policy,
        first_name=request.first_name,
        last_name=request.last_name,
        referral_code=request.referral_code,
    )
    session = create_session_token(user.id, user.email)
    return {
        "user_id": user.id,
        "email": user.email,
        "balance": user.credits,
        "referral_code": user.referral_code,
        "token": session["token"],
        "expires_at": session["expires_at"],
    }


@router.get("/me")
async def me(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    user = await accounts.get_account(auth.user_id, db)
    snapshot = await accounts.get_account_snapshot(auth.user_id, db)
    return {
        "user_id": user.id,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "role": user.role,
        "balance": snapshot.balance,
        "unlocked_templates": snapshot.unlocked_templates,
        "ad_streak": snapshot.ad_streak.to_dict(),
        "referral_code": user.referral_code,
        "referral_count": user.referral_count,
    }
