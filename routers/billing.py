"""Billing and credits router."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from models.enums import AdWatchType
from routers.auth_scope import AuthContext, ensure_user_scope, get_auth_context
from routers.rate_limit import rate_limit
from services.ledger import entitlements, list_for_user, serialize_transaction
from services.ledger.journal import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from services.payments import PaymentVerifier, get_payment_verifier
from services.settings_service import SystemSettingsService, get_system_settings_service

router = APIRouter()


class BalanceCheckRequest(BaseModel):
    user_id: Optional[str] = None


class DeductRequest(BaseModel):
    user_id: Optional[str] = None
    cost: int = Field(ge=0, le=10000)
    service_name: str = Field(min_length=1, max_length=120)


class CreditRequest(BaseModel):
    user_id: Optional[str] = None
    amount: int = Field(ge=1, le=10000)
    description: Optional[str] = Field(default=None, max_length=200)
    external_reference: Optional[str] = Field(default=None, max_length=200)


class WatchAdRequest(BaseModel):
    user_id: Optional[str] = None
    type: AdWatchType = AdWatchType.STANDARD


class VerifyPaymentRequest(BaseModel):
    user_id: Optional[str] = None
    reference: str = Field(min_length=1, max_length=200)


class UnlockTemplateRequest(BaseModel):
    user_id: Optional[str] = None
    template_id: str = Field(min_length=1, max_length=120)
    cost: int = Field(ge=0, le=10000)


@router.post("/balance-check")
async def balance_check(
    request: BalanceCheckRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    scoped_user_id = ensure_user_scope(auth.user_id, request.user_id)
    return {"balance": await entitlements.get_balance(db, scoped_user_id)}


@router.post("/deduct")
async def deduct_credits(
    request: DeductRequest,
    _rate_limit: None = Depends(rate_limit("billing_deduct", limit=120, window_seconds=60)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    scoped_user_id = ensure_user_scope(auth.user_id, request.user_id)
    outcome = await entitlements.deduct_for_usage(db, scoped_user_id, request.cost, request.service_name)
    return {"balance": outcome.balance, "charged": outcome.charged}


@router.post("/credit")
async def credit_account(
    request: CreditRequest,
    _rate_limit: None = Depends(rate_limit("billing_credit", limit=30, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    scoped_user_id = ensure_user_scope(auth.user_id, request.user_id)
    if not settings.MANUAL_TOPUP_ENABLED:
        raise HTTPException(status_code=403, detail="Manual credit top-up is disabled. Use verify-payment.")

    outcome = await entitlements.credit_for_purchase(
        db,
        scoped_user_id,
        request.amount,
        description=request.description or "Credit Top-up",
        external_reference=request.external_reference,
        payment_gateway="manual" if request.external_reference else None,
    )
    return {
        "balance": outcome.balance,
        "added": outcome.added,
        "already_processed": outcome.already_processed,
    }


@router.post("/watch-ad")
async def watch_ad(
    request: WatchAdRequest,
    _rate_limit: None = Depends(rate_limit("billing_watch_ad", limit=20, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    settings_service: SystemSettingsService = Depends(get_system_settings_service),
):
    scoped_user_id = ensure_user_scope(auth.user_id, request.user_id)
    policy = await settings_service.get_policy(db)
    outcome = await entitlements.reward_ad_watch(db, scoped_user_id, request.type, policy)
    return {
        "balance": outcome.balance,
        "added": outcome.total_awarded,
        "streak": outcome.streak.to_dict(),
        "streak_bonus": outcome.streak_bonus,
    }


@router.post("/verify-payment")
async def verify_payment(
    request: VerifyPaymentRequest,
    _rate_limit: None = Depends(rate_limit("billing_verify_payment", limit=30, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    verifier: PaymentVerifier = Depends(get_payment_verifier),
):
    scoped_user_id = ensure_user_scope(auth.user_id, request.user_id)
    outcome = await entitlements.verify_and_credit_external_payment(db, scoped_user_id, request.reference, verifier)
    return {
        "balance": outcome.balance,
        "added": outcome.added,
        "already_processed": outcome.already_processed,
    }


@router.post("/unlock-template")
async def unlock_template(
    request: UnlockTemplateRequest,
    _rate_limit: None = Depends(rate_limit("billing_unlock_template", limit=60, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    scoped_user_id = ensure_user_scope(auth.user_id, request.user_id)
    outcome = await entitlements.unlock_template(db, scoped_user_id, request.template_id.strip(), request.cost)
    return {
        "balance": outcome.balance,
        "unlocked_templates": outcome.unlocked_templates,
        "already_unlocked": outcome.already_unlocked,
        "charged": outcome.charged,
    }


@router.get("/transactions")
async def transactions(
    user_id: Optional[str] = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    scoped_user_id = ensure_user_scope(auth.user_id, user_id)
    await entitlements.get_balance(db, scoped_user_id)
    rows = await list_for_user(scoped_user_id, db, page_size=limit).fetch_page(page)
    return {
        "page": page,
        "limit": limit,
        "items": [serialize_transaction(row) for row in rows],
        "has_more": len(rows) == limit,
    }


@router.get("/policy")
async def credit_policy(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    settings_service: SystemSettingsService = Depends(get_system_settings_service),
):
    policy = await settings_service.get_policy(db)
    return policy.to_dict()
