"""Admin router: ledger statistics, reconciliation and credit policy settings."""

from __future__ import annotations

from datetime import date
from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, require_admin
from services.credit_analytics import get_credit_stats
from services.ledger import entitlements
from services.settings_service import SystemSettingsService, get_system_settings_service

router = APIRouter()


@router.get("/credits/stats")
async def credit_stats(
    period: Literal["daily", "monthly"] = Query(default="monthly"),
    year: Optional[int] = Query(default=None, ge=2000, le=2100),
    month: Optional[int] = Query(default=None, ge=1, le=12),
    from_date: Optional[date] = Query(default=None),
    to_date: Optional[date] = Query(default=None),
    _admin: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await get_credit_stats(
            db,
            period=period,
            year=year,
            month=month,
            from_date=from_date,
            to_date=to_date,
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


@router.get("/credits/reconcile/{user_id}")
async def reconcile_account(
    user_id: str,
    _admin: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    report = await entitlements.reconcile(db, user_id)
    return {
        "user_id": report.user_id,
        "balance": report.balance,
        "journal_total": report.journal_total,
        "consistent": report.consistent,
    }


@router.get("/settings")
async def read_settings(
    _admin: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    settings_service: SystemSettingsService = Depends(get_system_settings_service),
):
    return (await settings_service.get_policy(db)).to_dict()


@router.patch("/settings")
async def update_settings(
    patch: Dict[str, Any],
    _admin: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    settings_service: SystemSettingsService = Depends(get_system_settings_service),
):
    try:
        policy = await settings_service.update(db, patch)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return policy.to_dict()
