"""Paid AI generation router (fit analysis, optimized CV and cover letter)."""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, ensure_user_scope, get_auth_context
from routers.rate_limit import rate_limit
from services.content_generator import ContentGenerator, get_content_generator
from services.generation import charge_and_generate
from services.settings_service import SystemSettingsService, get_system_settings_service

router = APIRouter()


class FitAnalysisRequest(BaseModel):
    user_id: Optional[str] = None
    resume_text: str = Field(min_length=1, max_length=50000)
    job_text: str = Field(min_length=1, max_length=50000)


class OptimizeRequest(FitAnalysisRequest):
    context: Dict[str, Any] = Field(default_factory=dict)


@router.post("/fit-analysis")
async def fit_analysis(
    request: FitAnalysisRequest,
    _rate_limit: None = Depends(rate_limit("ai_fit_analysis", limit=30, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    generator: ContentGenerator = Depends(get_content_generator),
    settings_service: SystemSettingsService = Depends(get_system_settings_service),
):
    scoped_user_id = ensure_user_scope(auth.user_id, request.user_id)
    policy = await settings_service.get_policy(db)
    if not policy.enable_ai_analysis:
        raise HTTPException(status_code=503, detail="AI analysis is temporarily disabled.")

    paid = await charge_and_generate(
        db,
        user_id=scoped_user_id,
        service_name="AI fit analysis",
        cost=policy.analysis_cost,
        generate=lambda: generator.generate_fit_analysis(request.resume_text, request.job_text),
    )
    return {**paid.result, "credits": {"charged": paid.charged, "balance": paid.balance}}


@router.post("/optimize")
async def optimize(
    request: OptimizeRequest,
    _rate_limit: None = Depends(rate_limit("ai_optimize", limit=30, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    generator: ContentGenerator = Depends(get_content_generator),
    settings_service: SystemSettingsService = Depends(get_system_settings_service),
):
    scoped_user_id = ensure_user_scope(auth.user_id, request.user_id)
    policy = await settings_service.get_policy(db)
    if not policy.enable_ai_analysis:
        raise HTTPException(status_code=503, detail="AI analysis is temporarily disabled.")

    paid = await charge_and_generate(
        db,
        user_id=scoped_user_id,
        service_name="AI CV optimization",
        cost=policy.ai_skills_cost,
        generate=lambda: generator.generate_optimized_content(
            request.resume_text, request.job_text, request.context
        ),
    )
    return {**paid.result, "credits": {"charged": paid.charged, "balance": paid.balance}}
