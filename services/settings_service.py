"""Admin-editable credit policy with a TTL-cached read path."""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.enums import AdWatchType
from models.system_settings import SYSTEM_SETTINGS_ROW_ID, SystemSettings

logger = logging.getLogger(__name__)

_INT_FIELDS = ("signup_bonus", "referral_bonus", "analysis_cost", "upload_cost", "ai_skills_cost")
_BOOL_FIELDS = ("enable_ai_analysis",)
_MAP_FIELDS = ("ad_rewards", "streak_milestones")


@dataclass(frozen=True)
class CreditPolicy:
    signup_bonus: int
    referral_bonus: int
    analysis_cost: int
    upload_cost: int
    ai_skills_cost: int
    ad_rewards: Mapping[str, int] = field(default_factory=dict)
    streak_milestones: Mapping[int, int] = field(default_factory=dict)
    enable_ai_analysis: bool = True

    def ad_reward_for(self, watch_type: AdWatchType) -> int:
        return max(int(self.ad_rewards.get(AdWatchType(watch_type).value, 0)), 0)

    def streak_bonus_for(self, streak: int) -> int:
        return max(int(self.streak_milestones.get(int(streak), 0)), 0)

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["ad_rewards"] = dict(self.ad_rewards)
        payload["streak_milestones"] = {str(k): v for k, v in sorted(self.streak_milestones.items())}
        return payload


def default_policy() -> CreditPolicy:
    return CreditPolicy(
        signup_bonus=max(int(settings.SIGNUP_BONUS_CREDITS), 0),
        referral_bonus=max(int(settings.REFERRAL_BONUS_CREDITS), 0),
        analysis_cost=max(int(settings.CREDIT_COST_ANALYSIS), 0),
        upload_cost=max(int(settings.CREDIT_COST_UPLOAD), 0),
        ai_skills_cost=max(int(settings.CREDIT_COST_AI_SKILLS), 0),
        ad_rewards={str(k): int(v) for k, v in settings.AD_REWARD_CREDITS.items()},
        streak_milestones={int(k): int(v) for k, v in settings.AD_STREAK_MILESTONES.items()},
    )


def _non_negative_int(key: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"{key} must be a non-negative integer")
    return value


def validate_overrides(patch: Mapping[str, Any]) -> Dict[str, Any]:
    """Normalize an admin patch; raises ValueError on unknown keys or bad values."""
    cleaned: Dict[str, Any] = {}
    for key, value in patch.items():
        if key in _INT_FIELDS:
            cleaned[key] = _non_negative_int(key, value)
        elif key in _BOOL_FIELDS:
            if not isinstance(value, bool):
                raise ValueError(f"{key} must be a boolean")
            cleaned[key] = value
        elif key == "ad_rewards":
            if not isinstance(value, Mapping):
                raise ValueError("ad_rewards must be an object")
            rewards: Dict[str, int] = {}
            for watch_type, reward in value.items():
                try:
                    normalized = AdWatchType(watch_type).value
                except ValueError as exc:
                    raise ValueError(f"Unknown ad watch type: {watch_type}") from exc
                rewards[normalized] = _non_negative_int(f"ad_rewards.{watch_type}", reward)
            cleaned[key] = rewards
        elif key == "streak_milestones":
            if not isinstance(value, Mapping):
                raise ValueError("streak_milestones must be an object")
            milestones: Dict[str, int] = {}
            for day, bonus in value.items():
                try:
                    day_number = int(day)
                except (TypeError, ValueError) as exc:
                    raise ValueError(f"Invalid streak milestone day: {day}") from exc
                if day_number < 1:
                    raise ValueError(f"Invalid streak milestone day: {day}")
                # JSON object keys are strings; stored that way and parsed back on read.
                milestones[str(day_number)] = _non_negative_int(f"streak_milestones.{day}", bonus)
            cleaned[key] = milestones
        else:
            raise ValueError(f"Unknown setting: {key}")
    return cleaned


def merge_policy(base: CreditPolicy, overrides: Mapping[str, Any]) -> CreditPolicy:
    values = asdict(base)
    for key, value in (overrides or {}).items():
        if key in _MAP_FIELDS:
            merged = dict(values[key])
            merged.update(value or {})
            values[key] = merged
        elif key in values:
            values[key] = value
    values["ad_rewards"] = {str(k): int(v) for k, v in values["ad_rewards"].items()}
    values["streak_milestones"] = {int(k): int(v) for k, v in values["streak_milestones"].items()}
    return CreditPolicy(**values)


class SystemSettingsService:
    """Reads the credit policy, caching it for ``ttl_seconds``."""

    def __init__(self, ttl_seconds: Optional[int] = None, clock: Callable[[], float] = time.monotonic):
        ttl = settings.SYSTEM_SETTINGS_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self.ttl_seconds = max(int(ttl), 0)
        self._clock = clock
        self._cached: Optional[CreditPolicy] = None
        self._expires_at = 0.0

    def invalidate(self) -> None:
        self._cached = None
        self._expires_at = 0.0

    async def _load_overrides(self, db: AsyncSession) -> Dict[str, Any]:
        result = await db.execute(select(SystemSettings).where(SystemSettings.id == SYSTEM_SETTINGS_ROW_ID))
        row = result.scalar_one_or_none()
        return dict(row.overrides_json or {}) if row else {}

    async def get_policy(self, db: AsyncSession) -> CreditPolicy:
        if self._cached is not None and self._clock() < self._expires_at:
            return self._cached
        overrides = await self._load_overrides(db)
        policy = merge_policy(default_policy(), overrides)
        self._cached = policy
        self._expires_at = self._clock() + self.ttl_seconds
        return policy

    async def update(self, db: AsyncSession, patch: Mapping[str, Any]) -> CreditPolicy:
        cleaned = validate_overrides(patch)
        result = await db.execute(
            select(SystemSettings).where(SystemSettings.id == SYSTEM_SETTINGS_ROW_ID)
        )
        row = result.scalar_one_or_none()
        if row is None:
            row = SystemSettings(id=SYSTEM_SETTINGS_ROW_ID, overrides_json={})
            db.add(row)
        overrides = dict(row.overrides_json or {})
        for key, value in cleaned.items():
            if key in _MAP_FIELDS:
                nested = dict(overrides.get(key) or {})
                nested.update(value)
                overrides[key] = nested
            else:
                overrides[key] = value
        row.overrides_json = overrides
        await db.commit()
        self.invalidate()
        logger.info("system_settings_update keys=%s", sorted(cleaned))
        return await self.get_policy(db)


def get_system_settings_service(request: Request) -> SystemSettingsService:
    """FastAPI dependency returning the app-scoped settings service."""
    service = getattr(request.app.state, "system_settings_service", None)
    if service is None:
        service = SystemSettingsService()
        request.app.state.system_settings_service = service
    return service
