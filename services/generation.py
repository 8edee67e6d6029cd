"""Paid AI generation: charge first, then call the content generator."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from services.content_generator import ContentGenerationError
from services.ledger.entitlements import EntitlementService, entitlements

logger = logging.getLogger(__name__)


class PaidGenerationFailedError(ContentGenerationError):
    """Generation failed after the charge was committed."""

    def __init__(self, message: str, *, charged: int, refunded: int, balance: int):
        super().__init__(message)
        self.charged = charged
        self.refunded = refunded
        self.balance = balance


@dataclass(frozen=True)
class PaidGeneration:
    result: Dict[str, Any]
    charged: int
    balance: int


async def charge_and_generate(
    db: AsyncSession,
    *,
    user_id: str,
    service_name: str,
    cost: int,
    generate: Callable[[], Awaitable[Dict[str, Any]]],
    timeout_seconds: Optional[float] = None,
    refund_on_failure: Optional[bool] = None,
    service: Optional[EntitlementService] = None,
) -> PaidGeneration:
    """Deduct ``cost`` and run ``generate`` with a bounded timeout.

    Credits are not returned when generation fails unless
    ``refund_on_failure`` (default ``REFUND_ON_GENERATION_FAILURE``) is set,
    in which case a compensating refund entry is journaled.
    """
    ledger = service or entitlements
    timeout = settings.GENERATION_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds
    refund = settings.REFUND_ON_GENERATION_FAILURE if refund_on_failure is None else refund_on_failure

    usage = await ledger.deduct_for_usage(db, user_id, cost, service_name)
    try:
        result = await asyncio.wait_for(generate(), timeout=timeout)
    except (asyncio.TimeoutError, ContentGenerationError) as exc:
        reason = "AI generation timed out" if isinstance(exc, asyncio.TimeoutError) else str(exc)
        logger.warning("paid_generation_failed user=%s service=%s reason=%s", user_id, service_name, reason)
        balance = usage.balance
        refunded = 0
        if refund and usage.charged:
            balance = await ledger.refund_usage(db, user_id, usage.charged, service_name)
            refunded = usage.charged
        raise PaidGenerationFailedError(reason, charged=usage.charged, refunded=refunded, balance=balance) from exc

    return PaidGeneration(result=result, charged=usage.charged, balance=usage.balance)
