"""Admin reporting over the credit ledger."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.credit_transaction import CreditTransaction
from models.enums import TransactionKind, TransactionStatus, UserRole
from models.user import User
from services.ledger import journal


ChartPeriod = Literal["daily", "monthly"]


async def credit_pool_total(db: AsyncSession) -> int:
    """Sum of balances held by non-admin accounts."""
    result = await db.execute(
        select(func.coalesce(func.sum(User.credits), 0)).where(User.role != UserRole.ADMIN.value)
    )
    return int(result.scalar() or 0)


def _chart_window(period: ChartPeriod, year: int, month: int) -> Tuple[datetime, datetime]:
    if period == "daily":
        start = datetime(year, month, 1, tzinfo=timezone.utc)
        end = datetime(year + 1, 1, 1, tzinfo=timezone.utc) if month == 12 else datetime(year, month + 1, 1, tzinfo=timezone.utc)
    else:
        start = datetime(year, 1, 1, tzinfo=timezone.utc)
        end = datetime(year + 1, 1, 1, tzinfo=timezone.utc)
    return start, end


async def usage_chart(
    db: AsyncSession,
    *,
    period: ChartPeriod = "monthly",
    year: Optional[int] = None,
    month: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """Net completed credit movement per day (``daily``) or per month (``monthly``)."""
    today = datetime.now(timezone.utc)
    resolved_year = int(year or today.year)
    resolved_month = int(month or today.month)
    if not 1 <= resolved_month <= 12:
        raise ValueError("month must be between 1 and 12")

    start, end = _chart_window(period, resolved_year, resolved_month)
    result = await db.execute(
        select(CreditTransaction.created_at, CreditTransaction.amount)
        .where(
            CreditTransaction.status == TransactionStatus.COMPLETED.value,
            CreditTransaction.created_at >= start,
            CreditTransaction.created_at < end,
        )
        .order_by(CreditTransaction.created_at.asc())
    )
    label_format = "%Y-%m-%d" if period == "daily" else "%Y-%m"
    buckets: Dict[str, int] = {}
    for created_at, amount in result.all():
        label = created_at.strftime(label_format)
        buckets[label] = buckets.get(label, 0) + int(amount)
    return [{"name": label, "credits": credits} for label, credits in buckets.items()]


async def totals_by_kind(db: AsyncSession, *, from_date: date, to_date: date) -> Dict[str, int]:
    return {
        kind.value: await journal.sum_by_kind_in_range(kind, from_date, to_date, db)
        for kind in TransactionKind
    }


async def recent_transactions(db: AsyncSession, *, limit: int = 5) -> List[Dict[str, Any]]:
    result = await db.execute(
        select(CreditTransaction)
        .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
        .limit(max(int(limit), 1))
    )
    return [journal.serialize_transaction(entry) for entry in result.scalars().all()]


async def get_credit_stats(
    db: AsyncSession,
    *,
    period: ChartPeriod = "monthly",
    year: Optional[int] = None,
    month: Optional[int] = None,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
) -> Dict[str, Any]:
    today = datetime.now(timezone.utc).date()
    range_end = to_date or today
    range_start = from_date or range_end.replace(day=1)
    if range_start > range_end:
        raise ValueError("from_date must not be after to_date")
    return {
        "total_credits": await credit_pool_total(db),
        "chart": await usage_chart(db, period=period, year=year, month=month),
        "totals_by_kind": await totals_by_kind(db, from_date=range_start, to_date=range_end),
        "range": {"from": range_start.isoformat(), "to": range_end.isoformat()},
        "recent_transactions": await recent_transactions(db),
    }
