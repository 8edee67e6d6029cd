"""Append-only credit transaction journal."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Any, AsyncIterator, Dict, List, Optional, Union
import uuid

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.credit_transaction import CreditTransaction
from models.enums import TransactionKind, TransactionStatus
from services.ledger.types import DuplicateReferenceError, NewTransaction


DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

DateBound = Union[date, datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def append(
    entry: NewTransaction,
    db: AsyncSession,
    *,
    created_at: Optional[datetime] = None,
) -> CreditTransaction:
    """Persist ``entry`` with a fresh id and timestamp.

    A repeated ``external_reference`` is rejected by the unique constraint and
    reported as ``DuplicateReferenceError``; the session must then be rolled back.
    """
    record = CreditTransaction(
        id=str(uuid.uuid4()),
        user_id=entry.user_id,
        amount=int(entry.amount),
        kind=TransactionKind(entry.kind).value,
        description=entry.description,
        status=TransactionStatus(entry.status).value,
        external_reference=entry.external_reference,
        payment_gateway=entry.payment_gateway,
        created_at=created_at or _utcnow(),
    )
    db.add(record)
    try:
        await db.flush()
    except IntegrityError as exc:
        if entry.external_reference is not None:
            raise DuplicateReferenceError(entry.external_reference) from exc
        raise
    return record


async def exists_by_reference(external_reference: str, db: AsyncSession) -> bool:
    result = await db.execute(
        select(CreditTransaction.id).where(CreditTransaction.external_reference == external_reference)
    )
    return result.scalar_one_or_none() is not None


async def fetch_page(
    user_id: str,
    db: AsyncSession,
    *,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
) -> List[CreditTransaction]:
    safe_page = max(int(page), 1)
    safe_limit = min(max(int(limit), 1), MAX_PAGE_SIZE)
    result = await db.execute(
        select(CreditTransaction)
        .where(CreditTransaction.user_id == user_id)
        .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
        .offset((safe_page - 1) * safe_limit)
        .limit(safe_limit)
    )
    return list(result.scalars().all())


class TransactionPager:
    """Newest-first view over one user's journal.

    Pages are fetched only as iteration reaches them, and every ``async for``
    starts again from the newest entry.
    """

    def __init__(self, user_id: str, db: AsyncSession, page_size: int = DEFAULT_PAGE_SIZE):
        self.user_id = user_id
        self.db = db
        self.page_size = min(max(int(page_size), 1), MAX_PAGE_SIZE)

    async def fetch_page(self, page: int) -> List[CreditTransaction]:
        return await fetch_page(self.user_id, self.db, page=page, limit=self.page_size)

    async def __aiter__(self) -> AsyncIterator[CreditTransaction]:
        page = 1
        while True:
            rows = await self.fetch_page(page)
            for row in rows:
                yield row
            if len(rows) < self.page_size:
                return
            page += 1


def list_for_user(user_id: str, db: AsyncSession, page_size: int = DEFAULT_PAGE_SIZE) -> TransactionPager:
    return TransactionPager(user_id, db, page_size=page_size)


def _range_start(bound: DateBound) -> datetime:
    if isinstance(bound, datetime):
        return bound
    return datetime.combine(bound, time.min, tzinfo=timezone.utc)


def _range_end(bound: DateBound) -> datetime:
    # Plain dates are inclusive of the whole day.
    if isinstance(bound, datetime):
        return bound
    return datetime.combine(bound + timedelta(days=1), time.min, tzinfo=timezone.utc)


async def sum_by_kind_in_range(
    kind: TransactionKind,
    from_date: DateBound,
    to_date: DateBound,
    db: AsyncSession,
) -> int:
    """Sum completed amounts of ``kind`` created in [from_date, to_date]."""
    result = await db.execute(
        select(func.coalesce(func.sum(CreditTransaction.amount), 0)).where(
            CreditTransaction.kind == TransactionKind(kind).value,
            CreditTransaction.status == TransactionStatus.COMPLETED.value,
            CreditTransaction.created_at >= _range_start(from_date),
            CreditTransaction.created_at < _range_end(to_date),
        )
    )
    return int(result.scalar() or 0)


async def journal_total(user_id: str, db: AsyncSession) -> int:
    result = await db.execute(
        select(func.coalesce(func.sum(CreditTransaction.amount), 0)).where(
            CreditTransaction.user_id == user_id,
            CreditTransaction.status == TransactionStatus.COMPLETED.value,
        )
    )
    return int(result.scalar() or 0)


def serialize_transaction(entry: CreditTransaction) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "user_id": entry.user_id,
        "amount": entry.amount,
        "kind": entry.kind,
        "description": entry.description,
        "status": entry.status,
        "external_reference": entry.external_reference,
        "payment_gateway": entry.payment_gateway,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }
