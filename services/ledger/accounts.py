"""Account balance store: balances, template unlocks and ad streaks.

Balances are mutated with a single conditional UPDATE so that the
affordability check and the write happen atomically in the database,
independently of any in-process locking done by callers.
"""

from __future__ import annotations

import secrets
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.enums import UserRole
from models.template_unlock import TemplateUnlock
from models.user import User
from services.ledger.types import AccountNotFoundError, AccountSnapshot, AdStreak, InsufficientCreditsError


REFERRAL_CODE_BYTES = 5


async def get_account(user_id: str, db: AsyncSession) -> User:
    result = await db.execute(
        select(User).where(User.id == user_id).execution_options(populate_existing=True)
    )
    user = result.scalar_one_or_none()
    if user is None:
        raise AccountNotFoundError(user_id)
    return user


async def get_balance(user_id: str, db: AsyncSession) -> int:
    result = await db.execute(select(User.credits).where(User.id == user_id))
    balance = result.scalar_one_or_none()
    if balance is None:
        raise AccountNotFoundError(user_id)
    return int(balance)


async def adjust_balance(user_id: str, delta: int, db: AsyncSession) -> int:
    """Apply ``delta`` to the balance and return the new balance.

    Negative deltas only apply when the current balance covers them;
    otherwise ``InsufficientCreditsError`` is raised and nothing changes.
    """
    delta = int(delta)
    stmt = update(User).where(User.id == user_id).values(credits=User.credits + delta)
    if delta < 0:
        stmt = stmt.where(User.credits >= -delta)
    result = await db.execute(stmt.execution_options(synchronize_session=False))
    if result.rowcount == 0:
        current = await get_balance(user_id, db)
        raise InsufficientCreditsError(required=-delta, current=current)
    return await get_balance(user_id, db)


async def list_unlocked_templates(user_id: str, db: AsyncSession) -> List[str]:
    result = await db.execute(
        select(TemplateUnlock.template_id)
        .where(TemplateUnlock.user_id == user_id)
        .order_by(TemplateUnlock.template_id.asc())
    )
    return [str(template_id) for template_id in result.scalars().all()]


async def is_template_unlocked(user_id: str, template_id: str, db: AsyncSession) -> bool:
    result = await db.execute(
        select(TemplateUnlock.id).where(
            TemplateUnlock.user_id == user_id,
            TemplateUnlock.template_id == template_id,
        )
    )
    return result.scalar_one_or_none() is not None


async def unlock_template(user_id: str, template_id: str, db: AsyncSession) -> bool:
    """Add ``template_id`` to the unlock set. Returns True when it was already there."""
    if await is_template_unlocked(user_id, template_id, db):
        return True
    db.add(TemplateUnlock(user_id=user_id, template_id=template_id))
    # The (user_id, template_id) unique constraint rejects a concurrent duplicate here.
    await db.flush()
    return False


async def get_streak(user_id: str, db: AsyncSession) -> AdStreak:
    result = await db.execute(
        select(User.ad_streak_current, User.ad_streak_longest, User.ad_streak_last_date).where(User.id == user_id)
    )
    row = result.one_or_none()
    if row is None:
        raise AccountNotFoundError(user_id)
    return AdStreak(
        current_streak=int(row[0] or 0),
        longest_streak=int(row[1] or 0),
        last_reward_date=row[2],
    )


async def record_streak(user_id: str, streak: AdStreak, db: AsyncSession) -> None:
    if streak.current_streak < 0 or streak.longest_streak < streak.current_streak:
        raise ValueError(f"Invalid ad streak for {user_id}: {streak}")
    result = await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(
            ad_streak_current=streak.current_streak,
            ad_streak_longest=streak.longest_streak,
            ad_streak_last_date=streak.last_reward_date,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise AccountNotFoundError(user_id)


async def get_account_snapshot(user_id: str, db: AsyncSession) -> AccountSnapshot:
    balance = await get_balance(user_id, db)
    return AccountSnapshot(
        user_id=user_id,
        balance=balance,
        unlocked_templates=await list_unlocked_templates(user_id, db),
        ad_streak=await get_streak(user_id, db),
    )


async def find_by_referral_code(referral_code: str, db: AsyncSession) -> Optional[User]:
    code = (referral_code or "").strip().upper()
    if not code:
        return None
    result = await db.execute(select(User).where(User.referral_code == code))
    return result.scalar_one_or_none()


async def find_by_email(email: str, db: AsyncSession) -> Optional[User]:
    result = await db.execute(select(User).where(User.email == email.strip().lower()))
    return result.scalar_one_or_none()


async def increment_referral_count(user_id: str, db: AsyncSession) -> None:
    await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(referral_count=User.referral_count + 1)
        .execution_options(synchronize_session=False)
    )


async def create_account(
    db: AsyncSession,
    *,
    email: str,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    referred_by: Optional[str] = None,
    role: UserRole = UserRole.USER,
) -> User:
    """Insert a zero-balance account; starting credits are granted through the journal."""
    user = User(
        email=email.strip().lower(),
        first_name=first_name,
        last_name=last_name,
        role=role.value,
        credits=0,
        ad_streak_current=0,
        ad_streak_longest=0,
        referral_code=secrets.token_hex(REFERRAL_CODE_BYTES).upper(),
        referred_by=referred_by,
        referral_count=0,
    )
    db.add(user)
    await db.flush()
    return user
