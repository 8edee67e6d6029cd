"""Entitlement operations: the only code paths that move credits.

Every operation runs VALIDATE -> MUTATE_BALANCE -> APPEND_JOURNAL -> COMMIT
while holding the per-account lock, and rolls the session back on any
failure so a balance change is never visible without its journal entry.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta, timezone
from typing import AsyncIterator, Callable, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from models.credit_transaction import CreditTransaction
from models.enums import AdWatchType, TransactionKind
from models.user import User
from services.ledger import accounts, journal
from services.ledger.locks import KeyedLock, account_locks
from services.ledger.types import (
    AccountExistsError,
    AdRewardOutcome,
    AdStreak,
    DuplicateReferenceError,
    InsufficientCreditsError,
    InvalidAmountError,
    NewTransaction,
    PurchaseOutcome,
    ReconciliationReport,
    TemplateUnlockOutcome,
    UsageOutcome,
    VerificationFailedError,
)
from services.payments import PaymentTimeoutError, PaymentVerifier
from services.settings_service import CreditPolicy

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def next_streak(previous: AdStreak, today: date) -> Tuple[AdStreak, bool]:
    """Return the streak after a reward on ``today`` and whether it was extended.

    A reward on the day after the last one extends the streak, as does the
    first reward ever. A second reward on the same day leaves it untouched,
    and any gap restarts it at 1 without counting as an extension.
    """
    last = previous.last_reward_date
    if last is not None and last >= today:
        return previous, False
    extended = last is None or last == today - timedelta(days=1)
    current = previous.current_streak + 1 if last is not None and extended else 1
    return (
        AdStreak(
            current_streak=current,
            longest_streak=max(previous.longest_streak, current),
            last_reward_date=today,
        ),
        extended,
    )


class EntitlementService:
    def __init__(
        self,
        *,
        locks: Optional[KeyedLock] = None,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.locks = locks or account_locks
        self.now = now

    def today(self) -> date:
        return self.now().astimezone(timezone.utc).date()

    @asynccontextmanager
    async def _unit_of_work(self, lock_key: str, db: AsyncSession) -> AsyncIterator[None]:
        async with self.locks.hold(lock_key):
            try:
                yield
            except BaseException:
                await db.rollback()
                raise

    async def _apply(
        self,
        db: AsyncSession,
        user_id: str,
        amount: int,
        kind: TransactionKind,
        description: str,
        *,
        external_reference: Optional[str] = None,
        payment_gateway: Optional[str] = None,
    ) -> Tuple[int, CreditTransaction]:
        """Mutate the balance and journal it, without committing."""
        balance = await accounts.adjust_balance(user_id, amount, db)
        record = await journal.append(
            NewTransaction(
                user_id=user_id,
                amount=amount,
                kind=kind,
                description=description,
                external_reference=external_reference,
                payment_gateway=payment_gateway,
            ),
            db,
            created_at=self.now(),
        )
        return balance, record

    async def get_balance(self, db: AsyncSession, user_id: str) -> int:
        return await accounts.get_balance(user_id, db)

    async def deduct_for_usage(
        self,
        db: AsyncSession,
        user_id: str,
        cost: int,
        service_name: str,
    ) -> UsageOutcome:
        cost = int(cost)
        if cost < 0:
            raise InvalidAmountError("cost must not be negative")

        async with self._unit_of_work(user_id, db):
            balance = await accounts.get_balance(user_id, db)
            if balance < cost:
                logger.info("credit_deduct_rejected user=%s cost=%s balance=%s", user_id, cost, balance)
                raise InsufficientCreditsError(required=cost, current=balance)
            if cost == 0:
                return UsageOutcome(balance=balance, charged=0)
            balance, _ = await self._apply(db, user_id, -cost, TransactionKind.USAGE, f"Used for {service_name}")
            await db.commit()

        logger.info("credit_deduct user=%s service=%s cost=%s balance=%s", user_id, service_name, cost, balance)
        return UsageOutcome(balance=balance, charged=cost)

    async def credit_for_purchase(
        self,
        db: AsyncSession,
        user_id: str,
        amount: int,
        description: str = "Credit Top-up",
        external_reference: Optional[str] = None,
        payment_gateway: Optional[str] = None,
    ) -> PurchaseOutcome:
        amount = int(amount)
        if amount <= 0:
            raise InvalidAmountError("credits must be greater than 0")
        reference = (external_reference or "").strip() or None

        try:
            async with self._unit_of_work(user_id, db):
                balance = await accounts.get_balance(user_id, db)
                if reference and await journal.exists_by_reference(reference, db):
                    raise DuplicateReferenceError(reference)
                balance, record = await self._apply(
                    db,
                    user_id,
                    amount,
                    TransactionKind.PURCHASE,
                    description,
                    external_reference=reference,
                    payment_gateway=payment_gateway,
                )
                await db.commit()
        except DuplicateReferenceError:
            balance = await accounts.get_balance(user_id, db)
            logger.info("credit_purchase_already_processed user=%s reference=%s", user_id, reference)
            return PurchaseOutcome(balance=balance, added=0, already_processed=True)

        logger.info(
            "credit_purchase user=%s amount=%s reference=%s balance=%s", user_id, amount, reference, balance
        )
        return PurchaseOutcome(balance=balance, added=amount, transaction_id=record.id)

    async def verify_and_credit_external_payment(
        self,
        db: AsyncSession,
        user_id: str,
        gateway_reference: str,
        verifier: PaymentVerifier,
        *,
        timeout_seconds: Optional[float] = None,
        minor_units_per_credit: Optional[int] = None,
    ) -> PurchaseOutcome:
        reference = (gateway_reference or "").strip()
        if not reference:
            raise VerificationFailedError(gateway_reference, "payment reference is required")

        balance = await accounts.get_balance(user_id, db)
        if await journal.exists_by_reference(reference, db):
            logger.info("payment_verify_already_processed user=%s reference=%s", user_id, reference)
            return PurchaseOutcome(balance=balance, added=0, already_processed=True)

        timeout = settings.PAYMENT_VERIFY_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds
        try:
            payment = await asyncio.wait_for(verifier.verify(reference), timeout=timeout)
        except (asyncio.TimeoutError, PaymentTimeoutError) as exc:
            logger.warning("payment_verify_timeout user=%s reference=%s", user_id, reference)
            raise VerificationFailedError(reference, "verification timed out") from exc

        if not payment.completed:
            logger.info("payment_verify_failed user=%s reference=%s status=%s", user_id, reference, payment.status)
            raise VerificationFailedError(reference, f"payment status is {payment.status}")

        rate = settings.PAYMENT_FALLBACK_MINOR_UNITS_PER_CREDIT if minor_units_per_credit is None else minor_units_per_credit
        credits_to_add = payment.credits_to_add(rate)
        if credits_to_add <= 0:
            raise VerificationFailedError(reference, "payment amount converts to zero credits")

        return await self.credit_for_purchase(
            db,
            user_id,
            credits_to_add,
            description=f"Purchased {credits_to_add} credits",
            external_reference=reference,
            payment_gateway=verifier.gateway_name,
        )

    async def reward_ad_watch(
        self,
        db: AsyncSession,
        user_id: str,
        watch_type: AdWatchType,
        policy: CreditPolicy,
    ) -> AdRewardOutcome:
        watch_type = AdWatchType(watch_type)
        base_reward = policy.ad_reward_for(watch_type)

        async with self._unit_of_work(user_id, db):
            previous = await accounts.get_streak(user_id, db)
            streak, extended = next_streak(previous, self.today())
            streak_bonus = policy.streak_bonus_for(streak.current_streak) if extended else 0
            if streak != previous:
                await accounts.record_streak(user_id, streak, db)

            balance = await accounts.get_balance(user_id, db)
            if base_reward:
                balance, _ = await self._apply(
                    db, user_id, base_reward, TransactionKind.AD_REWARD, f"Ad reward ({watch_type.value})"
                )
            if streak_bonus:
                balance, _ = await self._apply(
                    db,
                    user_id,
                    streak_bonus,
                    TransactionKind.STREAK_BONUS,
                    f"{streak.current_streak}-day ad streak bonus",
                )
            await db.commit()

        logger.info(
            "ad_reward user=%s type=%s base=%s bonus=%s streak=%s balance=%s",
            user_id,
            watch_type.value,
            base_reward,
            streak_bonus,
            streak.current_streak,
            balance,
        )
        return AdRewardOutcome(
            balance=balance,
            total_awarded=base_reward + streak_bonus,
            base_reward=base_reward,
            streak_bonus=streak_bonus,
            streak=streak,
        )

    async def unlock_template(
        self,
        db: AsyncSession,
        user_id: str,
        template_id: str,
        cost: int,
    ) -> TemplateUnlockOutcome:
        cost = int(cost)
        if cost < 0:
            raise InvalidAmountError("cost must not be negative")

        try:
            async with self._unit_of_work(user_id, db):
                balance = await accounts.get_balance(user_id, db)
                if await accounts.is_template_unlocked(user_id, template_id, db):
                    return TemplateUnlockOutcome(
                        balance=balance,
                        unlocked_templates=await accounts.list_unlocked_templates(user_id, db),
                        already_unlocked=True,
                    )
                if balance < cost:
                    logger.info("template_unlock_rejected user=%s template=%s cost=%s", user_id, template_id, cost)
                    raise InsufficientCreditsError(required=cost, current=balance)
                if cost:
                    balance, _ = await self._apply(
                        db, user_id, -cost, TransactionKind.USAGE, f"Unlocked template {template_id}"
                    )
                await accounts.unlock_template(user_id, template_id, db)
                await db.commit()
        except IntegrityError:
            # Another instance unlocked it first; our debit was rolled back.
            logger.info("template_unlock_race user=%s template=%s", user_id, template_id)
            return TemplateUnlockOutcome(
                balance=await accounts.get_balance(user_id, db),
                unlocked_templates=await accounts.list_unlocked_templates(user_id, db),
                already_unlocked=True,
            )

        logger.info("template_unlock user=%s template=%s cost=%s balance=%s", user_id, template_id, cost, balance)
        return TemplateUnlockOutcome(
            balance=balance,
            unlocked_templates=await accounts.list_unlocked_templates(user_id, db),
            already_unlocked=False,
            charged=cost,
        )

    async def refund_usage(self, db: AsyncSession, user_id: str, amount: int, service_name: str) -> int:
        """Write a compensating credit for a charge whose service failed."""
        amount = int(amount)
        if amount <= 0:
            raise InvalidAmountError("refund must be greater than 0")
        async with self._unit_of_work(user_id, db):
            balance, _ = await self._apply(db, user_id, amount, TransactionKind.REFUND, f"Refund for {service_name}")
            await db.commit()
        logger.info("credit_refund user=%s service=%s amount=%s balance=%s", user_id, service_name, amount, balance)
        return balance

    async def open_account(
        self,
        db: AsyncSession,
        *,
        email: str,
        policy: CreditPolicy,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        referral_code: Optional[str] = None,
    ) -> User:
        """Register an account with its signup bonus and pay any referrer."""
        normalized_email = email.strip().lower()
        referrer = await accounts.find_by_referral_code(referral_code, db) if referral_code else None
        lock_key = referrer.id if referrer else f"signup:{normalized_email}"

        try:
            async with self._unit_of_work(lock_key, db):
                if await accounts.find_by_email(normalized_email, db):
                    raise AccountExistsError(normalized_email)
                user = await accounts.create_account(
                    db,
                    email=normalized_email,
                    first_name=first_name,
                    last_name=last_name,
                    referred_by=referrer.id if referrer else None,
                )
                if policy.signup_bonus:
                    await self._apply(db, user.id, policy.signup_bonus, TransactionKind.SIGNUP_BONUS, "Welcome bonus")
                if referrer is not None:
                    await self._grant_referral_bonus(db, referrer.id, normalized_email, policy.referral_bonus)
                await db.commit()
        except IntegrityError as exc:
            raise AccountExistsError(normalized_email) from exc

        logger.info(
            "account_open user=%s referrer=%s bonus=%s", user.id, referrer.id if referrer else None, policy.signup_bonus
        )
        return await accounts.get_account(user.id, db)

    async def _grant_referral_bonus(self, db: AsyncSession, referrer_id: str, referred_email: str, amount: int) -> None:
        await accounts.increment_referral_count(referrer_id, db)
        if amount > 0:
            await self._apply(
                db, referrer_id, amount, TransactionKind.REFERRAL_BONUS, f"Referral bonus for inviting {referred_email}"
            )

    async def reconcile(self, db: AsyncSession, user_id: str) -> ReconciliationReport:
        async with self.locks.hold(user_id):
            balance = await accounts.get_balance(user_id, db)
            total = await journal.journal_total(user_id, db)
        if balance != total:
            logger.warning("ledger_mismatch user=%s balance=%s journal=%s", user_id, balance, total)
        return ReconciliationReport(user_id=user_id, balance=balance, journal_total=total)


entitlements = EntitlementService()
