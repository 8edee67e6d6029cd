import asyncio

import pytest

from models.enums import TransactionKind
from services.ledger import accounts, journal
from services.ledger.entitlements import EntitlementService
from services.ledger.locks import KeyedLock
from services.ledger.types import (
    AccountExistsError,
    AccountNotFoundError,
    InsufficientCreditsError,
    InvalidAmountError,
)
from services.settings_service import default_policy
from tests.helpers import make_account


async def _assert_consistent(service, db, user_id):
    report = await service.reconcile(db, user_id)
    assert report.consistent, report


@pytest.mark.asyncio
async def test_deduct_until_insufficient(db, service):
    user_id = await make_account(db, service, balance=50)

    first = await service.deduct_for_usage(db, user_id, 20, "analysis")
    assert (first.balance, first.charged) == (30, 20)

    second = await service.deduct_for_usage(db, user_id, 15, "analysis")
    assert second.balance == 15

    with pytest.raises(InsufficientCreditsError) as excinfo:
        await service.deduct_for_usage(db, user_id, 20, "analysis")
    assert (excinfo.value.required, excinfo.value.current) == (20, 15)

    assert await service.get_balance(db, user_id) == 15
    history = [entry async for entry in journal.list_for_user(user_id, db)]
    assert [entry.amount for entry in history] == [-15, -20, 50]
    assert history[0].description == "Used for analysis"
    await _assert_consistent(service, db, user_id)


@pytest.mark.asyncio
async def test_zero_cost_usage_charges_nothing(db, service):
    user_id = await make_account(db, service, balance=5)

    outcome = await service.deduct_for_usage(db, user_id, 0, "preview")

    assert (outcome.balance, outcome.charged) == (5, 0)
    assert len(await journal.fetch_page(user_id, db)) == 1


@pytest.mark.asyncio
async def test_negative_cost_and_non_positive_purchase_are_rejected(db, service):
    user_id = await make_account(db, service)

    with pytest.raises(InvalidAmountError):
        await service.deduct_for_usage(db, user_id, -1, "analysis")
    with pytest.raises(InvalidAmountError):
        await service.credit_for_purchase(db, user_id, 0)


@pytest.mark.asyncio
async def test_unknown_account_raises_not_found(db, service):
    with pytest.raises(AccountNotFoundError):
        await service.get_balance(db, "missing")
    with pytest.raises(AccountNotFoundError):
        await service.deduct_for_usage(db, "missing", 1, "analysis")


@pytest.mark.asyncio
async def test_purchase_reference_is_idempotent(db, service):
    user_id = await make_account(db, service)

    first = await service.credit_for_purchase(db, user_id, 100, external_reference="pay_123", payment_gateway="paystack")
    second = await service.credit_for_purchase(db, user_id, 100, external_reference="pay_123", payment_gateway="paystack")

    assert (first.balance, first.added, first.already_processed) == (100, 100, False)
    assert (second.balance, second.added, second.already_processed) == (100, 0, True)
    assert await journal.sum_by_kind_in_range(
        TransactionKind.PURCHASE, service.today(), service.today(), db
    ) == 100
    await _assert_consistent(service, db, user_id)


@pytest.mark.asyncio
async def test_purchases_without_reference_are_not_deduplicated(db, service):
    user_id = await make_account(db, service)

    await service.credit_for_purchase(db, user_id, 10)
    outcome = await service.credit_for_purchase(db, user_id, 10, external_reference="   ")

    assert outcome.balance == 20
    assert outcome.already_processed is False


@pytest.mark.asyncio
async def test_unlock_template_charges_once(db, service):
    user_id = await make_account(db, service, balance=40)

    first = await service.unlock_template(db, user_id, "modern-cv", 25)
    second = await service.unlock_template(db, user_id, "modern-cv", 25)

    assert (first.balance, first.charged, first.already_unlocked) == (15, 25, False)
    assert first.unlocked_templates == ["modern-cv"]
    assert (second.balance, second.charged, second.already_unlocked) == (15, 0, True)
    assert await accounts.list_unlocked_templates(user_id, db) == ["modern-cv"]
    await _assert_consistent(service, db, user_id)


@pytest.mark.asyncio
async def test_unlock_template_without_funds_leaves_no_trace(db, service):
    user_id = await make_account(db, service, balance=10)

    with pytest.raises(InsufficientCreditsError) as excinfo:
        await service.unlock_template(db, user_id, "executive", 25)

    assert (excinfo.value.required, excinfo.value.current) == (25, 10)
    assert await accounts.is_template_unlocked(user_id, "executive", db) is False
    assert await service.get_balance(db, user_id) == 10


@pytest.mark.asyncio
async def test_free_template_unlock_writes_no_journal_entry(db, service):
    user_id = await make_account(db, service)

    outcome = await service.unlock_template(db, user_id, "basic", 0)

    assert outcome.unlocked_templates == ["basic"]
    assert outcome.charged == 0
    assert await journal.fetch_page(user_id, db) == []


@pytest.mark.asyncio
async def test_concurrent_deductions_never_overdraw(session_maker, service):
    async with session_maker() as setup:
        user_id = await make_account(setup, service, balance=30)

    async def attempt():
        async with session_maker() as session:
            try:
                return await service.deduct_for_usage(session, user_id, 20, "analysis")
            except InsufficientCreditsError as exc:
                return exc

    results = await asyncio.gather(*(attempt() for _ in range(4)))

    successes = [item for item in results if not isinstance(item, Exception)]
    failures = [item for item in results if isinstance(item, InsufficientCreditsError)]
    assert len(successes) == 1
    assert len(failures) == 3
    assert all(item.current == 10 for item in failures)

    async with session_maker() as check:
        assert await service.get_balance(check, user_id) == 10
        await _assert_consistent(service, check, user_id)
    assert service.locks.active_keys() == 0


@pytest.mark.asyncio
async def test_concurrent_unlocks_charge_once(session_maker, service):
    async with session_maker() as setup:
        user_id = await make_account(setup, service, balance=100)

    async def attempt():
        async with session_maker() as session:
            return await service.unlock_template(session, user_id, "modern-cv", 30)

    results = await asyncio.gather(*(attempt() for _ in range(3)))

    assert sum(item.charged for item in results) == 30
    assert sum(1 for item in results if not item.already_unlocked) == 1
    async with session_maker() as check:
        assert await service.get_balance(check, user_id) == 70


@pytest.mark.asyncio
async def test_adjust_balance_refuses_overdraft_without_lock(db, service):
    user_id = await make_account(db, service, balance=5)

    with pytest.raises(InsufficientCreditsError):
        await accounts.adjust_balance(user_id, -6, db)
    await db.rollback()

    assert await accounts.get_balance(user_id, db) == 5


@pytest.mark.asyncio
async def test_open_account_grants_signup_and_referral_bonuses(db, service):
    policy = default_policy()
    referrer = await service.open_account(db, email="Grace@Example.com", policy=policy)
    invited = await service.open_account(
        db,
        email="linus@example.com",
        policy=policy,
        first_name="Linus",
        referral_code=referrer.referral_code.lower(),
    )

    assert referrer.email == "grace@example.com"
    assert invited.credits == policy.signup_bonus
    assert invited.referred_by == referrer.id

    refreshed = await accounts.get_account(referrer.id, db)
    assert refreshed.credits == policy.signup_bonus + policy.referral_bonus
    assert refreshed.referral_count == 1
    await _assert_consistent(service, db, referrer.id)
    await _assert_consistent(service, db, invited.id)


@pytest.mark.asyncio
async def test_open_account_rejects_duplicate_email(db, service):
    policy = default_policy()
    await service.open_account(db, email="ada@example.com", policy=policy)

    with pytest.raises(AccountExistsError):
        await service.open_account(db, email="ADA@example.com", policy=policy)


@pytest.mark.asyncio
async def test_refund_writes_compensating_entry(db, service):
    user_id = await make_account(db, service, balance=30)
    await service.deduct_for_usage(db, user_id, 30, "analysis")

    balance = await service.refund_usage(db, user_id, 30, "analysis")

    assert balance == 30
    latest = (await journal.fetch_page(user_id, db, limit=1))[0]
    assert latest.kind == TransactionKind.REFUND.value
    assert latest.description == "Refund for analysis"
    await _assert_consistent(service, db, user_id)


@pytest.mark.asyncio
async def test_two_concurrent_deductions_of_full_balance(session_maker, service):
    async with session_maker() as setup:
        user_id = await make_account(setup, service, balance=10)

    async def attempt():
        async with session_maker() as session:
            try:
                return await service.deduct_for_usage(session, user_id, 10, "analysis")
            except InsufficientCreditsError as exc:
                return exc

    first, second = await asyncio.gather(attempt(), attempt())

    outcomes = sorted([first, second], key=lambda item: isinstance(item, InsufficientCreditsError))
    assert outcomes[0].balance == 0
    assert (outcomes[1].required, outcomes[1].current) == (10, 0)
    async with session_maker() as check:
        assert await service.get_balance(check, user_id) == 0


@pytest.mark.asyncio
async def test_duplicate_reference_across_instances_credits_once(session_maker, clock):
    first_instance = EntitlementService(locks=KeyedLock(), now=clock)
    second_instance = EntitlementService(locks=KeyedLock(), now=clock)
    async with session_maker() as setup:
        user_id = await make_account(setup, first_instance)

    async def attempt(instance):
        async with session_maker() as session:
            return await instance.credit_for_purchase(session, user_id, 50, external_reference="pay_123")

    results = await asyncio.gather(attempt(first_instance), attempt(second_instance))

    assert sorted(item.added for item in results) == [0, 50]
    assert sorted(item.already_processed for item in results) == [False, True]
    async with session_maker() as check:
        assert await first_instance.get_balance(check, user_id) == 50
        assert await journal.journal_total(user_id, check) == 50


@pytest.mark.asyncio
async def test_full_balance_deductions_across_instances_debit_once(session_maker, clock):
    first_instance = EntitlementService(locks=KeyedLock(), now=clock)
    second_instance = EntitlementService(locks=KeyedLock(), now=clock)
    async with session_maker() as setup:
        user_id = await make_account(setup, first_instance, balance=10)

    async def attempt(instance):
        async with session_maker() as session:
            try:
                return await instance.deduct_for_usage(session, user_id, 10, "analysis")
            except InsufficientCreditsError as exc:
                return exc

    results = await asyncio.gather(attempt(first_instance), attempt(second_instance))

    failures = [item for item in results if isinstance(item, InsufficientCreditsError)]
    assert len(failures) == 1
    assert failures[0].current == 0
    async with session_maker() as check:
        assert await first_instance.get_balance(check, user_id) == 0
        assert await journal.journal_total(user_id, check) == 0
