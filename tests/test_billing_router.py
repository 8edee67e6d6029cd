import pytest

from config import settings
from main import app
from services.ledger.entitlements import EntitlementService
from services.payments import PaymentVerifier, VerifiedPayment, get_payment_verifier
from tests.helpers import auth_header, make_account


class ApprovingVerifier(PaymentVerifier):
    gateway_name = "paystack"

    async def verify(self, reference: str) -> VerifiedPayment:
        return VerifiedPayment(
            reference=reference,
            completed=True,
            amount=750000,
            status="success",
            metadata={"credits": 80},
        )


async def _funded_user(session_maker, balance: int, email: str = "ada@example.com") -> str:
    async with session_maker() as session:
        return await make_account(session, EntitlementService(), email=email, balance=balance)


@pytest.mark.asyncio
async def test_deduct_then_insufficient_returns_402(client, session_maker):
    user_id = await _funded_user(session_maker, 30)
    headers = auth_header(user_id)

    ok = await client.post("/billing/deduct", json={"cost": 15, "service_name": "analysis"}, headers=headers)
    assert ok.status_code == 200
    assert ok.json() == {"balance": 15, "charged": 15}

    rejected = await client.post("/billing/deduct", json={"cost": 20, "service_name": "analysis"}, headers=headers)
    assert rejected.status_code == 402
    detail = rejected.json()["detail"]
    assert detail["error"] == "INSUFFICIENT_CREDITS"
    assert (detail["required"], detail["current"]) == (20, 15)

    balance = await client.post("/billing/balance-check", json={}, headers=headers)
    assert balance.json() == {"balance": 15}


@pytest.mark.asyncio
async def test_requests_require_session_and_matching_scope(client, session_maker):
    user_id = await _funded_user(session_maker, 10)

    missing = await client.post("/billing/balance-check", json={})
    assert missing.status_code == 401

    other = await client.post(
        "/billing/balance-check", json={"user_id": "someone-else"}, headers=auth_header(user_id)
    )
    assert other.status_code == 403

    unknown = await client.post("/billing/balance-check", json={}, headers=auth_header("ghost"))
    assert unknown.status_code == 404


@pytest.mark.asyncio
async def test_manual_credit_is_idempotent_by_reference(client, session_maker):
    user_id = await _funded_user(session_maker, 0)
    headers = auth_header(user_id)
    body = {"amount": 100, "external_reference": "pay_123"}

    first = await client.post("/billing/credit", json=body, headers=headers)
    second = await client.post("/billing/credit", json=body, headers=headers)

    assert first.json() == {"balance": 100, "added": 100, "already_processed": False}
    assert second.json() == {"balance": 100, "added": 0, "already_processed": True}


@pytest.mark.asyncio
async def test_manual_credit_can_be_disabled(client, session_maker, monkeypatch):
    monkeypatch.setattr(settings, "MANUAL_TOPUP_ENABLED", False)
    user_id = await _funded_user(session_maker, 0)

    response = await client.post("/billing/credit", json={"amount": 5}, headers=auth_header(user_id))

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_credit_amount_must_be_positive(client, session_maker):
    user_id = await _funded_user(session_maker, 0)

    response = await client.post("/billing/credit", json={"amount": 0}, headers=auth_header(user_id))

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_verify_payment_credits_once(client, session_maker):
    app.dependency_overrides[get_payment_verifier] = ApprovingVerifier
    try:
        user_id = await _funded_user(session_maker, 0)
        headers = auth_header(user_id)

        first = await client.post("/billing/verify-payment", json={"reference": "pay_777"}, headers=headers)
        second = await client.post("/billing/verify-payment", json={"reference": "pay_777"}, headers=headers)
    finally:
        app.dependency_overrides.pop(get_payment_verifier, None)

    assert first.status_code == 200
    assert first.json() == {"balance": 80, "added": 80, "already_processed": False}
    assert second.json() == {"balance": 80, "added": 0, "already_processed": True}


@pytest.mark.asyncio
async def test_verify_payment_without_gateway_is_unavailable(client, session_maker, monkeypatch):
    monkeypatch.setattr(settings, "PAYSTACK_SECRET_KEY", "")
    user_id = await _funded_user(session_maker, 0)

    response = await client.post(
        "/billing/verify-payment", json={"reference": "pay_1"}, headers=auth_header(user_id)
    )

    assert response.status_code == 503


@pytest.mark.asyncio
async def test_watch_ad_returns_streak(client, session_maker):
    user_id = await _funded_user(session_maker, 0)

    response = await client.post("/billing/watch-ad", json={"type": "premium"}, headers=auth_header(user_id))

    assert response.status_code == 200
    payload = response.json()
    assert payload["added"] == settings.AD_REWARD_CREDITS["premium"]
    assert payload["balance"] == payload["added"]
    assert payload["streak"]["current"] == 1
    assert payload["streak"]["longest"] == 1
    assert payload["streak_bonus"] == 0


@pytest.mark.asyncio
async def test_unlock_template_twice_charges_once(client, session_maker):
    user_id = await _funded_user(session_maker, 50)
    headers = auth_header(user_id)
    body = {"template_id": "modern-cv", "cost": 20}

    first = await client.post("/billing/unlock-template", json=body, headers=headers)
    second = await client.post("/billing/unlock-template", json=body, headers=headers)

    assert first.json() == {
        "balance": 30,
        "unlocked_templates": ["modern-cv"],
        "already_unlocked": False,
        "charged": 20,
    }
    assert second.json()["already_unlocked"] is True
    assert second.json()["balance"] == 30


@pytest.mark.asyncio
async def test_transactions_are_paged_newest_first(client, session_maker):
    user_id = await _funded_user(session_maker, 40)
    headers = auth_header(user_id)
    for _ in range(3):
        await client.post("/billing/deduct", json={"cost": 5, "service_name": "analysis"}, headers=headers)

    first_page = await client.get("/billing/transactions?page=1&limit=2", headers=headers)
    last_page = await client.get("/billing/transactions?page=2&limit=2", headers=headers)

    assert first_page.status_code == 200
    payload = first_page.json()
    assert payload["has_more"] is True
    assert [item["amount"] for item in payload["items"]] == [-5, -5]
    assert [item["amount"] for item in last_page.json()["items"]] == [-5, 40]


@pytest.mark.asyncio
async def test_policy_endpoint_reports_costs(client, session_maker):
    user_id = await _funded_user(session_maker, 0)

    response = await client.get("/billing/policy", headers=auth_header(user_id))

    assert response.status_code == 200
    assert response.json()["analysis_cost"] == settings.CREDIT_COST_ANALYSIS
