import asyncio

import httpx
import pytest

from services.ledger.types import VerificationFailedError
from services.payments import (
    PaymentGatewayError,
    PaymentTimeoutError,
    PaymentVerifier,
    PaystackPaymentVerifier,
    VerifiedPayment,
)
from tests.helpers import make_account


def _paystack(handler) -> PaystackPaymentVerifier:
    return PaystackPaymentVerifier(
        secret_key="sk_test_secret",
        base_url="https://paystack.test",
        transport=httpx.MockTransport(handler),
    )


def _success(reference: str, amount: int, metadata=None) -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "status": True,
            "message": "Verification successful",
            "data": {
                "reference": reference,
                "status": "success",
                "amount": amount,
                "currency": "NGN",
                "metadata": metadata,
            },
        },
    )


class StaticVerifier(PaymentVerifier):
    gateway_name = "static"

    def __init__(self, payment: VerifiedPayment, delay: float = 0.0):
        self.payment = payment
        self.delay = delay
        self.calls = 0

    async def verify(self, reference: str) -> VerifiedPayment:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.payment


@pytest.mark.asyncio
async def test_paystack_success_reads_metadata_credits():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["auth"] = request.headers.get("Authorization")
        return _success("pay_abc", 500000, {"credits": 120})

    payment = await _paystack(handler).verify("pay_abc")

    assert seen == {"path": "/transaction/verify/pay_abc", "auth": "Bearer sk_test_secret"}
    assert payment.completed is True
    assert payment.currency == "NGN"
    assert payment.credits_to_add(1000) == 120


@pytest.mark.asyncio
async def test_paystack_reference_is_escaped_in_path():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["raw_path"] = request.url.raw_path
        return _success("pay/1?x=2", 100000)

    await _paystack(handler).verify("pay/1?x=2")

    assert seen["raw_path"] == b"/transaction/verify/pay%2F1%3Fx%3D2"


@pytest.mark.asyncio
async def test_paystack_amount_fallback_conversion():
    payment = await _paystack(lambda request: _success("pay_abc", 250000)).verify("pay_abc")

    assert payment.metadata == {}
    assert payment.credits_to_add(1000) == 250


@pytest.mark.asyncio
async def test_paystack_failed_status_is_not_completed():
    def handler(request):
        return httpx.Response(200, json={"status": True, "data": {"status": "abandoned", "amount": 1000}})

    payment = await _paystack(handler).verify("pay_abc")

    assert payment.completed is False
    assert payment.status == "abandoned"


@pytest.mark.asyncio
async def test_paystack_unknown_reference_is_not_completed():
    payment = await _paystack(lambda request: httpx.Response(404, json={"status": False})).verify("nope")

    assert payment.completed is False
    assert payment.status == "not_found"


@pytest.mark.asyncio
async def test_paystack_timeout_and_server_errors():
    def timeout_handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(PaymentTimeoutError):
        await _paystack(timeout_handler).verify("pay_abc")

    with pytest.raises(PaymentGatewayError):
        await _paystack(lambda request: httpx.Response(503)).verify("pay_abc")


@pytest.mark.asyncio
async def test_verified_payment_is_credited_once(db, service):
    user_id = await make_account(db, service)
    verifier = StaticVerifier(
        VerifiedPayment(reference="pay_123", completed=True, amount=100000, status="success")
    )

    first = await service.verify_and_credit_external_payment(db, user_id, "pay_123", verifier)
    second = await service.verify_and_credit_external_payment(db, user_id, "pay_123", verifier)

    assert (first.balance, first.added, first.already_processed) == (100, 100, False)
    assert (second.balance, second.added, second.already_processed) == (100, 0, True)
    assert verifier.calls == 1
    assert (await service.reconcile(db, user_id)).consistent


@pytest.mark.asyncio
async def test_unsuccessful_payment_raises_verification_failed(db, service):
    user_id = await make_account(db, service)
    verifier = StaticVerifier(VerifiedPayment(reference="pay_9", completed=False, amount=0, status="failed"))

    with pytest.raises(VerificationFailedError) as excinfo:
        await service.verify_and_credit_external_payment(db, user_id, "pay_9", verifier)

    assert "failed" in excinfo.value.reason
    assert await service.get_balance(db, user_id) == 0


@pytest.mark.asyncio
async def test_slow_gateway_times_out_without_crediting(db, service):
    user_id = await make_account(db, service)
    verifier = StaticVerifier(
        VerifiedPayment(reference="pay_slow", completed=True, amount=5000, status="success"), delay=1.0
    )

    with pytest.raises(VerificationFailedError):
        await service.verify_and_credit_external_payment(db, user_id, "pay_slow", verifier, timeout_seconds=0.05)

    assert await service.get_balance(db, user_id) == 0


@pytest.mark.asyncio
async def test_payment_worth_zero_credits_is_rejected(db, service):
    user_id = await make_account(db, service)
    verifier = StaticVerifier(VerifiedPayment(reference="pay_tiny", completed=True, amount=999, status="success"))

    with pytest.raises(VerificationFailedError):
        await service.verify_and_credit_external_payment(db, user_id, "pay_tiny", verifier, minor_units_per_credit=1000)
