"""Payment gateway verification (Paystack)."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from config import require_paystack_secret_key, settings


logger = logging.getLogger(__name__)


class PaymentVerifierUnavailableError(RuntimeError):
    """Raised when no payment gateway is configured."""


class PaymentGatewayError(RuntimeError):
    """Raised when the gateway cannot be reached or answers unexpectedly."""


class PaymentTimeoutError(PaymentGatewayError):
    """Raised when the gateway does not answer within the configured timeout."""


@dataclass(frozen=True)
class VerifiedPayment:
    reference: str
    completed: bool
    amount: int
    status: str
    currency: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def credits_to_add(self, minor_units_per_credit: int) -> int:
        """Credits stored in the payment metadata, else the fallback conversion."""
        metadata_credits = self.metadata.get("credits")
        if metadata_credits is not None:
            try:
                return max(int(metadata_credits), 0)
            except (TypeError, ValueError):
                logger.warning("Ignoring non-numeric credits metadata on payment %s", self.reference)
        rate = max(int(minor_units_per_credit), 1)
        return max(int(self.amount), 0) // rate


class PaymentVerifier(ABC):
    gateway_name: str

    @abstractmethod
    async def verify(self, reference: str) -> VerifiedPayment:
        raise NotImplementedError


class PaystackPaymentVerifier(PaymentVerifier):
    gateway_name = "paystack"

    def __init__(
        self,
        *,
        secret_key: str,
        base_url: str = "https://api.paystack.co",
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    async def verify(self, reference: str) -> VerifiedPayment:
        url = f"{self.base_url}/transaction/verify/{quote(reference, safe='')}"
        headers = {"Authorization": f"Bearer {self.secret_key}"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
                response = await client.get(url, headers=headers)
        except httpx.TimeoutException as exc:
            raise PaymentTimeoutError(f"Paystack did not answer within {self.timeout_seconds}s") from exc
        except httpx.HTTPError as exc:
            raise PaymentGatewayError(f"Paystack request failed: {exc}") from exc

        if response.status_code == 404:
            return VerifiedPayment(reference=reference, completed=False, amount=0, status="not_found")
        if response.status_code >= 500:
            raise PaymentGatewayError(f"Paystack returned HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise PaymentGatewayError("Paystack returned a non-JSON response") from exc

        data = payload.get("data") or {}
        if not payload.get("status") or not isinstance(data, dict):
            return VerifiedPayment(
                reference=reference,
                completed=False,
                amount=0,
                status=str(payload.get("message") or "unverified"),
            )

        metadata = data.get("metadata")
        status = str(data.get("status") or "unknown")
        return VerifiedPayment(
            reference=str(data.get("reference") or reference),
            completed=status == "success",
            amount=int(data.get("amount") or 0),
            status=status,
            currency=data.get("currency"),
            metadata=metadata if isinstance(metadata, dict) else {},
        )


def get_payment_verifier() -> PaymentVerifier:
    """FastAPI dependency returning the configured payment verifier."""
    try:
        secret_key = require_paystack_secret_key()
    except ValueError as exc:
        raise PaymentVerifierUnavailableError("Payment verification is not configured.") from exc
    return PaystackPaymentVerifier(
        secret_key=secret_key,
        base_url=settings.PAYSTACK_BASE_URL,
        timeout_seconds=settings.PAYMENT_VERIFY_TIMEOUT_SECONDS,
    )
