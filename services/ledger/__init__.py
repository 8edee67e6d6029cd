"""Credit ledger: balance store, transaction journal and entitlement operations."""

from services.ledger.entitlements import EntitlementService, entitlements, next_streak
from services.ledger.journal import TransactionPager, list_for_user, serialize_transaction, sum_by_kind_in_range
from services.ledger.types import (
    AccountExistsError,
    AccountNotFoundError,
    AccountSnapshot,
    AdRewardOutcome,
    AdStreak,
    DuplicateReferenceError,
    InsufficientCreditsError,
    InvalidAmountError,
    LedgerError,
    PurchaseOutcome,
    ReconciliationReport,
    TemplateUnlockOutcome,
    UsageOutcome,
    VerificationFailedError,
)

__all__ = [
    "AccountExistsError",
    "AccountNotFoundError",
    "AccountSnapshot",
    "AdRewardOutcome",
    "AdStreak",
    "DuplicateReferenceError",
    "EntitlementService",
    "InsufficientCreditsError",
    "InvalidAmountError",
    "LedgerError",
    "PurchaseOutcome",
    "ReconciliationReport",
    "TemplateUnlockOutcome",
    "TransactionPager",
    "UsageOutcome",
    "VerificationFailedError",
    "entitlements",
    "list_for_user",
    "next_streak",
    "serialize_transaction",
    "sum_by_kind_in_range",
]
