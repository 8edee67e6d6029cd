"""Ledger contracts: errors and operation results."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional

from models.enums import AdWatchType, TransactionKind, TransactionStatus


class LedgerError(Exception):
    """Base class for business-level ledger failures."""


class AccountNotFoundError(LedgerError):
    def __init__(self, user_id: str):
        super().__init__(f"Account {user_id} not found.")
        self.user_id = user_id


class InsufficientCreditsError(LedgerError):
    """Raised when a deduction would take a balance below zero."""

    def __init__(self, required: int, current: int):
        super().__init__(f"Insufficient credits. Required: {required}, available: {current}.")
        self.required = required
        self.current = current


class AccountExistsError(LedgerError):
    def __init__(self, email: str):
        super().__init__(f"An account for {email} already exists.")
        self.email = email


class DuplicateReferenceError(LedgerError):
    def __init__(self, reference: str):
        super().__init__(f"External reference {reference} was already recorded.")
        self.reference = reference


class VerificationFailedError(LedgerError):
    def __init__(self, reference: str, reason: str):
        super().__init__(f"Payment {reference} could not be verified: {reason}")
        self.reference = reference
        self.reason = reason


class InvalidAmountError(LedgerError, ValueError):
    """Raised for non-positive credits or negative costs."""


@dataclass(frozen=True)
class AdStreak:
    current_streak: int = 0
    longest_streak: int = 0
    last_reward_date: Optional[date] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current": self.current_streak,
            "longest": self.longest_streak,
            "last_reward_date": self.last_reward_date.isoformat() if self.last_reward_date else None,
        }


@dataclass(frozen=True)
class AccountSnapshot:
    user_id: str
    balance: int
    unlocked_templates: List[str]
    ad_streak: AdStreak


@dataclass(frozen=True)
class UsageOutcome:
    balance: int
    charged: int


@dataclass(frozen=True)
class PurchaseOutcome:
    balance: int
    added: int
    already_processed: bool = False
    transaction_id: Optional[str] = None


@dataclass(frozen=True)
class AdRewardOutcome:
    balance: int
    total_awarded: int
    base_reward: int
    streak_bonus: int
    streak: AdStreak


@dataclass(frozen=True)
class TemplateUnlockOutcome:
    balance: int
    unlocked_templates: List[str]
    already_unlocked: bool
    charged: int = 0


@dataclass(frozen=True)
class ReconciliationReport:
    user_id: str
    balance: int
    journal_total: int

    @property
    def consistent(self) -> bool:
        return self.balance == self.journal_total


@dataclass(frozen=True)
class NewTransaction:
    """Journal entry as requested by an operation, before id/timestamp assignment."""

    user_id: str
    amount: int
    kind: TransactionKind
    description: str
    status: TransactionStatus = TransactionStatus.COMPLETED
    external_reference: Optional[str] = None
    payment_gateway: Optional[str] = None


__all__ = [
    "AccountExistsError",
    "AccountNotFoundError",
    "AccountSnapshot",
    "AdRewardOutcome",
    "AdStreak",
    "AdWatchType",
    "DuplicateReferenceError",
    "InsufficientCreditsError",
    "InvalidAmountError",
    "LedgerError",
    "NewTransaction",
    "PurchaseOutcome",
    "ReconciliationReport",
    "TemplateUnlockOutcome",
    "TransactionKind",
    "TransactionStatus",
    "UsageOutcome",
    "VerificationFailedError",
]
