"""Closed enumerations shared by ledger models and services."""

import enum


class TransactionKind(str, enum.Enum):
    PURCHASE = "purchase"
    USAGE = "usage"
    AD_REWARD = "ad_reward"
    STREAK_BONUS = "streak_bonus"
    REFERRAL_BONUS = "referral_bonus"
    SIGNUP_BONUS = "signup_bonus"
    REFUND = "refund"


class TransactionStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class AdWatchType(str, enum.Enum):
    STANDARD = "standard"
    PREMIUM = "premium"


class UserRole(str, enum.Enum):
    USER = "user"
    ADMIN = "admin"
