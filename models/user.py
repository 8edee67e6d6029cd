"""User model carrying the credit account."""

from sqlalchemy import CheckConstraint, Column, Date, DateTime, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base
from models.enums import UserRole


class User(Base):
    """Registered user and their credit account.

    ``credits`` is a cached projection of the user's completed credit
    transactions and is only written through the ledger services.
    """

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("credits >= 0", name="ck_users_credits_non_negative"),
        CheckConstraint(
            "ad_streak_longest >= ad_streak_current",
            name="ck_users_ad_streak_longest_gte_current",
        ),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String, unique=True, nullable=False, index=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    role = Column(String, nullable=False, default=UserRole.USER.value)

    credits = Column(Integer, nullable=False, default=0)
    ad_streak_current = Column(Integer, nullable=False, default=0)
    ad_streak_longest = Column(Integer, nullable=False, default=0)
    ad_streak_last_date = Column(Date, nullable=True)

    referral_code = Column(String, unique=True, nullable=True, index=True)
    referred_by = Column(String, nullable=True)
    referral_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    credit_transactions = relationship(
        "CreditTransaction", back_populates="user", cascade="all, delete-orphan"
    )
    template_unlocks = relationship("TemplateUnlock", back_populates="user", cascade="all, delete-orphan")
