"""TemplateUnlock model: the set of templates a user has paid for."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class TemplateUnlock(Base):
    __tablename__ = "template_unlocks"
    __table_args__ = (UniqueConstraint("user_id", "template_id", name="uq_template_unlocks_user_template"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    template_id = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="template_unlocks")
