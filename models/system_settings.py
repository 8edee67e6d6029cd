"""SystemSettings model: admin overrides for the credit policy."""

from sqlalchemy import JSON, Column, DateTime, String
from sqlalchemy.sql import func

from database import Base


SYSTEM_SETTINGS_ROW_ID = "global"


class SystemSettings(Base):
    """Single-row table; ``overrides_json`` is merged over config defaults."""

    __tablename__ = "system_settings"

    id = Column(String, primary_key=True, default=SYSTEM_SETTINGS_ROW_ID)
    overrides_json = Column(JSON, nullable=False, default=dict)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
