"""
Global key/value settings storage.
"""
from sqlalchemy import Column, String, Text
from rainarr.database import Base


class GlobalSetting(Base):
    """Process-wide setting, cached in memory by SettingsService."""

    __tablename__ = "global_settings"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=True)
