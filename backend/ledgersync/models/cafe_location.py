"""
Cafe Location Model - an iCafeCloud cafe and its encrypted API key
"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean, UniqueConstraint
from datetime import datetime

from ledgersync.database import Base


class CafeLocation(Base):
    __tablename__ = "cafe_locations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(Integer, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    icafe_cafe_id = Column(String(64), nullable=False)
    api_key_encrypted = Column(String, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint('account_id', 'icafe_cafe_id', name='uq_cafe_location_account_cafe'),
    )

    def __repr__(self):
        return f"<CafeLocation {self.name} ({self.icafe_cafe_id})>"
