"""
Auto-Send Setting Model - per (account, location) schedule for posting daily reports
"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean, Enum, UniqueConstraint
from datetime import datetime
import enum

from ledgersync.database import Base


class AutoSendMode(str, enum.Enum):
    """When a daily report is pushed to the ledger"""
    DAILY_TIME = "daily_time"
    BUSINESS_DAY_END = "business_day_end"
    LAST_SHIFT = "last_shift"


class AutoSendSetting(Base):
    __tablename__ = "auto_send_settings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(Integer, nullable=False, index=True)
    location_id = Column(Integer, nullable=False)
    enabled = Column(Boolean, default=False, nullable=False)
    mode = Column(Enum(AutoSendMode, values_callable=lambda x: [e.value for e in x]), nullable=False)
    schedule_time = Column(String(5), nullable=True)  # HH:MM, daily_time only
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint('account_id', 'location_id', name='uq_auto_send_account_location'),
    )

    def __repr__(self):
        return f"<AutoSendSetting {self.location_id} {self.mode} enabled={self.enabled}>"
