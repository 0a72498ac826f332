"""
Send Log Model - one row per attempt to post a business day to the ledger.

Rows are never updated. At most one 'success' row may exist per
(location, business_date); that row is what makes sends idempotent.
"""
from sqlalchemy import Column, Integer, String, DateTime, Numeric, Text, Enum, Index, text
from datetime import datetime
import enum

from ledgersync.database import Base


class SendStatus(str, enum.Enum):
    """Send attempt status"""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class SendLog(Base):
    __tablename__ = "send_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(Integer, nullable=False)
    location_id = Column(Integer, nullable=False)
    location_name = Column(String(255), nullable=False)
    business_date = Column(String(10), nullable=False)  # YYYY-MM-DD
    journal_entry_id = Column(String(64), nullable=True)
    total_cash = Column(Numeric(14, 2), nullable=True)
    shift_count = Column(Integer, nullable=True)
    status = Column(Enum(SendStatus, values_callable=lambda x: [e.value for e in x]), nullable=False, default=SendStatus.PENDING)
    error_message = Column(Text, nullable=True)
    sent_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index('idx_send_log_lookup', 'location_id', 'business_date', 'status'),
        Index('idx_send_log_account_sent', 'account_id', 'sent_at'),
        Index(
            'uq_send_log_success_per_day', 'location_id', 'business_date',
            unique=True,
            postgresql_where=text("status = 'success'"),
            sqlite_where=text("status = 'success'"),
        ),
    )

    def __repr__(self):
        return f"<SendLog {self.location_id} {self.business_date} ({self.status})>"
