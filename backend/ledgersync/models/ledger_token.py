"""
Ledger Token Model - QuickBooks OAuth tokens, one row per connected account
"""
from sqlalchemy import Column, Integer, String, DateTime
from datetime import datetime

from ledgersync.database import Base


class LedgerToken(Base):
    __tablename__ = "ledger_tokens"

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(Integer, unique=True, nullable=False, index=True)
    realm_id = Column(String(64), nullable=False)
    access_token_encrypted = Column(String, nullable=False)
    refresh_token_encrypted = Column(String, nullable=False)
    access_token_expires_at = Column(DateTime, nullable=False)
    refresh_token_expires_at = Column(DateTime, nullable=False)
    company_name = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<LedgerToken account={self.account_id} realm={self.realm_id}>"
