"""
Ledger (QuickBooks) Schemas
"""
from typing import Optional, List, Dict, Any
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from pydantic import BaseModel, Field
import enum


class PostingType(str, enum.Enum):
    DEBIT = "Debit"
    CREDIT = "Credit"


class AccountRef(BaseModel):
    name: str
    value: str


class JournalLine(BaseModel):
    description: str
    amount: Decimal
    posting_type: PostingType
    account_ref: AccountRef


def round_money(amount: Decimal) -> Decimal:
    """Round to cents, half away from zero"""
    return Decimal(amount).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


class JournalEntry(BaseModel):
    """A balanced journal entry ready to post"""
    txn_date: date
    doc_number: str
    private_note: Optional[str] = None
    lines: List[JournalLine] = Field(default_factory=list)

    def total(self, posting_type: PostingType) -> Decimal:
        return sum(
            (round_money(line.amount) for line in self.lines if line.posting_type == posting_type),
            Decimal("0"),
        )

    @property
    def is_balanced(self) -> bool:
        return self.total(PostingType.DEBIT) == self.total(PostingType.CREDIT)

    def to_qbo_payload(self) -> Dict[str, Any]:
        """QuickBooks Online JournalEntry request body"""
        return {
            "TxnDate": self.txn_date.isoformat(),
            "DocNumber": self.doc_number,
            "PrivateNote": self.private_note,
            "Line": [
                {
                    "Description": line.description,
                    "Amount": float(round_money(line.amount)),
                    "DetailType": "JournalEntryLineDetail",
                    "JournalEntryLineDetail": {
                        "PostingType": line.posting_type.value,
                        "AccountRef": {
                            "name": line.account_ref.name,
                            "value": line.account_ref.value,
                        },
                    },
                }
                for line in self.lines
            ],
        }


class TokenPair(BaseModel):
    """OAuth token response, expiries already resolved to instants"""
    access_token: str
    refresh_token: str
    access_token_expires_at: datetime
    refresh_token_expires_at: datetime


class StoredToken(TokenPair):
    """A decrypted ledger token row"""
    account_id: int
    realm_id: str
    company_name: Optional[str] = None


class ConnectionStatus(BaseModel):
    connected: bool
    company_name: Optional[str] = None
    realm_id: Optional[str] = None
    is_access_token_expired: bool = False
    is_refresh_token_expired: bool = False
    needs_reconnect: bool = False


class SendResult(BaseModel):
    """Outcome of a successful ledger post"""
    journal_entry_id: str
    location_id: int
    business_date: date
    doc_number: str
    total_cash: Decimal
    revenue: Decimal
    shift_count: int
