"""
Error taxonomy for report aggregation and ledger sync
"""
from typing import Optional


class LedgerSyncError(Exception):
    """Base class for all errors raised by this package"""


class UpstreamUnavailable(LedgerSyncError):
    """A remote source (iCafeCloud or the ledger) was unreachable or returned garbage"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class UpstreamAuthError(LedgerSyncError):
    """The ledger rejected the access token (expired or revoked)"""


class DuplicateSendError(LedgerSyncError):
    """
    A successful send already exists for this (location, business date).

    Not a failure: callers treat it as a no-op signal.
    """

    def __init__(self, location_id: int, business_date: str, journal_entry_id: Optional[str] = None):
        super().__init__(
            f"Report for {business_date} has already been sent to QuickBooks "
            f"(Journal Entry ID: {journal_entry_id})"
        )
        self.location_id = location_id
        self.business_date = business_date
        self.journal_entry_id = journal_entry_id


class LedgerRejection(LedgerSyncError):
    """
    The ledger refused the journal entry (validation, account reference, ...)

    `fault` holds the ledger's own error text, unprefixed; it is what gets
    written to the SendLog.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, fault: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.fault = fault if fault is not None else message


class LedgerNotConnected(LedgerSyncError):
    """No ledger token is stored for the account"""


class LocationNotFound(LedgerSyncError):
    """The cafe location referenced by a setting or call does not exist"""


class InternalInvariantViolation(LedgerSyncError):
    """Data broke an assumption the aggregation relies on (e.g. a shift with no staff)"""
