"""
Ledger sync: turns a DailyReport into a QuickBooks journal entry, exactly once
per (location, business date).
"""
from typing import Awaitable, Callable, Dict, Optional, Tuple
from datetime import date, timedelta
import asyncio
import logging
import re

from ledgersync.config import settings
from ledgersync.exceptions import (
    DuplicateSendError,
    InternalInvariantViolation,
    LedgerNotConnected,
    LedgerRejection,
    LedgerSyncError,
    UpstreamAuthError,
    UpstreamUnavailable,
)
from ledgersync.schemas.cafe import CafeCredentials
from ledgersync.schemas.ledger import (
    AccountRef,
    ConnectionStatus,
    JournalEntry,
    JournalLine,
    PostingType,
    SendResult,
    StoredToken,
)
from ledgersync.schemas.report import DailyReport
from ledgersync.services.quickbooks_service import quickbooks_service
from ledgersync.services.stores import LedgerTokenStore, SendLogStore
from ledgersync.utils.business_day import format_business_day
from ledgersync.utils.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

DOC_NUMBER_MAX_LENGTH = 21  # QuickBooks DocNumber limit


def build_doc_number(location_name: str, business_date: date, location_id: Optional[int] = None) -> str:
    """
    Journal entry document number: "<alphanumeric name>-<YYYYMMDD>", at most 21 chars

    The name is truncated to fit; a name with no alphanumerics falls back to
    "L<location id>".
    """
    suffix = business_date.strftime("%Y%m%d")
    max_prefix = DOC_NUMBER_MAX_LENGTH - len(suffix) - 1

    prefix = re.sub(r"[^A-Za-z0-9]", "", location_name or "")
    if not prefix:
        prefix = f"L{location_id}" if location_id is not None else "CAFE"
    return f"{prefix[:max_prefix]}-{suffix}"


def build_private_note(daily_report: DailyReport) -> str:
    return (
        f"Daily iCafe report for {daily_report.location.name}\n"
        f"Business Date: {daily_report.business_date.isoformat()}\n"
        f"Shifts: {daily_report.report.shift_count}\n"
        f"Total Cash: {daily_report.totals.cash:,.2f}"
    )


def build_journal_entry(
    daily_report: DailyReport,
    per_shift: bool = False,
    cash_account_id: Optional[str] = None,
    revenue_account_id: Optional[str] = None,
) -> JournalEntry:
    """
    Build a balanced journal entry for a daily report

    Args:
        daily_report: Report to post
        per_shift: One Debit Cash / Credit Revenue pair per shift (shift cash)
            instead of a single pair for the day (sales + top-ups)
        cash_account_id: QuickBooks account id for the debit side
        revenue_account_id: QuickBooks account id for the credit side

    Returns:
        JournalEntry with debits equal to credits

    Raises:
        ValueError: per-shift mode requested for a day with no shifts
    """
    cash_ref = AccountRef(name="Cash", value=cash_account_id or settings.QB_CASH_ACCOUNT_ID)
    revenue_ref = AccountRef(name="Revenue", value=revenue_account_id or settings.QB_REVENUE_ACCOUNT_ID)
    location_name = daily_report.location.name

    def pair(label: str, amount) -> list:
        return [
            JournalLine(description=f"{label} - Cash", amount=amount,
                        posting_type=PostingType.DEBIT, account_ref=cash_ref),
            JournalLine(description=f"{label} - Revenue", amount=amount,
                        posting_type=PostingType.CREDIT, account_ref=revenue_ref),
        ]

    lines = []
    if per_shift:
        if not daily_report.report.shifts:
            raise ValueError(
                f"No shifts to post for {location_name} on {daily_report.business_date}"
            )
        for shift in daily_report.report.shifts:
            start = shift.start.strftime("%H:%M")
            end = shift.end.strftime("%H:%M") if shift.end else "open"
            lines += pair(f"{location_name} - {shift.staff_name} ({start} - {end})", shift.cash)
    else:
        label = f"{location_name} {format_business_day(daily_report.business_date)}"
        lines += pair(label, daily_report.totals.revenue)

    entry = JournalEntry(
        txn_date=daily_report.business_date,
        doc_number=build_doc_number(location_name, daily_report.business_date, daily_report.location.location_id),
        private_note=build_private_note(daily_report),
        lines=lines,
    )
    if not entry.is_balanced:
        raise InternalInvariantViolation(f"Journal entry {entry.doc_number} is not balanced")
    return entry


class LedgerSyncClient:
    """
    Posts daily reports to QuickBooks and manages the account's ledger token

    Token refreshes are serialized per account; the token is re-read inside
    the lock so a refresh that already happened is not repeated. Sends are
    serialized per (location, business date) the same way.
    """

    def __init__(
        self,
        ledger=None,
        token_store: Optional[LedgerTokenStore] = None,
        send_log_store: Optional[SendLogStore] = None,
        clock: Optional[Clock] = None,
        expiry_skew_seconds: Optional[int] = None,
    ):
        self.ledger = ledger or quickbooks_service
        self.tokens = token_store or LedgerTokenStore()
        self.send_logs = send_log_store or SendLogStore()
        self.clock = clock or SystemClock()
        self.expiry_skew = timedelta(
            seconds=expiry_skew_seconds if expiry_skew_seconds is not None
            else settings.QB_TOKEN_EXPIRY_SKEW_SECONDS
        )
        self._refresh_locks: Dict[int, asyncio.Lock] = {}
        self._send_locks: Dict[Tuple[int, date], asyncio.Lock] = {}

    def _access_token_expired(self, token: StoredToken) -> bool:
        return token.access_token_expires_at <= self.clock.now() + self.expiry_skew

    async def ensure_fresh_token(self, account_id: int, stale: Optional[StoredToken] = None) -> StoredToken:
        """
        Return a usable token for the account, refreshing it if needed

        Args:
            account_id: Account id
            stale: A token the ledger just rejected; forces a refresh unless
                another caller already replaced it

        Raises:
            LedgerNotConnected: no token stored
            UpstreamAuthError: the refresh token is expired or was rejected
        """
        token = self.tokens.get(account_id)
        if token is None:
            raise LedgerNotConnected(f"QuickBooks is not connected for account {account_id}")
        if stale is None and not self._access_token_expired(token):
            return token

        lock = self._refresh_locks.setdefault(account_id, asyncio.Lock())
        async with lock:
            current = self.tokens.get(account_id)
            if current is None:
                raise LedgerNotConnected(f"QuickBooks is not connected for account {account_id}")
            if stale is not None:
                if current.access_token != stale.access_token:
                    return current
            elif not self._access_token_expired(current):
                return current

            if current.refresh_token_expires_at <= self.clock.now():
                raise UpstreamAuthError(
                    f"QuickBooks refresh token expired for account {account_id}; reconnect required"
                )

            logger.info("Refreshing QuickBooks access token for account %s", account_id)
            pair = await self.ledger.refresh_access_token(current.refresh_token)
            return self.tokens.update_tokens(account_id, pair)

    async def _post(self, account_id: int, token: StoredToken, entry: JournalEntry) -> str:
        try:
            return await self.ledger.create_journal_entry(token.access_token, token.realm_id, entry)
        except UpstreamAuthError as e:
            logger.warning(
                "QuickBooks rejected the access token for account %s, refreshing and retrying once: %s",
                account_id, e,
            )
            token = await self.ensure_fresh_token(account_id, stale=token)
            return await self.ledger.create_journal_entry(token.access_token, token.realm_id, entry)

    async def send_daily_report(
        self,
        location: CafeCredentials,
        business_date: date,
        build_report: Callable[[], Awaitable[DailyReport]],
        per_shift: bool = False,
        cash_account_id: Optional[str] = None,
        revenue_account_id: Optional[str] = None,
    ) -> SendResult:
        """
        Post one business day to the ledger

        Sends for the same (location, business date) run one at a time and the
        SendLog is checked first inside that lock, so a duplicate costs no
        token refresh, no report generation and no network call. A day with
        any failed shift report is not posted; it is logged as a failure and
        retried later.

        Args:
            location: Cafe location
            business_date: Business date to post
            build_report: Coroutine factory producing the DailyReport
            per_shift: Post one line pair per shift
            cash_account_id: Override for the cash account id
            revenue_account_id: Override for the revenue account id

        Returns:
            SendResult with the ledger's journal entry id

        Raises:
            DuplicateSendError: the day was already posted
            LedgerSyncError: any other failure (after a failed SendLog row is written)
        """
        lock = self._send_locks.setdefault((location.location_id, business_date), asyncio.Lock())
        async with lock:
            return await self._send_once(
                location, business_date, build_report, per_shift, cash_account_id, revenue_account_id
            )

    async def _send_once(
        self,
        location: CafeCredentials,
        business_date: date,
        build_report: Callable[[], Awaitable[DailyReport]],
        per_shift: bool,
        cash_account_id: Optional[str],
        revenue_account_id: Optional[str],
    ) -> SendResult:
        account_id = location.account_id
        existing = self.send_logs.get_success(location.location_id, business_date)
        if existing is not None:
            raise DuplicateSendError(location.location_id, business_date.isoformat(), existing.journal_entry_id)

        daily_report = None
        try:
            token = await self.ensure_fresh_token(account_id)
            daily_report = await build_report()
            report = daily_report.report
            if report.failed_shift_count:
                raise UpstreamUnavailable(
                    f"{report.failed_shift_count} of {report.shift_count} shift report(s) could not be "
                    f"fetched for {location.name} on {business_date}; not posting partial figures"
                )
            entry = build_journal_entry(daily_report, per_shift, cash_account_id, revenue_account_id)
            journal_entry_id = await self._post(account_id, token, entry)
        except Exception as e:
            logger.error(
                "Sending %s %s to QuickBooks failed: %s", location.name, business_date, e
            )
            self.send_logs.record_failure(
                account_id,
                location.location_id,
                location.name,
                business_date,
                e.fault if isinstance(e, LedgerRejection) else str(e),
                total_cash=daily_report.totals.cash if daily_report else None,
                shift_count=daily_report.report.shift_count if daily_report else None,
            )
            raise

        try:
            self.send_logs.record_success(
                account_id,
                location.location_id,
                location.name,
                business_date,
                journal_entry_id,
                daily_report.totals.cash,
                daily_report.report.shift_count,
            )
        except DuplicateSendError as e:
            # Another process already posted this day; the orphaned entry id goes on the failed row
            self.send_logs.record_failure(
                account_id,
                location.location_id,
                location.name,
                business_date,
                f"Journal entry {journal_entry_id} posted after another send succeeded: {e}",
                total_cash=daily_report.totals.cash,
                shift_count=daily_report.report.shift_count,
                journal_entry_id=journal_entry_id,
            )
            raise

        logger.info(
            "Sent %s %s to QuickBooks as journal entry %s (revenue %s, %d shift(s))",
            location.name, business_date, journal_entry_id,
            daily_report.totals.revenue, daily_report.report.shift_count,
        )

        return SendResult(
            journal_entry_id=journal_entry_id,
            location_id=location.location_id,
            business_date=business_date,
            doc_number=entry.doc_number,
            total_cash=daily_report.totals.cash,
            revenue=daily_report.totals.revenue,
            shift_count=daily_report.report.shift_count,
        )

    async def connect(self, account_id: int, code: str, realm_id: str, redirect_uri: Optional[str] = None) -> ConnectionStatus:
        """Exchange an OAuth code and store the connection (company name when available)"""
        pair = await self.ledger.exchange_code_for_token(code, redirect_uri)

        company_name = None
        try:
            info = await self.ledger.get_company_info(pair.access_token, realm_id)
            company_name = info.get("CompanyName")
        except LedgerSyncError as e:
            logger.warning("Could not fetch QuickBooks company info for realm %s: %s", realm_id, e)

        self.tokens.save(account_id, realm_id, pair, company_name)
        logger.info("QuickBooks connected for account %s (realm %s)", account_id, realm_id)
        return self.connection_status(account_id)

    def connection_status(self, account_id: int) -> ConnectionStatus:
        token = self.tokens.get(account_id)
        if token is None:
            return ConnectionStatus(connected=False)

        now = self.clock.now()
        refresh_expired = token.refresh_token_expires_at <= now
        return ConnectionStatus(
            connected=True,
            company_name=token.company_name,
            realm_id=token.realm_id,
            is_access_token_expired=token.access_token_expires_at <= now,
            is_refresh_token_expired=refresh_expired,
            needs_reconnect=refresh_expired,
        )

    async def disconnect(self, account_id: int) -> bool:
        """Revoke (best effort) and delete the account's token"""
        token = self.tokens.get(account_id)
        if token is None:
            return False

        try:
            await self.ledger.revoke_token(token.refresh_token)
        except LedgerSyncError as e:
            logger.warning("Revoking QuickBooks token for account %s failed, deleting anyway: %s", account_id, e)

        return self.tokens.delete(account_id)
