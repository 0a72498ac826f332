"""
Daily report service.
Generates and sends business-day reports so the same code path serves the
application layer ("send report for date X") and the auto-send scheduler.
"""
from typing import List, Optional
from datetime import date
import logging

from ledgersync.models.send_log import SendLog
from ledgersync.schemas.cafe import CafeCredentials
from ledgersync.schemas.ledger import SendResult
from ledgersync.schemas.report import DailyReport
from ledgersync.services.ledger_sync import LedgerSyncClient
from ledgersync.services.revenue_reconciler import reconcile
from ledgersync.services.shift_aggregator import ShiftAggregator
from ledgersync.services.stores import LocationStore, SendLogStore

logger = logging.getLogger(__name__)


class DailyReportService:
    """Report generation + ledger send for one account's locations"""

    def __init__(
        self,
        aggregator: Optional[ShiftAggregator] = None,
        sync_client: Optional[LedgerSyncClient] = None,
        location_store: Optional[LocationStore] = None,
    ):
        self.aggregator = aggregator or ShiftAggregator()
        self.sync_client = sync_client or LedgerSyncClient()
        self.locations = location_store or LocationStore()

    @property
    def send_logs(self) -> SendLogStore:
        return self.sync_client.send_logs

    async def generate(self, location: CafeCredentials, business_date: date) -> DailyReport:
        """
        Build the shift-aggregated report for a business day

        Args:
            location: Cafe credentials
            business_date: Business date

        Returns:
            DailyReport with the merged report and reconciled totals
        """
        report = await self.aggregator.aggregate_business_day(location, business_date)
        totals = reconcile(report)
        logger.info(
            "[%s] %s: cash=%s sales=%s topups=%s refunds=%s expense=%s (%d shift(s), %d failed)",
            location.name, business_date, totals.cash, totals.sales, totals.topups,
            totals.refund_total, totals.expense, report.shift_count, report.failed_shift_count,
        )
        return DailyReport(location=location, business_date=business_date, report=report, totals=totals)

    async def send_location(
        self,
        location: CafeCredentials,
        business_date: date,
        per_shift: bool = False,
        cash_account_id: Optional[str] = None,
        revenue_account_id: Optional[str] = None,
    ) -> SendResult:
        """Generate and post a business day for an already-resolved location"""
        return await self.sync_client.send_daily_report(
            location,
            business_date,
            lambda: self.generate(location, business_date),
            per_shift=per_shift,
            cash_account_id=cash_account_id,
            revenue_account_id=revenue_account_id,
        )

    async def send(
        self,
        account_id: int,
        location_id: int,
        business_date: date,
        per_shift: bool = False,
        cash_account_id: Optional[str] = None,
        revenue_account_id: Optional[str] = None,
    ) -> SendResult:
        """
        Generate and post a business day to QuickBooks

        Raises:
            LocationNotFound: unknown location for the account
            DuplicateSendError: the day was already posted
        """
        location = self.locations.get(account_id, location_id)
        return await self.send_location(
            location, business_date, per_shift, cash_account_id, revenue_account_id
        )

    def recent_logs(self, account_id: int, limit: int = 50) -> List[SendLog]:
        return self.send_logs.recent(account_id, limit)
