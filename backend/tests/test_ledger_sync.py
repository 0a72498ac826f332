"""
Tests for journal entry building and the exactly-once ledger send
"""
import asyncio
import pytest
from datetime import date
from decimal import Decimal

from ledgersync.exceptions import (
    DuplicateSendError,
    LedgerNotConnected,
    LedgerRejection,
    UpstreamAuthError,
    UpstreamUnavailable,
)
from ledgersync.models.send_log import SendStatus
from ledgersync.schemas.ledger import PostingType
from ledgersync.schemas.report import DailyReport
from ledgersync.services.ledger_sync import LedgerSyncClient, build_doc_number, build_journal_entry
from ledgersync.services.revenue_reconciler import reconcile
from ledgersync.services.shift_aggregator import ShiftAggregator

from conftest import FEB9


class TestBuildDocNumber:

    def test_long_name_is_truncated(self):
        doc_number = build_doc_number("Very Long Cafe Name Inc.", date(2026, 2, 9))
        assert len(doc_number) <= 21
        assert doc_number.endswith("20260209")
        assert doc_number == "VeryLongCafe-20260209"

    def test_short_name(self):
        assert build_doc_number("G-Zone #2", date(2026, 12, 31)) == "GZone2-20261231"

    def test_name_without_alphanumerics_falls_back_to_location_id(self):
        assert build_doc_number("★ ★ ★", date(2026, 2, 9), 42) == "L42-20260209"


@pytest.fixture
def daily_report(credentials, clock, feb9_icafe):
    aggregator = ShiftAggregator(source=feb9_icafe, clock=clock, utc_offset_hours=8)
    report = asyncio.run(aggregator.aggregate_business_day(credentials, FEB9))
    return DailyReport(location=credentials, business_date=FEB9, report=report, totals=reconcile(report))


class TestBuildJournalEntry:

    def test_aggregate_pair_posts_revenue(self, daily_report):
        entry = build_journal_entry(daily_report)

        assert entry.txn_date == FEB9
        assert entry.doc_number == "SunriseGamin-20260209"
        assert len(entry.lines) == 2
        debit, credit = entry.lines
        assert debit.posting_type == PostingType.DEBIT
        assert debit.account_ref.value == "202"
        assert credit.posting_type == PostingType.CREDIT
        assert credit.account_ref.value == "206"
        assert debit.amount == credit.amount == Decimal("20676")
        assert entry.is_balanced
        assert "Shifts: 3" in entry.private_note
        assert "Total Cash: 20,476.00" in entry.private_note

    def test_per_shift_pairs_post_shift_cash(self, daily_report):
        entry = build_journal_entry(daily_report, per_shift=True, cash_account_id="1", revenue_account_id="2")

        assert len(entry.lines) == 6
        debits = [line for line in entry.lines if line.posting_type == PostingType.DEBIT]
        assert [line.amount for line in debits] == [Decimal("5000"), Decimal("8000"), Decimal("7476.0")]
        assert "Piolo (08:05 - 16:04)" in debits[0].description
        assert {line.account_ref.value for line in debits} == {"1"}
        assert entry.total(PostingType.DEBIT) == entry.total(PostingType.CREDIT) == Decimal("20476")

    def test_per_shift_without_shifts_raises(self, credentials):
        from ledgersync.schemas.report import AggregatedReport
        report = AggregatedReport()
        daily = DailyReport(location=credentials, business_date=FEB9, report=report, totals=reconcile(report))
        with pytest.raises(ValueError):
            build_journal_entry(daily, per_shift=True)


@pytest.fixture
def sync_client(fake_ledger, token_store, send_log_store, clock):
    return LedgerSyncClient(
        ledger=fake_ledger,
        token_store=token_store,
        send_log_store=send_log_store,
        clock=clock,
        expiry_skew_seconds=60,
    )


def report_builder(daily_report):
    calls = []

    async def build():
        calls.append(1)
        return daily_report
    build.calls = calls
    return build


def slow_report_builder(daily_report):
    """Like report_builder, but yields to the event loop the way a real fetch does"""
    calls = []

    async def build():
        calls.append(1)
        await asyncio.sleep(0)
        return daily_report
    build.calls = calls
    return build


class TestSendDailyReport:

    def test_success_is_logged(self, sync_client, connected, daily_report, credentials, fake_ledger, send_log_store):
        build = report_builder(daily_report)
        result = asyncio.run(sync_client.send_daily_report(credentials, FEB9, build))

        assert result.journal_entry_id == "101"
        assert result.doc_number == "SunriseGamin-20260209"
        assert result.revenue == Decimal("20676")
        assert result.shift_count == 3
        assert len(fake_ledger.posted) == 1
        access_token, realm_id, _ = fake_ledger.posted[0]
        assert (access_token, realm_id) == ("access-initial", "realm-1")

        log = send_log_store.get_success(credentials.location_id, FEB9)
        assert log.journal_entry_id == "101"
        assert log.shift_count == 3

    def test_duplicate_fails_before_any_work(self, sync_client, connected, daily_report, credentials, fake_ledger,
                                             send_log_store, clock):
        send_log_store.record_success(1, credentials.location_id, credentials.name, FEB9, "55", Decimal("1"), 1)
        clock.advance(days=1)  # access token expired; a refresh would be needed
        build = report_builder(daily_report)

        with pytest.raises(DuplicateSendError) as exc_info:
            asyncio.run(sync_client.send_daily_report(credentials, FEB9, build))

        assert exc_info.value.journal_entry_id == "55"
        assert build.calls == []
        assert fake_ledger.external_calls == 0

    def test_second_send_is_duplicate(self, sync_client, connected, daily_report, credentials, fake_ledger):
        asyncio.run(sync_client.send_daily_report(credentials, FEB9, report_builder(daily_report)))
        with pytest.raises(DuplicateSendError):
            asyncio.run(sync_client.send_daily_report(credentials, FEB9, report_builder(daily_report)))
        assert len(fake_ledger.posted) == 1

    def test_expired_token_is_refreshed_and_persisted(self, sync_client, connected, daily_report, credentials,
                                                       fake_ledger, token_store, clock):
        clock.advance(minutes=59, seconds=30)  # inside the 60s skew

        asyncio.run(sync_client.send_daily_report(credentials, FEB9, report_builder(daily_report)))

        assert fake_ledger.refresh_calls == 1
        assert fake_ledger.posted[0][0] == "access-refreshed-1"
        assert token_store.get(1).refresh_token == "refresh-refreshed-1"

    def test_concurrent_sends_refresh_once(self, sync_client, connected, daily_report, credentials, add_location,
                                           fake_ledger, clock):
        first = add_location(name="Sunrise Gaming", cafe_id="1")
        second = add_location(name="Moonlight Gaming", cafe_id="2")
        clock.advance(hours=2)

        async def send_both():
            return await asyncio.gather(
                sync_client.send_daily_report(first, FEB9, report_builder(daily_report)),
                sync_client.send_daily_report(second, FEB9, report_builder(daily_report)),
            )

        results = asyncio.run(send_both())

        assert len(results) == 2
        assert fake_ledger.refresh_calls == 1
        assert {posted[0] for posted in fake_ledger.posted} == {"access-refreshed-1"}

    def test_auth_error_refreshes_and_retries_once(self, sync_client, connected, daily_report, credentials,
                                                    fake_ledger):
        fake_ledger.auth_failures = 1
        result = asyncio.run(sync_client.send_daily_report(credentials, FEB9, report_builder(daily_report)))

        assert result.journal_entry_id == "101"
        assert fake_ledger.refresh_calls == 1
        assert fake_ledger.post_attempts == 2

    def test_second_auth_error_is_fatal(self, sync_client, connected, daily_report, credentials, fake_ledger,
                                        send_log_store):
        fake_ledger.auth_failures = 2
        with pytest.raises(UpstreamAuthError):
            asyncio.run(sync_client.send_daily_report(credentials, FEB9, report_builder(daily_report)))

        assert fake_ledger.post_attempts == 2
        logs = send_log_store.recent(1)
        assert [log.status for log in logs] == [SendStatus.FAILED]
        assert send_log_store.get_success(credentials.location_id, FEB9) is None

    def test_not_connected_is_logged_as_failure(self, sync_client, daily_report, credentials, send_log_store):
        build = report_builder(daily_report)
        with pytest.raises(LedgerNotConnected):
            asyncio.run(sync_client.send_daily_report(credentials, FEB9, build))

        assert build.calls == []
        log = send_log_store.recent(1)[0]
        assert log.status == SendStatus.FAILED
        assert "not connected" in log.error_message

    def test_rejection_is_logged_verbatim(self, sync_client, connected, daily_report, credentials, fake_ledger,
                                          send_log_store):
        fault = "Invalid Reference Id: Accounts element id 999 not found"
        fake_ledger.error = LedgerRejection(f"QuickBooks journal entry rejected: {fault}", 400, fault=fault)
        with pytest.raises(LedgerRejection):
            asyncio.run(sync_client.send_daily_report(credentials, FEB9, report_builder(daily_report)))

        log = send_log_store.recent(1)[0]
        assert log.status == SendStatus.FAILED
        assert log.error_message == fault
        assert log.total_cash == Decimal("20476")

    def test_same_day_sends_are_serialized(self, sync_client, connected, daily_report, credentials, fake_ledger,
                                           send_log_store):
        first = slow_report_builder(daily_report)
        second = slow_report_builder(daily_report)

        async def send_twice():
            return await asyncio.gather(
                sync_client.send_daily_report(credentials, FEB9, first),
                sync_client.send_daily_report(credentials, FEB9, second),
                return_exceptions=True,
            )

        results = asyncio.run(send_twice())

        assert results[0].journal_entry_id == "101"
        assert isinstance(results[1], DuplicateSendError)
        assert second.calls == []
        assert len(fake_ledger.posted) == 1
        assert [(log.status, log.journal_entry_id) for log in send_log_store.recent(1)] == [
            (SendStatus.SUCCESS, "101"),
        ]

    def test_entry_posted_by_a_racing_process_is_logged(self, fake_ledger, token_store, send_log_store, clock,
                                                        connected, daily_report, credentials):
        # Two clients stand in for two worker processes: they share the database, not the lock
        clients = [
            LedgerSyncClient(ledger=fake_ledger, token_store=token_store, send_log_store=send_log_store, clock=clock)
            for _ in range(2)
        ]

        async def race():
            return await asyncio.gather(
                *(c.send_daily_report(credentials, FEB9, slow_report_builder(daily_report)) for c in clients),
                return_exceptions=True,
            )

        results = asyncio.run(race())

        assert results[0].journal_entry_id == "101"
        assert isinstance(results[1], DuplicateSendError)
        assert len(fake_ledger.posted) == 2
        rows = {(log.status, log.journal_entry_id) for log in send_log_store.recent(1)}
        assert rows == {(SendStatus.SUCCESS, "101"), (SendStatus.FAILED, "102")}
        assert send_log_store.get_success(credentials.location_id, FEB9).journal_entry_id == "101"

    def test_partial_day_is_not_posted(self, sync_client, connected, daily_report, credentials, fake_ledger,
                                       send_log_store):
        daily_report.report.failed_shift_count = 1
        with pytest.raises(UpstreamUnavailable) as exc_info:
            asyncio.run(sync_client.send_daily_report(credentials, FEB9, report_builder(daily_report)))

        assert "1 of 3 shift report(s)" in str(exc_info.value)
        assert fake_ledger.post_attempts == 0
        assert send_log_store.get_success(credentials.location_id, FEB9) is None
        log = send_log_store.recent(1)[0]
        assert log.status == SendStatus.FAILED
        assert log.shift_count == 3

    def test_failed_send_can_be_retried(self, sync_client, connected, daily_report, credentials, fake_ledger,
                                        send_log_store):
        fake_ledger.error = UpstreamUnavailable("QuickBooks down")
        with pytest.raises(UpstreamUnavailable):
            asyncio.run(sync_client.send_daily_report(credentials, FEB9, report_builder(daily_report)))

        fake_ledger.error = None
        result = asyncio.run(sync_client.send_daily_report(credentials, FEB9, report_builder(daily_report)))
        assert result.journal_entry_id == "101"
        assert [log.status for log in send_log_store.recent(1)] == [SendStatus.SUCCESS, SendStatus.FAILED]

    def test_expired_refresh_token_needs_reconnect(self, sync_client, connected, daily_report, credentials,
                                                   fake_ledger, clock):
        clock.advance(days=101)
        with pytest.raises(UpstreamAuthError):
            asyncio.run(sync_client.send_daily_report(credentials, FEB9, report_builder(daily_report)))
        assert fake_ledger.refresh_calls == 0


class TestConnection:

    def test_connect_stores_token_and_company(self, sync_client, token_store):
        status = asyncio.run(sync_client.connect(1, "auth-code", "realm-9"))

        assert status.connected
        assert status.company_name == "Sunrise Gaming Corp"
        assert status.realm_id == "realm-9"
        assert token_store.get(1).access_token == "access-auth-code"

    def test_status_when_not_connected(self, sync_client):
        status = sync_client.connection_status(1)
        assert not status.connected
        assert not status.needs_reconnect

    def test_status_reports_expiry(self, sync_client, connected, clock):
        clock.advance(hours=2)
        status = sync_client.connection_status(1)
        assert status.is_access_token_expired
        assert not status.is_refresh_token_expired
        assert not status.needs_reconnect

        clock.advance(days=100)
        status = sync_client.connection_status(1)
        assert status.is_refresh_token_expired
        assert status.needs_reconnect

    def test_disconnect_revokes_and_deletes(self, sync_client, connected, fake_ledger, token_store):
        assert asyncio.run(sync_client.disconnect(1)) is True
        assert fake_ledger.revoked == ["refresh-initial"]
        assert token_store.get(1) is None

    def test_disconnect_deletes_even_if_revoke_fails(self, sync_client, connected, fake_ledger, token_store):
        fake_ledger.revoke_error = UpstreamUnavailable("revoke endpoint down")
        assert asyncio.run(sync_client.disconnect(1)) is True
        assert token_store.get(1) is None
