"""
Shared pytest fixtures.

Provides:
- In-memory SQLite session factory with all tables created
- A fixed clock (2026-02-10 09:00 cafe time)
- Fake iCafeCloud source and fake QuickBooks ledger
- Builders for iCafeCloud-shaped shift rows and report payloads
"""
import asyncio
import os
from datetime import date, datetime, timedelta, timezone

from cryptography.fernet import Fernet

# Settings are read at import time: point them at throwaway values first
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENCRYPTION_KEY"] = Fernet.generate_key().decode()
os.environ["QB_ENVIRONMENT"] = "sandbox"

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import ledgersync.models  # noqa: F401  (registers every table on Base.metadata)
from ledgersync.database import Base
from ledgersync.exceptions import UpstreamAuthError
from ledgersync.models.cafe_location import CafeLocation
from ledgersync.schemas.cafe import CafeCredentials
from ledgersync.schemas.ledger import TokenPair
from ledgersync.services.stores import LedgerTokenStore, LocationStore, SendLogStore, AutoSendSettingStore
from ledgersync.utils.clock import FixedClock
from ledgersync.utils.encryption import encrypt_secret

CAFE_TZ = timezone(timedelta(hours=8))


def local(year, month, day, hour=0, minute=0, second=0) -> datetime:
    """Cafe-local (UTC+8) aware datetime"""
    return datetime(year, month, day, hour, minute, second, tzinfo=CAFE_TZ)


def shift_row(shift_id, staff, start, end="-", log_type=None) -> dict:
    """A shiftList row as iCafeCloud returns it"""
    return {
        "shift_id": shift_id,
        "shift_staff_name": staff,
        "shift_start_time": start,
        "shift_end_time": end,
        "log_type": log_type,
    }


def report_payload(
    cash=0,
    sales=0,
    topups=0,
    topup_count=0,
    profit=0,
    topup_refund=0,
    sale_refund=0,
    members=(),
    pcs=(),
    products=(),
) -> dict:
    """A reportData payload in iCafeCloud's shape (numbers deliberately mixed types)"""
    return {
        "report": {"cash": cash, "profit": str(profit)},
        "sale": {
            "total": sales,
            "cash": {"number": 1 if sales else 0, "total": sales},
            "product": {"number": "0", "total": ""},
        },
        "topup": {
            "amount": str(topups),
            "number": topup_count,
            "cash": {"number": topup_count, "amount": topups},
        },
        "refund": {
            "topup": {
                "total": {"number": 1 if topup_refund else 0, "amount": topup_refund},
                "member": {"number": 1 if topup_refund else 0, "amount": topup_refund},
            },
            "sale": {"total": {"number": 1 if sale_refund else 0, "amount": sale_refund}},
        },
        "top_five_members_topup": [{"member": m, "amount": a} for m, a in members],
        "top_five_pc_spend": [{"pc_name": p, "total_spend": a} for p, a in pcs],
        "product_sales_items": [
            {"product_name": n, "order_number": q, "order_total": t, "order_refunded": r}
            for n, q, t, r in products
        ],
    }


class FakeIcafe:
    """In-memory stand-in for IcafeService; reports keyed by staff name, details by shift id"""

    def __init__(self, shifts=None, reports=None, details=None):
        self.shift_rows = list(shifts or [])
        self.reports = dict(reports or {})
        self.details = dict(details or {})
        self.calls = []

    async def list_shifts(self, credentials, date_start, date_end, time_start=None, time_end=None):
        self.calls.append(("list_shifts", date_start, date_end, time_start, time_end))
        return list(self.shift_rows)

    async def get_report(self, credentials, date_start, date_end, time_start="00:00", time_end="23:59", staff_name=None):
        self.calls.append(("get_report", staff_name, date_start, date_end, time_start, time_end))
        await asyncio.sleep(0)
        payload = self.reports.get(staff_name, {})
        if isinstance(payload, Exception):
            raise payload
        return payload

    async def get_shift_detail(self, credentials, shift_id):
        self.calls.append(("get_shift_detail", shift_id))
        payload = self.details.get(shift_id, {})
        if isinstance(payload, Exception):
            raise payload
        return payload

    def count(self, name) -> int:
        return sum(1 for call in self.calls if call[0] == name)


class FakeLedger:
    """In-memory stand-in for QuickBooksService"""

    def __init__(self, clock):
        self.clock = clock
        self.posted = []
        self.post_attempts = 0
        self.refresh_calls = 0
        self.revoked = []
        self.auth_failures = 0
        self.error = None
        self.revoke_error = None
        self._next_id = 100

    def token_pair(self, label, access_ttl=timedelta(hours=1)) -> TokenPair:
        now = self.clock.now()
        return TokenPair(
            access_token=f"access-{label}",
            refresh_token=f"refresh-{label}",
            access_token_expires_at=now + access_ttl,
            refresh_token_expires_at=now + timedelta(days=100),
        )

    async def refresh_access_token(self, refresh_token):
        self.refresh_calls += 1
        await asyncio.sleep(0)
        return self.token_pair(f"refreshed-{self.refresh_calls}")

    async def exchange_code_for_token(self, code, redirect_uri=None):
        return self.token_pair(code)

    async def get_company_info(self, access_token, realm_id):
        return {"CompanyName": "Sunrise Gaming Corp"}

    async def revoke_token(self, token):
        if self.revoke_error:
            raise self.revoke_error
        self.revoked.append(token)

    async def create_journal_entry(self, access_token, realm_id, entry):
        self.post_attempts += 1
        if self.auth_failures > 0:
            self.auth_failures -= 1
            raise UpstreamAuthError("QuickBooks rejected the access token")
        if self.error:
            raise self.error
        self._next_id += 1
        self.posted.append((access_token, realm_id, entry))
        return str(self._next_id)

    @property
    def external_calls(self) -> int:
        return self.post_attempts + self.refresh_calls


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def clock():
    return FixedClock(local(2026, 2, 10, 9, 0))


@pytest.fixture
def fake_ledger(clock):
    return FakeLedger(clock)


@pytest.fixture
def send_log_store(session_factory):
    return SendLogStore(session_factory)


@pytest.fixture
def token_store(session_factory):
    return LedgerTokenStore(session_factory)


@pytest.fixture
def location_store(session_factory):
    return LocationStore(session_factory)


@pytest.fixture
def settings_store(session_factory):
    return AutoSendSettingStore(session_factory)


@pytest.fixture
def add_location(session_factory):
    """Insert a cafe location and return its credentials"""
    def _add(
        name="Sunrise Gaming", cafe_id="12345", api_key="icafe-key", account_id=1, is_active=True,
    ) -> CafeCredentials:
        db = session_factory()
        try:
            location = CafeLocation(
                account_id=account_id,
                name=name,
                icafe_cafe_id=cafe_id,
                api_key_encrypted=encrypt_secret(api_key),
                is_active=is_active,
            )
            db.add(location)
            db.commit()
            return CafeCredentials(
                location_id=location.id,
                account_id=account_id,
                name=name,
                cafe_id=cafe_id,
                api_key=api_key,
            )
        finally:
            db.close()
    return _add


@pytest.fixture
def connected(token_store, fake_ledger):
    """Store a valid QuickBooks token for account 1"""
    return token_store.save(1, "realm-1", fake_ledger.token_pair("initial"), "Sunrise Gaming Corp")


@pytest.fixture
def credentials():
    return CafeCredentials(location_id=1, account_id=1, name="Sunrise Gaming", cafe_id="12345", api_key="icafe-key")


@pytest.fixture
def feb9_shifts():
    """The 2026-02-09 business day: Piolo, Alexandra, Zaldy, plus rows that must be excluded"""
    return [
        shift_row(None, "All Shifts", "2026-02-08 00:00:00", "2026-02-10 23:59:00"),
        shift_row(100, "Marco", "2026-02-09 00:20:00", "2026-02-09 05:55:00", "graveyard"),
        shift_row(101, "Piolo", "2026-02-09 08:05:00", "2026-02-09 16:04:00", "morning"),
        shift_row(102, "Alexandra", "2026-02-09 16:05:00", "2026-02-10 00:17:00", "afternoon"),
        shift_row(103, "Zaldy", "2026-02-10 00:20:00", "2026-02-10 08:05:00", "graveyard"),
        shift_row(104, "Piolo", "2026-02-10 08:10:00", "-", "morning"),
        shift_row(105, "", "2026-02-09 10:00:00", "2026-02-09 11:00:00"),
    ]


@pytest.fixture
def feb9_reports():
    return {
        "Marco": report_payload(cash=999),
        "Piolo": report_payload(cash=5000, sales=1500, topups=3600, topup_count=12, profit=900,
                                members=[("alice", 500), ("bob", 300)]),
        "Alexandra": report_payload(cash="8000", sales=2500, topups=5600, topup_count=20, profit="1500.50",
                                    topup_refund=100, members=[("alice", 200), ("carol", 900)]),
        "Zaldy": report_payload(cash=7476.0, sales=1976, topups=5500, topup_count=15, profit=1000),
    }


@pytest.fixture
def feb9_icafe(feb9_shifts, feb9_reports):
    return FakeIcafe(
        shifts=feb9_shifts,
        reports=feb9_reports,
        details={
            "101": {"center_expenses": -150, "center_expenses_items": [
                {"log_money": -100, "log_details": "Ice"},
                {"log_money": -50, "log_details": "Water"},
            ]},
            "103": {"center_expenses": "-20", "center_expenses_items": [
                {"log_money": "-20", "log_details": "Bread"},
            ]},
        },
    )


FEB9 = date(2026, 2, 9)
