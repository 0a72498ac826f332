"""
Auto-send scheduler.

Every tick walks the enabled AutoSendSettings and posts a business day to
QuickBooks when the setting's trigger fires. The SendLog is the only
de-duplication: a trigger that keeps firing (e.g. last_shift across two
ticks) is harmless because the second send finds the success row.

    daily_time         within 5 minutes of schedule_time (local)
    business_day_end   06:00 - 06:09 local, sends the previous business day
    last_shift         a shift ended in the last 15 minutes
"""
from typing import Iterable, Optional
from datetime import date, datetime, timedelta
import asyncio
import logging

from ledgersync.config import settings
from ledgersync.exceptions import DuplicateSendError, LocationNotFound
from ledgersync.models.auto_send_setting import AutoSendMode, AutoSendSetting
from ledgersync.schemas.cafe import CafeCredentials
from ledgersync.schemas.ledger import SendResult
from ledgersync.schemas.report import Shift
from ledgersync.services.daily_report_service import DailyReportService
from ledgersync.services.stores import AutoSendSettingStore
from ledgersync.utils.business_day import (
    DEFAULT_UTC_OFFSET_HOURS,
    get_current_business_day_window,
    local_now,
)
from ledgersync.utils.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

DAILY_TIME_WINDOW_MINUTES = 5
BUSINESS_DAY_END_WINDOW = timedelta(minutes=10)
LAST_SHIFT_LOOKBACK = timedelta(minutes=15)
MINUTES_PER_DAY = 24 * 60


def is_daily_time_due(schedule_time: Optional[str], now: datetime) -> bool:
    """True when local `now` is strictly within 5 minutes of HH:MM (wrapping midnight)"""
    try:
        hours, minutes = (int(part) for part in (schedule_time or "").split(":"))
    except ValueError:
        logger.warning("Invalid auto-send schedule_time %r", schedule_time)
        return False

    distance = abs((now.hour * 60 + now.minute) - (hours * 60 + minutes))
    distance = min(distance, MINUTES_PER_DAY - distance)
    return distance < DAILY_TIME_WINDOW_MINUTES


def is_business_day_end_due(now: datetime, utc_offset_hours: int = DEFAULT_UTC_OFFSET_HOURS) -> bool:
    """True during the first 10 minutes of the business day active at `now`"""
    window = get_current_business_day_window(now, utc_offset_hours)
    return now - window.start < BUSINESS_DAY_END_WINDOW


def shift_just_ended(shifts: Iterable[Shift], now: datetime) -> bool:
    """True when some shift ended in (now - 15 min, now]"""
    return any(
        s.end is not None and now - LAST_SHIFT_LOOKBACK < s.end <= now
        for s in shifts
    )


def target_business_date(
    mode: AutoSendMode, now: datetime, utc_offset_hours: int = DEFAULT_UTC_OFFSET_HOURS
) -> date:
    """
    Business date to post when a trigger fires at `now`

    business_day_end posts the business day before the active one; the other
    modes post the active business day.
    """
    active = get_current_business_day_window(now, utc_offset_hours).business_date
    if AutoSendMode(mode) == AutoSendMode.BUSINESS_DAY_END:
        return active - timedelta(days=1)
    return active


class AutoSendScheduler:
    """Periodic auto-send of daily reports"""

    def __init__(
        self,
        report_service: Optional[DailyReportService] = None,
        settings_store: Optional[AutoSendSettingStore] = None,
        clock: Optional[Clock] = None,
        utc_offset_hours: Optional[int] = None,
        interval_seconds: Optional[int] = None,
    ):
        self.report_service = report_service or DailyReportService()
        self.settings_store = settings_store or AutoSendSettingStore()
        self.clock = clock or SystemClock()
        self.utc_offset_hours = (
            utc_offset_hours if utc_offset_hours is not None else settings.CAFE_UTC_OFFSET_HOURS
        )
        self.interval_seconds = interval_seconds or settings.AUTO_SEND_INTERVAL_SECONDS
        self._running = asyncio.Lock()

    async def should_send(self, setting: AutoSendSetting, location: CafeCredentials, now: datetime) -> bool:
        """Evaluate the setting's trigger at local `now`"""
        mode = AutoSendMode(setting.mode)
        if mode == AutoSendMode.DAILY_TIME:
            return is_daily_time_due(setting.schedule_time, now)
        if mode == AutoSendMode.BUSINESS_DAY_END:
            return is_business_day_end_due(now, self.utc_offset_hours)

        today = now.date()
        shifts = await self.report_service.aggregator.list_shifts(
            location,
            today.isoformat(),
            (today + timedelta(days=1)).isoformat(),
            "00:00",
            "23:59",
        )
        return shift_just_ended(shifts, now)

    async def process_setting(self, setting: AutoSendSetting, now: datetime) -> Optional[SendResult]:
        """
        Handle one setting for this tick

        Returns:
            SendResult when a report was posted, otherwise None
        """
        try:
            location = self.report_service.locations.get(setting.account_id, setting.location_id)
        except LocationNotFound as e:
            logger.warning("Auto-send setting for account %s skipped: %s", setting.account_id, e)
            return None
        business_date = target_business_date(setting.mode, now, self.utc_offset_hours)

        existing = self.report_service.send_logs.get_success(location.location_id, business_date)
        if existing is not None:
            logger.debug(
                "[%s] %s already sent (journal entry %s), skipping",
                location.name, business_date, existing.journal_entry_id,
            )
            return None

        if not await self.should_send(setting, location, now):
            return None

        logger.info("[%s] Auto-send (%s) firing for %s", location.name, AutoSendMode(setting.mode).value, business_date)
        try:
            return await self.report_service.send_location(location, business_date)
        except DuplicateSendError as e:
            logger.info("[%s] %s", location.name, e)
            return None

    async def tick(self) -> int:
        """
        Run one pass over all enabled settings

        Returns:
            Number of reports posted
        """
        if self._running.locked():
            logger.warning("Previous auto-send run still in progress, skipping this tick")
            return 0

        async with self._running:
            now = local_now(self.clock.now(), self.utc_offset_hours)
            enabled = self.settings_store.list_enabled()
            logger.debug("Auto-send tick at %s: %d enabled setting(s)", now.isoformat(), len(enabled))

            sent = 0
            for setting in enabled:
                try:
                    if await self.process_setting(setting, now) is not None:
                        sent += 1
                except Exception as e:
                    logger.error(
                        "Auto-send failed for account %s location %s: %s",
                        setting.account_id, setting.location_id, e,
                        exc_info=True,
                    )
            return sent

    async def run_forever(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Tick immediately, then every interval until stop_event is set"""
        stop_event = stop_event or asyncio.Event()
        logger.info("Auto-send scheduler started, checking every %s seconds", self.interval_seconds)

        while not stop_event.is_set():
            try:
                await self.tick()
            except Exception as e:
                logger.error("Auto-send tick failed: %s", e, exc_info=True)
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass

        logger.info("Auto-send scheduler stopped")
