"""
Business day helpers.

Internet cafes operate on a 3-shift cycle:
    Morning    06:00 - 15:59
    Afternoon  16:00 - 23:59
    Graveyard  00:00 - 05:59

The business day boundary is 06:00 local time. Anything starting before 06:00
belongs to the PREVIOUS calendar day's business day.

Example for business day "Feb 9":
    Piolo     (Morning)    08:05 Feb 9  - 16:04 Feb 9
    Alexandra (Afternoon)  16:05 Feb 9  - 00:17 Feb 10
    Zaldy     (Graveyard)  00:20 Feb 10 - 08:05 Feb 10  <- belongs to Feb 9

All boundary math uses a fixed UTC offset for the cafe, never the host's
local timezone. Nothing else in the package derives business-day boundaries.
"""
import enum
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Union

BUSINESS_DAY_START_HOUR = 6
DEFAULT_UTC_OFFSET_HOURS = 8

OPEN_SHIFT_MARKER = "-"


class ShiftType(str, enum.Enum):
    """Shift classification by start hour"""
    MORNING = "morning"
    AFTERNOON = "afternoon"
    GRAVEYARD = "graveyard"


def cafe_timezone(utc_offset_hours: int = DEFAULT_UTC_OFFSET_HOURS) -> timezone:
    """Fixed-offset tzinfo for the cafe"""
    return timezone(timedelta(hours=utc_offset_hours))


def to_local(dt: datetime, utc_offset_hours: int = DEFAULT_UTC_OFFSET_HOURS) -> datetime:
    """
    Express a datetime in the cafe's fixed offset.

    Naive datetimes are assumed to already be cafe-local wall time.
    """
    tz = cafe_timezone(utc_offset_hours)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=tz)
    return dt.astimezone(tz)


def local_now(now: datetime, utc_offset_hours: int = DEFAULT_UTC_OFFSET_HOURS) -> datetime:
    """Convert an instant (naive values are treated as UTC) to cafe-local time"""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(cafe_timezone(utc_offset_hours))


def parse_local_timestamp(
    value: Optional[str], utc_offset_hours: int = DEFAULT_UTC_OFFSET_HOURS
) -> Optional[datetime]:
    """
    Parse an iCafeCloud timestamp ("2026-02-10 00:20:00" or "2026-02-10T00:20")
    into an aware cafe-local datetime.

    Returns None for the open-shift marker "-" and for empty values.

    Raises:
        ValueError: if the value is not a recognisable timestamp
    """
    if value is None:
        return None
    value = str(value).strip()
    if not value or value == OPEN_SHIFT_MARKER:
        return None
    parsed = datetime.fromisoformat(value.replace(" ", "T", 1))
    return to_local(parsed, utc_offset_hours)


def classify_shift(start_hour: int) -> ShiftType:
    """
    Classify a shift based on its local start hour.

        Morning:    06:00 - 15:59
        Afternoon:  16:00 - 23:59
        Graveyard:  00:00 - 05:59
    """
    if BUSINESS_DAY_START_HOUR <= start_hour < 16:
        return ShiftType.MORNING
    if start_hour >= 16:
        return ShiftType.AFTERNOON
    return ShiftType.GRAVEYARD


def get_business_day(
    start: datetime, utc_offset_hours: int = DEFAULT_UTC_OFFSET_HOURS
) -> date:
    """
    Business date for a shift start (or any instant).

    Before 06:00 local the instant belongs to the previous calendar day.
    """
    local = to_local(start, utc_offset_hours)
    if local.hour < BUSINESS_DAY_START_HOUR:
        return local.date() - timedelta(days=1)
    return local.date()


@dataclass(frozen=True)
class BusinessDayWindow:
    """A business date with its 06:00 -> 05:59 (next day) boundaries"""
    business_date: date
    start: datetime
    end: datetime

    @property
    def next_date(self) -> date:
        return self.business_date + timedelta(days=1)

    def contains(self, ts: Optional[datetime]) -> bool:
        """Boundary-inclusive at both ends: [D 06:00:00, D+1 05:59:59]"""
        if ts is None:
            return False
        ts = to_local(ts, _offset_hours(self.start))
        return self.start <= ts < self.start + timedelta(days=1)

    def bracket_range(self) -> dict:
        """
        Date/time range for listing shifts that safely brackets the window:
        the day before through the day after, whole days.
        """
        return {
            "date_start": (self.business_date - timedelta(days=1)).isoformat(),
            "date_end": self.next_date.isoformat(),
            "time_start": "00:00",
            "time_end": "23:59",
        }

    def report_range(self) -> dict:
        """The window expressed as a reportData query range"""
        return {
            "date_start": self.business_date.isoformat(),
            "date_end": self.next_date.isoformat(),
            "time_start": self.start.strftime("%H:%M"),
            "time_end": self.end.strftime("%H:%M"),
        }


def _offset_hours(dt: datetime) -> int:
    return int(dt.utcoffset().total_seconds() // 3600)


def get_business_day_window(
    business_date: Union[date, str], utc_offset_hours: int = DEFAULT_UTC_OFFSET_HOURS
) -> BusinessDayWindow:
    """Window for a given business date (date object or "YYYY-MM-DD")"""
    if isinstance(business_date, str):
        business_date = date.fromisoformat(business_date)
    tz = cafe_timezone(utc_offset_hours)
    start = datetime.combine(business_date, time(BUSINESS_DAY_START_HOUR, 0), tzinfo=tz)
    end = start + timedelta(days=1) - timedelta(seconds=1)
    return BusinessDayWindow(business_date=business_date, start=start, end=end)


def get_current_business_day_window(
    now: datetime, utc_offset_hours: int = DEFAULT_UTC_OFFSET_HOURS
) -> BusinessDayWindow:
    """
    Window for the business day that is active at `now`.

    If the cafe-local hour is before 06:00 the active business date is yesterday.
    """
    local = local_now(now, utc_offset_hours)
    return get_business_day_window(get_business_day(local, utc_offset_hours), utc_offset_hours)


def shift_hours(start: datetime, end: Optional[datetime], now: datetime) -> float:
    """Shift duration in hours; an open shift runs until `now`"""
    finish = end if end is not None else now
    return max(0.0, (finish - start).total_seconds() / 3600)


def format_business_day(business_date: date) -> str:
    """Display form, e.g. "Mon, Feb 9" """
    return f"{business_date.strftime('%a, %b')} {business_date.day}"
