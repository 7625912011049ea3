from __future__ import annotations

import math
import re
from datetime import date, datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, Optional, Union

import pytz

from .config import DEFAULT_ACCOUNT_TIMEZONE, MINOR_UNITS_PER_MAJOR


# -----------------------
# Clock primitives
# -----------------------
class Clock:
    def now_utc(self) -> datetime:
        raise NotImplementedError


class RealClock(Clock):
    def now_utc(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    def __init__(self, dt_utc: datetime):
        if dt_utc.tzinfo is None:
            dt_utc = dt_utc.replace(tzinfo=timezone.utc)
        self._dt = dt_utc.astimezone(timezone.utc)

    def now_utc(self) -> datetime:
        return self._dt


def _require_tz(name: str) -> pytz.BaseTzInfo:
    try:
        return pytz.timezone(name)
    except pytz.UnknownTimeZoneError as e:
        raise ValueError(f"Invalid IANA timezone: {name!r}") from e


def parse_ymd(s: str) -> date:
    s = (s or "").strip()
    if not re.fullmatch(r"\d{4}-\d{2}-\d{2}", s):
        raise ValueError(f"Invalid date (expected YYYY-MM-DD): {s!r}")
    return date.fromisoformat(s)


# -----------------------
# Account-timezone calendar
# -----------------------
class AccountCalendar:
    """Dates as the ad account sees them. Graph date windows are account-local."""

    def __init__(self, tz_name: str = DEFAULT_ACCOUNT_TIMEZONE, clock: Optional[Clock] = None):
        self.tz_name = tz_name
        self._tz = _require_tz(tz_name)
        self.clock = clock or RealClock()

    def now_account(self) -> datetime:
        return self.clock.now_utc().astimezone(self._tz)

    def to_account_date(self, value: Union[date, datetime]) -> date:
        if isinstance(value, datetime):
            if value.tzinfo is None:
                value = value.replace(tzinfo=timezone.utc)
            return value.astimezone(self._tz).date()
        return value

    def ymd(self, value: Union[date, datetime]) -> str:
        return self.to_account_date(value).isoformat()

    def meta_range_today(self) -> Dict[str, str]:
        d = self.now_account().date().isoformat()
        return {"since": d, "until": d}

    def meta_range_yesterday(self) -> Dict[str, str]:
        d = (self.now_account().date() - timedelta(days=1)).isoformat()
        return {"since": d, "until": d}

    def meta_range_last_n_full_days(self, n: int) -> Dict[str, str]:
        if n <= 0:
            raise ValueError("n must be >= 1")
        today_acc = self.now_account().date()
        return {
            "since": (today_acc - timedelta(days=n)).isoformat(),
            "until": (today_acc - timedelta(days=1)).isoformat(),
        }

    def meta_range_mtd(self) -> Dict[str, str]:
        today_acc = self.now_account().date()
        return {"since": today_acc.replace(day=1).isoformat(), "until": today_acc.isoformat()}

    def window_for(self, preset: str) -> Dict[str, str]:
        """Concrete since/until for a Graph date preset name, in account time."""
        if preset == "yesterday":
            return self.meta_range_yesterday()
        if preset == "last_7d":
            return self.meta_range_last_n_full_days(7)
        if preset == "this_month":
            return self.meta_range_mtd()
        return self.meta_range_today()


# -----------------------
# Currency (minor units)
# -----------------------
def to_minor_units(amount: Union[float, int, str, Decimal], per_major: int = MINOR_UNITS_PER_MAJOR) -> int:
    """Decimal amount -> integer minor units (cents), rounding half up."""
    try:
        d = Decimal(str(amount))
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Invalid amount: {amount!r}") from e
    if not d.is_finite():
        raise ValueError(f"Invalid amount: {amount!r}")
    return int((d * per_major).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def from_minor_units(value: Any, per_major: int = MINOR_UNITS_PER_MAJOR) -> Optional[float]:
    """Graph budget string/int in minor units -> float major units. Missing/empty -> None, "0" -> 0.0."""
    if value is None or value == "":
        return None
    try:
        n = int(str(value).strip())
    except ValueError:
        return None
    return n / per_major


def safe_f(v: Any, default: float = 0.0) -> float:
    try:
        if v is None or v == "":
            return default
        f = float(str(v).replace(",", ""))
        return f if math.isfinite(f) else default
    except (TypeError, ValueError):
        return default


def safe_i(v: Any, default: int = 0) -> int:
    try:
        if v is None or v == "":
            return default
        return int(float(str(v).replace(",", "")))
    except (TypeError, ValueError, OverflowError):
        return default


# -----------------------
# Display formatting
# -----------------------
def fmt_currency(amount: Optional[float], symbol: str = "$") -> str:
    if amount is None:
        return "—"
    return f"{symbol}{amount:,.2f}"


def fmt_pct(v: Optional[float]) -> str:
    """Graph reports ctr as a percentage already (1.25 means 1.25%)."""
    if v is None:
        return "—"
    return f"{v:.2f}%"


def fmt_int(v: Optional[int]) -> str:
    if v is None:
        return "0"
    return f"{v:,}"

