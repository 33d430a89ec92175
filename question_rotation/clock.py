"""
Window arithmetic for the rotation engine.

Every instance must agree on window boundaries without talking to the
others, so all computations normalize `now` into one reference IANA zone
before truncating to the window granularity:

- day windows start at local midnight of the reference zone;
- hour windows start at the top of the local hour, and the following window
  starts one absolute hour later, so DST transitions never produce a short or
  long hour window.

Results are always returned as UTC-aware datetimes. Naive inputs are taken
to be UTC.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from enum import Enum
from zoneinfo import ZoneInfo

_ONE_HOUR = timedelta(hours=1)


class Granularity(str, Enum):
    HOUR = "hour"
    DAY = "day"


def _aware(instant: datetime) -> datetime:
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant


@dataclass(frozen=True)
class WindowClock:
    """
    Pure window calculator for one reference timezone and granularity.

    Parameters
    ----------
    timezone : str
        IANA zone name used to place boundaries (e.g. "America/New_York").
    granularity : Granularity
        Window length: one hour or one local day.
    """

    timezone: str = "UTC"
    granularity: Granularity = Granularity.DAY

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def _local(self, instant: datetime) -> datetime:
        return _aware(instant).astimezone(self.zone)

    def current_window_start(self, now: datetime) -> datetime:
        local = self._local(now)
        if self.granularity is Granularity.HOUR:
            # replace() keeps `fold`, so the repeated fall-back hour truncates correctly.
            start = local.replace(minute=0, second=0, microsecond=0)
        else:
            start = datetime.combine(local.date(), time(0), tzinfo=self.zone)
        return start.astimezone(timezone.utc)

    def next_window_start(self, now: datetime) -> datetime:
        start = self.current_window_start(now)
        if self.granularity is Granularity.HOUR:
            return start + _ONE_HOUR
        local_date = self._local(start).date()
        following = datetime.combine(local_date + timedelta(days=1), time(0), tzinfo=self.zone)
        return following.astimezone(timezone.utc)

    def time_until_next_window(self, now: datetime) -> timedelta:
        return self.next_window_start(now) - _aware(now)

    def window_of(self, instant: datetime) -> datetime:
        """Start of the window containing `instant` (e.g. a stored activated_at)."""
        return self.current_window_start(instant)

    def windows_between(self, earlier: datetime, later: datetime) -> int:
        """Whole windows from the window of `earlier` to the window of `later`."""
        first = self.window_of(earlier)
        last = self.window_of(later)
        if self.granularity is Granularity.HOUR:
            return round((last - first) / _ONE_HOUR)
        return (self._local(last).date() - self._local(first).date()).days

    def window_seed(self, window_start: datetime) -> int:
        """Stable per-window integer: local days or UTC hours since the epoch."""
        start = self.window_of(window_start)
        if self.granularity is Granularity.HOUR:
            return int(start.timestamp()) // 3600
        return self._local(start).date().toordinal()


__all__ = ["Granularity", "WindowClock"]
