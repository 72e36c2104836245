from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Literal, Optional, Sequence

DeviceState = Literal["online", "offline"]

DEFAULT_ONLINE_TIMEOUT_MS = 300_000

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_US_PER_MS = 1000


@dataclass(frozen=True)
class DeviceRecord:
    id: str
    name: str
    location: str
    created_at: datetime


@dataclass(frozen=True)
class DeviceSnapshot:
    """A device plus the heartbeat timestamps loaded for it."""

    device: DeviceRecord
    heartbeats: tuple[datetime, ...]


@dataclass(frozen=True)
class Interval:
    start: datetime
    status: DeviceState
    duration: timedelta

    @property
    def end(self) -> datetime:
        return self.start + self.duration

    @property
    def duration_ms(self) -> int:
        return self.duration // timedelta(milliseconds=1)


@dataclass(frozen=True)
class DeviceStatusSummary:
    status: DeviceState
    last_seen: Optional[datetime]
    uptime_percentage: float
    total_reports: int


def generate_timeline(
    created_at: datetime,
    heartbeats: Iterable[datetime],
    now: datetime,
    online_timeout_ms: int = DEFAULT_ONLINE_TIMEOUT_MS,
) -> List[Interval]:
    """
    Rebuild the online/offline history of a device from creation through ``now``.

    Creation is the reference point before the first heartbeat, so a first
    heartbeat within the timeout keeps the device online from creation. A gap
    longer than the timeout (strictly greater) between two consecutive points
    opens an offline interval starting at the earlier point.

    Heartbeats outside ``[created_at, now]`` are clamped into that range and a
    ``now`` earlier than creation is clamped up to creation, so durations are
    never negative. Boundaries keep the full precision of the inputs.
    """
    _check_timeout(online_timeout_ms)
    timeout_us = online_timeout_ms * _US_PER_MS
    created_us = to_epoch_us(created_at)
    now_us = max(to_epoch_us(now), created_us)
    points = sorted(min(max(to_epoch_us(ts), created_us), now_us) for ts in heartbeats)

    builder = _TimelineBuilder()
    if not points:
        builder.mark("offline", created_us)
        return builder.close(now_us)

    builder.mark("online", created_us)
    prev = created_us
    for current in points:
        if current - prev > timeout_us:
            builder.mark("offline", prev)
            builder.mark("online", current)
        prev = current

    if now_us - prev > timeout_us:
        builder.mark("offline", prev)
    return builder.close(now_us)


def analyze_device_status(
    device: DeviceRecord,
    heartbeats: Sequence[datetime],
    now: datetime,
    online_timeout_ms: int = DEFAULT_ONLINE_TIMEOUT_MS,
    timeline: Sequence[Interval] | None = None,
) -> DeviceStatusSummary:
    """
    Derive the current status and lifetime uptime of a device.

    ``timeline`` may be passed when the caller already reconstructed it for the
    same inputs; otherwise it is rebuilt here.
    """
    _check_timeout(online_timeout_ms)
    if not heartbeats:
        return DeviceStatusSummary(status="offline", last_seen=None, uptime_percentage=0.0, total_reports=0)

    if timeline is None:
        timeline = generate_timeline(device.created_at, heartbeats, now, online_timeout_ms)

    last_seen = max(heartbeats)
    now_us = max(to_epoch_us(now), to_epoch_us(device.created_at))
    # A heartbeat stamped after now counts as seen at now.
    last_seen_us = min(to_epoch_us(last_seen), now_us)
    is_online = now_us - last_seen_us <= online_timeout_ms * _US_PER_MS
    return DeviceStatusSummary(
        status="online" if is_online else "offline",
        last_seen=last_seen,
        uptime_percentage=calculate_uptime(timeline, device.created_at, now),
        total_reports=len(heartbeats),
    )


def calculate_uptime(timeline: Iterable[Interval], created_at: datetime, now: datetime) -> float:
    lifetime_us = to_epoch_us(now) - to_epoch_us(created_at)
    if lifetime_us <= 0:
        return 0.0
    online = sum((interval.duration for interval in timeline if interval.status == "online"), timedelta())
    online_us = online // timedelta(microseconds=1)
    return round_percentage(Decimal(online_us) * 100 / Decimal(lifetime_us))


def round_percentage(value: Decimal) -> float:
    return float(value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


class _TimelineBuilder:
    """Collects status change points; intervals are derived from consecutive points on close."""

    def __init__(self) -> None:
        self._marks: list[tuple[DeviceState, int]] = []

    def mark(self, status: DeviceState, at_us: int) -> None:
        if self._marks and self._marks[-1][1] == at_us:
            # A zero-length interval carries no time; the later status wins.
            self._marks.pop()
        if self._marks and self._marks[-1][0] == status:
            return
        self._marks.append((status, at_us))

    def close(self, end_us: int) -> List[Interval]:
        intervals: List[Interval] = []
        bounds = [at for _, at in self._marks[1:]] + [end_us]
        for (status, start_us), stop_us in zip(self._marks, bounds):
            intervals.append(
                Interval(
                    start=from_epoch_us(start_us),
                    status=status,
                    duration=timedelta(microseconds=stop_us - start_us),
                )
            )
        return intervals


def _check_timeout(online_timeout_ms: int) -> None:
    if online_timeout_ms < 0:
        raise ValueError("online_timeout_ms must be non-negative")


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def truncate_to_ms(value: datetime) -> datetime:
    """Drop sub-millisecond precision so durations reported in ms add up exactly."""
    value = as_utc(value)
    return value.replace(microsecond=value.microsecond - value.microsecond % _US_PER_MS)


def to_epoch_us(value: datetime) -> int:
    return (as_utc(value) - _EPOCH) // timedelta(microseconds=1)


def from_epoch_us(value: int) -> datetime:
    return _EPOCH + timedelta(microseconds=value)
