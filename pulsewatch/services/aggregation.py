from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from .health_analyzer import (
    DeviceSnapshot,
    DeviceStatusSummary,
    Interval,
    analyze_device_status,
    from_epoch_us,
    generate_timeline,
    round_percentage,
    to_epoch_us,
)

PERIOD_MINUTES: Dict[str, int] = {
    "5min": 5,
    "15min": 15,
    "30min": 30,
    "1hour": 60,
    "2hour": 120,
    "6hour": 360,
    "1day": 1440,
}
DEFAULT_PERIOD = "5min"
MAX_BUCKETS = 2016


@dataclass(frozen=True)
class DeviceEvaluation:
    snapshot: DeviceSnapshot
    summary: DeviceStatusSummary
    timeline: List[Interval]


@dataclass(frozen=True)
class LocationStats:
    location: str
    total: int
    online: int
    offline: int


@dataclass(frozen=True)
class DashboardSummary:
    total_devices: int
    online_devices: int
    offline_devices: int
    average_uptime: float


@dataclass(frozen=True)
class Dashboard:
    summary: DashboardSummary
    locations: List[LocationStats]
    devices: List[DeviceEvaluation]


@dataclass(frozen=True)
class TimeBucket:
    timestamp: datetime
    online: int
    offline: int

    @property
    def total(self) -> int:
        return self.online + self.offline


def evaluate_device(snapshot: DeviceSnapshot, now: datetime, online_timeout_ms: int) -> DeviceEvaluation:
    timeline = generate_timeline(snapshot.device.created_at, snapshot.heartbeats, now, online_timeout_ms)
    summary = analyze_device_status(snapshot.device, snapshot.heartbeats, now, online_timeout_ms, timeline=timeline)
    return DeviceEvaluation(snapshot=snapshot, summary=summary, timeline=timeline)


def build_dashboard(snapshots: Sequence[DeviceSnapshot], now: datetime, online_timeout_ms: int) -> Dashboard:
    """
    Evaluate every device against the same ``now`` and roll the results up into
    summary counts and per-location stats.
    """
    devices = [evaluate_device(snapshot, now, online_timeout_ms) for snapshot in snapshots]
    online = sum(1 for item in devices if item.summary.status == "online")
    average = (
        round_percentage(sum(Decimal(str(item.summary.uptime_percentage)) for item in devices) / len(devices))
        if devices
        else 0.0
    )

    by_location: Dict[str, List[DeviceEvaluation]] = {}
    for item in devices:
        by_location.setdefault(item.snapshot.device.location, []).append(item)
    locations = [
        LocationStats(
            location=location,
            total=len(members),
            online=sum(1 for m in members if m.summary.status == "online"),
            offline=sum(1 for m in members if m.summary.status != "online"),
        )
        for location, members in by_location.items()
    ]

    return Dashboard(
        summary=DashboardSummary(
            total_devices=len(devices),
            online_devices=online,
            offline_devices=len(devices) - online,
            average_uptime=average,
        ),
        locations=locations,
        devices=devices,
    )


def aggregate_timelines(
    timelines: Sequence[Sequence[Interval]],
    period: str,
    now: datetime,
    since: Optional[datetime] = None,
) -> List[TimeBucket]:
    """
    Count online and offline devices per fixed-width bucket.

    A device counts as online in a bucket when any of its online intervals
    overlaps the bucket; a device without intervals is offline everywhere.

    Buckets run from the earliest interval start (or ``since`` when it is
    later) through ``now``. At most ``MAX_BUCKETS`` of the most recent buckets
    are returned.
    """
    if period not in PERIOD_MINUTES:
        raise ValueError(f"Unsupported period {period!r}")
    period_us = PERIOD_MINUTES[period] * 60 * 1_000_000

    starts = [to_epoch_us(interval.start) for timeline in timelines for interval in timeline]
    if not starts:
        return []
    range_start = min(starts)
    if since is not None:
        range_start = max(range_start, to_epoch_us(since))
    range_end = max(max(starts), to_epoch_us(now))
    first_bucket = (range_start // period_us) * period_us
    last_bucket = -(-range_end // period_us) * period_us
    first_bucket = max(first_bucket, last_bucket - (MAX_BUCKETS - 1) * period_us)
    bucket_starts = range(first_bucket, last_bucket + 1, period_us)

    online_counts = dict.fromkeys(bucket_starts, 0)
    offline_counts = dict.fromkeys(bucket_starts, 0)
    for timeline in timelines:
        online_spans = [
            (to_epoch_us(interval.start), to_epoch_us(interval.end))
            for interval in timeline
            if interval.status == "online"
        ]
        for bucket_start in bucket_starts:
            bucket_end = bucket_start + period_us
            if any(start < bucket_end and end > bucket_start for start, end in online_spans):
                online_counts[bucket_start] += 1
            else:
                offline_counts[bucket_start] += 1

    buckets = [
        TimeBucket(timestamp=from_epoch_us(start), online=online_counts[start], offline=offline_counts[start])
        for start in bucket_starts
    ]
    return [bucket for bucket in buckets if bucket.total > 0]
