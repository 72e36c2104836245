from __future__ import annotations

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel

from .services.aggregation import DeviceEvaluation, TimeBucket
from .services.health_analyzer import DeviceRecord, Interval

DeviceState = Literal["online", "offline"]


class DeviceOut(BaseModel):
    id: str
    name: str
    location: str
    createdAt: datetime

    @classmethod
    def from_record(cls, record: DeviceRecord) -> "DeviceOut":
        return cls(id=record.id, name=record.name, location=record.location, createdAt=record.created_at)


class TimelinePoint(BaseModel):
    timestamp: datetime
    status: DeviceState
    duration: int

    @classmethod
    def from_interval(cls, interval: Interval) -> "TimelinePoint":
        return cls(timestamp=interval.start, status=interval.status, duration=interval.duration_ms)


class DeviceStatusOut(BaseModel):
    device: DeviceOut
    status: DeviceState
    lastSeen: datetime | None
    uptime: float
    totalReports: int


class DeviceTimelineOut(BaseModel):
    device: DeviceOut
    timeline: list[TimelinePoint]


class DeviceDetailResponse(BaseModel):
    status: DeviceStatusOut
    timeline: list[TimelinePoint]
    asOf: datetime
    onlineTimeoutMs: int


class DashboardSummaryOut(BaseModel):
    totalDevices: int
    onlineDevices: int
    offlineDevices: int
    averageUptime: float


class LocationStatsOut(BaseModel):
    location: str
    total: int
    online: int
    offline: int


class DashboardResponse(BaseModel):
    summary: DashboardSummaryOut
    locations: list[LocationStatsOut]
    devices: list[DeviceStatusOut]
    timelines: list[DeviceTimelineOut]
    asOf: datetime
    onlineTimeoutMs: int


class TimeBucketOut(BaseModel):
    timestamp: datetime
    online: int
    offline: int
    total: int

    @classmethod
    def from_bucket(cls, bucket: TimeBucket) -> "TimeBucketOut":
        return cls(timestamp=bucket.timestamp, online=bucket.online, offline=bucket.offline, total=bucket.total)


class AggregatedTimelineResponse(BaseModel):
    period: str
    buckets: list[TimeBucketOut]
    asOf: datetime


class ReportedDevice(BaseModel):
    id: uuid.UUID
    name: str
    location: str


class RecordedReport(BaseModel):
    id: uuid.UUID
    timestamp: datetime


class HealthReportResponse(BaseModel):
    success: bool
    device: ReportedDevice
    report: RecordedReport


def device_status_out(evaluation: DeviceEvaluation) -> DeviceStatusOut:
    summary = evaluation.summary
    return DeviceStatusOut(
        device=DeviceOut.from_record(evaluation.snapshot.device),
        status=summary.status,
        lastSeen=summary.last_seen,
        uptime=summary.uptime_percentage,
        totalReports=summary.total_reports,
    )


def device_timeline_out(evaluation: DeviceEvaluation) -> DeviceTimelineOut:
    return DeviceTimelineOut(
        device=DeviceOut.from_record(evaluation.snapshot.device),
        timeline=[TimelinePoint.from_interval(interval) for interval in evaluation.timeline],
    )
