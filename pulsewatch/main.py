from __future__ import annotations

import json
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Dict

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import select
from sqlalchemy.orm import Session

from .auth import require_report_params, verify_device_credentials
from .config import get_settings
from .database import Base, engine, get_db
from .models import Device
from .schemas import (
    AggregatedTimelineResponse,
    DashboardResponse,
    DashboardSummaryOut,
    DeviceDetailResponse,
    HealthReportResponse,
    LocationStatsOut,
    RecordedReport,
    ReportedDevice,
    TimeBucketOut,
    TimelinePoint,
    device_status_out,
    device_timeline_out,
)
from .services.aggregation import DEFAULT_PERIOD, PERIOD_MINUTES, aggregate_timelines, build_dashboard, evaluate_device
from .services.health_analyzer import truncate_to_ms
from .services.reports import get_device_snapshot, list_device_snapshots, record_health_report

logger = logging.getLogger("pulsewatch.api")
logging.basicConfig(level=logging.INFO)

settings = get_settings()
ONLINE_TIMEOUT_MS = settings.online_timeout_ms
REPORT_WINDOW = settings.report_window

docs_enabled = settings.environment != "production"


def _server_now() -> datetime:
    # Stored timestamps are whole milliseconds too, so interval durations add up exactly.
    return truncate_to_ms(datetime.now(timezone.utc))


app = FastAPI(
    title="Device Uptime Monitor API",
    version="0.1.0",
    docs_url="/docs" if docs_enabled else None,
    redoc_url="/redoc" if docs_enabled else None,
    openapi_url="/openapi.json" if docs_enabled else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.dashboard_allowed_origins,
    allow_methods=["GET", "POST", "OPTIONS", "HEAD"],
    allow_headers=["Content-Type", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
)


@app.middleware("http")
async def request_logger(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = request_id
    start_time = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception:
        duration_ms = (time.perf_counter() - start_time) * 1000
        entry = {
            "event": "http_request",
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": 500,
            "duration_ms": round(duration_ms, 2),
            "device_id": getattr(request.state, "device_id", None),
        }
        logger.exception(json.dumps(entry))
        raise

    duration_ms = (time.perf_counter() - start_time) * 1000
    response.headers["X-Request-ID"] = request_id

    entry = {
        "event": "http_request",
        "request_id": request_id,
        "method": request.method,
        "path": request.url.path,
        "status_code": response.status_code,
        "duration_ms": round(duration_ms, 2),
        "device_id": getattr(request.state, "device_id", None),
    }
    logger.info(json.dumps(entry))
    return response

# Schema migrations own production; local and test databases are created on import.
if settings.environment in {"development", "test"}:
    Base.metadata.create_all(bind=engine)


@app.get("/healthz", status_code=status.HTTP_200_OK)
def healthz(db: Session = Depends(get_db)) -> Dict[str, str]:
    db.execute(select(1))
    return {"status": "ok"}


@app.get("/readyz", status_code=status.HTTP_200_OK)
def readyz(db: Session = Depends(get_db)) -> Dict[str, int | str]:
    db.execute(select(Device.id).limit(1))
    return {"status": "ready", "onlineTimeoutMs": ONLINE_TIMEOUT_MS}


@app.head("/readyz", status_code=status.HTTP_200_OK)
def readyz_head(db: Session = Depends(get_db)) -> Response:
    readyz(db)  # Reuse readiness checks without returning a JSON payload.
    return Response(status_code=status.HTTP_200_OK)


@app.api_route(
    "/api/v1/health/report",
    methods=["GET", "POST"],
    response_model=HealthReportResponse,
    status_code=status.HTTP_200_OK,
)
def report_health(
    request: Request,
    device_name: str | None = Query(default=None),
    location: str | None = Query(default=None),
    access_key: str | None = Query(default=None),
    access_token: str | None = Query(default=None),
    db: Session = Depends(get_db),
) -> HealthReportResponse:
    params = require_report_params(
        device_name=device_name,
        location=location,
        access_key=access_key,
        access_token=access_token,
    )
    verify_device_credentials(settings, params["access_key"], params["access_token"])

    now = _server_now()
    device, report, created = record_health_report(db, now=now, **params)
    db.commit()
    request.state.device_id = str(device.id)

    if created:
        logger.info(
            json.dumps(
                {
                    "event": "device_registered",
                    "device_id": str(device.id),
                    "device_name": device.name,
                    "location": device.location,
                }
            )
        )
    logger.info(
        json.dumps(
            {
                "event": "heartbeat_recorded",
                "device_id": str(device.id),
                "report_id": str(report.id),
                "timestamp": now.isoformat(),
            }
        )
    )
    return HealthReportResponse(
        success=True,
        device=ReportedDevice(id=device.id, name=device.name, location=device.location),
        report=RecordedReport(id=report.id, timestamp=now),
    )


@app.get("/api/dashboard", response_model=DashboardResponse, status_code=status.HTTP_200_OK)
def get_dashboard(db: Session = Depends(get_db)) -> DashboardResponse:
    now = _server_now()
    snapshots = list_device_snapshots(db, report_window=REPORT_WINDOW)
    dashboard = build_dashboard(snapshots, now, ONLINE_TIMEOUT_MS)
    summary = dashboard.summary

    logger.info(
        json.dumps(
            {
                "event": "dashboard_evaluated",
                "as_of": now.isoformat(),
                "total_devices": summary.total_devices,
                "online_devices": summary.online_devices,
            }
        )
    )
    return DashboardResponse(
        summary=DashboardSummaryOut(
            totalDevices=summary.total_devices,
            onlineDevices=summary.online_devices,
            offlineDevices=summary.offline_devices,
            averageUptime=summary.average_uptime,
        ),
        locations=[
            LocationStatsOut(location=item.location, total=item.total, online=item.online, offline=item.offline)
            for item in dashboard.locations
        ],
        devices=[device_status_out(item) for item in dashboard.devices],
        timelines=[device_timeline_out(item) for item in dashboard.devices],
        asOf=now,
        onlineTimeoutMs=ONLINE_TIMEOUT_MS,
    )


@app.get("/api/dashboard/aggregated", response_model=AggregatedTimelineResponse, status_code=status.HTTP_200_OK)
def get_aggregated_timeline(
    period: str = Query(default=DEFAULT_PERIOD),
    db: Session = Depends(get_db),
) -> AggregatedTimelineResponse:
    if period not in PERIOD_MINUTES:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"period must be one of: {', '.join(PERIOD_MINUTES)}",
        )
    now = _server_now()
    snapshots = list_device_snapshots(db, report_window=REPORT_WINDOW)
    timelines = [evaluate_device(snapshot, now, ONLINE_TIMEOUT_MS).timeline for snapshot in snapshots]
    loaded = [ts for snapshot in snapshots for ts in snapshot.heartbeats]
    buckets = aggregate_timelines(timelines, period, now, since=min(loaded, default=now))
    return AggregatedTimelineResponse(
        period=period,
        buckets=[TimeBucketOut.from_bucket(bucket) for bucket in buckets],
        asOf=now,
    )


@app.get("/api/devices/{device_id}/timeline", response_model=DeviceDetailResponse, status_code=status.HTTP_200_OK)
def get_device_timeline(
    device_id: uuid.UUID,
    request: Request,
    db: Session = Depends(get_db),
) -> DeviceDetailResponse:
    request.state.device_id = str(device_id)
    snapshot = get_device_snapshot(db, device_id, report_window=REPORT_WINDOW)
    if snapshot is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Device not found")

    now = _server_now()
    evaluation = evaluate_device(snapshot, now, ONLINE_TIMEOUT_MS)
    return DeviceDetailResponse(
        status=device_status_out(evaluation),
        timeline=[TimelinePoint.from_interval(interval) for interval in evaluation.timeline],
        asOf=now,
        onlineTimeoutMs=ONLINE_TIMEOUT_MS,
    )
