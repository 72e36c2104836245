from __future__ import annotations

import uuid
from datetime import datetime
from typing import List, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db_utils import dialect_insert
from ..models import Device, HealthReport
from .health_analyzer import DeviceRecord, DeviceSnapshot, truncate_to_ms


def record_health_report(
    db: Session,
    *,
    device_name: str,
    location: str,
    access_key: str,
    access_token: str,
    now: datetime,
) -> Tuple[Device, HealthReport, bool]:
    """
    Record one heartbeat stamped with the server clock, registering the device on
    its first report. Returns the device, the new report and whether the device
    was created by this call.
    """
    stmt = dialect_insert(db, Device).values(
        id=uuid.uuid4(),
        name=device_name,
        location=location,
        access_key=access_key,
        access_token=access_token,
        created_at=now,
        updated_at=now,
    ).on_conflict_do_nothing(index_elements=["name", "location"])
    created = db.execute(stmt).rowcount == 1
    db.flush()

    device = db.execute(
        select(Device).where(Device.name == device_name, Device.location == location)
    ).scalar_one()

    report = HealthReport(device_id=device.id, timestamp=now, created_at=now)
    db.add(report)
    db.flush()
    return device, report, created


def list_device_snapshots(db: Session, *, report_window: int) -> List[DeviceSnapshot]:
    """
    Load every device with its most recent ``report_window`` heartbeat timestamps.
    """
    devices = db.scalars(select(Device).order_by(Device.created_at.asc(), Device.name.asc())).all()
    return [_snapshot(db, device, report_window) for device in devices]


def get_device_snapshot(db: Session, device_id: uuid.UUID, *, report_window: int) -> DeviceSnapshot | None:
    device = db.get(Device, device_id)
    if device is None:
        return None
    return _snapshot(db, device, report_window)


def _snapshot(db: Session, device: Device, report_window: int) -> DeviceSnapshot:
    timestamps = db.scalars(
        select(HealthReport.timestamp)
        .where(HealthReport.device_id == device.id)
        .order_by(HealthReport.timestamp.desc())
        .limit(report_window)
    ).all()
    record = DeviceRecord(
        id=str(device.id),
        name=device.name,
        location=device.location,
        created_at=truncate_to_ms(device.created_at),
    )
    return DeviceSnapshot(device=record, heartbeats=tuple(truncate_to_ms(ts) for ts in timestamps))
