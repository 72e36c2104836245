from __future__ import annotations

import argparse
from datetime import datetime, timedelta, timezone
from typing import Sequence

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from pulsewatch.database import SessionLocal
from pulsewatch.models import Device, HealthReport

# (name, location, hours since registration, heartbeat interval seconds, outage windows in hours ago)
DEMO_DEVICES = [
    ("gateway-01", "warehouse", 24, 60, []),
    ("gateway-02", "warehouse", 24, 60, [(6.0, 5.0)]),
    ("sensor-hub", "office", 12, 120, [(10.0, 8.5), (3.0, 2.75)]),
    ("kiosk-7", "lobby", 6, 60, [(0.5, 0.0)]),
]


def _heartbeats(
    now: datetime,
    hours: float,
    interval_seconds: int,
    outages: Sequence[tuple[float, float]],
) -> list[datetime]:
    created_at = now - timedelta(hours=hours)
    beats: list[datetime] = []
    current = created_at + timedelta(seconds=interval_seconds)
    while current <= now:
        age_hours = (now - current).total_seconds() / 3600
        if not any(end <= age_hours <= start for start, end in outages):
            beats.append(current)
        current += timedelta(seconds=interval_seconds)
    return beats

def seed_demo_devices(session: Session, now: datetime, *, reset: bool = False) -> list[str]:
    """
    Create the demo devices with their heartbeat history. Devices that already
    exist are left untouched unless ``reset`` is set, in which case they are
    deleted and seeded again. Returns the names of the devices that were seeded.
    """
    seeded: list[str] = []
    for name, location, hours, interval_seconds, outages in DEMO_DEVICES:
        stmt = select(Device).where(Device.name == name, Device.location == location).limit(1)
        device = session.execute(stmt).scalar_one_or_none()
        if device is not None:
            if not reset:
                continue
            session.execute(delete(HealthReport).where(HealthReport.device_id == device.id))
            session.delete(device)
            session.flush()

        created_at = now - timedelta(hours=hours)
        device = Device(
            name=name,
            location=location,
            access_key="demo-key",
            access_token="demo-token",
            created_at=created_at,
            updated_at=created_at,
        )
        session.add(device)
        session.flush()
        for ts in _heartbeats(now, hours, interval_seconds, outages):
            session.add(HealthReport(device_id=device.id, timestamp=ts, created_at=ts))
        seeded.append(name)
    return seeded


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed demo devices and heartbeat history for dashboard smoke tests.")
    parser.add_argument(
        "--reset",
        action="store_true",
        help="Delete the demo devices and their reports before seeding.",
    )
    args = parser.parse_args()

    now = datetime.now(timezone.utc).replace(microsecond=0)

    with SessionLocal() as session:
        seed_demo_devices(session, now, reset=args.reset)
        session.commit()


if __name__ == "__main__":
    main()
