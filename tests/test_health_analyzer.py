from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone

import pytest

from pulsewatch.services.health_analyzer import (
    DeviceRecord,
    Interval,
    analyze_device_status,
    calculate_uptime,
    generate_timeline,
    truncate_to_ms,
)

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)
TIMEOUT_MS = 300_000


def at(ms: int) -> datetime:
    return T0 + timedelta(milliseconds=ms)


def device(created_at: datetime = T0) -> DeviceRecord:
    return DeviceRecord(id="dev-1", name="gateway", location="lab", created_at=created_at)


def spans(timeline: list[Interval]) -> list[tuple[int, str, int]]:
    return [((i.start - T0) // timedelta(milliseconds=1), i.status, i.duration_ms) for i in timeline]


def test_no_reports_is_one_offline_interval():
    timeline = generate_timeline(T0, [], at(60_000), TIMEOUT_MS)
    assert timeline == [Interval(start=T0, status="offline", duration=timedelta(milliseconds=60_000))]

    summary = analyze_device_status(device(), [], at(60_000), TIMEOUT_MS)
    assert summary.status == "offline"
    assert summary.last_seen is None
    assert summary.uptime_percentage == 0.0
    assert summary.total_reports == 0


def test_single_recent_heartbeat_is_online_from_creation():
    # Creation is the reference point before the first heartbeat, so the device is online from there.
    heartbeats = [at(60_000)]
    timeline = generate_timeline(T0, heartbeats, at(120_000), TIMEOUT_MS)
    assert spans(timeline) == [(0, "online", 120_000)]

    summary = analyze_device_status(device(), heartbeats, at(120_000), TIMEOUT_MS)
    assert summary.status == "online"
    assert summary.last_seen == at(60_000)
    assert summary.uptime_percentage == 100.0
    assert summary.total_reports == 1


def test_gap_from_creation_to_late_heartbeat_scenario():
    heartbeats = [at(0), at(400_000)]
    timeline = generate_timeline(T0, heartbeats, at(500_000), TIMEOUT_MS)
    assert spans(timeline) == [(0, "offline", 400_000), (400_000, "online", 100_000)]

    summary = analyze_device_status(device(), heartbeats, at(500_000), TIMEOUT_MS)
    assert summary.status == "online"
    assert summary.uptime_percentage == 20.0


def test_gap_equal_to_timeout_does_not_split():
    timeline = generate_timeline(T0, [at(100_000), at(400_000)], at(450_000), TIMEOUT_MS)
    assert spans(timeline) == [(0, "online", 450_000)]


def test_gap_one_ms_over_timeout_splits():
    timeline = generate_timeline(T0, [at(100_000), at(400_001)], at(450_000), TIMEOUT_MS)
    assert spans(timeline) == [
        (0, "online", 100_000),
        (100_000, "offline", 300_001),
        (400_001, "online", 49_999),
    ]


def test_late_first_heartbeat_opens_with_offline():
    timeline = generate_timeline(T0, [at(400_000)], at(500_000), TIMEOUT_MS)
    assert spans(timeline) == [(0, "offline", 400_000), (400_000, "online", 100_000)]

    timeline = generate_timeline(T0, [at(300_000)], at(310_000), TIMEOUT_MS)
    assert spans(timeline) == [(0, "online", 310_000)]


def test_trailing_silence_goes_offline_at_last_heartbeat():
    heartbeats = [at(60_000)]
    timeline = generate_timeline(T0, heartbeats, at(1_000_000), TIMEOUT_MS)
    assert spans(timeline) == [(0, "online", 60_000), (60_000, "offline", 940_000)]

    summary = analyze_device_status(device(), heartbeats, at(1_000_000), TIMEOUT_MS)
    assert summary.status == "offline"
    assert summary.last_seen == at(60_000)
    assert summary.uptime_percentage == 6.0


def test_trailing_silence_equal_to_timeout_stays_online():
    timeline = generate_timeline(T0, [at(60_000)], at(360_000), TIMEOUT_MS)
    assert spans(timeline) == [(0, "online", 360_000)]
    assert analyze_device_status(device(), [at(60_000)], at(360_000), TIMEOUT_MS).status == "online"


def test_unsorted_and_duplicate_heartbeats():
    shuffled = [at(200_000), at(100_000), at(100_000)]
    timeline = generate_timeline(T0, shuffled, at(250_000), TIMEOUT_MS)
    assert timeline == generate_timeline(T0, sorted(set(shuffled)), at(250_000), TIMEOUT_MS)
    assert spans(timeline) == [(0, "online", 250_000)]
    assert analyze_device_status(device(), shuffled, at(250_000), TIMEOUT_MS).total_reports == 3


def test_isolated_heartbeat_between_long_gaps_leaves_no_online_time():
    heartbeats = [at(1_000_000)]
    timeline = generate_timeline(T0, heartbeats, at(2_000_000), TIMEOUT_MS)
    assert spans(timeline) == [(0, "offline", 2_000_000)]

    summary = analyze_device_status(device(), heartbeats, at(2_000_000), TIMEOUT_MS)
    assert summary.status == "offline"
    assert summary.uptime_percentage == 0.0
    assert summary.total_reports == 1


def test_heartbeat_after_now_is_clamped():
    timeline = generate_timeline(T0, [at(600_000)], at(500_000), TIMEOUT_MS)
    assert spans(timeline) == [(0, "offline", 500_000), (500_000, "online", 0)]

    summary = analyze_device_status(device(), [at(600_000)], at(500_000), TIMEOUT_MS)
    assert summary.status == "online"
    assert summary.last_seen == at(600_000)


def test_heartbeat_before_creation_is_clamped():
    timeline = generate_timeline(T0, [at(-60_000)], at(100_000), TIMEOUT_MS)
    assert spans(timeline) == [(0, "online", 100_000)]


def test_heartbeat_long_before_creation_does_not_make_device_online():
    heartbeats = [T0 - timedelta(hours=1)]
    summary = analyze_device_status(device(), heartbeats, at(60_000), TIMEOUT_MS)
    assert summary.status == "offline"
    assert summary.last_seen == T0 - timedelta(hours=1)


def test_sub_millisecond_boundaries_are_kept():
    created = T0 + timedelta(microseconds=500)
    now = created + timedelta(minutes=2, microseconds=700)
    timeline = generate_timeline(created, [created + timedelta(minutes=1)], now, TIMEOUT_MS)

    assert timeline[0].start == created
    assert timeline[-1].end == now
    assert [i.status for i in timeline] == ["online"]
    assert timeline[0].duration == timedelta(minutes=2, microseconds=700)


def test_gap_half_a_millisecond_over_timeout_splits():
    first = at(60_000)
    second = first + timedelta(milliseconds=TIMEOUT_MS, microseconds=500)
    now = second + timedelta(minutes=1)
    timeline = generate_timeline(T0, [first, second], now, TIMEOUT_MS)

    assert [(i.start, i.status) for i in timeline] == [(T0, "online"), (first, "offline"), (second, "online")]
    assert timeline[1].duration == timedelta(milliseconds=TIMEOUT_MS, microseconds=500)
    assert timeline[-1].end == now

    summary = analyze_device_status(device(), [first, second], now, TIMEOUT_MS)
    assert summary.status == "online"


def test_truncate_to_ms_drops_microseconds():
    assert truncate_to_ms(T0 + timedelta(microseconds=1_999)) == at(1)
    assert truncate_to_ms((T0 + timedelta(microseconds=700)).replace(tzinfo=None)) == T0


def test_now_before_creation_is_clamped_to_creation():
    timeline = generate_timeline(T0, [], at(-60_000), TIMEOUT_MS)
    assert timeline == [Interval(start=T0, status="offline", duration=timedelta(milliseconds=0))]

    summary = analyze_device_status(device(), [at(10)], at(-60_000), TIMEOUT_MS)
    assert summary.uptime_percentage == 0.0


def test_zero_timeout_splits_every_distinct_gap():
    timeline = generate_timeline(T0, [at(0), at(0), at(10)], at(10), 0)
    assert spans(timeline) == [(0, "offline", 10), (10, "online", 0)]


def test_negative_timeout_is_rejected():
    with pytest.raises(ValueError):
        generate_timeline(T0, [], at(1), -1)
    with pytest.raises(ValueError):
        analyze_device_status(device(), [], at(1), -1)


def test_naive_datetimes_are_treated_as_utc():
    naive = T0.replace(tzinfo=None)
    timeline = generate_timeline(naive, [naive + timedelta(minutes=1)], at(120_000), TIMEOUT_MS)
    assert spans(timeline) == [(0, "online", 120_000)]


def test_recomputing_is_idempotent():
    heartbeats = [at(0), at(400_000), at(450_000), at(1_200_000)]
    first = generate_timeline(T0, heartbeats, at(1_300_000), TIMEOUT_MS)
    second = generate_timeline(T0, list(heartbeats), at(1_300_000), TIMEOUT_MS)
    assert first == second
    assert analyze_device_status(device(), heartbeats, at(1_300_000), TIMEOUT_MS) == analyze_device_status(
        device(), heartbeats, at(1_300_000), TIMEOUT_MS
    )


def test_uptime_rounds_half_up():
    timeline = [
        Interval(start=T0, status="online", duration=timedelta(milliseconds=24_690)),
        Interval(start=at(24_690), status="offline", duration=timedelta(milliseconds=175_310)),
    ]
    assert calculate_uptime(timeline, T0, at(200_000)) == 12.35


@pytest.mark.parametrize("seed", range(25))
def test_timeline_invariants_hold_for_random_histories(seed):
    rng = random.Random(seed)
    timeout = rng.choice([0, 1_000, 60_000, TIMEOUT_MS])
    lifetime = rng.randint(0, 5_000_000)
    now = at(lifetime)
    heartbeats = [at(rng.randint(-10_000, lifetime + 10_000)) for _ in range(rng.randint(0, 40))]

    timeline = generate_timeline(T0, heartbeats, now, timeout)

    assert timeline[0].start == T0
    assert timeline[-1].end == now
    assert sum(i.duration_ms for i in timeline) == lifetime
    for current, following in zip(timeline, timeline[1:]):
        assert current.end == following.start
        assert current.status != following.status
    assert all(i.duration_ms >= 0 for i in timeline)

    summary = analyze_device_status(device(), heartbeats, now, timeout)
    assert 0.0 <= summary.uptime_percentage <= 100.0
    if heartbeats and min(heartbeats) >= T0:
        assert summary.status == timeline[-1].status
