"""
Tests for the sync coordinator: triggers, refresh-before-drain ordering and
drop/retain rules for replayed records.
"""

from conftest import ok, rejected

from attendance_device.models import AttendanceRecord, MappingEntry
from attendance_device.sync import SyncCoordinator


class Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def make_coordinator(cache, event_log, backend, connectivity, clock=None):
    return SyncCoordinator(
        cache, event_log, backend, connectivity,
        interval_seconds=3600, clock=clock or Clock(),
    )


def test_reconnect_refreshes_mapping_before_replaying_backlog(cache, event_log, backend, connectivity):
    connectivity.connected = False
    event_log.append(AttendanceRecord(10, 100))
    event_log.append(AttendanceRecord(11, 200))
    backend.mapping = [MappingEntry(10, 10)]
    coordinator = make_coordinator(cache, event_log, backend, connectivity)

    coordinator.tick()  # startup cycle while offline
    backend.calls.clear()

    connectivity.connected = True
    report = coordinator.tick()

    assert report.reason == 'reconnected'
    names = backend.call_names()
    assert names[0] == 'fetch_mapping'
    assert names[1:] == ['push_attendance', 'push_attendance']
    assert event_log.records() == []
    assert cache.lookup(10) == 10


def test_offline_cycle_keeps_backlog_and_cache(cache, event_log, backend, connectivity):
    connectivity.connected = False
    cache.upsert(4, 40)
    event_log.append(AttendanceRecord(40, 100))
    coordinator = make_coordinator(cache, event_log, backend, connectivity)

    report = coordinator.run_cycle('manual')

    assert not report.mapping_refreshed
    assert 'fetch_mapping' not in backend.call_names()
    assert event_log.records() == [AttendanceRecord(40, 100)]
    assert cache.lookup(4) == 40


def test_failed_refresh_leaves_cache_untouched(cache, event_log, backend, connectivity):
    cache.upsert(4, 40)
    backend.mapping_result = rejected(500)
    coordinator = make_coordinator(cache, event_log, backend, connectivity)

    report = coordinator.run_cycle()

    assert not report.mapping_refreshed
    assert cache.lookup(4) == 40


def test_successful_refresh_replaces_cache_wholesale(cache, event_log, backend, connectivity):
    cache.upsert(4, 40)
    backend.mapping = [MappingEntry(7, 70)]
    coordinator = make_coordinator(cache, event_log, backend, connectivity)

    report = coordinator.run_cycle()

    assert report.mapping_refreshed
    assert report.mapping_entries == 1
    assert cache.lookup(4) is None
    assert cache.lookup(7) == 70


def test_validation_rejection_is_dropped_other_failures_retained(cache, event_log, backend, connectivity):
    event_log.append(AttendanceRecord(1, 100))
    event_log.append(AttendanceRecord(2, 200))
    event_log.append(AttendanceRecord(3, 300))

    def responder(record):
        if record.primary_user_id == 1:
            return rejected(422)
        if record.primary_user_id == 2:
            return rejected(503)
        return ok()

    backend.attendance_responder = responder
    coordinator = make_coordinator(cache, event_log, backend, connectivity)

    report = coordinator.run_cycle()

    assert report.dropped == 1
    assert report.drain.delivered == 2
    assert event_log.records() == [AttendanceRecord(2, 200)]


def test_connectivity_lost_mid_drain_keeps_rest_queued(cache, event_log, backend, connectivity):
    records = [AttendanceRecord(1, 100), AttendanceRecord(2, 200), AttendanceRecord(3, 300)]
    for record in records:
        event_log.append(record)

    def deliver_then_drop(record):
        connectivity.connected = False
        return ok()

    backend.attendance_responder = deliver_then_drop
    coordinator = make_coordinator(cache, event_log, backend, connectivity)

    report = coordinator.run_cycle()

    assert report.drain.delivered == 1
    assert report.drain.retained == 2
    assert backend.delivered == [records[0]]
    assert event_log.records() == records[1:]

    connectivity.connected = True
    backend.attendance_responder = lambda record: ok()
    coordinator.run_cycle()

    assert backend.delivered == records
    assert event_log.records() == []


def test_tick_triggers(cache, event_log, backend, connectivity):
    clock = Clock()
    coordinator = make_coordinator(cache, event_log, backend, connectivity, clock)

    assert coordinator.tick().reason == 'startup'
    assert coordinator.tick() is None

    clock.now += 3599
    assert coordinator.tick() is None

    clock.now += 1
    assert coordinator.tick().reason == 'periodic'


def test_last_report_is_kept(cache, event_log, backend, connectivity):
    coordinator = make_coordinator(cache, event_log, backend, connectivity)

    report = coordinator.run_cycle('manual')

    assert coordinator.last_report is report
    assert report.drain.status == 'empty'
