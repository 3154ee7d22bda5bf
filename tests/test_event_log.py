"""
Tests for the durable attendance log: append, drain and atomic compaction.
"""

import os
import threading

import pytest

from attendance_device.errors import StorageUnavailable
from attendance_device.event_log import DurableEventLog
from attendance_device.models import AttendanceRecord


def make_records(n):
    return [AttendanceRecord(primary_user_id=i, timestamp_unix=1_700_000_000 + i) for i in range(1, n + 1)]


def test_append_writes_line_delimited_pairs(event_log, config):
    event_log.append(AttendanceRecord(10, 1700000000))
    event_log.append(AttendanceRecord(11, 1700000050))

    with open(config.attendance_log_path) as f:
        assert f.read() == '10,1700000000\n11,1700000050\n'


def test_records_preserve_fifo_order(event_log):
    records = make_records(4)
    for record in records:
        event_log.append(record)

    assert event_log.records() == records
    assert event_log.count() == 4


def test_drain_missing_log_is_empty(event_log):
    result = event_log.drain(lambda record: True)

    assert result.status == 'empty'
    assert result.attempted == 0


def test_drain_unopenable_log_reports_unavailable(tmp_path):
    path = tmp_path / 'attendance.log'
    path.mkdir()
    log = DurableEventLog(str(path))

    result = log.drain(lambda record: True)

    assert result.status == 'unavailable'


def test_drain_removes_delivered_and_keeps_complement_in_order(event_log):
    records = make_records(6)
    for record in records:
        event_log.append(record)
    succeed_for = {2, 3, 5}

    result = event_log.drain(lambda record: record.primary_user_id in succeed_for)

    assert result.status == 'drained'
    assert result.attempted == 6
    assert result.delivered == 3
    assert result.retained == 3
    assert event_log.records() == [r for r in records if r.primary_user_id not in succeed_for]


def test_drain_with_failing_delivery_is_idempotent(event_log, config):
    records = make_records(3)
    for record in records:
        event_log.append(record)

    event_log.drain(lambda record: False)
    event_log.drain(lambda record: False)

    assert event_log.records() == records


def test_drain_attempts_each_record_once(event_log):
    for record in make_records(3):
        event_log.append(record)
    attempts = []

    event_log.drain(lambda record: attempts.append(record.primary_user_id) or False)

    assert attempts == [1, 2, 3]


def test_drain_retains_record_when_delivery_raises(event_log):
    for record in make_records(2):
        event_log.append(record)

    def deliver(record):
        if record.primary_user_id == 1:
            raise RuntimeError('boom')
        return True

    result = event_log.drain(deliver)

    assert result.delivered == 1
    assert [r.primary_user_id for r in event_log.records()] == [1]


def test_drain_everything_leaves_empty_log(event_log, config):
    for record in make_records(2):
        event_log.append(record)

    event_log.drain(lambda record: True)

    assert event_log.records() == []
    assert not os.path.exists(f'{config.attendance_log_path}.tmp')


def test_failed_compaction_keeps_pre_drain_log(event_log, monkeypatch):
    records = make_records(3)
    for record in records:
        event_log.append(record)

    def broken_replace(src, dst):
        raise OSError('disk pulled')

    monkeypatch.setattr('attendance_device.utils.atomic.os.replace', broken_replace)

    result = event_log.drain(lambda record: True)

    assert result.status == 'unavailable'
    monkeypatch.undo()
    assert event_log.records() == records
    assert not os.path.exists(event_log.tmp_path)


def test_stale_compaction_file_is_discarded_on_open(config):
    os.makedirs(config.data_dir, exist_ok=True)
    with open(config.attendance_log_path, 'w') as f:
        f.write('1,100\n2,200\n')
    with open(f'{config.attendance_log_path}.tmp', 'w') as f:
        f.write('2,2')

    log = DurableEventLog(config.attendance_log_path)

    assert not os.path.exists(log.tmp_path)
    assert log.records() == [AttendanceRecord(1, 100), AttendanceRecord(2, 200)]


def test_torn_last_line_is_skipped(config):
    os.makedirs(config.data_dir, exist_ok=True)
    with open(config.attendance_log_path, 'w') as f:
        f.write('1,100\n2')

    log = DurableEventLog(config.attendance_log_path)

    assert log.records() == [AttendanceRecord(1, 100)]


def test_append_after_torn_tail_starts_a_fresh_line(config):
    os.makedirs(config.data_dir, exist_ok=True)
    with open(config.attendance_log_path, 'w') as f:
        f.write('1,100\n2,2')

    log = DurableEventLog(config.attendance_log_path)
    log.append(AttendanceRecord(3, 300))

    assert log.records() == [AttendanceRecord(1, 100), AttendanceRecord(3, 300)]
    with open(config.attendance_log_path) as f:
        assert f.read() == '1,100\n3,300\n'


def test_append_after_failed_write_repairs_tail(event_log, config, monkeypatch):
    event_log.append(AttendanceRecord(1, 100))

    def failing_fsync(fd):
        raise OSError('write error')

    monkeypatch.setattr('attendance_device.event_log.os.fsync', failing_fsync)
    with pytest.raises(StorageUnavailable):
        event_log.append(AttendanceRecord(2, 200))
    monkeypatch.undo()
    # Only part of the failed line reached the medium
    with open(config.attendance_log_path, 'w') as f:
        f.write('1,100\n2,2')

    event_log.append(AttendanceRecord(3, 300))

    assert event_log.records() == [AttendanceRecord(1, 100), AttendanceRecord(3, 300)]


def test_count_does_not_wait_for_running_drain(event_log):
    for record in make_records(3):
        event_log.append(record)
    seen = []

    def deliver(record):
        if not seen:
            reader = threading.Thread(target=lambda: seen.append(event_log.count(wait=False)))
            reader.start()
            reader.join(timeout=2)
        return True

    event_log.drain(deliver)

    assert seen == [3]
    assert event_log.count(wait=False) == 0


def test_append_failure_raises_storage_unavailable(tmp_path):
    path = tmp_path / 'attendance.log'
    path.mkdir()
    log = DurableEventLog(str(path))

    with pytest.raises(StorageUnavailable):
        log.append(AttendanceRecord(1, 1))


def test_clear_drops_all_records(event_log):
    for record in make_records(2):
        event_log.append(record)

    event_log.clear()

    assert event_log.records() == []
