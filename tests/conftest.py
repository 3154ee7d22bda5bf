"""
Shared fixtures: a config rooted in tmp_path and in-memory stand-ins for the
backend, the connectivity gate and the sensor.
"""

import dataclasses
from typing import Callable, Dict, List, Optional

import pytest

from attendance_device.backend_client import RemoteResult, RemoteStatus
from attendance_device.config import load_config
from attendance_device.event_log import DurableEventLog
from attendance_device.mapping_cache import IdentityMappingCache
from attendance_device.models import AttendanceRecord, MappingEntry
from attendance_device.sensor import CaptureStatus, MatchResult, SensorAck


def ok(payload=None) -> RemoteResult:
    return RemoteResult(RemoteStatus.SUCCESS, payload, 200)


def unreachable() -> RemoteResult:
    return RemoteResult(RemoteStatus.UNREACHABLE, detail='offline')


def rejected(status_code: int = 500) -> RemoteResult:
    return RemoteResult(RemoteStatus.REJECTED, status_code=status_code)


class FakeConnectivity:
    def __init__(self, connected: bool = True):
        self.connected = connected

    @property
    def last_known(self) -> bool:
        return self.connected

    def is_connected(self, force: bool = False) -> bool:
        return self.connected

    def mark_disconnected(self) -> None:
        self.connected = False


class FakeBackend:
    """Records every call in ``calls`` and answers from configurable results."""

    def __init__(self, connectivity: FakeConnectivity):
        self.connectivity = connectivity
        self.calls: List[tuple] = []
        self.mapping: List[MappingEntry] = []
        self.resolutions: Dict[int, int] = {}
        self.mapping_result: Optional[RemoteResult] = None
        self.resolve_result: Optional[RemoteResult] = None
        self.allocate_result: RemoteResult = ok(10)
        self.attendance_responder: Callable[[AttendanceRecord], RemoteResult] = lambda record: ok()
        self.enrollment_result: RemoteResult = ok()
        self.erase_result: RemoteResult = ok()
        self.delivered: List[AttendanceRecord] = []

    def _gate(self) -> bool:
        return self.connectivity.is_connected()

    def fetch_mapping(self) -> RemoteResult:
        self.calls.append(('fetch_mapping',))
        if not self._gate():
            return unreachable()
        return self.mapping_result or ok(list(self.mapping))

    def resolve_primary_id(self, slot_id: int) -> RemoteResult:
        self.calls.append(('resolve_primary_id', slot_id))
        if not self._gate():
            return unreachable()
        if self.resolve_result is not None:
            return self.resolve_result
        if slot_id in self.resolutions:
            return ok(self.resolutions[slot_id])
        return RemoteResult(RemoteStatus.NOT_FOUND, status_code=404)

    def allocate_primary_id(self) -> RemoteResult:
        self.calls.append(('allocate_primary_id',))
        if not self._gate():
            return unreachable()
        return self.allocate_result

    def push_attendance(self, record: AttendanceRecord) -> RemoteResult:
        self.calls.append(('push_attendance', record))
        if not self._gate():
            return unreachable()
        result = self.attendance_responder(record)
        if result.ok:
            self.delivered.append(record)
        return result

    def push_enrollment_complete(self, primary_id: int, slot_ids: List[int]) -> RemoteResult:
        self.calls.append(('push_enrollment_complete', primary_id, list(slot_ids)))
        if not self._gate():
            return unreachable()
        return self.enrollment_result

    def request_full_erase(self) -> RemoteResult:
        self.calls.append(('request_full_erase',))
        if not self._gate():
            return unreachable()
        return self.erase_result

    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]


class FakeSensor:
    """Scripted capture device."""

    def __init__(self, matches: Optional[List[MatchResult]] = None):
        self.matches = list(matches or [])
        self.enroll_script: List[bool] = []
        self.enrolled: List[int] = []
        self.enroll_attempts: List[int] = []
        self.erased = False

    def capture_and_match(self) -> MatchResult:
        if self.matches:
            return self.matches.pop(0)
        return MatchResult(CaptureStatus.NO_FINGER)

    def capture_and_enroll(self, slot_id: int) -> SensorAck:
        self.enroll_attempts.append(slot_id)
        success = self.enroll_script.pop(0) if self.enroll_script else True
        if success:
            self.enrolled.append(slot_id)
            return SensorAck(True)
        return SensorAck(False, error_code=7)

    def erase_all(self) -> SensorAck:
        self.erased = True
        return SensorAck(True)


@pytest.fixture
def config(tmp_path):
    return dataclasses.replace(
        load_config(),
        backend_url='http://backend.test',
        device_token='',
        admin_token='',
        data_dir=str(tmp_path / 'data'),
        slot_capacity=128,
        templates_per_user=3,
        min_match_confidence=50,
        sync_interval_seconds=3600,
        enable_status_server=False,
    )


@pytest.fixture
def connectivity():
    return FakeConnectivity(connected=True)


@pytest.fixture
def backend(connectivity):
    return FakeBackend(connectivity)


@pytest.fixture
def cache(config):
    return IdentityMappingCache(config.mapping_path, config.slot_capacity)


@pytest.fixture
def event_log(config):
    return DurableEventLog(config.attendance_log_path)
