"""
Domain records shared by the cache, the attendance log and the backend client.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class MappingEntry:
    """One biometric slot owned by one primary identity."""

    local_slot_id: int
    primary_user_id: int

    def to_wire(self) -> Dict[str, int]:
        return {'sensorId': self.local_slot_id, 'primaryUserId': self.primary_user_id}

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> 'MappingEntry':
        """
        Build an entry from its wire/disk form.

        Raises:
            KeyError, TypeError, ValueError: If the record is malformed
        """
        return cls(
            local_slot_id=int(data['sensorId']),
            primary_user_id=int(data['primaryUserId']),
        )


@dataclass(frozen=True)
class AttendanceRecord:
    """An attendance event already resolved to a primary identity."""

    primary_user_id: int
    timestamp_unix: int

    def to_log_line(self) -> str:
        return f'{self.primary_user_id},{self.timestamp_unix}\n'

    @classmethod
    def from_log_line(cls, line: str) -> 'AttendanceRecord':
        """
        Parse one attendance log line.

        Raises:
            ValueError: If the line is not a 'primaryUserId,timestamp' pair
        """
        user_part, sep, ts_part = line.strip().partition(',')
        if not sep:
            raise ValueError(f'Malformed attendance line: {line!r}')
        return cls(primary_user_id=int(user_part), timestamp_unix=int(ts_part))

    def to_wire(self) -> Dict[str, int]:
        # The backend still calls the identity field fingerprintId
        return {'fingerprintId': self.primary_user_id, 'timestamp': self.timestamp_unix}


class EnrollmentState(str, Enum):
    ALLOCATING = 'ALLOCATING'
    CAPTURING = 'CAPTURING'
    COMMITTED = 'COMMITTED'
    ABANDONED = 'ABANDONED'


@dataclass
class EnrollmentSession:
    """
    Transient state of one enrollment attempt.

    Never persisted; discarded once the sequencer returns it.
    """

    target_count: int
    primary_user_id: Optional[int] = None
    assigned_slots: List[int] = field(default_factory=list)
    state: EnrollmentState = EnrollmentState.ALLOCATING
    reported: bool = False
    message: str = ''
