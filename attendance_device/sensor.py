"""
Capture device boundary.

The fingerprint module itself (matching, template storage) is an external
collaborator; this module fixes the interface the engine consumes and
provides a console-driven stand-in for bench use without hardware.
"""

import select
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol, Set, TextIO

from .logging_config import get_logger

logger = get_logger(__name__)


class CaptureStatus(str, Enum):
    MATCH = 'match'
    NO_FINGER = 'no_finger'
    NO_MATCH = 'no_match'
    ERROR = 'error'


@dataclass(frozen=True)
class MatchResult:
    status: CaptureStatus
    slot_id: Optional[int] = None
    confidence: int = 0
    error_code: Optional[int] = None


@dataclass(frozen=True)
class SensorAck:
    ok: bool
    error_code: Optional[int] = None


class CaptureDevice(Protocol):
    def capture_and_match(self) -> MatchResult: ...

    def capture_and_enroll(self, slot_id: int) -> SensorAck: ...

    def erase_all(self) -> SensorAck: ...


class ConsoleSensor:
    """
    Stdin-driven stand-in for a fingerprint module.

    Each line typed while idle is one finger placement:
        ``<slot> [confidence]``  finger matches a stored slot
        ``x``                    finger not recognized

    During enrollment every placement prompt accepts Enter to store the
    template or ``f`` to simulate a failed capture.

    Args:
        poll_timeout: Seconds to wait for input before reporting NO_FINGER
        stream: Input stream (defaults to stdin)
        stored_slots: Slots treated as already holding a template
    """

    def __init__(
        self,
        poll_timeout: float = 0.5,
        stream: Optional[TextIO] = None,
        stored_slots: Optional[Set[int]] = None
    ):
        self.poll_timeout = poll_timeout
        self.stream = stream or sys.stdin
        self.stored_slots: Set[int] = set(stored_slots or ())

    def capture_and_match(self) -> MatchResult:
        ready, _, _ = select.select([self.stream], [], [], self.poll_timeout)
        if not ready:
            return MatchResult(CaptureStatus.NO_FINGER)

        line = self.stream.readline()
        if not line:
            return MatchResult(CaptureStatus.NO_FINGER)

        parts = line.split()
        if not parts:
            return MatchResult(CaptureStatus.NO_FINGER)
        if parts[0].lower() == 'x':
            return MatchResult(CaptureStatus.NO_MATCH)

        try:
            slot_id = int(parts[0])
            confidence = int(parts[1]) if len(parts) > 1 else 100
        except ValueError:
            logger.warning(f'Unrecognized sensor input: {line.strip()!r}')
            return MatchResult(CaptureStatus.ERROR, error_code=1)

        if slot_id not in self.stored_slots:
            return MatchResult(CaptureStatus.NO_MATCH)
        return MatchResult(CaptureStatus.MATCH, slot_id=slot_id, confidence=confidence)

    def capture_and_enroll(self, slot_id: int) -> SensorAck:
        print(f'Place finger for slot {slot_id} [Enter=store, f=fail]: ', end='', flush=True)
        answer = self.stream.readline().strip().lower()
        if answer == 'f':
            return SensorAck(False, error_code=2)
        self.stored_slots.add(slot_id)
        return SensorAck(True)

    def erase_all(self) -> SensorAck:
        self.stored_slots.clear()
        return SensorAck(True)
