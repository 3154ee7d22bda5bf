"""
Status board.

Holds the latest human-readable device status for the display and the
HTTP status endpoint, and queues admin commands for the control loop.
Thread-safe: the loop writes, the Flask thread reads and enqueues.
"""

import queue
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Literal, Optional

from .logging_config import get_logger

logger = get_logger(__name__)

AdminCommand = Literal['enroll', 'sync', 'erase']
ADMIN_COMMANDS = ('enroll', 'sync', 'erase')


class StatusKind(str, Enum):
    IDLE = 'idle'
    CAPTURING = 'capturing'
    STORED = 'stored'
    DELIVERED = 'delivered'
    QUEUED = 'queued'
    UNKNOWN_IDENTITY = 'unknown_identity'
    ENROLLING = 'enrolling'
    SYNCING = 'syncing'
    ERROR = 'error'


@dataclass
class _StatusState:
    kind: StatusKind = StatusKind.IDLE
    message: str = 'Ready'
    updated_at: float = field(default_factory=time.time)
    lock: threading.Lock = field(default_factory=threading.Lock)


class StatusBoard:
    """Current status plus the pending admin command queue."""

    def __init__(self):
        self._state = _StatusState()
        self._commands: 'queue.Queue[AdminCommand]' = queue.Queue()

    def set_status(self, kind: StatusKind, message: str) -> None:
        """
        Update the displayed status (thread-safe).

        Args:
            kind: Status category
            message: Text shown to the person at the device
        """
        with self._state.lock:
            self._state.kind = kind
            self._state.message = message
            self._state.updated_at = time.time()

        log = logger.error if kind is StatusKind.ERROR else logger.debug
        log(f'[status:{kind.value}] {message}')

    def get_status(self) -> Dict[str, Any]:
        with self._state.lock:
            return {
                'kind': self._state.kind.value,
                'message': self._state.message,
                'updatedAt': self._state.updated_at,
            }

    def submit_command(self, command: AdminCommand) -> None:
        """
        Queue an admin command for the control loop.

        Raises:
            ValueError: If the command is unknown
        """
        if command not in ADMIN_COMMANDS:
            raise ValueError(f'Unknown admin command: {command}')
        self._commands.put(command)
        logger.info(f'Admin command queued: {command}')

    def next_command(self) -> Optional[AdminCommand]:
        """Pop the oldest pending admin command, if any."""
        try:
            return self._commands.get_nowait()
        except queue.Empty:
            return None
