"""
Durable attendance log.

Append-only queue of attendance records awaiting delivery, stored as
line-delimited ``primaryUserId,timestamp`` pairs. A drain pass offers each
record to a delivery callback once and compacts the log down to the
undelivered ones through a temporary file that atomically replaces the
original.
"""

import os
import threading
from dataclasses import dataclass
from typing import Callable, List, Literal, Optional

from .errors import StorageUnavailable
from .logging_config import get_logger
from .models import AttendanceRecord
from .utils.atomic import atomic_write_lines, discard_stale

logger = get_logger(__name__)

DrainStatus = Literal['unavailable', 'empty', 'drained']


@dataclass(frozen=True)
class DrainResult:
    status: DrainStatus
    attempted: int = 0
    delivered: int = 0
    retained: int = 0


class DurableEventLog:
    """
    FIFO attendance queue backed by a single text file.

    A record leaves the log only after ``deliver`` confirmed it. Compaction
    holds the lock, so an ``append`` never lands in a log that is about to
    be replaced. Readers on other threads use ``count(wait=False)`` to avoid
    waiting out a drain's network calls.
    """

    def __init__(self, path: str):
        """
        Args:
            path: Log file; ``path + '.tmp'`` is used while compacting
        """
        self.path = path
        self.tmp_path = f'{path}.tmp'
        self._lock = threading.RLock()
        self._torn_tail = True
        self._known_count = 0

        try:
            os.makedirs(os.path.dirname(path) or '.', exist_ok=True)
        except OSError as e:
            # Appends will report StorageUnavailable until the medium returns
            logger.error(f'❌ Cannot create attendance log directory: {e}')

        if discard_stale(self.tmp_path):
            # Crash mid-compaction: the old log is still the valid one
            logger.warning(f'Discarded unfinished compaction file {self.tmp_path}')

        try:
            self._repair_torn_tail()
        except OSError as e:
            logger.error(f'❌ Cannot check attendance log tail: {e}')

    def append(self, record: AttendanceRecord) -> None:
        """
        Durably add one record to the end of the log.

        Raises:
            StorageUnavailable: If the log could not be written
        """
        with self._lock:
            try:
                if self._torn_tail:
                    self._repair_torn_tail()
                with open(self.path, 'a', encoding='utf-8') as f:
                    f.write(record.to_log_line())
                    f.flush()
                    os.fsync(f.fileno())
            except OSError as e:
                # A partial write may have left a line without its newline
                self._torn_tail = True
                logger.error(f'❌ Failed to append attendance record: {e}')
                raise StorageUnavailable(self.path, str(e)) from e
            self._known_count += 1

        logger.info(
            f'📥 Queued attendance for user {record.primary_user_id} '
            f'at {record.timestamp_unix}'
        )

    def records(self) -> List[AttendanceRecord]:
        """
        Snapshot of queued records in FIFO order.

        Raises:
            StorageUnavailable: If the log exists but cannot be read
        """
        with self._lock:
            try:
                records = self._read()
            except OSError as e:
                raise StorageUnavailable(self.path, str(e)) from e
            self._known_count = len(records)
            return records

    def count(self, wait: bool = True) -> Optional[int]:
        """
        Number of queued records.

        Args:
            wait: If False and a drain is in progress, return the last known
                depth instead of blocking until the drain finishes

        Raises:
            StorageUnavailable: If the log exists but cannot be read
        """
        if not self._lock.acquire(blocking=wait):
            return self._known_count
        try:
            return len(self.records())
        finally:
            self._lock.release()

    def clear(self) -> None:
        """
        Drop every queued record.

        Raises:
            StorageUnavailable: If the empty log could not be written
        """
        with self._lock:
            try:
                atomic_write_lines(self.path, [], self.tmp_path)
            except OSError as e:
                raise StorageUnavailable(self.path, str(e)) from e
            self._torn_tail = False
            self._known_count = 0
        logger.info('Attendance log cleared')

    def drain(self, deliver: Callable[[AttendanceRecord], bool]) -> DrainResult:
        """
        Offer every queued record to ``deliver`` once and keep the failures.

        Retained records keep their relative order. The log is rewritten only
        if something was delivered, and the rewrite is atomic: if it fails the
        pre-drain log stays in place.

        Args:
            deliver: Returns True when the record reached the backend

        Returns:
            DrainResult with status 'unavailable', 'empty' or 'drained'
        """
        with self._lock:
            try:
                pending = self._read()
            except OSError as e:
                logger.error(f'❌ Attendance log unavailable: {e}')
                return DrainResult('unavailable')

            self._known_count = len(pending)
            if not pending:
                return DrainResult('empty')

            retained: List[AttendanceRecord] = []
            for record in pending:
                try:
                    delivered = deliver(record)
                except Exception as e:
                    logger.error(
                        f'Delivery of record for user {record.primary_user_id} failed: {e}',
                        exc_info=True
                    )
                    delivered = False

                if not delivered:
                    retained.append(record)

            delivered_count = len(pending) - len(retained)

            if delivered_count:
                try:
                    atomic_write_lines(
                        self.path,
                        (record.to_log_line() for record in retained),
                        self.tmp_path,
                    )
                except OSError as e:
                    logger.error(f'❌ Failed to compact attendance log, keeping old log: {e}')
                    return DrainResult(
                        'unavailable',
                        attempted=len(pending),
                        delivered=0,
                        retained=len(pending),
                    )
                self._torn_tail = False
                self._known_count = len(retained)

            logger.info(
                f'Drained attendance log: {delivered_count} delivered, '
                f'{len(retained)} retained'
            )
            return DrainResult(
                'drained',
                attempted=len(pending),
                delivered=delivered_count,
                retained=len(retained),
            )

    def _repair_torn_tail(self) -> None:
        """
        Cut off a trailing line that lost its newline in a crashed append.

        The torn record was never confirmed as written, so dropping it keeps
        the next append on a line of its own.
        """
        if not os.path.exists(self.path):
            self._torn_tail = False
            return

        with open(self.path, 'rb+') as f:
            data = f.read()
            if data and not data.endswith(b'\n'):
                keep = data.rfind(b'\n') + 1
                logger.warning(f'Truncating torn attendance record: {data[keep:]!r}')
                f.truncate(keep)
                f.flush()
                os.fsync(f.fileno())

        self._torn_tail = False

    def _read(self) -> List[AttendanceRecord]:
        if not os.path.exists(self.path):
            return []

        records: List[AttendanceRecord] = []
        with open(self.path, 'r', encoding='utf-8') as f:
            for line_no, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    records.append(AttendanceRecord.from_log_line(line))
                except ValueError:
                    logger.warning(f'Skipping malformed attendance line {line_no}: {line.strip()!r}')
        return records
