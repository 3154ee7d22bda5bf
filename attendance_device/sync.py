"""
Sync coordinator.

Runs a sync cycle on start-up, whenever the backend becomes reachable again,
and periodically after that. A cycle refreshes the mapping cache from the
backend first and then drains the attendance log.
"""

import time
from dataclasses import dataclass
from typing import Callable, Optional

from .backend_client import BackendClient
from .connectivity import ConnectivityMonitor
from .errors import StorageUnavailable
from .event_log import DrainResult, DurableEventLog
from .logging_config import get_logger
from .mapping_cache import IdentityMappingCache
from .models import AttendanceRecord

logger = get_logger(__name__)


@dataclass
class SyncReport:
    reason: str
    started_at: float
    connected: bool = False
    mapping_refreshed: bool = False
    mapping_entries: int = 0
    storage_error: str = ''
    drain: Optional[DrainResult] = None
    dropped: int = 0


class SyncCoordinator:
    """
    Keeps the mapping cache and the attendance log consistent with the backend.

    Args:
        cache: Identity mapping cache to refresh
        log: Attendance log to drain
        client: Backend client
        connectivity: Reachability gate (transition source)
        interval_seconds: Period between cycles while nothing else triggers one
        clock: Monotonic clock (injectable for tests)
    """

    def __init__(
        self,
        cache: IdentityMappingCache,
        log: DurableEventLog,
        client: BackendClient,
        connectivity: ConnectivityMonitor,
        interval_seconds: float = 3600,
        clock: Callable[[], float] = time.monotonic
    ):
        self.cache = cache
        self.log = log
        self.client = client
        self.connectivity = connectivity
        self.interval_seconds = interval_seconds
        self.clock = clock

        self.last_report: Optional[SyncReport] = None
        self._last_cycle_at: Optional[float] = None
        self._was_connected = False

    def tick(self) -> Optional[SyncReport]:
        """
        Run a cycle if one is due.

        Returns:
            The cycle report, or None when no trigger fired
        """
        connected = self.connectivity.is_connected()
        reconnected = connected and not self._was_connected
        self._was_connected = connected

        if self._last_cycle_at is None:
            reason = 'startup'
        elif reconnected:
            reason = 'reconnected'
        elif self.clock() - self._last_cycle_at >= self.interval_seconds:
            reason = 'periodic'
        else:
            return None

        return self.run_cycle(reason)

    def run_cycle(self, reason: str = 'manual') -> SyncReport:
        """
        Refresh the mapping (when connected), then drain the attendance log.

        A failed refresh leaves the cache untouched; records that fail
        delivery stay queued for the next cycle.
        """
        report = SyncReport(reason=reason, started_at=self.clock())
        report.connected = self.connectivity.is_connected()
        logger.info(f'🔄 Sync cycle ({reason}), connected={report.connected}')

        if report.connected:
            self._refresh_mapping(report)

        def deliver(record: AttendanceRecord) -> bool:
            result = self.client.push_attendance(record)
            if result.ok:
                return True
            if result.is_validation_error:
                logger.warning(
                    f'Dropping attendance for user {record.primary_user_id} '
                    f'at {record.timestamp_unix}: backend rejected it ({result.status_code})'
                )
                report.dropped += 1
                return True
            return False

        report.drain = self.log.drain(deliver)

        if report.drain.status == 'unavailable':
            report.storage_error = report.storage_error or 'attendance log unavailable'

        self._last_cycle_at = self.clock()
        self.last_report = report

        logger.info(
            f'Sync cycle done: mapping_refreshed={report.mapping_refreshed}, '
            f'drain={report.drain.status} '
            f'({report.drain.delivered} delivered, {report.drain.retained} retained)'
        )
        return report

    def _refresh_mapping(self, report: SyncReport) -> None:
        result = self.client.fetch_mapping()
        if not result.ok:
            logger.warning(f'Mapping refresh failed ({result.status.value}), keeping cached mapping')
            return

        try:
            self.cache.replace_all(result.payload)
        except StorageUnavailable as e:
            # The in-memory table is already fresh; only the mirror lags
            logger.error(f'❌ Mapping refreshed but not persisted: {e}')
            report.storage_error = str(e)

        report.mapping_refreshed = True
        report.mapping_entries = len(self.cache)
