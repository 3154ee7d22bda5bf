"""
Main device control loop.

Orchestrates the whole device on a single cooperative thread. Each tick runs,
in order:
- Admin phase (one queued enroll / sync / erase command)
- Capture phase (one finger placement through the resolution path)
- Sync phase (mapping refresh + attendance drain, when due)
"""

import threading
import time
from typing import Any, Dict, Optional

from .app import create_app
from .backend_client import BackendClient
from .config import Config
from .connectivity import ConnectivityMonitor, tcp_probe
from .enrollment import EnrollmentSequencer
from .errors import StorageUnavailable
from .event_log import DurableEventLog
from .logging_config import get_logger
from .mapping_cache import IdentityMappingCache
from .resolution import ResolutionPath, ResolutionStatus
from .sensor import CaptureDevice, CaptureStatus
from .status import StatusBoard, StatusKind
from .sync import SyncCoordinator
from .utils.timing import format_uptime

logger = get_logger(__name__)

_OUTCOME_STATUS = {
    ResolutionStatus.DELIVERED: (StatusKind.DELIVERED, 'Welcome, ID {pid}'),
    ResolutionStatus.QUEUED: (StatusKind.QUEUED, 'Welcome, ID {pid} (saved offline)'),
    ResolutionStatus.UNKNOWN_IDENTITY: (StatusKind.UNKNOWN_IDENTITY, 'Not recognized'),
    ResolutionStatus.REJECTED: (StatusKind.ERROR, 'Attendance rejected'),
    ResolutionStatus.STORAGE_ERROR: (StatusKind.ERROR, 'Storage error, not saved'),
}


class AttendanceDevice:
    """
    Owns every engine component and runs them on one control thread.

    Args:
        config: Device configuration
        sensor: Capture device
        cache, log, connectivity, client, board: Optional pre-built components
    """

    def __init__(
        self,
        config: Config,
        sensor: CaptureDevice,
        cache: Optional[IdentityMappingCache] = None,
        log: Optional[DurableEventLog] = None,
        connectivity: Optional[ConnectivityMonitor] = None,
        client: Optional[BackendClient] = None,
        board: Optional[StatusBoard] = None
    ):
        self.config = config
        self.sensor = sensor
        self.board = board or StatusBoard()
        self.cache = cache or IdentityMappingCache(config.mapping_path, config.slot_capacity)
        self.log = log or DurableEventLog(config.attendance_log_path)
        self.connectivity = connectivity or ConnectivityMonitor(
            tcp_probe(config.backend_url, config.connectivity_timeout_seconds),
            ttl_seconds=config.connectivity_ttl_seconds,
        )
        self.client = client or BackendClient(config, self.connectivity)

        self.resolution = ResolutionPath(self.cache, self.log, self.client, self.connectivity)
        self.sync = SyncCoordinator(
            self.cache,
            self.log,
            self.client,
            self.connectivity,
            interval_seconds=config.sync_interval_seconds,
        )
        self.enrollment = EnrollmentSequencer(
            self.client,
            self.cache,
            self.sensor,
            slot_capacity=config.slot_capacity,
            templates_per_user=config.templates_per_user,
            board=self.board,
        )
        self.started_at = time.time()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def restore(self) -> None:
        """Load the persisted mapping; a broken medium leaves the device degraded."""
        try:
            self.cache.restore()
        except StorageUnavailable as e:
            logger.error(f'❌ Running without persisted mapping: {e}')
            self.board.set_status(StatusKind.ERROR, 'Storage unavailable')
            return
        self.board.set_status(StatusKind.IDLE, 'Ready')

    def run(self, stop_flag: Optional[threading.Event] = None) -> None:
        """
        Main control loop.

        Args:
            stop_flag: Optional threading.Event to signal graceful shutdown

        Call restore() first so the persisted mapping is loaded.
        """
        if self.config.enable_status_server:
            server_thread = threading.Thread(
                target=self._start_status_server, daemon=True, name='StatusServer'
            )
            server_thread.start()
            logger.info(f'Status page: http://localhost:{self.config.status_port}/health')

        logger.info('🎬 Starting main loop...')

        while True:
            if stop_flag and stop_flag.is_set():
                logger.info('Stop signal received, exiting gracefully...')
                break

            try:
                self.tick()
            except Exception as e:
                logger.error(f'Error in control loop: {e}', exc_info=True)
                self.board.set_status(StatusKind.ERROR, 'Internal error')

            time.sleep(self.config.loop_delay_seconds)

    def tick(self) -> None:
        """Run one admin, capture and sync phase, in that order."""
        command = self.board.next_command()
        if command is not None:
            self.handle_command(command)

        self.capture_once()

        if self.sync.tick() is not None:
            self._show_sync_result()

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def capture_once(self) -> Optional[ResolutionStatus]:
        """
        Poll the sensor once and route a match through the resolution path.

        Returns:
            Resolution status, or None if no identity was attempted
        """
        match = self.sensor.capture_and_match()

        if match.status is CaptureStatus.NO_FINGER:
            return None

        if match.status is CaptureStatus.ERROR:
            logger.warning(f'Sensor error (code={match.error_code})')
            self.board.set_status(StatusKind.ERROR, 'Sensor error, try again')
            return None

        if match.status is CaptureStatus.NO_MATCH or match.confidence < self.config.min_match_confidence:
            logger.info(f'No match (confidence={match.confidence})')
            self.board.set_status(StatusKind.UNKNOWN_IDENTITY, 'Not recognized')
            return None

        logger.info(f'Finger matched slot {match.slot_id} (confidence={match.confidence})')
        self.board.set_status(StatusKind.CAPTURING, 'Checking...')

        outcome = self.resolution.handle_capture(match.slot_id)
        kind, template = _OUTCOME_STATUS[outcome.status]
        self.board.set_status(kind, template.format(pid=outcome.primary_user_id))
        return outcome.status

    def handle_command(self, command: str) -> None:
        logger.info(f'Running admin command: {command}')

        if command == 'enroll':
            self.enrollment.run()
        elif command == 'sync':
            self.board.set_status(StatusKind.SYNCING, 'Syncing...')
            self.sync.run_cycle('manual')
            self._show_sync_result()
        elif command == 'erase':
            self.erase_all()
        else:
            logger.warning(f'Ignoring unknown admin command: {command}')

    def erase_all(self) -> bool:
        """
        Wipe templates, mapping and queued attendance, then ask the backend to do the same.

        Returns:
            True if every step succeeded
        """
        logger.warning('Erasing all identities')
        ok = True

        ack = self.sensor.erase_all()
        if not ack.ok:
            logger.error(f'❌ Sensor erase failed (code={ack.error_code})')
            ok = False

        try:
            self.cache.clear()
        except StorageUnavailable as e:
            logger.error(f'❌ Mapping erase incomplete: {e}')
            ok = False

        try:
            self.log.clear()
        except StorageUnavailable as e:
            logger.error(f'❌ Attendance log erase incomplete: {e}')
            ok = False

        result = self.client.request_full_erase()
        if not result.ok:
            logger.error(f'❌ Backend erase failed ({result.status.value})')
            ok = False

        if ok:
            self.board.set_status(StatusKind.IDLE, 'All data erased')
        else:
            self.board.set_status(StatusKind.ERROR, 'Erase incomplete')
        return ok

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def snapshot(self) -> Dict[str, Any]:
        """Health figures for the status endpoint (safe from any thread)."""
        try:
            queue_depth: Optional[int] = self.log.count(wait=False)
        except StorageUnavailable:
            queue_depth = None

        report = self.sync.last_report
        last_sync = None
        if report is not None:
            last_sync = {
                'reason': report.reason,
                'mappingRefreshed': report.mapping_refreshed,
                'drain': report.drain.status if report.drain else None,
                'retained': report.drain.retained if report.drain else 0,
                'storageError': report.storage_error or None,
            }

        return {
            'connected': self.connectivity.last_known,
            'queueDepth': queue_depth,
            'mappedSlots': len(self.cache),
            'lastSync': last_sync,
            'uptime': format_uptime(time.time() - self.started_at),
            'display': self.board.get_status(),
        }

    def _show_sync_result(self) -> None:
        report = self.sync.last_report
        if report is None:
            return
        if report.storage_error:
            self.board.set_status(StatusKind.ERROR, 'Storage error during sync')
        else:
            self.board.set_status(StatusKind.IDLE, 'Ready')

    def _start_status_server(self) -> None:
        logger.info(f'Starting status server on port {self.config.status_port}...')
        app = create_app(self.config, self.board, self.snapshot)
        app.run(
            host='0.0.0.0',
            port=self.config.status_port,
            threaded=True,
            debug=False,
            use_reloader=False
        )
