"""
Resolution path.

Turns a matched slot id into an attendance record: resolve the primary id
remotely when connected (healing the cache with the answer), fall back to
the cache otherwise, then deliver the record directly or queue it.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from .backend_client import BackendClient, RemoteStatus
from .connectivity import ConnectivityMonitor
from .errors import CapacityExhausted, StorageUnavailable
from .event_log import DurableEventLog
from .logging_config import get_logger
from .mapping_cache import IdentityMappingCache
from .models import AttendanceRecord
from .utils.timing import unix_now

logger = get_logger(__name__)


class ResolutionStatus(str, Enum):
    DELIVERED = 'delivered'
    QUEUED = 'queued'
    UNKNOWN_IDENTITY = 'unknown_identity'
    REJECTED = 'rejected'
    STORAGE_ERROR = 'storage_error'


@dataclass(frozen=True)
class ResolutionOutcome:
    status: ResolutionStatus
    slot_id: int
    primary_user_id: Optional[int] = None
    record: Optional[AttendanceRecord] = None


class ResolutionPath:
    """
    Per-capture identity lookup and attendance routing.

    Args:
        cache: Local slot mapping (authority while offline)
        log: Attendance log used when direct delivery is impossible
        client: Backend client
        connectivity: Reachability gate
        clock: Unix-seconds clock stamping new records
    """

    def __init__(
        self,
        cache: IdentityMappingCache,
        log: DurableEventLog,
        client: BackendClient,
        connectivity: ConnectivityMonitor,
        clock: Callable[[], int] = unix_now
    ):
        self.cache = cache
        self.log = log
        self.client = client
        self.connectivity = connectivity
        self.clock = clock

    def handle_capture(self, slot_id: int) -> ResolutionOutcome:
        """
        Resolve a matched slot and record attendance for it.

        Args:
            slot_id: Slot reported by the capture device

        Returns:
            ResolutionOutcome describing where the record went
        """
        connected = self.connectivity.is_connected()
        primary_id: Optional[int] = None

        if connected:
            result = self.client.resolve_primary_id(slot_id)
            if result.ok:
                primary_id = result.payload
                self._heal_cache(slot_id, primary_id)
            elif result.status is RemoteStatus.NOT_FOUND:
                cached = self.cache.lookup(slot_id)
                if cached is not None:
                    logger.warning(
                        f'Backend has no mapping for slot {slot_id}; '
                        f'local cache still maps it to {cached}'
                    )
                return ResolutionOutcome(ResolutionStatus.UNKNOWN_IDENTITY, slot_id)
            else:
                if result.status is RemoteStatus.UNREACHABLE:
                    connected = False
                logger.warning(
                    f'Remote resolution of slot {slot_id} failed '
                    f'({result.status.value}), using local cache'
                )

        if primary_id is None:
            primary_id = self.cache.lookup(slot_id)

        if primary_id is None:
            logger.info(f'Slot {slot_id} has no known identity')
            return ResolutionOutcome(ResolutionStatus.UNKNOWN_IDENTITY, slot_id)

        record = AttendanceRecord(primary_user_id=primary_id, timestamp_unix=self.clock())

        if connected:
            push = self.client.push_attendance(record)
            if push.ok:
                return ResolutionOutcome(ResolutionStatus.DELIVERED, slot_id, primary_id, record)
            if push.is_validation_error:
                logger.warning(
                    f'Backend rejected attendance for user {primary_id} '
                    f'({push.status_code}), not queuing'
                )
                return ResolutionOutcome(ResolutionStatus.REJECTED, slot_id, primary_id, record)
            logger.warning(f'Direct delivery failed ({push.status.value}), queuing record')

        try:
            self.log.append(record)
        except StorageUnavailable as e:
            logger.error(f'❌ Attendance for user {primary_id} lost: {e}')
            return ResolutionOutcome(ResolutionStatus.STORAGE_ERROR, slot_id, primary_id, record)

        return ResolutionOutcome(ResolutionStatus.QUEUED, slot_id, primary_id, record)

    def _heal_cache(self, slot_id: int, primary_id: int) -> None:
        if self.cache.lookup(slot_id) == primary_id:
            return
        try:
            self.cache.upsert(slot_id, primary_id)
        except (StorageUnavailable, CapacityExhausted) as e:
            logger.error(f'❌ Could not cache mapping {slot_id} -> {primary_id}: {e}')
