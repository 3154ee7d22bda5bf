"""
Enrollment sequencer.

Allocates a primary identity on the backend, then captures up to
``templates_per_user`` templates into consecutive slots starting at the
primary id, and finally reports the stored slots to the backend.

States: ALLOCATING -> CAPTURING(i) -> COMMITTED | ABANDONED

Partial enrollment is a valid outcome: once a template is physically stored
on the sensor the local mapping is kept, even if the final report fails.
"""

from typing import Callable, Optional

from .backend_client import BackendClient
from .errors import CapacityExhausted, StorageUnavailable
from .logging_config import get_logger
from .mapping_cache import IdentityMappingCache
from .models import EnrollmentSession, EnrollmentState
from .sensor import CaptureDevice
from .status import StatusBoard, StatusKind

logger = get_logger(__name__)


class EnrollmentSequencer:
    """
    Drives one enrollment attempt at a time.

    Args:
        client: Backend client (allocation and final report)
        cache: Mapping cache receiving the new slots
        sensor: Capture device storing the templates
        slot_capacity: Number of slots on the sensor
        templates_per_user: Upper bound on templates per identity
        board: Optional status board for operator prompts
        cancel_requested: Optional operator abort, checked between capture attempts
    """

    def __init__(
        self,
        client: BackendClient,
        cache: IdentityMappingCache,
        sensor: CaptureDevice,
        slot_capacity: int,
        templates_per_user: int,
        board: Optional[StatusBoard] = None,
        cancel_requested: Optional[Callable[[], bool]] = None
    ):
        self.client = client
        self.cache = cache
        self.sensor = sensor
        self.slot_capacity = slot_capacity
        self.templates_per_user = templates_per_user
        self.board = board
        self.cancel_requested = cancel_requested or (lambda: False)

    def run(self, target_count: Optional[int] = None) -> EnrollmentSession:
        """
        Run a full enrollment.

        Args:
            target_count: Templates to capture (defaults to, and is capped at,
                templates_per_user)

        Returns:
            The finished session, in COMMITTED or ABANDONED state
        """
        requested = self.templates_per_user if target_count is None else target_count
        target = min(requested, self.templates_per_user)
        session = EnrollmentSession(target_count=target)

        if target < 1:
            logger.warning(f'Enrollment abandoned: nothing to capture (target={target_count})')
            return self._abandon(session, 'No templates requested')

        self._status(StatusKind.ENROLLING, 'Allocating new identity...')
        allocation = self.client.allocate_primary_id()
        if not allocation.ok:
            logger.warning(f'Enrollment abandoned: allocation {allocation.status.value}')
            return self._abandon(session, 'No identity slots available')

        session.primary_user_id = allocation.payload
        session.state = EnrollmentState.CAPTURING
        logger.info(f'Enrolling user {session.primary_user_id} ({target} templates)')

        for index in range(target):
            slot_id = session.primary_user_id + index

            if slot_id >= self.slot_capacity:
                logger.warning(f'Slot {slot_id} exceeds sensor capacity, stopping enrollment')
                break

            owner = self.cache.lookup(slot_id)
            if owner is not None and owner != session.primary_user_id:
                logger.warning(f'Slot {slot_id} already belongs to user {owner}, stopping enrollment')
                break

            if not self._capture_slot(session, index, slot_id):
                logger.warning('Enrollment cancelled by operator')
                break

            session.assigned_slots.append(slot_id)

        if not session.assigned_slots:
            return self._abandon(session, 'No templates stored')

        return self._commit(session)

    def _capture_slot(self, session: EnrollmentSession, index: int, slot_id: int) -> bool:
        """
        Capture and store one template, retrying the same slot until it sticks.

        Returns:
            False if the operator cancelled before the template was stored
        """
        attempt = 0
        while True:
            if self.cancel_requested():
                return False

            attempt += 1
            self._status(
                StatusKind.CAPTURING,
                f'Place finger ({index + 1}/{session.target_count})'
            )
            ack = self.sensor.capture_and_enroll(slot_id)
            if ack.ok:
                break

            logger.warning(
                f'Capture for slot {slot_id} failed (code={ack.error_code}, '
                f'attempt {attempt}), retrying'
            )
            self._status(StatusKind.ERROR, 'Capture failed, try again')

        try:
            self.cache.upsert(slot_id, session.primary_user_id)
        except (StorageUnavailable, CapacityExhausted) as e:
            # Template is on the sensor already; keep going and let sync reconcile
            logger.error(f'❌ Slot {slot_id} stored on sensor but not mapped locally: {e}')
            self._status(StatusKind.ERROR, 'Storage error')
        else:
            self._status(StatusKind.STORED, f'Stored ({index + 1}/{session.target_count})')

        return True

    def _commit(self, session: EnrollmentSession) -> EnrollmentSession:
        session.state = EnrollmentState.COMMITTED

        result = self.client.push_enrollment_complete(
            session.primary_user_id, session.assigned_slots
        )
        session.reported = result.ok

        if result.ok:
            session.message = f'Enrolled ID {session.primary_user_id}'
            logger.info(
                f'✅ User {session.primary_user_id} enrolled on slots {session.assigned_slots}'
            )
        else:
            session.message = f'Enrolled ID {session.primary_user_id} (not reported)'
            logger.error(
                f'❌ Enrollment of user {session.primary_user_id} stored locally '
                f'but report failed ({result.status.value})'
            )

        self._status(StatusKind.STORED, session.message)
        return session

    def _abandon(self, session: EnrollmentSession, message: str) -> EnrollmentSession:
        session.state = EnrollmentState.ABANDONED
        session.message = message
        self._status(StatusKind.ERROR, message)
        return session

    def _status(self, kind: StatusKind, message: str) -> None:
        if self.board is not None:
            self.board.set_status(kind, message)
