"""
Remote authority client.

One method per backend capability. Every call checks connectivity first and
fails fast as UNREACHABLE without touching the network; otherwise the result
is SUCCESS (with payload), NOT_FOUND, EXHAUSTED, REJECTED or UNREACHABLE.
Nothing here raises for remote failures.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

import requests

from .config import Config
from .connectivity import ConnectivityMonitor
from .logging_config import get_logger
from .models import AttendanceRecord, MappingEntry
from .utils.timing import unix_now

logger = get_logger(__name__)

# Status codes the backend uses for malformed or duplicate submissions.
# Retrying them can never succeed.
VALIDATION_STATUS_CODES = frozenset({400, 409, 422})


class RemoteStatus(str, Enum):
    SUCCESS = 'success'
    NOT_FOUND = 'not_found'
    EXHAUSTED = 'exhausted'
    REJECTED = 'rejected'
    UNREACHABLE = 'unreachable'


@dataclass(frozen=True)
class RemoteResult:
    status: RemoteStatus
    payload: Any = None
    status_code: Optional[int] = None
    detail: str = ''

    @property
    def ok(self) -> bool:
        return self.status is RemoteStatus.SUCCESS

    @property
    def is_validation_error(self) -> bool:
        return (
            self.status is RemoteStatus.REJECTED
            and self.status_code in VALIDATION_STATUS_CODES
        )


def sanitize_url(url: str) -> str:
    """
    Remove password from URL for logging.

    Args:
        url: URL with potential password

    Returns:
        Sanitized URL
    """
    if '://' not in url:
        return url

    protocol, rest = url.split('://', 1)
    if '@' in rest:
        creds, host = rest.rsplit('@', 1)
        if ':' in creds:
            username = creds.split(':', 1)[0]
            return f'{protocol}://{username}@{host}'
    return url


class BackendClient:
    """
    JSON-over-HTTP client for the remote authority.

    Args:
        config: Device configuration
        connectivity: Gate consulted before every request
        session: Optional requests session (injectable for tests)
    """

    def __init__(
        self,
        config: Config,
        connectivity: ConnectivityMonitor,
        session: Optional[requests.Session] = None
    ):
        self.config = config
        self.connectivity = connectivity
        self.session = session or requests.Session()
        self.base_url = config.backend_url.rstrip('/')

        self.session.headers.update({'Accept': 'application/json'})
        if config.device_token:
            self.session.headers.update({'x-device-token': config.device_token})

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def fetch_mapping(self) -> RemoteResult:
        """
        Fetch the full slot mapping.

        Returns:
            RemoteResult with a list of MappingEntry as payload on success
        """
        result = self._request('GET', '/mapping')
        if not result.ok:
            return result

        try:
            entries = [MappingEntry.from_wire(item) for item in result.payload]
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f'❌ Invalid mapping payload: {e}')
            return RemoteResult(RemoteStatus.REJECTED, status_code=result.status_code, detail=str(e))

        logger.info(f'Fetched {len(entries)} slot mappings from backend')
        return RemoteResult(RemoteStatus.SUCCESS, entries, result.status_code)

    def resolve_primary_id(self, slot_id: int) -> RemoteResult:
        """
        Resolve one slot id to its primary user id.

        Returns:
            RemoteResult with an int payload, or NOT_FOUND if the slot is unmapped
        """
        result = self._request('GET', '/mapping', params={'sensorId': slot_id})
        if not result.ok:
            return result

        try:
            primary_id = (result.payload or {}).get('primaryUserId')
            primary_id = int(primary_id) if primary_id is not None else None
        except (AttributeError, TypeError, ValueError) as e:
            logger.error(f'❌ Invalid resolution payload for slot {slot_id}: {e}')
            return RemoteResult(RemoteStatus.REJECTED, status_code=result.status_code, detail=str(e))

        if not primary_id:
            return RemoteResult(RemoteStatus.NOT_FOUND, status_code=result.status_code)

        logger.debug(f'Backend resolved slot {slot_id} -> {primary_id}')
        return RemoteResult(RemoteStatus.SUCCESS, primary_id, result.status_code)

    def allocate_primary_id(self) -> RemoteResult:
        """
        Pick the first primary id the backend reports as unused.

        The backend answers with the ids already in use; candidates are
        1..slot_capacity-1.

        Returns:
            RemoteResult with an int payload, or EXHAUSTED when no id is free
        """
        result = self._request('GET', '/next-id')
        if not result.ok:
            return result

        payload = result.payload
        if isinstance(payload, dict):
            payload = payload.get('usedIds', [])

        try:
            used = {int(value) for value in payload or []}
        except (TypeError, ValueError) as e:
            logger.error(f'❌ Invalid used-id payload: {e}')
            return RemoteResult(RemoteStatus.REJECTED, status_code=result.status_code, detail=str(e))

        for candidate in range(1, self.config.slot_capacity):
            if candidate not in used:
                logger.info(f'Allocated primary id {candidate}')
                return RemoteResult(RemoteStatus.SUCCESS, candidate, result.status_code)

        logger.warning('No free primary ids left')
        return RemoteResult(RemoteStatus.EXHAUSTED, status_code=result.status_code)

    def push_attendance(self, record: AttendanceRecord) -> RemoteResult:
        """
        Deliver one attendance record.

        Args:
            record: Resolved attendance record
        """
        logger.debug(
            f'📤 Sending attendance for user {record.primary_user_id} '
            f'at {record.timestamp_unix}'
        )
        result = self._request('POST', '/attendance', json=record.to_wire())
        if result.ok:
            logger.info('✅ Attendance delivered')
        return result

    def push_enrollment_complete(self, primary_id: int, slot_ids: List[int]) -> RemoteResult:
        """
        Report the slots enrolled for a primary identity.

        Args:
            primary_id: Allocated primary user id
            slot_ids: Slots that now hold a template for that identity
        """
        payload = {
            'primaryUserId': primary_id,
            'enrolledSensorIds': list(slot_ids),
            'timestamp': unix_now(),
        }
        logger.info(f'📤 Reporting enrollment of user {primary_id} on slots {list(slot_ids)}')
        return self._request('POST', '/enrollment', json=payload)

    def request_full_erase(self) -> RemoteResult:
        """Ask the backend to clear its mapping and attendance history."""
        logger.warning('📤 Requesting full erase on backend')
        return self._request('POST', '/clear')

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None
    ) -> RemoteResult:
        if not self.connectivity.is_connected():
            logger.debug(f'Skipping {method} {path}: backend unreachable')
            return RemoteResult(RemoteStatus.UNREACHABLE, detail='offline')

        url = f'{self.base_url}{path}'

        try:
            response = self.session.request(
                method,
                url,
                params=params,
                json=json,
                timeout=self.config.request_timeout_seconds,
            )
        except requests.exceptions.Timeout:
            logger.error(f'❌ Timeout calling {method} {path}')
            self.connectivity.mark_disconnected()
            return RemoteResult(RemoteStatus.UNREACHABLE, detail='timeout')
        except requests.exceptions.ConnectionError:
            logger.error(f'❌ Connection error calling {method} {path}')
            self.connectivity.mark_disconnected()
            return RemoteResult(RemoteStatus.UNREACHABLE, detail='connection error')
        except requests.exceptions.RequestException as e:
            logger.error(f'❌ Error calling {method} {path}: {e}')
            return RemoteResult(RemoteStatus.REJECTED, detail=str(e))

        if response.status_code == 404:
            return RemoteResult(RemoteStatus.NOT_FOUND, status_code=404)

        if not response.ok:
            logger.error(f'❌ {method} {path} failed: {response.status_code} {response.text}')
            return RemoteResult(
                RemoteStatus.REJECTED,
                status_code=response.status_code,
                detail=response.text,
            )

        payload = None
        if response.content:
            try:
                payload = response.json()
            except ValueError as e:
                logger.error(f'❌ {method} {path} returned invalid JSON: {e}')
                return RemoteResult(
                    RemoteStatus.REJECTED,
                    status_code=response.status_code,
                    detail='invalid json',
                )

        return RemoteResult(RemoteStatus.SUCCESS, payload, response.status_code)
