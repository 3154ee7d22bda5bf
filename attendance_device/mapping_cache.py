"""
Identity mapping cache.

Maps device-local biometric slot ids to primary user ids. The in-memory
table is mirrored to a JSON record array after every mutation so the last
known mapping survives power loss and serves lookups while offline.
"""

import json
import os
import threading
from typing import Dict, Iterable, List, Optional

from .errors import CapacityExhausted, StorageUnavailable
from .logging_config import get_logger
from .models import MappingEntry
from .utils.atomic import atomic_write_text, discard_stale

logger = get_logger(__name__)


class IdentityMappingCache:
    """
    Slot id -> primary user id table with a persistent mirror.

    Slot ids are unique keys; one primary id may own several slots.
    """

    def __init__(self, path: str, capacity: int):
        """
        Args:
            path: Mirror file (JSON array of {sensorId, primaryUserId})
            capacity: Number of slots on the capture device
        """
        self.path = path
        self.capacity = capacity
        self._table: Dict[int, int] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._table)

    def lookup(self, slot_id: int) -> Optional[int]:
        """
        Return the primary id for a slot, or None if unmapped.
        """
        with self._lock:
            return self._table.get(slot_id)

    def slots_for(self, primary_id: int) -> List[int]:
        with self._lock:
            return sorted(slot for slot, pid in self._table.items() if pid == primary_id)

    def entries(self) -> List[MappingEntry]:
        with self._lock:
            return [MappingEntry(slot, pid) for slot, pid in sorted(self._table.items())]

    def upsert(self, slot_id: int, primary_id: int) -> None:
        """
        Insert or overwrite the mapping for one slot, then persist.

        Raises:
            CapacityExhausted: If the slot is outside the device range or the table is full
            StorageUnavailable: If the mirror could not be written
        """
        if not 0 <= slot_id < self.capacity:
            raise CapacityExhausted(f'Slot {slot_id} outside device capacity {self.capacity}')

        with self._lock:
            if slot_id not in self._table and len(self._table) >= self.capacity:
                raise CapacityExhausted(f'Mapping table full ({self.capacity} slots)')

            previous = self._table.get(slot_id)
            self._table[slot_id] = primary_id
            if previous == primary_id:
                logger.debug(f'Slot {slot_id} already mapped to {primary_id}')
            elif previous is not None:
                logger.info(f'Slot {slot_id} remapped {previous} -> {primary_id}')
            else:
                logger.info(f'Slot {slot_id} mapped to {primary_id}')
            self.persist()

    def replace_all(self, entries: Iterable[MappingEntry]) -> None:
        """
        Swap the whole table for ``entries`` (after a full remote fetch), then persist.

        Out-of-range slots are skipped; for duplicate slots the last entry wins.

        Raises:
            StorageUnavailable: If the mirror could not be written
        """
        fresh: Dict[int, int] = {}
        for entry in entries:
            if not 0 <= entry.local_slot_id < self.capacity:
                logger.warning(
                    f'Ignoring mapping for slot {entry.local_slot_id}: '
                    f'outside device capacity {self.capacity}'
                )
                continue
            if entry.local_slot_id in fresh:
                logger.warning(f'Duplicate mapping for slot {entry.local_slot_id}, keeping last')
            fresh[entry.local_slot_id] = entry.primary_user_id

        with self._lock:
            self._table = fresh
            logger.info(f'Mapping table replaced ({len(fresh)} entries)')
            self.persist()

    def clear(self) -> None:
        """Drop every mapping, then persist the empty table."""
        with self._lock:
            self._table = {}
            self.persist()

    def persist(self) -> None:
        """
        Write the full table to the mirror file.

        Raises:
            StorageUnavailable: If the file could not be written
        """
        with self._lock:
            payload = json.dumps([
                MappingEntry(slot, pid).to_wire()
                for slot, pid in sorted(self._table.items())
            ])
            try:
                os.makedirs(os.path.dirname(self.path) or '.', exist_ok=True)
                atomic_write_text(self.path, payload)
            except OSError as e:
                logger.error(f'❌ Failed to persist mapping table: {e}')
                raise StorageUnavailable(self.path, str(e)) from e

    def restore(self) -> int:
        """
        Load the last persisted table into memory.

        A missing mirror yields an empty table, and so does a corrupt one
        (logged, so the device keeps running on remote resolution).

        Returns:
            Number of entries restored

        Raises:
            StorageUnavailable: If the mirror exists but cannot be read
        """
        discard_stale(f'{self.path}.tmp')

        if not os.path.exists(self.path):
            logger.debug('Mapping file not found, starting empty')
            with self._lock:
                self._table = {}
            return 0

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                raw = f.read()
        except OSError as e:
            logger.error(f'❌ Failed to read mapping table: {e}')
            raise StorageUnavailable(self.path, str(e)) from e

        table: Dict[int, int] = {}
        try:
            for item in json.loads(raw or '[]'):
                entry = MappingEntry.from_wire(item)
                if 0 <= entry.local_slot_id < self.capacity:
                    table[entry.local_slot_id] = entry.primary_user_id
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f'❌ Mapping table is corrupt, starting empty: {e}')
            table = {}

        with self._lock:
            self._table = table

        logger.info(f'Restored {len(table)} slot mappings')
        return len(table)
