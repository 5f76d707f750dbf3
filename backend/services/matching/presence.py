"""
Driver presence registry.

Keeps each driver's last-known position, availability and transport
session in a process-local table, written through to the store's
heartbeat rows. Records are independent, so updates for one driver
never wait on another.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, Iterator, Optional, Tuple

from django.utils import timezone

from services.storage import UNSET, Availability, DispatchStore, PresenceRecord

logger = logging.getLogger(__name__)


class PresenceRegistry:

    def __init__(
        self,
        store: DispatchStore,
        liveness_window: float = 60.0,
        clock: Callable[[], datetime] = timezone.now,
    ):
        self._store = store
        self._liveness = timedelta(seconds=liveness_window)
        self._clock = clock
        self._table: Dict[int, PresenceRecord] = {}

    def load(self, records: Iterable[PresenceRecord]) -> None:
        """Seed the table from persisted heartbeats (engine start)."""
        for record in records:
            self._table[record.driver_id] = record

    async def upsert(
        self,
        driver_id: int,
        position: Optional[Tuple[float, float]] = None,
        availability: Optional[str] = None,
        session_id=UNSET,
    ) -> PresenceRecord:
        """
        Update the given fields of a driver's presence and refresh last-seen.

        The heartbeat row is written first; the in-memory record only changes
        once the write succeeded.
        """
        now = self._clock()
        lat, lng = position if position is not None else (None, None)
        await self._store.upsert_presence(
            driver_id,
            lat=lat,
            lng=lng,
            availability=availability,
            session_id=session_id,
            last_seen=now,
        )

        record = self._table.get(driver_id)
        if record is None:
            record = PresenceRecord(driver_id=driver_id)
            self._table[driver_id] = record
        if position is not None:
            record.lat, record.lng = float(lat), float(lng)
        if availability is not None:
            record.availability = availability
        if session_id is not UNSET:
            record.session_id = session_id
        record.last_seen = now
        return record

    async def set_availability(self, driver_id: int, availability: str) -> PresenceRecord:
        return await self.upsert(driver_id, availability=availability)

    async def mark_offline(self, driver_id: int) -> PresenceRecord:
        logger.info("Driver %s marked offline", driver_id)
        return await self.upsert(driver_id, availability=Availability.OFFLINE, session_id=None)

    def reserve(self, driver_id: int) -> Optional[str]:
        """
        Mark a driver busy in memory only, without yielding.

        Returns the availability it replaced so a failed write can hand it
        back through ``restore``.
        """
        record = self._table.get(driver_id)
        if record is None:
            return None
        previous = record.availability
        record.availability = Availability.BUSY
        return previous

    def restore(self, driver_id: int, availability: Optional[str]) -> None:
        record = self._table.get(driver_id)
        if record is not None and availability is not None and record.availability == Availability.BUSY:
            record.availability = availability

    def get(self, driver_id: int) -> Optional[PresenceRecord]:
        return self._table.get(driver_id)

    def is_live(self, record: PresenceRecord, now: Optional[datetime] = None) -> bool:
        if record.last_seen is None:
            return False
        now = now or self._clock()
        return now - record.last_seen <= self._liveness

    def is_available(self, driver_id: int, now: Optional[datetime] = None) -> bool:
        """Available means status ``available`` and a heartbeat inside the liveness window."""
        record = self._table.get(driver_id)
        return (
            record is not None
            and record.availability == Availability.AVAILABLE
            and self.is_live(record, now)
        )

    def all_available(self, now: Optional[datetime] = None) -> Iterator[PresenceRecord]:
        now = now or self._clock()
        for record in list(self._table.values()):
            if (
                record.availability == Availability.AVAILABLE
                and record.position is not None
                and self.is_live(record, now)
            ):
                yield record

    def prune(self, now: Optional[datetime] = None) -> int:
        """Drop stale entries that no longer have a connected session."""
        now = now or self._clock()
        stale = [
            driver_id for driver_id, record in self._table.items()
            if record.session_id is None and not self.is_live(record, now)
        ]
        for driver_id in stale:
            del self._table[driver_id]
        if stale:
            logger.debug("Pruned %d stale presence entries", len(stale))
        return len(stale)

    def __len__(self):
        return len(self._table)
