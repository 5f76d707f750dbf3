"""
Transport contract between the dispatch core and connected clients.

The core only needs to push an event to a session and to look up the
session currently bound to a rider or driver. Delivery is best-effort.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

DRIVER = "driver"
RIDER = "rider"


class Transport(ABC):

    @abstractmethod
    async def send(self, session_id: str, event: str, payload: Dict[str, Any]) -> None:
        """Push ``event`` with ``payload`` to one session."""


class SessionRegistry:
    """
    Process-local bindings of party id to transport session.

    Riders and drivers live in separate maps. Bindings are created on
    connect and cleared on disconnect.
    """

    def __init__(self):
        self._sessions: Dict[str, Dict[int, str]] = {DRIVER: {}, RIDER: {}}

    def bind(self, role: str, party_id: int, session_id: str) -> None:
        self._sessions[role][party_id] = session_id

    def unbind(self, role: str, party_id: int, session_id: Optional[str] = None) -> bool:
        """
        Remove a binding. With ``session_id`` given, only remove it if it is
        still the bound session (a reconnect may already have replaced it).
        """
        current = self._sessions[role].get(party_id)
        if current is None:
            return False
        if session_id is not None and current != session_id:
            return False
        del self._sessions[role][party_id]
        return True

    def resolve(self, role: str, party_id: Optional[int]) -> Optional[str]:
        if party_id is None:
            return None
        return self._sessions[role].get(party_id)

    def count(self, role: str) -> int:
        return len(self._sessions[role])


class Notifier:
    """Resolves a party's session and sends to it, swallowing delivery errors."""

    def __init__(self, transport: Transport, sessions: SessionRegistry):
        self.transport = transport
        self.sessions = sessions

    async def send_session(self, session_id: Optional[str], event: str, payload: Dict[str, Any]) -> bool:
        if not session_id:
            return False
        try:
            await self.transport.send(session_id, event, payload)
            return True
        except Exception:
            logger.exception("Failed to deliver %s to session %s", event, session_id)
            return False

    async def to_driver(self, driver_id: int, event: str, payload: Dict[str, Any]) -> bool:
        session_id = self.sessions.resolve(DRIVER, driver_id)
        if session_id is None:
            logger.debug("Driver %s has no session for %s", driver_id, event)
        return await self.send_session(session_id, event, payload)

    async def to_rider(self, rider_id: int, event: str, payload: Dict[str, Any]) -> bool:
        session_id = self.sessions.resolve(RIDER, rider_id)
        if session_id is None:
            logger.debug("Rider %s has no session for %s", rider_id, event)
        return await self.send_session(session_id, event, payload)
