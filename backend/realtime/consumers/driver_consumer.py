"""Driver WebSocket consumer for location updates, ride offers and trip status."""

import logging
from typing import Dict, Any, Optional, Tuple
from urllib.parse import parse_qs

from rides.serializers import LocationUpdateSerializer, RequestIdSerializer, StatusUpdateSerializer
from services.transport import DRIVER

from .base import BaseConsumer

logger = logging.getLogger(__name__)


class DriverConsumer(BaseConsumer):
    """
    WebSocket consumer for drivers.

    Connect with an optional ``?lat=..&lng=..`` to publish the initial
    position.

    Handles:
        - location-update {lat, lng, heading?, speed_kph?}
        - accept {request_id}
        - decline {request_id}
        - status-update {request_id, status, fare?}
    """

    role = DRIVER

    async def on_connect(self):
        if not await self.engine.is_driver(self.user_id):
            await self.send_error("unauthorized", "This endpoint is for drivers only")
            await self.close()
            return

        availability = await self.engine.driver_connected(
            self.user_id,
            self.channel_name,
            position=self._initial_position(),
        )
        self.registered = True

        await self.send_success(
            "connection_established",
            user_id=self.user_id,
            role=self.role,
            availability=availability,
            message="Driver connected successfully",
        )

    async def on_disconnect(self, close_code):
        await self.engine.driver_disconnected(self.user_id, self.channel_name)
        logger.info("Driver %s disconnected (code=%s)", self.user_id, close_code)

    def _initial_position(self) -> Optional[Tuple[float, float]]:
        query = parse_qs(self.scope.get("query_string", b"").decode())
        try:
            lat = float(query["lat"][0])
            lng = float(query["lng"][0])
        except (KeyError, IndexError, ValueError):
            return None
        if not (-90 <= lat <= 90 and -180 <= lng <= 180):
            return None
        return lat, lng

    async def handle_message(self, msg_type: str, data: Dict[str, Any]):
        """Handle driver-specific messages."""

        if msg_type == "location-update":
            payload = self.validate(LocationUpdateSerializer, data)
            await self.engine.location_update(
                self.user_id,
                payload["lat"],
                payload["lng"],
                heading=payload.get("heading"),
                speed_kph=payload.get("speed_kph"),
            )
        elif msg_type == "accept":
            payload = self.validate(RequestIdSerializer, data)
            # outcome is pushed as ride-accepted-confirm or ride-already-accepted
            await self.engine.accept(self.user_id, payload["request_id"])
        elif msg_type == "decline":
            payload = self.validate(RequestIdSerializer, data)
            result = await self.engine.decline(self.user_id, payload["request_id"])
            await self.send_success(
                "decline-ack",
                request_id=payload["request_id"],
                success=result.success,
                message=result.message,
            )
        elif msg_type == "status-update":
            payload = self.validate(StatusUpdateSerializer, data)
            fare = payload.get("fare")
            await self.engine.status_update(
                self.user_id,
                payload["request_id"],
                payload["status"],
                fare=float(fare) if fare is not None else None,
            )
        else:
            await self.send_error("validation_error", f"Unknown message type: {msg_type}")
