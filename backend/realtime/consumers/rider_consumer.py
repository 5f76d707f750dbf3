"""Rider WebSocket consumer for ride requests and ride notifications."""

import logging
from typing import Dict, Any

from rides.serializers import (
    FareEstimateInputSerializer,
    NearbyDriversInputSerializer,
    RequestIdSerializer,
    RideRequestInputSerializer,
)
from services.transport import RIDER

from .base import BaseConsumer

logger = logging.getLogger(__name__)


class RiderConsumer(BaseConsumer):
    """
    WebSocket consumer for riders.

    Handles:
        - ride-request {pickup, dropoff, tier?}
        - cancel {request_id}
        - fare-estimate {pickup, dropoff}
        - nearby-drivers {lat, lng, radius_km?}

    Ride progress (searching, accepted, status updates, summary) arrives as
    events pushed by the dispatch engine.
    """

    role = RIDER

    async def on_connect(self):
        await self.engine.rider_connected(self.user_id, self.channel_name)
        self.registered = True

        await self.send_success(
            "connection_established",
            user_id=self.user_id,
            role=self.role,
            message="Rider connected successfully",
        )

    async def on_disconnect(self, close_code):
        await self.engine.rider_disconnected(self.user_id, self.channel_name)

    async def handle_message(self, msg_type: str, data: Dict[str, Any]):
        """Handle rider-specific messages."""

        if msg_type == "ride-request":
            payload = self.validate(RideRequestInputSerializer, data)
            await self.engine.request_ride(
                self.user_id,
                dict(payload["pickup"]),
                dict(payload["dropoff"]),
                tier=payload.get("tier"),
            )
        elif msg_type == "cancel":
            payload = self.validate(RequestIdSerializer, data)
            await self.engine.cancel(self.user_id, payload["request_id"])
        elif msg_type == "fare-estimate":
            payload = self.validate(FareEstimateInputSerializer, data)
            estimates = self.engine.fare_estimate(dict(payload["pickup"]), dict(payload["dropoff"]))
            await self.send_success("fare-estimate", **estimates)
        elif msg_type == "nearby-drivers":
            payload = self.validate(NearbyDriversInputSerializer, data)
            drivers = self.engine.nearby(
                {"lat": payload["lat"], "lng": payload["lng"]},
                radius_km=payload.get("radius_km"),
            )
            await self.send_success("nearby-drivers", drivers=drivers)
        else:
            await self.send_error("validation_error", f"Unknown message type: {msg_type}")
