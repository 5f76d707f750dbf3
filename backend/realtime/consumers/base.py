"""Base WebSocket consumer with shared functionality for all consumers."""

import logging
from typing import Dict, Any, Optional

from channels.generic.websocket import AsyncJsonWebsocketConsumer
from rest_framework import serializers

from realtime.engine import get_dispatch_engine
from services.ride_management.exceptions import DispatchError

logger = logging.getLogger(__name__)


class BaseConsumer(AsyncJsonWebsocketConsumer):
    """
    Base consumer with shared connection management and helper methods.

    The consumer's channel name is its session id in the dispatch engine.

    Subclasses should override:
        - on_connect(): register with the engine
        - on_disconnect(close_code): unregister from the engine
        - handle_message(msg_type, data): handle incoming messages
    """

    role: Optional[str] = None

    async def connect(self):
        self.user = self.scope.get("user")
        self.registered = False

        if self.user is None or self.user.is_anonymous:
            await self.close()
            return

        # Basic attributes available to all consumers
        self.user_id = getattr(self.user, "id", None)
        self.engine = get_dispatch_engine()

        await self.accept()
        await self.on_connect()

    async def on_connect(self):
        """Override in subclass for custom connect logic."""
        await self.send_success("connection_established", user_id=self.user_id, role=self.role)

    async def disconnect(self, close_code):
        if not getattr(self, "registered", False):
            return
        try:
            await self.on_disconnect(close_code)
        except Exception:
            logger.exception("Error during disconnect for user %s", getattr(self, 'user_id', 'unknown'))

    async def on_disconnect(self, close_code):
        """Override in subclass for custom disconnect logic."""
        pass

    async def receive_json(self, data: Dict[str, Any]):
        """Route incoming messages to appropriate handlers."""
        msg_type = data.get("type") if isinstance(data, dict) else None
        if not msg_type:
            await self.send_error("validation_error", "Message type is required")
            return

        try:
            await self.handle_message(msg_type, data)
        except DispatchError as e:
            await self.send_error(e.code, e.message)
        except serializers.ValidationError as e:
            await self.send_error("validation_error", f"Invalid {msg_type} payload", details=e.detail)
        except Exception:
            logger.exception("Error handling message type %s", msg_type)
            await self.send_error("internal_error", f"Error processing {msg_type}")

    async def handle_message(self, msg_type: str, data: Dict[str, Any]):
        """Override in subclass to handle specific message types."""
        await self.send_error("validation_error", f"Unknown message type: {msg_type}")

    def validate(self, serializer_class, data: Dict[str, Any]) -> Dict[str, Any]:
        """Validate an inbound payload, raising DRF's ValidationError."""
        serializer = serializer_class(data=data)
        serializer.is_valid(raise_exception=True)
        return serializer.validated_data

    # ---------------------- Response Helpers ----------------------

    async def send_error(self, code: str, message: str, **kwargs):
        """Send an error message to the client."""
        await self.send_json({
            "type": "error",
            "code": code,
            "message": message,
            **kwargs,
        })

    async def send_success(self, event_type: str, **kwargs):
        """Send a success response to the client."""
        await self.send_json({
            "type": event_type,
            **kwargs,
        })

    # ---------------------- Engine Event Handler ----------------------

    async def dispatch_event(self, event):
        """Forward an event pushed by the dispatch engine to the client."""
        await self.send_json({
            "type": event["event"],
            **(event.get("payload") or {}),
        })
