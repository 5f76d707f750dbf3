"""
Channel-layer transport for the dispatch engine.

A session id is the Channels channel name of a connected consumer. Events
are delivered as ``dispatch.event`` messages, which consumers forward to
their socket in ``dispatch_event``.
"""

import logging
from typing import Any, Dict

from channels.layers import get_channel_layer

from services.transport import Transport

logger = logging.getLogger(__name__)


class ChannelLayerTransport(Transport):

    def __init__(self, channel_layer=None):
        self._channel_layer = channel_layer

    @property
    def channel_layer(self):
        if self._channel_layer is None:
            self._channel_layer = get_channel_layer()
        return self._channel_layer

    async def send(self, session_id: str, event: str, payload: Dict[str, Any]) -> None:
        if self.channel_layer is None:
            logger.warning("No channel layer configured; dropping %s", event)
            return
        await self.channel_layer.send(session_id, {
            "type": "dispatch.event",
            "event": event,
            "payload": payload,
        })
