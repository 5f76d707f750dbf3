"""Process-wide dispatch engine used by the WebSocket consumers."""

import logging
from typing import Optional

from django.conf import settings
from django.utils.module_loading import import_string

from services.matching.config import DispatchConfig
from services.ride_management.engine import DispatchEngine

from .notifications import ChannelLayerTransport

logger = logging.getLogger(__name__)

DEFAULT_STORE = "rides.store.DjangoDispatchStore"

_engine: Optional[DispatchEngine] = None


def get_dispatch_engine() -> DispatchEngine:
    """Build the engine on first use from ``settings.DISPATCH``."""
    global _engine
    if _engine is None:
        store_path = getattr(settings, "DISPATCH", {}).get("STORE", DEFAULT_STORE)
        store = import_string(store_path)()
        _engine = DispatchEngine(store, ChannelLayerTransport(), DispatchConfig.from_settings())
        logger.info("Dispatch engine created with %s", store_path)
    return _engine


def reset_dispatch_engine() -> None:
    """Forget the current engine (tests, settings changes)."""
    global _engine
    _engine = None
