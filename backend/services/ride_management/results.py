from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class RideResult:
    """Result object for ride and trip operations."""
    success: bool
    ride: Optional[Any] = None
    message: str = ""
    error_code: Optional[str] = None
    extra: Optional[Dict[str, Any]] = None
