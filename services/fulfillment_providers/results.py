"""
Value types exchanged between fulfillment providers and the router.
"""
from dataclasses import dataclass, field, asdict, is_dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from utils.timestamps import to_iso


class FulfillmentErrorCode(str, Enum):
    INVALID_ITEM = "INVALID_ITEM"
    API_ERROR = "API_ERROR"
    INSUFFICIENT_INVENTORY = "INSUFFICIENT_INVENTORY"
    INVALID_ADDRESS = "INVALID_ADDRESS"
    PAYMENT_REQUIRED = "PAYMENT_REQUIRED"
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    GENERATION_FAILED = "GENERATION_FAILED"
    NETWORK_ERROR = "NETWORK_ERROR"
    UNKNOWN = "UNKNOWN"


class FulfillmentError(Exception):
    """Raised inside a provider; converted to a failed FulfillmentResult at its boundary."""
    def __init__(self, code: FulfillmentErrorCode, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_details(self) -> Dict[str, Any]:
        return {"code": self.code.value, **self.details}


def _jsonable(value):
    if isinstance(value, datetime):
        return to_iso(value)
    if isinstance(value, Enum):
        return value.value
    if is_dataclass(value):
        return _jsonable(asdict(value))
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


@dataclass
class DownloadGrant:
    """A time-limited download authorization for one (order item, image) pair."""
    order_item_id: str
    download_url: str
    format: str
    expires_at: datetime
    file_size: int
    file_name: str
    quality: str = "original"

    def to_dict(self) -> Dict[str, Any]:
        return _jsonable(self)


@dataclass
class FulfillmentResult:
    success: bool
    fulfillment_id: Optional[str] = None
    tracking_info: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    error_details: Optional[Dict[str, Any]] = None
    provider: Optional[str] = None

    @classmethod
    def failed(cls, error, code=FulfillmentErrorCode.UNKNOWN, provider=None, **details):
        return cls(
            success=False,
            error=error,
            error_details={"code": code.value, **details},
            provider=provider,
        )

    @property
    def error_code(self) -> Optional[str]:
        return (self.error_details or {}).get("code")

    def to_dict(self) -> Dict[str, Any]:
        return _jsonable(self)


@dataclass
class FulfillmentStatus:
    status: str  # pending | processing | fulfilled | failed
    tracking_info: Dict[str, Any] = field(default_factory=dict)
    status_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _jsonable(self)


def grants_from_tracking(result: FulfillmentResult) -> List[DownloadGrant]:
    """Download grants attached to a digital delivery result (empty for other providers)."""
    return list((result.tracking_info or {}).get("download_urls") or [])
