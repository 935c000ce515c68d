# Data models - Enums and Pydantic Schemas
from .enums import (
    NotificationMode,
    ContactStatus,
    CallReason,
    PushType,
    SafetyStatus,
    TelnyxEventType,
)
from .schemas import (
    ClientState,
    ScanResponse,
    ProfileSyncRequest,
    SafetyStatusResponse,
)

__all__ = [
    # Enums
    "NotificationMode",
    "ContactStatus",
    "CallReason",
    "PushType",
    "SafetyStatus",
    "TelnyxEventType",
    # Wire payloads
    "ClientState",
    # API Schemas
    "ScanResponse",
    "ProfileSyncRequest",
    "SafetyStatusResponse",
]
