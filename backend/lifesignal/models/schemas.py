"""
Pydantic schemas for wire payloads and API responses.
"""
import base64
import binascii
import json
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError

from lifesignal.core.exceptions import ClientStateError
from .enums import SafetyStatus


# ==========================================
# TELEPHONY CLIENT STATE
# ==========================================

class ClientState(BaseModel):
    """
    Correlation payload embedded in every outbound call.

    Telnyx echoes it back (base64-encoded JSON) on each webhook for the
    call leg, which is how a DTMF acknowledgement finds its user.
    """
    main_user_uid: str = Field(..., alias="mainUserUid", min_length=1)
    emergency_contact_uid: Optional[str] = Field(None, alias="emergencyContactUid")
    reason: Optional[str] = None  # CallReason value

    class Config:
        populate_by_name = True

    def encode(self) -> str:
        """Serialize to the base64 form Telnyx expects."""
        raw = json.dumps(self.model_dump(by_alias=True))
        return base64.b64encode(raw.encode("utf-8")).decode("ascii")

    @classmethod
    def decode(cls, raw: str) -> "ClientState":
        """Parse a base64 client_state; raises ClientStateError when malformed."""
        try:
            decoded = base64.b64decode(raw, validate=True).decode("utf-8")
            data = json.loads(decoded)
            if not isinstance(data, dict):
                raise ValueError("client_state is not a JSON object")
            return cls.model_validate(data)
        except (binascii.Error, UnicodeDecodeError, ValidationError, ValueError, TypeError) as e:
            raise ClientStateError(f"Failed to decode client_state: {e}", raw_value=raw) from e


# ==========================================
# API SCHEMAS
# ==========================================

class ScanResponse(BaseModel):
    """Summary returned by the manual scan trigger."""
    ok: bool = True
    processed: list[str] = []
    telnyx_calls_queued: int = Field(0, alias="telnyxCallsQueued")
    escalations_queued: int = Field(0, alias="escalationsQueued")
    due_esc_processed: int = Field(0, alias="dueEscProcessed")

    class Config:
        populate_by_name = True


class ProfileSyncRequest(BaseModel):
    """A contact's profile before and after a change."""
    before: dict[str, Any] = Field(default_factory=dict)
    after: Optional[dict[str, Any]] = Field(
        None,
        description="New profile; omit when the profile was deleted"
    )


class SafetyStatusResponse(BaseModel):
    """Check-in status of a single user."""
    user_id: str
    status: SafetyStatus
    next_due_at: Optional[datetime] = None
    missed_started_at: Optional[datetime] = None
    last_escalation_acknowledged_at: Optional[datetime] = None
