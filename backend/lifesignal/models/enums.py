"""
Enum types shared by the escalation services and the API layer.
Values are the strings stored in Supabase and sent over the wire.
"""
from enum import Enum


class NotificationMode(str, Enum):
    """
    How a user or emergency contact is notified during a missed check-in.
    """
    PUSH_ONLY = "PUSH_ONLY"  # Push rounds only, never a call
    PUSH_PLUS_CALL = "PUSH_PLUS_CALL"  # Push rounds, then a call
    CALL_ONLY = "CALL_ONLY"  # Call straight away


class ContactStatus(str, Enum):
    """Emergency contact link status."""
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    DECLINED = "DECLINED"
    REMOVED = "REMOVED"


class CallReason(str, Enum):
    """Reason tag embedded in a call's client_state."""
    MAIN_USER_MISSED_CHECKIN = "main_user_missed_checkin"
    ESCALATION = "escalation"


class PushType(str, Enum):
    """`type` field of the push data payload."""
    MISSED_CHECKIN_MAIN_USER = "missed_checkin_main_user"
    ESCALATION_EMERGENCY_CONTACT = "escalation_emergency_contact"


class SafetyStatus(str, Enum):
    """Check-in status shown on the dashboard."""
    SAFE = "safe"
    MISSED = "missed"
    UNKNOWN = "unknown"


class TelnyxEventType(str, Enum):
    """Telnyx Call Control webhook events handled by the service."""
    CALL_ANSWERED = "call.answered"
    CALL_DTMF_RECEIVED = "call.dtmf.received"
