# Services - Business Logic Layer
"""
Life Signal Services Module.

This module provides the core business logic for:
- Notification policy resolution
- Emergency contact selection and profile sync
- Push and call delivery
- The missed check-in escalation state machine and its scan
- Telnyx webhook handling
- Background job scheduling
"""

# Notification Policy
from .notification_config import (
    MainNotificationConfig,
    ContactNotificationConfig,
    normalize_notification_mode,
    coerce_number,
    resolve_main_notification_config,
    resolve_contact_notification_config,
)

# Check-in Clock
from .checkin_time import (
    to_datetime,
    get_checkin_interval,
    get_next_due_at,
    is_checkin_overdue,
    compute_safety_status,
)

# Emergency Contacts
from .contacts import (
    is_e164,
    get_active_emergency_contacts,
    get_primary_emergency_contact,
    get_active_emergency_contact_uids,
    sync_contact_profile,
    ProfileSyncResult,
)

# Notification Delivery
from .push import FcmPushTransport, PushNotification, PushDelivery
from .telephony import TelnyxClient, ALERT_SCRIPT
from .notifications import NotificationDispatcher, PushResult

# Escalation
from .escalation import (
    EscalationCycle,
    EscalationOutcome,
    EscalationStateMachine,
)
from .escalation_scan import EscalationScanner, ScanSummary

# Telnyx Webhooks
from .telephony_webhook import (
    TelnyxEvent,
    WebhookResult,
    parse_telnyx_event,
    handle_telnyx_event,
)

# Background Job Scheduler
from .scheduler import JobFailureMonitor, LifeSignalScheduler


__all__ = [
    # Notification Policy
    "MainNotificationConfig",
    "ContactNotificationConfig",
    "normalize_notification_mode",
    "coerce_number",
    "resolve_main_notification_config",
    "resolve_contact_notification_config",

    # Check-in Clock
    "to_datetime",
    "get_checkin_interval",
    "get_next_due_at",
    "is_checkin_overdue",
    "compute_safety_status",

    # Emergency Contacts
    "is_e164",
    "get_active_emergency_contacts",
    "get_primary_emergency_contact",
    "get_active_emergency_contact_uids",
    "sync_contact_profile",
    "ProfileSyncResult",

    # Notification Delivery
    "FcmPushTransport",
    "PushNotification",
    "PushDelivery",
    "TelnyxClient",
    "ALERT_SCRIPT",
    "NotificationDispatcher",
    "PushResult",

    # Escalation
    "EscalationCycle",
    "EscalationOutcome",
    "EscalationStateMachine",
    "EscalationScanner",
    "ScanSummary",

    # Telnyx Webhooks
    "TelnyxEvent",
    "WebhookResult",
    "parse_telnyx_event",
    "handle_telnyx_event",

    # Scheduler
    "JobFailureMonitor",
    "LifeSignalScheduler",
]
