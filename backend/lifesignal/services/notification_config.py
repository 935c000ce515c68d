"""
Notification policy resolution.

Turns the raw, possibly partial settings stored on a user record
(`main_notification`, `push_only_count`, `push_then_call_count`) or on an
emergency contact link (`notification_settings`) into fully defaulted,
typed policies. Pure functions: no store access, no side effects.
"""
import math
import re
from dataclasses import dataclass
from typing import Any, Optional

from lifesignal.models.enums import NotificationMode


# Defaults from the product settings screen
MAIN_DEFAULTS = {
    "push_interval_min": 10,
    "push_batch_size": 1,
    "call_delay_min": 20,
    "push_only_count": 3,
    "push_then_call_count": 3,
}

CONTACT_DEFAULTS = {
    "push_interval_min": 10,
    "push_batch_size": 3,
    "call_delay_min": 20,
    "escalation_delay_min": 30,
}

DEFAULT_MODE = NotificationMode.PUSH_PLUS_CALL

# Free-text spellings used by the dashboard, after lowercasing and
# stripping whitespace
_MODE_ALIASES = {
    "pushonly": NotificationMode.PUSH_ONLY,
    "push_only": NotificationMode.PUSH_ONLY,
    "push+call": NotificationMode.PUSH_PLUS_CALL,
    "pushandcall": NotificationMode.PUSH_PLUS_CALL,
    "push_plus_call": NotificationMode.PUSH_PLUS_CALL,
    "callonly": NotificationMode.CALL_ONLY,
    "call_only": NotificationMode.CALL_ONLY,
    "call": NotificationMode.CALL_ONLY,
}

_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class MainNotificationConfig:
    """Policy for notifying the monitored user themselves."""
    mode: NotificationMode
    push_interval_min: float
    push_batch_size: int
    call_delay_min: float
    push_only_count: int  # Push rounds before stopping (PUSH_ONLY)
    push_then_call_count: int  # Push rounds before calling (PUSH_PLUS_CALL)


@dataclass(frozen=True)
class ContactNotificationConfig:
    """Policy for notifying an emergency contact."""
    mode: NotificationMode
    push_interval_min: float
    push_batch_size: int
    call_delay_min: float
    escalation_delay_min: float  # Minutes into the missed cycle before contacts are involved


def normalize_notification_mode(
    raw: Any,
    fallback: NotificationMode = DEFAULT_MODE
) -> NotificationMode:
    """
    Normalize a free-text mode ("Push only", "Push+call", "Call", ...).

    Matching ignores case and whitespace. Anything unrecognized, empty or
    not a string resolves to `fallback`.
    """
    if isinstance(raw, NotificationMode):
        return raw
    if not raw or not isinstance(raw, str):
        return fallback

    key = _WHITESPACE.sub("", raw).lower()
    return _MODE_ALIASES.get(key, fallback)


def coerce_number(value: Any, default: float) -> float:
    """
    Coerce a stored value to a finite number.

    Missing, boolean, non-numeric, NaN and infinite values become
    `default`. Zero and negative numbers are returned unchanged.
    """
    if value is None or isinstance(value, bool):
        return default

    if isinstance(value, str):
        value = value.strip()
        if not value:
            return default

    try:
        number = float(value)
    except (TypeError, ValueError):
        return default

    if not math.isfinite(number):
        return default
    return number


def coerce_int(value: Any, default: int) -> int:
    """Same as `coerce_number`, truncated to an integer (round counts, batch sizes)."""
    return int(coerce_number(value, default))


def _settings_dict(raw: Optional[Any]) -> dict:
    return raw if isinstance(raw, dict) else {}


def resolve_main_notification_config(user: Optional[dict]) -> MainNotificationConfig:
    """
    Resolve the main user's notification policy.

    Expected record shape:
        users.main_notification = {
            "mode": "Push only" | "Push+call" | "Call",
            "push_interval_min": 10,
            "push_batch_size": 1,
            "call_delay_min": 20
        }
        users.push_only_count = 3
        users.push_then_call_count = 3
    """
    user = _settings_dict(user)
    cfg = _settings_dict(user.get("main_notification"))

    return MainNotificationConfig(
        mode=normalize_notification_mode(cfg.get("mode")),
        push_interval_min=coerce_number(
            cfg.get("push_interval_min"), MAIN_DEFAULTS["push_interval_min"]
        ),
        push_batch_size=coerce_int(
            cfg.get("push_batch_size"), MAIN_DEFAULTS["push_batch_size"]
        ),
        call_delay_min=coerce_number(
            cfg.get("call_delay_min"), MAIN_DEFAULTS["call_delay_min"]
        ),
        push_only_count=coerce_int(
            user.get("push_only_count"), MAIN_DEFAULTS["push_only_count"]
        ),
        push_then_call_count=coerce_int(
            user.get("push_then_call_count"), MAIN_DEFAULTS["push_then_call_count"]
        ),
    )


def resolve_contact_notification_config(link: Optional[dict]) -> ContactNotificationConfig:
    """
    Resolve an emergency contact's policy from its link record.

    Expected record shape:
        emergency_contacts.notification_settings = {
            "mode": "Push only" | "Push+call" | "Call",
            "push_interval_min": 10,
            "push_batch_size": 3,
            "call_delay_min": 20,
            "escalation_delay_min": 30
        }
    """
    link = _settings_dict(link)
    cfg = _settings_dict(link.get("notification_settings"))

    return ContactNotificationConfig(
        mode=normalize_notification_mode(cfg.get("mode")),
        push_interval_min=coerce_number(
            cfg.get("push_interval_min"), CONTACT_DEFAULTS["push_interval_min"]
        ),
        push_batch_size=coerce_int(
            cfg.get("push_batch_size"), CONTACT_DEFAULTS["push_batch_size"]
        ),
        call_delay_min=coerce_number(
            cfg.get("call_delay_min"), CONTACT_DEFAULTS["call_delay_min"]
        ),
        escalation_delay_min=coerce_number(
            cfg.get("escalation_delay_min"), CONTACT_DEFAULTS["escalation_delay_min"]
        ),
    )
