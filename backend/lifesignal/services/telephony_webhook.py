"""
Telnyx webhook handling.

Telnyx posts call events for every leg we dialed. Two matter here:

- call.answered: speak the alert script on that leg.
- call.dtmf.received with digit "1": the person on the line acknowledged,
  so stamp `last_escalation_acknowledged_at` on the monitored user.

Bad client_state payloads and store write failures are logged and
swallowed; Telnyx retries non-2xx responses and a retry cannot fix either.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from lifesignal.core.database import SupabaseRepository
from lifesignal.core.exceptions import ClientStateError
from lifesignal.models.enums import TelnyxEventType
from lifesignal.models.schemas import ClientState
from lifesignal.services.checkin_time import to_iso
from lifesignal.services.notifications import NotificationDispatcher


logger = logging.getLogger(__name__)

ACKNOWLEDGE_DIGIT = "1"


@dataclass
class TelnyxEvent:
    """The parts of a Telnyx webhook this service reads."""
    event_type: Optional[str]
    call_control_id: Optional[str] = None
    client_state: Optional[str] = None
    digit: Optional[str] = None


@dataclass
class WebhookResult:
    """What handling one webhook did."""
    event_type: Optional[str]
    spoke: bool = False
    acknowledged_user: Optional[str] = None


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def parse_telnyx_event(body: Any) -> TelnyxEvent:
    """
    Pull the event out of a webhook body.

    Telnyx wraps the event as `data`; relays that forward it from a table
    insert wrap it once more as `data.record`. Payload fields may sit under
    `payload` or directly on the event.
    """
    body = _as_dict(body)
    data = _as_dict(body.get("data"))
    event = _as_dict(data.get("record")) or data or body

    payload = _as_dict(event.get("payload"))

    def pick(key: str) -> Optional[str]:
        value = payload.get(key, event.get(key))
        return str(value) if value is not None else None

    return TelnyxEvent(
        event_type=event.get("event_type") or event.get("type"),
        call_control_id=pick("call_control_id"),
        client_state=pick("client_state"),
        digit=pick("digit"),
    )


async def handle_telnyx_event(
    body: Any,
    repository: SupabaseRepository,
    dispatcher: NotificationDispatcher,
    now: Optional[datetime] = None
) -> WebhookResult:
    """
    Act on one webhook body.

    Only a failing speak action propagates; everything else returns
    normally so the provider gets a 2xx.
    """
    event = parse_telnyx_event(body)
    result = WebhookResult(event_type=event.event_type)
    logger.info(f"Telnyx webhook: {event.event_type} ({event.call_control_id})")

    if event.event_type == TelnyxEventType.CALL_ANSWERED.value:
        if event.call_control_id:
            await dispatcher.speak_alert(event.call_control_id)
            result.spoke = dispatcher.telephony is not None
        return result

    if event.event_type == TelnyxEventType.CALL_DTMF_RECEIVED.value:
        if event.digit != ACKNOWLEDGE_DIGIT:
            logger.debug(f"Ignoring DTMF digit {event.digit!r}")
            return result
        if not event.client_state:
            logger.warning("DTMF acknowledgement without client_state, ignoring")
            return result

        try:
            state = ClientState.decode(event.client_state)
        except ClientStateError as e:
            logger.error(f"Failed to decode client_state: {e.message}")
            return result

        acknowledged_at = to_iso(now or datetime.now(timezone.utc))
        try:
            repository.patch_user(
                state.main_user_uid,
                {"last_escalation_acknowledged_at": acknowledged_at}
            )
        except Exception as e:
            logger.error(f"Failed to record acknowledgement for user {state.main_user_uid}: {e}")
            return result

        result.acknowledged_user = state.main_user_uid
        logger.info(f"Escalation acknowledged for user {state.main_user_uid}")

    return result
