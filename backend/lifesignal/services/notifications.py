"""
Notification Dispatcher for Life Signal.

Two side effects with two different failure policies:
- Push batches are best-effort. Token lookup and delivery failures are
  logged and swallowed; the caller always gets counts back.
- Calls must be confirmed. A call the provider did not accept raises
  CallPlacementError so the caller never marks it as placed.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from lifesignal.core.database import SupabaseRepository
from lifesignal.core.exceptions import CallPlacementError, mask_phone
from lifesignal.models.schemas import ClientState
from lifesignal.services.push import FcmPushTransport, PushNotification
from lifesignal.services.telephony import ALERT_SCRIPT, TelnyxClient


# Configure logging
logger = logging.getLogger(__name__)


@dataclass
class PushResult:
    """Counts reported back for one push batch."""
    targets: int = 0
    tokens: int = 0
    rounds: int = 0
    sent: int = 0
    failed: int = 0

    @property
    def attempted(self) -> bool:
        return self.rounds > 0


class NotificationDispatcher:
    """
    Sends push batches and places calls on behalf of the escalation engine.

    Transports are injected; either may be None when not configured.
    """

    def __init__(
        self,
        repository: SupabaseRepository,
        push_transport: Optional[FcmPushTransport] = None,
        telephony: Optional[TelnyxClient] = None
    ):
        self.repository = repository
        self.push_transport = push_transport
        self.telephony = telephony

    def _resolve_tokens(self, targets: Iterable[str]) -> List[str]:
        tokens: List[str] = []
        for uid in targets:
            try:
                tokens.extend(self.repository.get_device_tokens(uid))
            except Exception as e:
                logger.error(f"Device token lookup failed for {uid}: {e}")
        return list(dict.fromkeys(tokens))

    async def send_push_batch(
        self,
        targets: Iterable[str],
        notification: PushNotification,
        data: Dict[str, str],
        count: int
    ) -> PushResult:
        """
        Push `notification` to every device of every target, `count` times.

        Each round is a separate message. Nothing is sent when no device
        token resolves. Never raises.
        """
        targets = list(dict.fromkeys(targets))
        result = PushResult(targets=len(targets))

        tokens = self._resolve_tokens(targets)
        result.tokens = len(tokens)
        if not tokens:
            logger.warning(f"No device tokens for push targets {targets}, push skipped")
            return result

        if self.push_transport is None:
            # Log instead of sending in environments without FCM credentials
            logger.warning(
                f"Push not configured. Would send '{notification.title}' "
                f"x{count} to {len(tokens)} devices"
            )
            return result

        for _ in range(max(count, 0)):
            result.rounds += 1
            try:
                delivery = await self.push_transport.send(tokens, notification, data)
            except Exception as e:
                logger.error(f"Push round failed for targets {targets}: {e}")
                result.failed += len(tokens)
                continue

            result.sent += delivery.success_count
            result.failed += delivery.failure_count
            if delivery.invalid_tokens:
                logger.warning(f"{len(delivery.invalid_tokens)} unregistered device tokens for {targets}")

        logger.info(
            f"Push batch for {targets}: {result.rounds} rounds, "
            f"{result.sent} delivered, {result.failed} failed"
        )
        return result

    async def place_call(
        self,
        to_phone: str,
        from_phone: str,
        connection_id: str,
        client_state: ClientState
    ) -> Optional[str]:
        """
        Place an outbound alert call.

        Returns the call_control_id. Raises CallPlacementError when the
        provider did not accept the call.
        """
        if self.telephony is None:
            raise CallPlacementError("Telephony is not configured", to_phone=to_phone)

        logger.info(
            f"Placing {client_state.reason} call to {mask_phone(to_phone)} "
            f"for user {client_state.main_user_uid}"
        )
        return await self.telephony.create_call(
            to_phone=to_phone,
            from_phone=from_phone,
            connection_id=connection_id,
            client_state=client_state.encode(),
        )

    async def speak_alert(self, call_control_id: str, text: str = ALERT_SCRIPT) -> None:
        """Speak the alert script on an answered call. Errors propagate."""
        if self.telephony is None:
            logger.warning("Telephony not configured, cannot speak on answered call")
            return
        await self.telephony.speak(call_control_id, text)
