"""
Test helpers for Life Signal.

Recording stand-ins for the push and telephony transports, so tests can
assert on exactly what would have been sent.
"""
from typing import Dict, List, Optional

from lifesignal.core.exceptions import CallPlacementError
from lifesignal.models.schemas import ClientState
from lifesignal.services.push import PushDelivery, PushNotification


class RecordingPushTransport:
    """Records every send() and reports all tokens as delivered."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[Dict] = []

    async def send(
        self,
        tokens: List[str],
        notification: PushNotification,
        data: Dict[str, str]
    ) -> PushDelivery:
        if self.fail:
            raise RuntimeError("FCM unavailable")
        self.sent.append({
            "tokens": list(tokens),
            "title": notification.title,
            "body": notification.body,
            "data": dict(data),
        })
        return PushDelivery(success_count=len(tokens))

    def rounds_of_type(self, push_type: str) -> List[Dict]:
        return [m for m in self.sent if m["data"].get("type") == push_type]


class RecordingTelephony:
    """Records calls and speak actions; numbers in `failing_numbers` are rejected."""

    def __init__(self, failing_numbers: Optional[set] = None):
        self.failing_numbers = failing_numbers or set()
        self.calls: List[Dict] = []
        self.spoken: List[Dict] = []
        self.fail_speak = False

    async def create_call(
        self,
        to_phone: str,
        from_phone: str,
        connection_id: str,
        client_state: str
    ) -> str:
        if to_phone in self.failing_numbers:
            raise CallPlacementError("Telnyx rejected call: 422", to_phone=to_phone, provider_status=422)
        self.calls.append({
            "to": to_phone,
            "from": from_phone,
            "connection_id": connection_id,
            "client_state": ClientState.decode(client_state),
        })
        return f"call-{len(self.calls)}"

    async def speak(self, call_control_id: str, text: str) -> None:
        if self.fail_speak:
            raise RuntimeError("speak failed")
        self.spoken.append({"call_control_id": call_control_id, "text": text})

    def calls_with_reason(self, reason: str) -> List[Dict]:
        return [c for c in self.calls if c["client_state"].reason == reason]
