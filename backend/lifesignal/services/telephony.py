"""
Telnyx Call Control client.

Only two actions are needed: dial out with a client_state payload, and
speak the alert script once the call is answered.
"""
import logging
from typing import Optional

import httpx

from lifesignal.core.config import Settings
from lifesignal.core.exceptions import CallPlacementError, mask_phone


logger = logging.getLogger(__name__)

ALERT_SCRIPT = (
    "This is an automated Life Signal alert. "
    "Please check on the user and press 1 to acknowledge."
)


class TelnyxClient:
    """Thin async wrapper over the Telnyx v2 REST API."""

    def __init__(
        self,
        api_key: str,
        api_base: str = "https://api.telnyx.com/v2",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.api_key = api_key
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> Optional["TelnyxClient"]:
        """Build a client, or None when no API key is configured."""
        if not settings.telnyx_api_key:
            logger.warning("Telnyx API key not configured - calls disabled")
            return None
        return cls(
            api_key=settings.telnyx_api_key,
            api_base=settings.telnyx_api_base,
            timeout=settings.request_timeout_seconds,
        )

    async def _post(self, path: str, payload: dict) -> httpx.Response:
        async with httpx.AsyncClient(
            base_url=self.api_base,
            timeout=self.timeout,
            transport=self._transport
        ) as client:
            return await client.post(
                path,
                json=payload,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json"
                }
            )

    async def create_call(
        self,
        to_phone: str,
        from_phone: str,
        connection_id: str,
        client_state: str
    ) -> Optional[str]:
        """
        Dial out. Returns the provider's call_control_id.

        Raises CallPlacementError unless Telnyx accepted the call.
        """
        try:
            response = await self._post("/calls", {
                "connection_id": connection_id,
                "to": to_phone,
                "from": from_phone,
                "client_state": client_state,
            })
        except httpx.HTTPError as e:
            raise CallPlacementError(
                "Telnyx call request failed",
                to_phone=to_phone,
                original_error=str(e)
            ) from e

        if response.status_code >= 300:
            raise CallPlacementError(
                f"Telnyx rejected call: {response.status_code}",
                to_phone=to_phone,
                provider_status=response.status_code,
                original_error=response.text[:500]
            )

        try:
            data = response.json().get("data") or {}
        except ValueError:
            data = {}

        call_control_id = data.get("call_control_id")
        logger.info(f"Telnyx call queued to {mask_phone(to_phone)} ({call_control_id})")
        return call_control_id

    async def speak(
        self,
        call_control_id: str,
        text: str = ALERT_SCRIPT,
        language: str = "en-US",
        voice: str = "female"
    ) -> None:
        """Speak `text` on an answered call leg."""
        response = await self._post(
            f"/calls/{call_control_id}/actions/speak",
            {"language": language, "voice": voice, "payload": text}
        )
        response.raise_for_status()
