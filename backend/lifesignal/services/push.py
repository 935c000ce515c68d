"""
Firebase Cloud Messaging transport (HTTP v1).

FCM v1 has no multicast endpoint, so a "message" to a set of devices is
one request per token. The OAuth2 access token is minted from the service
account once and refreshed when FCM answers 401/403.
"""
import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import httpx
from google.auth.transport.requests import Request as GoogleAuthRequest
from google.oauth2 import service_account

from lifesignal.core.config import Settings


logger = logging.getLogger(__name__)

FCM_SCOPE = "https://www.googleapis.com/auth/firebase.messaging"
FCM_URL = "https://fcm.googleapis.com/v1/projects/{project_id}/messages:send"

_INVALID_TOKEN_MARKERS = (
    "unregistered",
    "registration-token-not-registered",
    "invalid registration token",
    "requested entity was not found",
)


@dataclass
class PushNotification:
    """Visible part of a push message."""
    title: str
    body: str


@dataclass
class PushDelivery:
    """Per-message delivery counts."""
    success_count: int = 0
    failure_count: int = 0
    invalid_tokens: List[str] = field(default_factory=list)


def is_invalid_token_response(response_text: str) -> bool:
    """FCM error bodies that mean the device token is dead."""
    lowered = (response_text or "").lower()
    return any(marker in lowered for marker in _INVALID_TOKEN_MARKERS)


class FcmPushTransport:
    """Sends one notification to a list of device tokens."""

    def __init__(
        self,
        service_account_info: dict,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.service_account_info = service_account_info
        self.project_id = service_account_info["project_id"]
        self.timeout = timeout
        self._transport = transport
        self._access_token: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> Optional["FcmPushTransport"]:
        """Build the transport, or None when credentials are absent or unusable."""
        if not settings.firebase_service_account_json:
            logger.warning("FCM service account not configured - push disabled")
            return None
        try:
            info = json.loads(settings.firebase_service_account_json)
        except ValueError as e:
            logger.error(f"Invalid FIREBASE_SERVICE_ACCOUNT_JSON: {e}")
            return None
        if not isinstance(info, dict) or not info.get("project_id"):
            logger.error("FIREBASE_SERVICE_ACCOUNT_JSON missing project_id")
            return None
        return cls(info, timeout=settings.request_timeout_seconds)

    def _mint_access_token(self) -> str:
        """Blocking token refresh (run in an executor)."""
        credentials = service_account.Credentials.from_service_account_info(
            self.service_account_info,
            scopes=[FCM_SCOPE],
        )
        credentials.refresh(GoogleAuthRequest())
        if not credentials.token:
            raise RuntimeError("Unable to mint FCM access token")
        return credentials.token

    async def _get_access_token(self, refresh: bool = False) -> str:
        if self._access_token is None or refresh:
            loop = asyncio.get_running_loop()
            self._access_token = await loop.run_in_executor(None, self._mint_access_token)
        return self._access_token

    async def _post_message(
        self,
        client: httpx.AsyncClient,
        token: str,
        notification: PushNotification,
        data: Dict[str, str],
        access_token: str
    ) -> httpx.Response:
        message: dict = {
            "token": token,
            "notification": {"title": notification.title, "body": notification.body},
        }
        if data:
            message["data"] = data
        return await client.post(
            FCM_URL.format(project_id=self.project_id),
            json={"message": message},
            headers={
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
            },
        )

    async def send(
        self,
        tokens: List[str],
        notification: PushNotification,
        data: Dict[str, str]
    ) -> PushDelivery:
        """Send one message to every token. Transport errors count as failures."""
        delivery = PushDelivery()
        access_token = await self._get_access_token()

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for token in tokens:
                try:
                    response = await self._post_message(client, token, notification, data, access_token)
                    if response.status_code in (401, 403):
                        access_token = await self._get_access_token(refresh=True)
                        response = await self._post_message(client, token, notification, data, access_token)
                except httpx.HTTPError as e:
                    logger.error(f"FCM request failed: {e}")
                    delivery.failure_count += 1
                    continue

                if response.status_code >= 400:
                    delivery.failure_count += 1
                    if is_invalid_token_response(response.text):
                        delivery.invalid_tokens.append(token)
                    else:
                        logger.error(f"FCM send failed: {response.status_code} {response.text[:200]}")
                    continue

                delivery.success_count += 1

        return delivery
