"""
Service wiring.

Everything with a network dependency (store client, Telnyx, FCM) is built
once here at startup and handed to the services that need it. Tests build
a container around a mock store instead.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from lifesignal.core.config import Settings
from lifesignal.core.database import SupabaseRepository, create_repository
from lifesignal.services.escalation_scan import EscalationScanner
from lifesignal.services.notifications import NotificationDispatcher
from lifesignal.services.push import FcmPushTransport
from lifesignal.services.telephony import TelnyxClient


logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Process-wide service instances."""
    settings: Settings
    repository: SupabaseRepository
    dispatcher: NotificationDispatcher
    scanner: EscalationScanner


def build_services(
    settings: Settings,
    repository: Optional[SupabaseRepository] = None,
    push_transport: Optional[FcmPushTransport] = None,
    telephony: Optional[TelnyxClient] = None
) -> ServiceContainer:
    """Build the service graph; explicit arguments override the defaults."""
    repository = repository or create_repository(settings)
    push_transport = push_transport or FcmPushTransport.from_settings(settings)
    telephony = telephony or TelnyxClient.from_settings(settings)

    dispatcher = NotificationDispatcher(
        repository=repository,
        push_transport=push_transport,
        telephony=telephony,
    )
    scanner = EscalationScanner(repository, dispatcher, settings)

    logger.info(
        f"Services ready (push: {push_transport is not None}, "
        f"telephony: {telephony is not None}, calls: {settings.calls_enabled})"
    )
    return ServiceContainer(
        settings=settings,
        repository=repository,
        dispatcher=dispatcher,
        scanner=scanner,
    )


def get_services(request: Request) -> ServiceContainer:
    """FastAPI dependency: the container built in the app lifespan."""
    return request.app.state.services
