"""
User API Routes for Life Signal.

Read-only views used by the dashboard: a user's check-in status and the
contacts an escalation would reach right now.
"""
from fastapi import APIRouter, Depends, Path

from lifesignal.core.container import ServiceContainer, get_services
from lifesignal.core.exceptions import ResourceNotFoundError
from lifesignal.models.schemas import SafetyStatusResponse
from lifesignal.services.checkin_time import (
    compute_safety_status,
    get_checkin_interval,
    get_next_due_at,
    to_datetime,
)
from lifesignal.services.contacts import get_active_emergency_contacts


router = APIRouter(prefix="/api/users", tags=["Users"])


def _load_user(services: ServiceContainer, user_id: str) -> dict:
    user = services.repository.get_user(user_id)
    if not user:
        raise ResourceNotFoundError(
            f"User {user_id} not found",
            resource_type="user",
            resource_id=user_id
        )
    return user


@router.get(
    "/{user_id}/safety-status",
    response_model=SafetyStatusResponse,
    summary="Get Safety Status"
)
async def get_safety_status(
    user_id: str = Path(..., description="User ID"),
    services: ServiceContainer = Depends(get_services)
):
    """Whether the user is safe, has missed a check-in, or never checked in."""
    user = _load_user(services, user_id)
    interval = get_checkin_interval(user)
    last_checkin_at = user.get("last_checkin_at")

    return SafetyStatusResponse(
        user_id=user_id,
        status=compute_safety_status(last_checkin_at, interval),
        next_due_at=get_next_due_at(last_checkin_at, interval),
        missed_started_at=to_datetime(user.get("missed_started_at")),
        last_escalation_acknowledged_at=to_datetime(user.get("last_escalation_acknowledged_at")),
    )


@router.get(
    "/{user_id}/emergency-contacts/active",
    summary="Get Active Emergency Contacts"
)
async def get_active_contacts(
    user_id: str = Path(..., description="User ID"),
    services: ServiceContainer = Depends(get_services)
) -> dict:
    """
    Active contacts in escalation order.

    The first entry is the primary contact for the next missed check-in.
    """
    _load_user(services, user_id)
    contacts = get_active_emergency_contacts(services.repository, user_id)

    return {
        "user_id": user_id,
        "count": len(contacts),
        "contacts": [
            {
                "id": link.get("id"),
                "emergency_contact_uid": link.get("emergency_contact_uid"),
                "phone": link.get("phone"),
                "sent_count_in_window": link.get("sent_count_in_window") or 0,
                "created_at": link.get("created_at"),
                "is_primary": index == 0,
            }
            for index, link in enumerate(contacts)
        ],
    }
