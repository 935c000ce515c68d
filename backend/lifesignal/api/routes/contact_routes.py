"""
Emergency contact API Routes for Life Signal.
"""
from fastapi import APIRouter, Depends, Path

from lifesignal.core.container import ServiceContainer, get_services
from lifesignal.models.schemas import ProfileSyncRequest
from lifesignal.services.contacts import sync_contact_profile


router = APIRouter(prefix="/api/contacts", tags=["Contacts"])


@router.post(
    "/{contact_uid}/profile-sync",
    summary="Sync Contact Profile",
    description="Copy a contact's profile change onto every link that references them"
)
async def sync_profile(
    body: ProfileSyncRequest,
    contact_uid: str = Path(..., description="Emergency contact identity"),
    services: ServiceContainer = Depends(get_services)
) -> dict:
    result = sync_contact_profile(
        services.repository,
        contact_uid,
        before=body.before,
        after=body.after,
    )
    return result.to_dict()
