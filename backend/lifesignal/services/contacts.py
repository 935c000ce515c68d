"""
Emergency contact selection and profile sync.

Selection ranks a user's ACTIVE contact links for round-robin fairness:
fewest notifications in the current window first, oldest link on ties.
The first entry is the primary contact for an escalation cycle.

Profile sync copies a contact's own profile changes onto every link that
references them, across all users they are a contact for.
"""
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, List, Optional

from lifesignal.core.database import (
    CONTACTS_TABLE,
    NOTIFICATIONS_TABLE,
    SupabaseRepository,
)
from lifesignal.services.checkin_time import EPOCH, to_datetime, to_iso
from lifesignal.services.notification_config import coerce_number


logger = logging.getLogger(__name__)

# Telnyx-friendly E.164: "+" followed by 7-14 digits
E164_PATTERN = re.compile(r"^\+[0-9]{7,14}$")

PROFILE_FIELDS = (
    "first_name",
    "last_name",
    "email",
    "phone",
    "relationship",
    "photo_url",
)


def is_e164(phone: Any) -> bool:
    """Check that a phone number is in dialable E.164 form."""
    if not phone or not isinstance(phone, str):
        return False
    return bool(E164_PATTERN.match(phone))


def _ranking_key(link: dict) -> tuple:
    sent_count = coerce_number(link.get("sent_count_in_window"), 0)
    created_at = to_datetime(link.get("created_at")) or EPOCH
    return (sent_count, created_at)


def get_active_emergency_contacts(
    repository: SupabaseRepository,
    user_id: str
) -> List[dict]:
    """
    ACTIVE contact links with a valid E.164 phone, ranked for fairness.

    Sorted ascending by `sent_count_in_window`, then by `created_at`
    (oldest first). Returns an empty list when nobody qualifies.
    """
    links = repository.find_active_contacts(user_id)
    contacts = [link for link in links if is_e164(link.get("phone"))]
    contacts.sort(key=_ranking_key)

    if not contacts:
        logger.warning(f"No ACTIVE emergency contact with valid E.164 phone for user {user_id}")

    return contacts


def get_primary_emergency_contact(
    repository: SupabaseRepository,
    user_id: str
) -> Optional[dict]:
    """The contact escalated to this cycle, if any."""
    contacts = get_active_emergency_contacts(repository, user_id)
    return contacts[0] if contacts else None


def get_active_emergency_contact_uids(
    repository: SupabaseRepository,
    user_id: str
) -> List[str]:
    """
    Distinct contact identities among ACTIVE links, for push fan-out.

    Not limited to the primary contact and not filtered on phone validity:
    a contact without a dialable number can still receive pushes.
    """
    uids = []
    for link in repository.find_active_contacts(user_id):
        uid = link.get("emergency_contact_uid")
        if isinstance(uid, str) and uid.strip():
            uids.append(uid)
    return list(dict.fromkeys(uids))


# ==========================================
# PROFILE SYNC
# ==========================================

@dataclass
class ProfileSyncResult:
    """Outcome of syncing one contact's profile onto their links."""
    contact_uid: str
    links_updated: int = 0
    notifications_created: int = 0
    user_ids: List[str] = field(default_factory=list)
    skipped_reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "contact_uid": self.contact_uid,
            "links_updated": self.links_updated,
            "notifications_created": self.notifications_created,
            "user_ids": self.user_ids,
            "skipped_reason": self.skipped_reason,
        }


def _full_name(profile: dict) -> str:
    return f"{profile.get('first_name') or ''} {profile.get('last_name') or ''}".strip()


def sync_contact_profile(
    repository: SupabaseRepository,
    contact_uid: str,
    before: Optional[dict],
    after: Optional[dict],
    now: Optional[datetime] = None
) -> ProfileSyncResult:
    """
    Propagate a contact's profile change to every link referencing them.

    Only the watched profile fields matter. When the phone number changed,
    the link's dialable `phone` is updated too and each owning user gets a
    `contact_updated` in-app notification.
    """
    result = ProfileSyncResult(contact_uid=contact_uid)
    before = before or {}

    if not after:
        result.skipped_reason = "deleted"
        return result

    if all(before.get(k) == after.get(k) for k in PROFILE_FIELDS):
        result.skipped_reason = "unchanged"
        return result

    phone_changed = before.get("phone") != after.get("phone")
    now_iso = to_iso(now or datetime.now(timezone.utc))
    watched = {k: after.get(k) for k in PROFILE_FIELDS}
    full_name = _full_name(after)

    links = repository.find_links_by_contact_identity(contact_uid)
    batch = repository.batch()
    user_ids = []

    for link in links:
        profile = dict(link.get("profile") or {})
        profile.update(watched)

        patch = {"profile": profile, "updated_at": now_iso}
        if phone_changed:
            patch["phone"] = after.get("phone")

        batch.update(CONTACTS_TABLE, link["id"], patch)
        result.links_updated += 1
        batch = repository.commit_or_rotate(batch)

        user_id = link.get("user_id")
        if not user_id:
            continue
        user_ids.append(user_id)

        if phone_changed:
            batch.insert(NOTIFICATIONS_TABLE, {
                "user_id": user_id,
                "type": "contact_updated",
                "title": "Emergency contact updated",
                "body": f"{full_name or 'An emergency contact'} updated their phone number.",
                "data": {"contact_uid": contact_uid, "contact_name": full_name},
                "read": False,
                "created_at": now_iso,
            })
            result.notifications_created += 1
            batch = repository.commit_or_rotate(batch)

    if batch.count:
        batch.commit()

    result.user_ids = list(dict.fromkeys(user_ids))
    logger.info(
        f"Synced profile of contact {contact_uid} to {result.links_updated} links "
        f"({len(result.user_ids)} users)"
    )
    return result
