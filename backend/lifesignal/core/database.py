"""
Supabase store access for Life Signal.

The escalation services only talk to the store through `SupabaseRepository`,
a narrow interface over four tables:

- users: monitored people, their policy fields and escalation-cycle state
- emergency_contacts: contact links, one row per (user, contact) pair
- devices: FCM registrations per user
- notifications: in-app notifications

Features:
- Merge-style patches (only the changed columns are sent)
- Write batches grouped per table, rotated before the batch ceiling
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from supabase import create_client, Client

from .config import Settings
from .exceptions import DatabaseError


logger = logging.getLogger(__name__)

USERS_TABLE = "users"
CONTACTS_TABLE = "emergency_contacts"
DEVICES_TABLE = "devices"
NOTIFICATIONS_TABLE = "notifications"

# Commit well before the 500-operation ceiling
BATCH_ROTATE_THRESHOLD = 450


def _execute(query: Any, table: str, operation: str) -> Any:
    """Run a PostgREST query, wrapping transport errors as DatabaseError."""
    try:
        return query.execute()
    except Exception as e:
        raise DatabaseError(
            f"Failed to {operation} {table}",
            table=table,
            operation=operation,
            original_error=str(e)
        ) from e


@dataclass
class WriteBatch:
    """
    Collects row writes and commits them grouped per table.

    Updates are sent as plain `UPDATE ... WHERE id = ...`, one per row, so a
    partial row never goes through an insert path and a row deleted since
    it was read stays deleted. Inserts go out as one bulk insert per table.
    """
    client: Client
    updates: dict[str, list[tuple[str, dict]]] = field(default_factory=dict)
    inserts: dict[str, list[dict]] = field(default_factory=dict)
    count: int = 0

    def update(self, table: str, row_id: str, fields: dict[str, Any]) -> None:
        """Queue a partial update of one row."""
        self.updates.setdefault(table, []).append((row_id, dict(fields)))
        self.count += 1

    def insert(self, table: str, row: dict[str, Any]) -> None:
        """Queue a new row."""
        self.inserts.setdefault(table, []).append(row)
        self.count += 1

    def commit(self) -> int:
        """Write everything queued. Returns the number of operations committed."""
        committed = self.count

        for table, rows in self.updates.items():
            for row_id, fields in rows:
                _execute(
                    self.client.table(table).update(fields).eq("id", row_id),
                    table,
                    "batch update"
                )

        for table, rows in self.inserts.items():
            _execute(self.client.table(table).insert(rows), table, "batch insert")

        self.updates = {}
        self.inserts = {}
        self.count = 0
        return committed


class SupabaseRepository:
    """
    Repository over the Supabase tables used by the escalation services.

    Constructed once at process start and passed to the services that need
    it; nothing in the service layer reaches for a global client.
    """

    def __init__(self, client: Client):
        self._client = client

    @property
    def client(self) -> Client:
        """Get the underlying Supabase client."""
        return self._client

    # ==========================================
    # USERS
    # ==========================================

    def find_due_users(self, page_size: int) -> list[dict]:
        """
        Fetch one page of users with check-ins enabled.

        Whether a user is actually overdue depends on per-user intervals,
        so that filter is applied by the escalation state machine.
        """
        response = _execute(
            self.client.table(USERS_TABLE)
            .select("*")
            .eq("checkin_enabled", True)
            .limit(page_size),
            USERS_TABLE,
            "select"
        )
        return response.data or []

    def get_user(self, user_id: str) -> Optional[dict]:
        """Fetch a single user record."""
        response = _execute(
            self.client.table(USERS_TABLE).select("*").eq("id", user_id).limit(1),
            USERS_TABLE,
            "select"
        )
        return response.data[0] if response.data else None

    def patch_user(self, user_id: str, fields: dict[str, Any]) -> None:
        """Merge `fields` into the user record; other columns are untouched."""
        if not fields:
            return
        _execute(
            self.client.table(USERS_TABLE).update(fields).eq("id", user_id),
            USERS_TABLE,
            "update"
        )

    # ==========================================
    # EMERGENCY CONTACT LINKS
    # ==========================================

    def find_active_contacts(self, user_id: str) -> list[dict]:
        """All ACTIVE contact links owned by `user_id` (unfiltered, unsorted)."""
        response = _execute(
            self.client.table(CONTACTS_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .eq("status", "ACTIVE"),
            CONTACTS_TABLE,
            "select"
        )
        return response.data or []

    def find_links_by_contact_identity(self, contact_id: str) -> list[dict]:
        """Every link, across all users, that points at one contact identity."""
        response = _execute(
            self.client.table(CONTACTS_TABLE)
            .select("*")
            .eq("emergency_contact_uid", contact_id),
            CONTACTS_TABLE,
            "select"
        )
        return response.data or []

    # ==========================================
    # DEVICES
    # ==========================================

    def get_device_tokens(self, user_id: str) -> list[str]:
        """Distinct non-empty FCM tokens registered for a user."""
        response = _execute(
            self.client.table(DEVICES_TABLE).select("*").eq("user_id", user_id),
            DEVICES_TABLE,
            "select"
        )
        tokens = []
        for row in response.data or []:
            # Older app builds registered the token under "token"
            token = row.get("fcm_token") or row.get("token")
            if isinstance(token, str) and token.strip():
                tokens.append(token.strip())
        return list(dict.fromkeys(tokens))

    # ==========================================
    # BATCHED WRITES
    # ==========================================

    def batch(self) -> WriteBatch:
        """Start a new write batch."""
        return WriteBatch(client=self.client)

    def commit_or_rotate(self, batch: WriteBatch) -> WriteBatch:
        """Commit and hand back a fresh batch once the threshold is reached."""
        if batch.count >= BATCH_ROTATE_THRESHOLD:
            committed = batch.commit()
            logger.debug(f"Rotated write batch after {committed} operations")
            return self.batch()
        return batch


def create_repository(settings: Settings) -> SupabaseRepository:
    """Build the repository from settings (called once at startup)."""
    client = create_client(settings.supabase_url, settings.supabase_key)
    return SupabaseRepository(client)
