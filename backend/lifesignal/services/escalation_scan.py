"""
Escalation scan orchestrator.

One invocation:
1. Checks that telephony is configured (a scan without it is a
   configuration error, not an empty run).
2. Loads one page of users with check-ins enabled.
3. Runs the escalation state machine for each user in isolation.
4. Persists each non-empty patch as a merge-update of the user record.

A failure while handling one user is logged and the scan moves on.
Store failures on the initial user query propagate to the caller.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from lifesignal.core.config import Settings
from lifesignal.core.database import SupabaseRepository
from lifesignal.core.exceptions import ConfigurationError
from lifesignal.services.escalation import EscalationStateMachine
from lifesignal.services.notifications import NotificationDispatcher


logger = logging.getLogger(__name__)


@dataclass
class ScanSummary:
    """Result of one scan pass."""
    processed: List[str] = field(default_factory=list)
    telnyx_calls_queued: int = 0
    escalations_queued: int = 0
    due_esc_processed: int = 0
    users_scanned: int = 0
    failed_users: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Response shape of the scan endpoint."""
        return {
            "ok": True,
            "processed": self.processed,
            "telnyxCallsQueued": self.telnyx_calls_queued,
            "escalationsQueued": self.escalations_queued,
            "dueEscProcessed": self.due_esc_processed,
        }


class EscalationScanner:
    """Runs the escalation state machine over every monitored user."""

    def __init__(
        self,
        repository: SupabaseRepository,
        dispatcher: NotificationDispatcher,
        settings: Settings
    ):
        self.repository = repository
        self.dispatcher = dispatcher
        self.settings = settings
        self.state_machine = EscalationStateMachine(
            repository=repository,
            dispatcher=dispatcher,
            connection_id=settings.telnyx_application_id,
            from_number=settings.telnyx_from_number,
        )

    async def run(
        self,
        cooldown_min: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> ScanSummary:
        """
        Execute one scan pass.

        `cooldown_min` is accepted for compatibility with existing callers
        and only logged; pacing is governed by per-user notification
        settings.
        """
        if not self.settings.telnyx_api_key:
            raise ConfigurationError(
                "TELNYX_API_KEY is not set",
                config_key="telnyx_api_key"
            )

        now = now or datetime.now(timezone.utc)
        logger.info(f"Escalation scan started at {now.isoformat()} (cooldownMin={cooldown_min})")

        users = self.repository.find_due_users(self.settings.scan_page_size)
        summary = ScanSummary(users_scanned=len(users))

        for user in users:
            user_id = user.get("id")
            if not user_id:
                continue

            try:
                outcome = await self.state_machine.evaluate(user, now)
                summary.telnyx_calls_queued += outcome.calls_placed
                if outcome.changed:
                    self.repository.patch_user(str(user_id), outcome.updates)
                    summary.processed.append(str(user_id))
            except Exception as e:
                logger.exception(f"Escalation failed for user {user_id}: {e}")
                summary.failed_users.append(str(user_id))
                continue

        summary.escalations_queued = summary.telnyx_calls_queued

        logger.info(
            f"Escalation scan finished: {summary.users_scanned} users scanned, "
            f"{len(summary.processed)} updated, {summary.telnyx_calls_queued} calls queued, "
            f"{len(summary.failed_users)} failed"
        )
        return summary
