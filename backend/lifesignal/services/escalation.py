"""
Escalation State Machine for Life Signal.

Decides, for one overdue user, which notification is due right now and
produces the patch of escalation-cycle fields to persist.

Two independent tracks share one clock (minutes since `missed_started_at`):

- Main-user track: push rounds to the user, then (PUSH_PLUS_CALL) a call,
  or a call straight away (CALL_ONLY).
- Contact track: once the escalation gate opens, pushes to all active
  contacts and/or a call to the primary contact.

The main track always runs first so the contact gate sees this pass's
round count. A miss cycle ends when the user checks in again; the next
pass sees `last_checkin_at > missed_started_at` and resets every field.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from lifesignal.core.database import SupabaseRepository
from lifesignal.core.exceptions import DatabaseError
from lifesignal.models.enums import CallReason, NotificationMode, PushType
from lifesignal.models.schemas import ClientState
from lifesignal.services.checkin_time import (
    is_checkin_overdue,
    minutes_between,
    to_datetime,
    to_iso,
)
from lifesignal.services.contacts import (
    get_active_emergency_contact_uids,
    get_primary_emergency_contact,
    is_e164,
)
from lifesignal.services.notification_config import (
    MainNotificationConfig,
    coerce_int,
    resolve_contact_notification_config,
    resolve_main_notification_config,
)
from lifesignal.services.notifications import NotificationDispatcher
from lifesignal.services.push import PushNotification


logger = logging.getLogger(__name__)

# Main-user rounds after which contacts are involved regardless of their delay
CONTACT_ESCALATION_ROUND_THRESHOLD = 3

PUSH_TITLE = "Life Signal: missed check-in"
MAIN_USER_PUSH_BODY = "You missed a scheduled check-in. Please open the app and check in."
CONTACT_PUSH_BODY = "{name} missed a check-in. Please check on them and acknowledge the alert."


@dataclass
class EscalationCycle:
    """Working copy of a user's escalation-cycle fields for one pass."""
    missed_started_at: Optional[datetime] = None
    main_notify_rounds: int = 0
    main_last_notified_at: Optional[datetime] = None
    main_call_placed: bool = False
    ec_notify_rounds: int = 0
    ec_last_notified_at: Optional[datetime] = None
    ec_call_placed: bool = False

    @classmethod
    def from_user(cls, user: dict) -> "EscalationCycle":
        return cls(
            missed_started_at=to_datetime(user.get("missed_started_at")),
            main_notify_rounds=coerce_int(user.get("main_notify_rounds"), 0),
            main_last_notified_at=to_datetime(user.get("main_last_notified_at")),
            main_call_placed=bool(user.get("main_call_placed")),
            ec_notify_rounds=coerce_int(user.get("ec_notify_rounds"), 0),
            ec_last_notified_at=to_datetime(user.get("ec_last_notified_at")),
            ec_call_placed=bool(user.get("ec_call_placed")),
        )

    def to_fields(self) -> Dict[str, Any]:
        """All cycle fields in store form."""
        return {
            "missed_started_at": to_iso(self.missed_started_at) if self.missed_started_at else None,
            "main_notify_rounds": self.main_notify_rounds,
            "main_last_notified_at": to_iso(self.main_last_notified_at) if self.main_last_notified_at else None,
            "main_call_placed": self.main_call_placed,
            "ec_notify_rounds": self.ec_notify_rounds,
            "ec_last_notified_at": to_iso(self.ec_last_notified_at) if self.ec_last_notified_at else None,
            "ec_call_placed": self.ec_call_placed,
        }


@dataclass
class EscalationOutcome:
    """What one pass did for one user, and the patch to persist."""
    user_id: str
    overdue: bool = False
    new_cycle: bool = False
    updates: Dict[str, Any] = field(default_factory=dict)
    main_push_rounds: int = 0
    contact_push_rounds: int = 0
    calls_placed: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.updates)


def push_round_due(
    rounds_sent: int,
    last_notified_at: Optional[datetime],
    interval_min: float,
    now: datetime
) -> bool:
    """First round fires immediately; later rounds wait `interval_min`."""
    if rounds_sent == 0 or last_notified_at is None:
        return True
    return minutes_between(now, last_notified_at) >= interval_min


def _display_name(user: dict) -> str:
    name = f"{user.get('first_name') or ''} {user.get('last_name') or ''}".strip()
    return name or "a user"


class EscalationStateMachine:
    """
    Evaluates one user per call to `evaluate`.

    Holds no per-user state between calls; each pass works on its own
    `EscalationCycle` copy.
    """

    def __init__(
        self,
        repository: SupabaseRepository,
        dispatcher: NotificationDispatcher,
        connection_id: Optional[str] = None,
        from_number: Optional[str] = None
    ):
        self.repository = repository
        self.dispatcher = dispatcher
        self.connection_id = connection_id
        self.from_number = from_number

    @property
    def calls_enabled(self) -> bool:
        return bool(self.connection_id and self.from_number)

    async def evaluate(self, user: dict, now: datetime) -> EscalationOutcome:
        """Run both tracks for one user and return the resulting patch."""
        user_id = str(user["id"])
        outcome = EscalationOutcome(user_id=user_id)

        if not is_checkin_overdue(user, now):
            return outcome
        outcome.overdue = True

        cycle = EscalationCycle.from_user(user)
        last_checkin_at = to_datetime(user.get("last_checkin_at"))

        # New miss, or the user checked in since the recorded miss started
        if cycle.missed_started_at is None or (
            last_checkin_at is not None and last_checkin_at > cycle.missed_started_at
        ):
            cycle = EscalationCycle(missed_started_at=now)
            outcome.new_cycle = True
            outcome.updates.update(cycle.to_fields())
            logger.info(f"Missed check-in cycle started for user {user_id}")

        elapsed_min = minutes_between(now, cycle.missed_started_at)

        main_cfg = resolve_main_notification_config(user)
        await self._run_main_track(user, cycle, main_cfg, now, outcome)
        await self._run_contact_track(user, cycle, elapsed_min, now, outcome)

        return outcome

    # ==========================================
    # MAIN-USER TRACK
    # ==========================================

    async def _run_main_track(
        self,
        user: dict,
        cycle: EscalationCycle,
        cfg: MainNotificationConfig,
        now: datetime,
        outcome: EscalationOutcome
    ) -> None:
        if cfg.mode == NotificationMode.CALL_ONLY:
            if not cycle.main_call_placed:
                await self._call_main_user(user, cycle, outcome)
            return

        round_cap = (
            cfg.push_only_count
            if cfg.mode == NotificationMode.PUSH_ONLY
            else cfg.push_then_call_count
        )

        # The call goes out on the pass after the final push round, never in
        # the same pass as a push
        if cfg.mode == NotificationMode.PUSH_PLUS_CALL and cycle.main_notify_rounds >= round_cap:
            if not cycle.main_call_placed:
                await self._call_main_user(user, cycle, outcome)
            return

        if cycle.main_notify_rounds < round_cap and push_round_due(
            cycle.main_notify_rounds, cycle.main_last_notified_at, cfg.push_interval_min, now
        ):
            await self.dispatcher.send_push_batch(
                [outcome.user_id],
                PushNotification(title=PUSH_TITLE, body=MAIN_USER_PUSH_BODY),
                {
                    "type": PushType.MISSED_CHECKIN_MAIN_USER.value,
                    "mainUserUid": outcome.user_id,
                },
                cfg.push_batch_size,
            )
            cycle.main_notify_rounds += 1
            cycle.main_last_notified_at = now
            outcome.updates["main_notify_rounds"] = cycle.main_notify_rounds
            outcome.updates["main_last_notified_at"] = to_iso(now)
            outcome.main_push_rounds += 1

    async def _call_main_user(
        self,
        user: dict,
        cycle: EscalationCycle,
        outcome: EscalationOutcome
    ) -> None:
        phone = user.get("phone")
        if not is_e164(phone) or not self.calls_enabled:
            logger.debug(f"Skipping call to user {outcome.user_id}: no valid phone or calls disabled")
            return

        client_state = ClientState(
            main_user_uid=outcome.user_id,
            emergency_contact_uid=None,
            reason=CallReason.MAIN_USER_MISSED_CHECKIN.value,
        )
        if await self._place_call(phone, client_state, outcome):
            cycle.main_call_placed = True
            outcome.updates["main_call_placed"] = True

    # ==========================================
    # CONTACT TRACK
    # ==========================================

    async def _run_contact_track(
        self,
        user: dict,
        cycle: EscalationCycle,
        elapsed_min: float,
        now: datetime,
        outcome: EscalationOutcome
    ) -> None:
        # Main-track progress made this pass must still be persisted
        try:
            primary = get_primary_emergency_contact(self.repository, outcome.user_id)
        except DatabaseError as e:
            self._skip_contact_track(outcome, e)
            return
        if primary is None:
            return

        cfg = resolve_contact_notification_config(primary)
        gate_open = (
            elapsed_min >= cfg.escalation_delay_min
            or cycle.main_notify_rounds >= CONTACT_ESCALATION_ROUND_THRESHOLD
        )
        if not gate_open:
            return

        if cfg.mode == NotificationMode.CALL_ONLY:
            if not cycle.ec_call_placed:
                await self._call_contact(primary, cycle, outcome)
            return

        # PUSH_ONLY and PUSH_PLUS_CALL: no round cap, pushes continue until check-in
        if push_round_due(cycle.ec_notify_rounds, cycle.ec_last_notified_at, cfg.push_interval_min, now):
            try:
                contact_uids = get_active_emergency_contact_uids(self.repository, outcome.user_id)
            except DatabaseError as e:
                self._skip_contact_track(outcome, e)
                return
            await self.dispatcher.send_push_batch(
                contact_uids,
                PushNotification(
                    title=PUSH_TITLE,
                    body=CONTACT_PUSH_BODY.format(name=_display_name(user)),
                ),
                {
                    "type": PushType.ESCALATION_EMERGENCY_CONTACT.value,
                    "mainUserUid": outcome.user_id,
                },
                cfg.push_batch_size,
            )
            cycle.ec_notify_rounds += 1
            cycle.ec_last_notified_at = now
            outcome.updates["ec_notify_rounds"] = cycle.ec_notify_rounds
            outcome.updates["ec_last_notified_at"] = to_iso(now)
            outcome.contact_push_rounds += 1

        if (
            cfg.mode == NotificationMode.PUSH_PLUS_CALL
            and not cycle.ec_call_placed
            and elapsed_min >= cfg.call_delay_min
        ):
            await self._call_contact(primary, cycle, outcome)

    def _skip_contact_track(self, outcome: EscalationOutcome, error: DatabaseError) -> None:
        logger.warning(
            f"Emergency contacts unavailable for user {outcome.user_id}, "
            f"contact escalation skipped this pass: {error.message}"
        )
        outcome.errors.append(f"contacts: {error.message}")

    async def _call_contact(
        self,
        contact: dict,
        cycle: EscalationCycle,
        outcome: EscalationOutcome
    ) -> None:
        if not self.calls_enabled:
            logger.debug(f"Skipping contact call for user {outcome.user_id}: calls disabled")
            return

        client_state = ClientState(
            main_user_uid=outcome.user_id,
            emergency_contact_uid=contact.get("emergency_contact_uid"),
            reason=CallReason.ESCALATION.value,
        )
        if await self._place_call(contact["phone"], client_state, outcome):
            cycle.ec_call_placed = True
            outcome.updates["ec_call_placed"] = True

    async def _place_call(
        self,
        to_phone: str,
        client_state: ClientState,
        outcome: EscalationOutcome
    ) -> bool:
        """Place a call; a failure is logged and leaves the call unplaced."""
        try:
            await self.dispatcher.place_call(
                to_phone=to_phone,
                from_phone=self.from_number,
                connection_id=self.connection_id,
                client_state=client_state,
            )
        except Exception as e:
            logger.error(f"Call placement failed for user {outcome.user_id} ({client_state.reason}): {e}")
            outcome.errors.append(f"{client_state.reason}: {e}")
            return False

        outcome.calls_placed += 1
        return True
