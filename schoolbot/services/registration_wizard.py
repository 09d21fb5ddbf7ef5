"""
Registration wizard — two-phase signup with compensation on abandonment.

Flow:
  collecting_basic_info ──submit_basic_info──▶ collecting_role_details
  collecting_role_details ──submit_role_details──▶ completed (session discarded)
  collecting_role_details ──cancel──▶ collecting_basic_info (account deleted)

Phase 1 creates the base account on the backend. Leaving phase 2 any way other
than a successful submit issues exactly one compensating delete of that
account. Cancellation arrives through LifecycleSignal sources ("navigation"
for back buttons / menu jumps, "unload" for bot shutdown) which a wizard is
connected to only while it sits in phase 2.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from pydantic import BaseModel, ValidationError

from schoolbot.models.models import Role
from schoolbot.services.api_client import ApiError, AccountRef, SchoolApiClient
from schoolbot.validators import (
    BasicInfoData,
    ParentLink,
    StudentRecord,
    TeacherAssignment,
    validation_errors,
)

logger = logging.getLogger(__name__)

Listener = Callable[[], Awaitable[Any]]
CompensationFailedHook = Callable[[str, str, str], Awaitable[None]]
StagedEntry = Union[TeacherAssignment, ParentLink]

SUCCESS_MESSAGE = "Registration successful! Please contact the Admin to get access to Login."
BUSY_MESSAGE = "Already submitting, please wait…"
STALE_STEP_MESSAGE = "This step is no longer active. Please continue from the latest message."


class Phase:
    COLLECTING_BASIC_INFO   = "collecting_basic_info"
    COLLECTING_ROLE_DETAILS = "collecting_role_details"
    COMPLETED               = "completed"


@dataclass
class RegistrationSession:
    phase: str = Phase.COLLECTING_BASIC_INFO
    account_id: Optional[str] = None
    account_role: Optional[str] = None
    pending_assignments: list[StagedEntry] = field(default_factory=list)
    is_submitting: bool = False


@dataclass
class StepOutcome:
    """Result of one wizard operation, ready to be shown to the user."""
    ok: bool
    message: str = ""
    field_errors: dict[str, str] = field(default_factory=dict)
    skipped: bool = False      # request suppressed: busy or wrong phase
    entry: Optional[BaseModel] = None


# ── Cancellation signal sources ───────────────────────────────────────────────

class LifecycleSignal:
    """
    A named source of cancellation events.

    Listeners are keyed by owner (Telegram user id) so that a user's back
    button only reaches that user's wizard, while shutdown reaches everyone.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._listeners: dict[int, Listener] = {}

    def connect(self, owner_id: int, listener: Listener) -> None:
        self._listeners[owner_id] = listener

    def disconnect(self, owner_id: int, listener: Optional[Listener] = None) -> None:
        """Drop the owner's listener; with `listener` given, only if it is still that one."""
        if listener is None or self._listeners.get(owner_id) == listener:
            self._listeners.pop(owner_id, None)

    def is_connected(self, owner_id: int) -> bool:
        return owner_id in self._listeners

    def __len__(self) -> int:
        return len(self._listeners)

    async def emit(self, owner_id: int) -> Any:
        """Fire the owner's listener and return its result (None if nothing listens)."""
        listener = self._listeners.get(owner_id)
        if listener is None:
            return None
        return await listener()

    async def emit_all(self) -> int:
        listeners = list(self._listeners.values())
        if listeners:
            await asyncio.gather(*(listener() for listener in listeners))
        return len(listeners)


# ── Wizard ────────────────────────────────────────────────────────────────────

class RegistrationWizard:
    """State machine for one user's registration attempt."""

    def __init__(
        self,
        owner_id: int,
        api: SchoolApiClient,
        signals: Iterable[LifecycleSignal] = (),
        on_compensation_failed: Optional[CompensationFailedHook] = None,
        compensation_timeout: float = 5.0,
    ) -> None:
        self.owner_id = owner_id
        self.session = RegistrationSession()
        self._api = api
        self._signals = tuple(signals)
        self._on_compensation_failed = on_compensation_failed
        self._compensation_timeout = compensation_timeout
        self._abandoned = False

    # ── Introspection ─────────────────────────────────────────────────────────

    @property
    def phase(self) -> str:
        return self.session.phase

    @property
    def account_role(self) -> Optional[str]:
        return self.session.account_role

    @property
    def pending_assignments(self) -> list[StagedEntry]:
        return list(self.session.pending_assignments)

    @property
    def is_listening(self) -> bool:
        return any(s.is_connected(self.owner_id) for s in self._signals)

    @property
    def is_abandoned(self) -> bool:
        return self._abandoned

    def abandon(self) -> None:
        """Detach from the registry. An account created after this is deleted at once."""
        self._abandoned = True

    # ── Transitions ───────────────────────────────────────────────────────────

    def _enter_role_details(self, ref: AccountRef) -> None:
        self.session.account_id = ref.account_id
        self.session.account_role = ref.account_role
        self.session.pending_assignments = []
        self.session.phase = Phase.COLLECTING_ROLE_DETAILS
        for signal in self._signals:
            signal.connect(self.owner_id, self.cancel)

    def _leave_role_details(self, next_phase: str) -> None:
        for signal in self._signals:
            signal.disconnect(self.owner_id, self.cancel)
        self.session.account_id = None
        self.session.pending_assignments = []
        self.session.is_submitting = False
        self.session.phase = next_phase
        if next_phase == Phase.COLLECTING_BASIC_INFO:
            self.session.account_role = None

    # ── Phase 1 ───────────────────────────────────────────────────────────────

    def _refuse(self, phase: str) -> Optional[StepOutcome]:
        if self._abandoned:
            return StepOutcome(ok=False, skipped=True, message=STALE_STEP_MESSAGE)
        if self.session.is_submitting:
            return StepOutcome(ok=False, skipped=True, message=BUSY_MESSAGE)
        if self.session.phase != phase:
            return StepOutcome(ok=False, skipped=True, message=STALE_STEP_MESSAGE)
        return None

    async def submit_basic_info(self, fields: dict[str, Any]) -> StepOutcome:
        refused = self._refuse(Phase.COLLECTING_BASIC_INFO)
        if refused is not None:
            return refused

        try:
            info = BasicInfoData(**fields)
        except ValidationError as exc:
            errors = validation_errors(exc)
            return StepOutcome(ok=False, message=next(iter(errors.values())), field_errors=errors)

        self.session.is_submitting = True
        try:
            ref = await self._api.create_account(info)
        except ApiError as exc:
            logger.info("Account creation failed for owner=%d: %s", self.owner_id, exc.message)
            return StepOutcome(ok=False, message=exc.message, field_errors=exc.field_errors)
        finally:
            self.session.is_submitting = False

        if self._abandoned:
            # Left while the account was being created; nobody will return to it
            logger.info("Owner %d left before account %s was ready", self.owner_id, ref.account_id)
            await self._compensate(ref.account_id, ref.account_role)
            return StepOutcome(ok=False, message="Registration was cancelled")

        self._enter_role_details(ref)
        logger.info("Owner %d created account %s (%s)", self.owner_id, ref.account_id, ref.account_role)
        return StepOutcome(ok=True)

    # ── Phase 2: staged entries ───────────────────────────────────────────────

    def stage_assignment(self, entry: dict[str, Any]) -> StepOutcome:
        """Validate and prepend one Teacher assignment or Parent link."""
        if self.session.phase != Phase.COLLECTING_ROLE_DETAILS:
            return StepOutcome(ok=False, skipped=True)

        role = self.session.account_role
        if role == Role.TEACHER:
            model: type[BaseModel] = TeacherAssignment
        elif role == Role.PARENT:
            model = ParentLink
        else:
            return StepOutcome(ok=False, message=f"{role} registration has no list to add to")

        try:
            staged = model(**entry)
        except ValidationError as exc:
            errors = validation_errors(exc)
            field_name, msg = next(iter(errors.items()))
            return StepOutcome(ok=False, message=f"Missing or invalid {field_name}: {msg}", field_errors=errors)

        if any(existing.key == staged.key for existing in self.session.pending_assignments):
            return StepOutcome(ok=False, message="This entry is already in the list (duplicate)")

        self.session.pending_assignments.insert(0, staged)
        return StepOutcome(ok=True, entry=staged)

    def remove_assignment(self, entry_id: str) -> bool:
        before = len(self.session.pending_assignments)
        self.session.pending_assignments = [
            e for e in self.session.pending_assignments if e.id != entry_id
        ]
        return len(self.session.pending_assignments) != before

    # ── Phase 2: submit ───────────────────────────────────────────────────────

    async def submit_role_details(
        self,
        staff_no: Optional[str] = None,
        student_record: Optional[dict[str, Any]] = None,
    ) -> StepOutcome:
        refused = self._refuse(Phase.COLLECTING_ROLE_DETAILS)
        if refused is not None:
            return refused

        account_id = self.session.account_id
        role = self.session.account_role
        pending = list(self.session.pending_assignments)

        if role == Role.TEACHER:
            if not pending:
                return StepOutcome(ok=False, message="Please add at least one teaching assignment")
            staff_no = (staff_no or "").strip()
            if not staff_no:
                return StepOutcome(
                    ok=False,
                    message="Staff number is required",
                    field_errors={"staff_no": "Staff number is required"},
                )
            request = self._api.submit_teacher_assignments(account_id, role, staff_no, pending)
        elif role == Role.PARENT:
            if not pending:
                return StepOutcome(
                    ok=False,
                    message="Please provide at least one parent entry with a Student Admission Number",
                )
            request = self._api.submit_parent_links(account_id, role, pending)
        else:
            try:
                record = StudentRecord(**(student_record or {}))
            except ValidationError as exc:
                errors = validation_errors(exc)
                return StepOutcome(ok=False, message=next(iter(errors.values())), field_errors=errors)
            request = self._api.submit_student_record(account_id, role, record)

        self.session.is_submitting = True
        try:
            await request
        except ApiError as exc:
            logger.info("Role details rejected for account %s: %s", account_id, exc.message)
            return StepOutcome(ok=False, message=exc.message, field_errors=exc.field_errors)
        finally:
            if self.session.account_id == account_id:
                self.session.is_submitting = False

        if self.session.account_id != account_id:
            # Cancelled while the request was in flight; the account is already being deleted
            return StepOutcome(ok=False, message="Registration was cancelled")

        self._leave_role_details(Phase.COMPLETED)
        logger.info("Account %s completed registration as %s", account_id, role)
        return StepOutcome(ok=True, message=SUCCESS_MESSAGE)

    # ── Compensation ──────────────────────────────────────────────────────────

    async def cancel(self) -> StepOutcome:
        """Delete the phase-1 account and return to basic info. Never blocks the reset."""
        if self.session.phase != Phase.COLLECTING_ROLE_DETAILS:
            return StepOutcome(ok=False, skipped=True)

        account_id = self.session.account_id
        role = self.session.account_role
        self._leave_role_details(Phase.COLLECTING_BASIC_INFO)
        return await self._compensate(account_id, role)

    async def _compensate(self, account_id: str, role: str) -> StepOutcome:
        try:
            await asyncio.wait_for(
                self._api.delete_account(account_id, role),
                timeout=self._compensation_timeout,
            )
        except (ApiError, asyncio.TimeoutError) as exc:
            reason = exc.message if isinstance(exc, ApiError) else "compensation timed out"
            logger.warning("Compensating delete failed for account %s: %s", account_id, reason)
            if self._on_compensation_failed is not None:
                await self._on_compensation_failed(account_id, role, reason)
            return StepOutcome(ok=False, message=reason or "Failed to clear user data")

        logger.info("Compensating delete succeeded for account %s", account_id)
        return StepOutcome(ok=True, message="User data cleared successfully")


# ── Registry ──────────────────────────────────────────────────────────────────

class WizardRegistry:
    """
    Per-user wizards plus the two cancellation sources they subscribe to.

    navigation — back button, /cancel, main-menu jump, restarting registration
    unload     — bot shutdown
    """

    def __init__(
        self,
        api: SchoolApiClient,
        compensation_timeout: float = 5.0,
        on_compensation_failed: Optional[CompensationFailedHook] = None,
    ) -> None:
        self._api = api
        self._compensation_timeout = compensation_timeout
        self._on_compensation_failed = on_compensation_failed
        self._wizards: dict[int, RegistrationWizard] = {}
        self.navigation = LifecycleSignal("navigation")
        self.unload = LifecycleSignal("unload")

    async def start(self, owner_id: int) -> RegistrationWizard:
        """Abandon any wizard in progress for this user and mount a fresh one."""
        await self.navigation.emit(owner_id)
        self.discard(owner_id)
        wizard = RegistrationWizard(
            owner_id,
            self._api,
            signals=(self.navigation, self.unload),
            on_compensation_failed=self._on_compensation_failed,
            compensation_timeout=self._compensation_timeout,
        )
        self._wizards[owner_id] = wizard
        return wizard

    def get(self, owner_id: int) -> Optional[RegistrationWizard]:
        return self._wizards.get(owner_id)

    def discard(self, owner_id: int) -> None:
        wizard = self._wizards.pop(owner_id, None)
        if wizard is not None:
            wizard.abandon()

    async def abandon(self, owner_id: int) -> Optional[StepOutcome]:
        """Navigation away from the wizard. Returns the compensation outcome, if one ran."""
        outcome = await self.navigation.emit(owner_id)
        self.discard(owner_id)
        return outcome

    async def shutdown(self) -> int:
        """Unload every wizard still holding a phase-1 account."""
        count = await self.unload.emit_all()
        for wizard in self._wizards.values():
            wizard.abandon()
        self._wizards.clear()
        return count
