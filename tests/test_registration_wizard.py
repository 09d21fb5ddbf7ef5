"""
Unit tests — Registration wizard (services/registration_wizard.py).

Covers the two-phase flow against an in-memory backend:
  - phase transitions and the account-id/phase coupling
  - staging of teacher assignments and parent links, duplicate rejection
  - compensation on cancel, via navigation/unload signals and on timeout
  - suppression of concurrent submits
"""
from __future__ import annotations

import asyncio

import pytest

from schoolbot.services.api_client import ApiError, NetworkError
from schoolbot.services.registration_wizard import (
    BUSY_MESSAGE,
    STALE_STEP_MESSAGE,
    SUCCESS_MESSAGE,
    LifecycleSignal,
    Phase,
    RegistrationWizard,
    WizardRegistry,
)

OWNER = 1001

TEACHER_ENTRY = dict(grade="Grade 6", class_name="A", subject="Mathematics", medium="English")
PARENT_ENTRY = dict(
    student_admission_no="ADM1001",
    profession="Engineer",
    relation="Mother",
    parent_contact="0771234567",
)
STUDENT_RECORD = dict(
    student_grade="Grade 7",
    student_class="B",
    medium="Sinhala",
    student_admission_no="ADM2002",
    parent_contact="0719876543",
    parent_profession="Farmer",
)


def _coupled(wizard: RegistrationWizard) -> bool:
    """An account id is held exactly while role details are being collected."""
    holding = wizard.session.account_id is not None
    return holding == (wizard.phase == Phase.COLLECTING_ROLE_DETAILS)


async def _in_role_details(api, make_form, role: str = "Teacher", **registry_kwargs):
    registry = WizardRegistry(api, **registry_kwargs)
    wizard = await registry.start(OWNER)
    outcome = await wizard.submit_basic_info(make_form(role=role))
    assert outcome.ok
    return registry, wizard


# ─────────────────────────── Phase 1 ──────────────────────────────────────────

class TestBasicInfo:
    async def test_fresh_wizard_holds_no_account(self, fake_api) -> None:
        wizard = RegistrationWizard(OWNER, fake_api)
        assert wizard.phase == Phase.COLLECTING_BASIC_INFO
        assert wizard.session.account_id is None
        assert _coupled(wizard)

    async def test_success_moves_to_role_details(self, fake_api, make_form) -> None:
        wizard = RegistrationWizard(OWNER, fake_api)
        outcome = await wizard.submit_basic_info(make_form(role="Parent"))
        assert outcome.ok
        assert wizard.phase == Phase.COLLECTING_ROLE_DETAILS
        assert wizard.session.account_id == "42"
        assert wizard.account_role == "Parent"
        assert _coupled(wizard)

    async def test_invalid_form_never_reaches_backend(self, fake_api, make_form) -> None:
        wizard = RegistrationWizard(OWNER, fake_api)
        outcome = await wizard.submit_basic_info(make_form(password_confirmation="other1"))
        assert not outcome.ok
        assert outcome.field_errors == {"password_confirmation": "Passwords don't match"}
        assert outcome.message == "Passwords don't match"
        assert fake_api.count("create_account") == 0
        assert wizard.phase == Phase.COLLECTING_BASIC_INFO

    async def test_backend_field_errors_surface(self, fake_api, make_form) -> None:
        fake_api.create_account_error = ApiError(
            "Username taken", status_code=422, field_errors={"username": "Username taken"},
        )
        wizard = RegistrationWizard(OWNER, fake_api)
        outcome = await wizard.submit_basic_info(make_form())
        assert not outcome.ok
        assert outcome.field_errors == {"username": "Username taken"}
        assert wizard.phase == Phase.COLLECTING_BASIC_INFO
        assert wizard.session.account_id is None
        assert not wizard.session.is_submitting

    async def test_network_failure_uses_generic_message(self, fake_api, make_form) -> None:
        fake_api.create_account_error = NetworkError()
        wizard = RegistrationWizard(OWNER, fake_api)
        outcome = await wizard.submit_basic_info(make_form())
        assert outcome.message == NetworkError().message
        assert _coupled(wizard)

    async def test_retry_after_failure_allowed(self, fake_api, make_form) -> None:
        fake_api.create_account_error = NetworkError()
        wizard = RegistrationWizard(OWNER, fake_api)
        await wizard.submit_basic_info(make_form())
        fake_api.create_account_error = None
        outcome = await wizard.submit_basic_info(make_form())
        assert outcome.ok
        assert fake_api.count("create_account") == 2


# ─────────────────────────── Concurrent submits ───────────────────────────────

class TestSubmitGuard:
    async def test_second_basic_submit_suppressed_while_in_flight(self, fake_api, make_form) -> None:
        gate = fake_api.gates["create_account"] = asyncio.Event()
        wizard = RegistrationWizard(OWNER, fake_api)

        first = asyncio.create_task(wizard.submit_basic_info(make_form()))
        await asyncio.sleep(0)
        assert wizard.session.is_submitting

        second = await wizard.submit_basic_info(make_form())
        assert second.skipped

        gate.set()
        assert (await first).ok
        assert fake_api.count("create_account") == 1

    async def test_second_role_submit_suppressed_while_in_flight(self, fake_api, make_form) -> None:
        _, wizard = await _in_role_details(fake_api, make_form)
        wizard.stage_assignment(TEACHER_ENTRY)
        gate = fake_api.gates["submit_teacher_assignments"] = asyncio.Event()

        first = asyncio.create_task(wizard.submit_role_details(staff_no="ST-77"))
        await asyncio.sleep(0)
        second = await wizard.submit_role_details(staff_no="ST-77")
        assert second.skipped

        gate.set()
        outcome = await first
        assert outcome.ok
        assert fake_api.count("submit_teacher_assignments") == 1

    async def test_busy_and_stale_refusals_told_apart(self, fake_api, make_form) -> None:
        gate = fake_api.gates["create_account"] = asyncio.Event()
        wizard = RegistrationWizard(OWNER, fake_api)

        first = asyncio.create_task(wizard.submit_basic_info(make_form()))
        await asyncio.sleep(0)
        busy = await wizard.submit_basic_info(make_form())
        gate.set()
        await first
        stale = await wizard.submit_basic_info(make_form())

        assert busy.skipped and busy.message == BUSY_MESSAGE
        assert stale.skipped and stale.message == STALE_STEP_MESSAGE

    async def test_role_submit_before_account_is_stale(self, fake_api) -> None:
        wizard = RegistrationWizard(OWNER, fake_api)
        outcome = await wizard.submit_role_details(staff_no="ST-77")
        assert outcome.skipped
        assert outcome.message == STALE_STEP_MESSAGE


# ─────────────────────────── Staging ──────────────────────────────────────────

class TestStaging:
    async def test_teacher_entries_prepended(self, fake_api, make_form) -> None:
        _, wizard = await _in_role_details(fake_api, make_form)
        wizard.stage_assignment(TEACHER_ENTRY)
        wizard.stage_assignment({**TEACHER_ENTRY, "class_name": "B"})
        assert [a.class_name for a in wizard.pending_assignments] == ["B", "A"]

    async def test_duplicate_teacher_entry_rejected(self, fake_api, make_form) -> None:
        _, wizard = await _in_role_details(fake_api, make_form)
        assert wizard.stage_assignment(TEACHER_ENTRY).ok
        outcome = wizard.stage_assignment(dict(TEACHER_ENTRY))
        assert not outcome.ok
        assert outcome.message == "This entry is already in the list (duplicate)"
        assert len(wizard.pending_assignments) == 1

    async def test_incomplete_teacher_entry_names_field(self, fake_api, make_form) -> None:
        _, wizard = await _in_role_details(fake_api, make_form)
        outcome = wizard.stage_assignment({**TEACHER_ENTRY, "medium": ""})
        assert not outcome.ok
        assert outcome.message == "Missing or invalid medium: This field is required"
        assert wizard.pending_assignments == []

    async def test_parent_duplicate_ignores_case(self, fake_api, make_form) -> None:
        _, wizard = await _in_role_details(fake_api, make_form, role="Parent")
        assert wizard.stage_assignment(PARENT_ENTRY).ok
        outcome = wizard.stage_assignment({**PARENT_ENTRY, "relation": "mother"})
        assert not outcome.ok

    async def test_same_child_other_relation_accepted(self, fake_api, make_form) -> None:
        _, wizard = await _in_role_details(fake_api, make_form, role="Parent")
        wizard.stage_assignment(PARENT_ENTRY)
        assert wizard.stage_assignment({**PARENT_ENTRY, "relation": "Father"}).ok
        assert len(wizard.pending_assignments) == 2

    async def test_student_has_no_list(self, fake_api, make_form) -> None:
        _, wizard = await _in_role_details(fake_api, make_form, role="Student")
        outcome = wizard.stage_assignment(TEACHER_ENTRY)
        assert not outcome.ok
        assert wizard.pending_assignments == []

    async def test_staging_outside_role_details_skipped(self, fake_api) -> None:
        wizard = RegistrationWizard(OWNER, fake_api)
        assert wizard.stage_assignment(TEACHER_ENTRY).skipped

    async def test_remove_by_id(self, fake_api, make_form) -> None:
        _, wizard = await _in_role_details(fake_api, make_form)
        entry = wizard.stage_assignment(TEACHER_ENTRY).entry
        wizard.stage_assignment({**TEACHER_ENTRY, "class_name": "B"})
        assert wizard.remove_assignment(entry.id)
        assert not wizard.remove_assignment(entry.id)
        assert [a.class_name for a in wizard.pending_assignments] == ["B"]


# ─────────────────────────── Phase 2 submit ───────────────────────────────────

class TestRoleDetails:
    async def test_teacher_without_assignments_makes_no_request(self, fake_api, make_form) -> None:
        _, wizard = await _in_role_details(fake_api, make_form)
        outcome = await wizard.submit_role_details(staff_no="ST-77")
        assert not outcome.ok
        assert outcome.message == "Please add at least one teaching assignment"
        assert fake_api.count("submit_teacher_assignments") == 0
        assert wizard.phase == Phase.COLLECTING_ROLE_DETAILS

    async def test_teacher_requires_staff_no(self, fake_api, make_form) -> None:
        _, wizard = await _in_role_details(fake_api, make_form)
        wizard.stage_assignment(TEACHER_ENTRY)
        outcome = await wizard.submit_role_details(staff_no="  ")
        assert "staff_no" in outcome.field_errors
        assert fake_api.count("submit_teacher_assignments") == 0

    async def test_teacher_success_completes(self, fake_api, make_form) -> None:
        registry, wizard = await _in_role_details(fake_api, make_form)
        wizard.stage_assignment(TEACHER_ENTRY)
        outcome = await wizard.submit_role_details(staff_no="ST-77")

        assert outcome.ok
        assert outcome.message == SUCCESS_MESSAGE
        assert wizard.phase == Phase.COMPLETED
        assert wizard.pending_assignments == []
        assert _coupled(wizard)
        account_id, role, staff_no, assignments = fake_api.args("submit_teacher_assignments")
        assert (account_id, role, staff_no) == ("42", "Teacher", "ST-77")
        assert assignments[0].subject == "Mathematics"
        assert not registry.navigation.is_connected(OWNER)

    async def test_parent_without_links_makes_no_request(self, fake_api, make_form) -> None:
        _, wizard = await _in_role_details(fake_api, make_form, role="Parent")
        outcome = await wizard.submit_role_details()
        assert outcome.message == "Please provide at least one parent entry with a Student Admission Number"
        assert fake_api.count("submit_parent_links") == 0

    async def test_parent_success(self, fake_api, make_form) -> None:
        _, wizard = await _in_role_details(fake_api, make_form, role="Parent")
        wizard.stage_assignment(PARENT_ENTRY)
        assert (await wizard.submit_role_details()).ok
        assert fake_api.count("submit_parent_links") == 1

    async def test_student_invalid_record_makes_no_request(self, fake_api, make_form) -> None:
        _, wizard = await _in_role_details(fake_api, make_form, role="Student")
        outcome = await wizard.submit_role_details(student_record={**STUDENT_RECORD, "parent_contact": "123"})
        assert "parent_contact" in outcome.field_errors
        assert fake_api.count("submit_student_record") == 0

    async def test_student_success(self, fake_api, make_form) -> None:
        _, wizard = await _in_role_details(fake_api, make_form, role="Student")
        assert (await wizard.submit_role_details(student_record=STUDENT_RECORD)).ok
        _, _, record = fake_api.args("submit_student_record")
        assert record.student_admission_no == "ADM2002"

    async def test_backend_failure_keeps_entries(self, fake_api, make_form) -> None:
        fake_api.submit_error = ApiError("Invalid staff number", field_errors={"staff_no": "Invalid staff number"})
        _, wizard = await _in_role_details(fake_api, make_form)
        wizard.stage_assignment(TEACHER_ENTRY)
        outcome = await wizard.submit_role_details(staff_no="ST-77")

        assert not outcome.ok
        assert outcome.field_errors == {"staff_no": "Invalid staff number"}
        assert wizard.phase == Phase.COLLECTING_ROLE_DETAILS
        assert len(wizard.pending_assignments) == 1
        assert not wizard.session.is_submitting

    async def test_cancel_during_submit_reports_cancelled(self, fake_api, make_form) -> None:
        _, wizard = await _in_role_details(fake_api, make_form)
        wizard.stage_assignment(TEACHER_ENTRY)
        gate = fake_api.gates["submit_teacher_assignments"] = asyncio.Event()

        submit = asyncio.create_task(wizard.submit_role_details(staff_no="ST-77"))
        await asyncio.sleep(0)
        await wizard.cancel()
        gate.set()

        outcome = await submit
        assert not outcome.ok
        assert outcome.message == "Registration was cancelled"
        assert wizard.phase == Phase.COLLECTING_BASIC_INFO
        assert _coupled(wizard)


# ─────────────────────────── Compensation ─────────────────────────────────────

class TestCancel:
    @pytest.mark.parametrize("error", [None, ApiError("Server error", status_code=500), NetworkError()])
    async def test_cancel_always_resets(self, fake_api, make_form, error) -> None:
        fake_api.delete_account_error = error
        _, wizard = await _in_role_details(fake_api, make_form)
        wizard.stage_assignment(TEACHER_ENTRY)

        outcome = await wizard.cancel()

        assert outcome.ok is (error is None)
        assert wizard.phase == Phase.COLLECTING_BASIC_INFO
        assert wizard.session.account_id is None
        assert wizard.account_role is None
        assert wizard.pending_assignments == []
        assert not wizard.session.is_submitting
        assert fake_api.args("delete_account") == ("42", "Teacher")

    async def test_success_message(self, fake_api, make_form) -> None:
        _, wizard = await _in_role_details(fake_api, make_form)
        outcome = await wizard.cancel()
        assert outcome.message == "User data cleared successfully"

    async def test_failed_delete_reported_to_hook(self, fake_api, make_form) -> None:
        failures = []

        async def hook(account_id, role, reason):
            failures.append((account_id, role, reason))

        fake_api.delete_account_error = ApiError("Server error", status_code=500)
        _, wizard = await _in_role_details(fake_api, make_form, on_compensation_failed=hook)
        await wizard.cancel()
        assert failures == [("42", "Teacher", "Server error")]

    async def test_slow_delete_times_out(self, fake_api, make_form) -> None:
        failures = []

        async def hook(account_id, role, reason):
            failures.append(reason)

        fake_api.gates["delete_account"] = asyncio.Event()    # never set
        _, wizard = await _in_role_details(
            fake_api, make_form, compensation_timeout=0.01, on_compensation_failed=hook,
        )
        outcome = await wizard.cancel()
        assert not outcome.ok
        assert failures == ["compensation timed out"]
        assert wizard.phase == Phase.COLLECTING_BASIC_INFO

    async def test_cancel_outside_role_details_skipped(self, fake_api) -> None:
        wizard = RegistrationWizard(OWNER, fake_api)
        assert (await wizard.cancel()).skipped
        assert fake_api.count("delete_account") == 0

    async def test_second_cancel_does_not_delete_again(self, fake_api, make_form) -> None:
        _, wizard = await _in_role_details(fake_api, make_form)
        await wizard.cancel()
        assert (await wizard.cancel()).skipped
        assert fake_api.count("delete_account") == 1


# ─────────────────────────── Signals & registry ───────────────────────────────

class TestLifecycleSignals:
    async def test_listening_only_during_role_details(self, fake_api, make_form) -> None:
        registry = WizardRegistry(fake_api)
        wizard = await registry.start(OWNER)
        assert not wizard.is_listening

        await wizard.submit_basic_info(make_form())
        assert registry.navigation.is_connected(OWNER)
        assert registry.unload.is_connected(OWNER)

        await wizard.cancel()
        assert not wizard.is_listening
        assert len(registry.navigation) == 0
        assert len(registry.unload) == 0

    async def test_navigation_triggers_single_compensation(self, fake_api, make_form) -> None:
        registry, wizard = await _in_role_details(fake_api, make_form)

        first = await registry.navigation.emit(OWNER)
        second = await registry.navigation.emit(OWNER)
        await registry.unload.emit(OWNER)

        assert first.ok
        assert second is None
        assert fake_api.count("delete_account") == 1
        assert wizard.phase == Phase.COLLECTING_BASIC_INFO

    async def test_navigation_reaches_only_its_owner(self, fake_api, make_form) -> None:
        registry, wizard = await _in_role_details(fake_api, make_form)
        await registry.navigation.emit(OWNER + 1)
        assert wizard.phase == Phase.COLLECTING_ROLE_DETAILS
        assert fake_api.count("delete_account") == 0

    async def test_emit_without_listener_returns_none(self) -> None:
        signal = LifecycleSignal("navigation")
        assert await signal.emit(OWNER) is None
        assert await signal.emit_all() == 0

    async def test_restart_compensates_previous_attempt(self, fake_api, make_form) -> None:
        registry, old = await _in_role_details(fake_api, make_form)
        new = await registry.start(OWNER)
        assert new is not old
        assert registry.get(OWNER) is new
        assert fake_api.count("delete_account") == 1
        assert old.phase == Phase.COLLECTING_BASIC_INFO

    async def test_abandon_returns_outcome_and_discards(self, fake_api, make_form) -> None:
        registry, _ = await _in_role_details(fake_api, make_form)
        outcome = await registry.abandon(OWNER)
        assert outcome.ok
        assert registry.get(OWNER) is None

    async def test_abandon_basic_info_has_nothing_to_compensate(self, fake_api) -> None:
        registry = WizardRegistry(fake_api)
        await registry.start(OWNER)
        assert await registry.abandon(OWNER) is None
        assert fake_api.count("delete_account") == 0

    async def test_shutdown_compensates_every_open_wizard(self, fake_api, make_form) -> None:
        registry = WizardRegistry(fake_api)
        for owner in (1, 2, 3):
            wizard = await registry.start(owner)
            if owner != 3:
                await wizard.submit_basic_info(make_form())

        count = await registry.shutdown()

        assert count == 2
        assert fake_api.count("delete_account") == 2
        assert registry.get(1) is None
        assert len(registry.unload) == 0

    async def test_completed_wizard_ignores_navigation(self, fake_api, make_form) -> None:
        registry, wizard = await _in_role_details(fake_api, make_form)
        wizard.stage_assignment(TEACHER_ENTRY)
        await wizard.submit_role_details(staff_no="ST-77")

        assert await registry.navigation.emit(OWNER) is None
        assert fake_api.count("delete_account") == 0
        assert wizard.phase == Phase.COMPLETED

    async def test_account_created_after_leaving_is_deleted(self, fake_api, make_form) -> None:
        registry = WizardRegistry(fake_api)
        stale = await registry.start(OWNER)
        gate = fake_api.gates["create_account"] = asyncio.Event()
        fake_api.account_id = "A"
        pending = asyncio.create_task(stale.submit_basic_info(make_form()))
        await asyncio.sleep(0)

        # User leaves and registers again while the first account is being created
        assert await registry.abandon(OWNER) is None
        assert stale.is_abandoned
        fresh = await registry.start(OWNER)
        del fake_api.gates["create_account"]
        fake_api.account_id = "B"
        assert (await fresh.submit_basic_info(make_form())).ok

        gate.set()
        outcome = await pending

        assert not outcome.ok
        assert outcome.message == "Registration was cancelled"
        assert stale.phase == Phase.COLLECTING_BASIC_INFO
        assert fake_api.args("delete_account") == ("A", "Teacher")

        await registry.navigation.emit(OWNER)
        deleted = [args for name, args in fake_api.calls if name == "delete_account"]
        assert deleted == [("A", "Teacher"), ("B", "Teacher")]

    async def test_account_created_after_shutdown_is_deleted(self, fake_api, make_form) -> None:
        registry = WizardRegistry(fake_api)
        wizard = await registry.start(OWNER)
        gate = fake_api.gates["create_account"] = asyncio.Event()
        pending = asyncio.create_task(wizard.submit_basic_info(make_form()))
        await asyncio.sleep(0)

        assert await registry.shutdown() == 0
        gate.set()
        await pending

        assert fake_api.args("delete_account") == ("42", "Teacher")
        assert len(registry.unload) == 0

    async def test_failed_late_delete_reported_to_hook(self, fake_api, make_form) -> None:
        failures = []

        async def hook(account_id, role, reason):
            failures.append(account_id)

        registry = WizardRegistry(fake_api, on_compensation_failed=hook)
        wizard = await registry.start(OWNER)
        gate = fake_api.gates["create_account"] = asyncio.Event()
        fake_api.delete_account_error = NetworkError()
        pending = asyncio.create_task(wizard.submit_basic_info(make_form()))
        await asyncio.sleep(0)

        await registry.abandon(OWNER)
        gate.set()
        await pending

        assert failures == ["42"]

    async def test_abandoned_wizard_refuses_new_submits(self, fake_api, make_form) -> None:
        registry = WizardRegistry(fake_api)
        wizard = await registry.start(OWNER)
        await registry.abandon(OWNER)

        outcome = await wizard.submit_basic_info(make_form())

        assert outcome.skipped
        assert fake_api.count("create_account") == 0

    async def test_disconnect_keeps_a_newer_listener(self) -> None:
        signal = LifecycleSignal("navigation")

        async def old():
            return "old"

        async def new():
            return "new"

        signal.connect(OWNER, new)
        signal.disconnect(OWNER, old)
        assert await signal.emit(OWNER) == "new"
        signal.disconnect(OWNER, new)
        assert not signal.is_connected(OWNER)
