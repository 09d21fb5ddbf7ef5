"""
Registration wizard FSM handlers.

Flow:
  Register → name → email → address → birthday → contact → gender → role
           → username → password → confirm → review → account created
  Teacher: ➕ grade → class → subject → medium (repeat) → staff no → ✅
  Parent:  ➕ admission no → profession → relation → contact (repeat) → ✅
  Student: grade → class → medium → admission no → parent contact
           → parent profession → ✅

⬅️ Back anywhere after the account exists deletes it and returns to review.
"""
import logging
from typing import Optional

from aiogram import F, Router
from aiogram.enums import ParseMode
from aiogram.exceptions import TelegramBadRequest
from aiogram.filters import StateFilter
from aiogram.fsm.context import FSMContext
from aiogram.fsm.state import State
from aiogram.types import CallbackQuery, Message

from schoolbot.handlers.markdown import esc
from schoolbot.keyboards import (
    EntryCb, MainMenuCb, PickCb, WizardCb,
    back_kb, cancel_registration_kb, gender_kb, login_prompt_kb,
    pick_kb, review_kb, role_kb, staged_list_kb,
)
from schoolbot.models.models import Medium, Role
from schoolbot.services import ApiError, Phase, RegistrationWizard, SchoolApiClient, WizardRegistry
from schoolbot.states import (
    BasicInfoStates, ParentDetailStates, StudentDetailStates, TeacherDetailStates,
)

logger = logging.getLogger(__name__)
router = Router(name="registration")

ROLE_DETAIL_STATES = (TeacherDetailStates, ParentDetailStates, StudentDetailStates)

# ── Text-chain definitions: (field, state, prompt) ────────────────────────────

BASIC_FIELDS: list[tuple[str, State, str]] = [
    ("name",                  BasicInfoStates.enter_name,       "Enter your *full name*:"),
    ("email",                 BasicInfoStates.enter_email,      "Enter your *email address*:"),
    ("address",               BasicInfoStates.enter_address,    "Enter your *address*:"),
    ("birth_day",             BasicInfoStates.enter_birth_day,  "Enter your *birthday* (e.g. `2010-05-31`):"),
    ("contact",               BasicInfoStates.enter_contact,    "Enter your *contact number* (10–15 digits):"),
    ("gender",                BasicInfoStates.choose_gender,    "Choose your *gender*:"),
    ("role",                  BasicInfoStates.choose_role,      "Register as:"),
    ("username",              BasicInfoStates.enter_username,   "Choose a *username* (3–20 characters):"),
    ("password",              BasicInfoStates.enter_password,   "Choose a *password* (at least 6 characters):"),
    ("password_confirmation", BasicInfoStates.confirm_password, "Repeat the *password*:"),
]

PARENT_FIELDS: list[tuple[str, State, str]] = [
    ("student_admission_no", ParentDetailStates.enter_admission_no,   "Child's *admission number*:"),
    ("profession",           ParentDetailStates.enter_profession,     "Your *profession*:"),
    ("relation",             ParentDetailStates.enter_relation,       "Your *relation* to the child (e.g. Mother):"),
    ("parent_contact",       ParentDetailStates.enter_parent_contact, "Your *contact number*:"),
]

STUDENT_TEXT_FIELDS: list[tuple[str, State, str]] = [
    ("student_admission_no", StudentDetailStates.enter_admission_no,      "Your *admission number*:"),
    ("parent_contact",       StudentDetailStates.enter_parent_contact,    "Parent's *contact number*:"),
    ("parent_profession",    StudentDetailStates.enter_parent_profession, "Parent's *profession*:"),
]

_STEP_INDEX = {field: i for i, (field, _, _) in enumerate(BASIC_FIELDS)}
_SECRET_FIELDS = {"password", "password_confirmation"}
_KEYBOARD_FIELDS = {"gender": gender_kb, "role": role_kb}


def _chain_lookup(chain, raw_state: Optional[str]):
    for idx, (field, st, prompt) in enumerate(chain):
        if st.state == raw_state:
            return idx, field
    return None, None


async def _wizard_in_phase2(
    wizards: WizardRegistry,
    user_id: int,
    state: FSMContext,
    reply: Message,
) -> Optional[RegistrationWizard]:
    wizard = wizards.get(user_id)
    if wizard is None or wizard.phase != Phase.COLLECTING_ROLE_DETAILS:
        await state.clear()
        await reply.answer(
            "🔄 *Registration session expired.* Please start again with /start.",
            parse_mode=ParseMode.MARKDOWN,
        )
        return None
    return wizard


# ═════════════════════════ Phase 1: basic info ═══════════════════════════════

async def _ask_basic(message: Message, state: FSMContext, index: int, note: str = "") -> None:
    field, st, prompt = BASIC_FIELDS[index]
    await state.set_state(st)
    keyboard = _KEYBOARD_FIELDS.get(field, cancel_registration_kb)()
    text = f"⚠️ {esc(note)}\n\n{prompt}" if note else prompt
    await message.answer(text, parse_mode=ParseMode.MARKDOWN, reply_markup=keyboard)


async def _advance_basic(message: Message, state: FSMContext, index: int) -> None:
    data = await state.get_data()
    if data.get("editing") or index + 1 >= len(BASIC_FIELDS):
        await _send_review(message, state)
    else:
        await _ask_basic(message, state, index + 1)


async def _send_review(message: Message, state: FSMContext, note: str = "") -> None:
    await state.update_data(editing=False)
    await state.set_state(BasicInfoStates.review)
    data = await state.get_data()
    password_set = "••••••" if data.get("password") else "_not set_"
    text = (
        (f"{note}\n\n" if note else "")
        + "📝 *Check your details:*\n\n"
        f"👤 Name: {esc(data.get('name', ''))}\n"
        f"📧 Email: {esc(data.get('email', ''))}\n"
        f"🏠 Address: {esc(data.get('address', ''))}\n"
        f"🎂 Birthday: {esc(data.get('birth_day', ''))}\n"
        f"📞 Contact: {esc(data.get('contact', ''))}\n"
        f"🚻 Gender: {esc(data.get('gender', ''))}\n"
        f"🎓 Role: {esc(data.get('role', ''))}\n"
        f"🔑 Username: {esc(data.get('username', ''))}\n"
        f"🔒 Password: {password_set}"
    )
    await message.answer(text, parse_mode=ParseMode.MARKDOWN, reply_markup=review_kb())


# ── Entry: "Register" button ──────────────────────────────────────────────────

@router.callback_query(MainMenuCb.filter(F.action == "register"))
async def cq_start_registration(
    callback: CallbackQuery,
    state: FSMContext,
    wizards: WizardRegistry,
) -> None:
    await wizards.start(callback.from_user.id)
    await state.clear()
    await callback.message.edit_text(
        "📝 *Registration* — step 1 of 2: basic information",
        parse_mode=ParseMode.MARKDOWN,
    )
    await _ask_basic(callback.message, state, 0)
    await callback.answer()


# ── Text fields ───────────────────────────────────────────────────────────────

@router.message(
    StateFilter(*[st for field, st, _ in BASIC_FIELDS if field not in _KEYBOARD_FIELDS]),
    F.text,
)
async def msg_basic_field(message: Message, state: FSMContext) -> None:
    index, field = _chain_lookup(BASIC_FIELDS, await state.get_state())
    if field is None:
        return

    if field in _SECRET_FIELDS:
        value = message.text
        try:
            await message.delete()
        except TelegramBadRequest:
            logger.debug("Could not delete password message in chat %d", message.chat.id)
    else:
        value = message.text.strip()

    if not value:
        await _ask_basic(message, state, index, note="This field is required")
        return

    await state.update_data(**{field: value})
    await _advance_basic(message, state, index)


# ── Keyboard fields ───────────────────────────────────────────────────────────

@router.callback_query(WizardCb.filter(F.action == "gender"), BasicInfoStates.choose_gender)
async def cq_gender(callback: CallbackQuery, callback_data: WizardCb, state: FSMContext) -> None:
    await state.update_data(gender=callback_data.value)
    await callback.message.edit_text(f"🚻 Gender: *{callback_data.value}*", parse_mode=ParseMode.MARKDOWN)
    await _advance_basic(callback.message, state, _STEP_INDEX["gender"])
    await callback.answer()


@router.callback_query(WizardCb.filter(F.action == "role"), BasicInfoStates.choose_role)
async def cq_role(callback: CallbackQuery, callback_data: WizardCb, state: FSMContext) -> None:
    await state.update_data(role=callback_data.value)
    await callback.message.edit_text(
        f"🎓 Role: *{Role.LABELS.get(callback_data.value, callback_data.value)}*",
        parse_mode=ParseMode.MARKDOWN,
    )
    await _advance_basic(callback.message, state, _STEP_INDEX["role"])
    await callback.answer()


@router.message(StateFilter(BasicInfoStates.choose_gender, BasicInfoStates.choose_role))
async def msg_choice_hint(message: Message) -> None:
    """Catch accidental text input during a button-only step."""
    await message.answer("👆 Please choose one of the buttons above.")


# ── Review → create account ───────────────────────────────────────────────────

@router.callback_query(WizardCb.filter(F.action == "edit"), BasicInfoStates.review)
async def cq_start_over(callback: CallbackQuery, state: FSMContext) -> None:
    await state.set_data({})
    await callback.answer()
    await _ask_basic(callback.message, state, 0)


@router.callback_query(WizardCb.filter(F.action == "submit"), BasicInfoStates.review)
async def cq_submit_basic(
    callback: CallbackQuery,
    state: FSMContext,
    wizards: WizardRegistry,
    api: SchoolApiClient,
) -> None:
    uid = callback.from_user.id
    wizard = wizards.get(uid) or await wizards.start(uid)
    data = await state.get_data()
    fields = {field: data.get(field, "") for field, _, _ in BASIC_FIELDS}

    outcome = await wizard.submit_basic_info(fields)
    if outcome.skipped:
        await callback.answer(f"⏳ {outcome.message}")
        return

    if not outcome.ok:
        flagged = [i for i, (field, _, _) in enumerate(BASIC_FIELDS) if field in outcome.field_errors]
        if flagged:
            field = BASIC_FIELDS[flagged[0]][0]
            await callback.answer()
            await state.update_data(editing=True)
            await _ask_basic(callback.message, state, flagged[0], note=outcome.field_errors[field])
        else:
            await callback.answer(f"⚠️ {outcome.message}", show_alert=True)
        return

    await callback.answer("✅ Account created")
    # Passwords are not kept once the account exists
    await state.update_data(password=None, password_confirmation=None)
    await callback.message.edit_text(
        "✅ *Account created.* Step 2 of 2: role details\n\n"
        "_Going back from here removes the account again._",
        parse_mode=ParseMode.MARKDOWN,
    )
    await _enter_role_details(callback.message, state, wizard, api)


# ═════════════════════════ Phase 2: role details ═════════════════════════════

async def _enter_role_details(
    message: Message,
    state: FSMContext,
    wizard: RegistrationWizard,
    api: SchoolApiClient,
) -> None:
    if wizard.account_role == Role.TEACHER:
        await state.set_state(TeacherDetailStates.assignment_list)
        await _send_panel(message, wizard)
    elif wizard.account_role == Role.PARENT:
        await state.set_state(ParentDetailStates.link_list)
        await _send_panel(message, wizard)
    else:
        await _ask_student_grade(message, state, api)


async def _send_panel(message: Message, wizard: RegistrationWizard, edit: bool = False) -> None:
    entries = wizard.pending_assignments
    if wizard.account_role == Role.TEACHER:
        title, add_label, empty = (
            "👩‍🏫 *Teaching assignments*",
            "➕ Add assignment",
            "_No assignments yet. Add at least one._",
        )
    else:
        title, add_label, empty = (
            "👪 *Children*",
            "➕ Add child",
            "_No children linked yet. Add at least one._",
        )
    lines = [f"• {esc(e.label)}" for e in entries] or [empty]
    text = f"{title}\n\n" + "\n".join(lines) + "\n\nTap an entry to remove it."
    kb = staged_list_kb(entries, add_label)
    if edit:
        try:
            await message.edit_text(text, parse_mode=ParseMode.MARKDOWN, reply_markup=kb)
            return
        except TelegramBadRequest:
            pass
    await message.answer(text, parse_mode=ParseMode.MARKDOWN, reply_markup=kb)


async def _load_options(callback: CallbackQuery, loader) -> Optional[list]:
    try:
        options = await loader()
    except ApiError as exc:
        await callback.answer(f"⚠️ {exc.message}", show_alert=True)
        return None
    if not options:
        await callback.answer("⚠️ No options available. Please try again later.", show_alert=True)
        return None
    return options


async def _picked(callback: CallbackQuery, callback_data: PickCb, state: FSMContext) -> Optional[str]:
    options = (await state.get_data()).get("options", [])
    if callback_data.idx >= len(options):
        await callback.answer("⚠️ This button is outdated.", show_alert=True)
        return None
    return options[callback_data.idx]


async def _offer(message: Message, state: FSMContext, st: State, field: str, prompt: str, options: list[str]) -> None:
    await state.update_data(options=options)
    await state.set_state(st)
    await message.edit_text(prompt, parse_mode=ParseMode.MARKDOWN, reply_markup=pick_kb(field, options))


# ── Back: compensate and return to review ─────────────────────────────────────

@router.callback_query(WizardCb.filter(F.action == "back"), StateFilter(*ROLE_DETAIL_STATES))
async def cq_back(callback: CallbackQuery, state: FSMContext, wizards: WizardRegistry) -> None:
    outcome = await wizards.navigation.emit(callback.from_user.id)
    await callback.answer()
    if outcome is not None and not outcome.ok:
        note = f"⚠️ {esc(outcome.message)}\nYou are back at step 1."
    else:
        note = "🗑 User data cleared successfully. You are back at step 1."
    await state.update_data(options=None, draft=None)
    try:
        await callback.message.edit_reply_markup(reply_markup=None)
    except TelegramBadRequest:
        pass
    await _send_review(callback.message, state, note=note)


# ── Staged list: remove / add / finish ────────────────────────────────────────

@router.callback_query(
    EntryCb.filter(F.action == "remove"),
    StateFilter(TeacherDetailStates.assignment_list, ParentDetailStates.link_list),
)
async def cq_remove_entry(
    callback: CallbackQuery,
    callback_data: EntryCb,
    state: FSMContext,
    wizards: WizardRegistry,
) -> None:
    wizard = await _wizard_in_phase2(wizards, callback.from_user.id, state, callback.message)
    if wizard is None:
        await callback.answer()
        return
    removed = wizard.remove_assignment(callback_data.eid)
    await callback.answer("🗑 Removed" if removed else "Already removed")
    await _send_panel(callback.message, wizard, edit=True)


@router.callback_query(WizardCb.filter(F.action == "add"), TeacherDetailStates.assignment_list)
async def cq_add_assignment(
    callback: CallbackQuery,
    state: FSMContext,
    api: SchoolApiClient,
) -> None:
    grades = await _load_options(callback, api.list_grades)
    if grades is None:
        return
    await state.update_data(draft={})
    await _offer(callback.message, state, TeacherDetailStates.choose_grade, "grade", "Choose a *grade*:", grades)
    await callback.answer()


@router.callback_query(WizardCb.filter(F.action == "add"), ParentDetailStates.link_list)
async def cq_add_parent_link(callback: CallbackQuery, state: FSMContext) -> None:
    await state.update_data(draft={})
    await callback.answer()
    await _ask_chain(callback.message, state, PARENT_FIELDS, 0)


@router.callback_query(
    WizardCb.filter(F.action == "finish"),
    StateFilter(TeacherDetailStates.assignment_list, ParentDetailStates.link_list),
)
async def cq_finish(
    callback: CallbackQuery,
    state: FSMContext,
    wizards: WizardRegistry,
) -> None:
    wizard = await _wizard_in_phase2(wizards, callback.from_user.id, state, callback.message)
    if wizard is None:
        await callback.answer()
        return
    await callback.answer()
    if wizard.account_role == Role.TEACHER:
        await state.set_state(TeacherDetailStates.enter_staff_no)
        await callback.message.answer(
            "Enter your *staff number*:", parse_mode=ParseMode.MARKDOWN, reply_markup=back_kb(),
        )
        return
    await _submit(callback.message, state, wizards, wizard)


# ── Teacher assignment picks ──────────────────────────────────────────────────

@router.callback_query(PickCb.filter(F.field == "grade"), TeacherDetailStates.choose_grade)
async def cq_teacher_grade(
    callback: CallbackQuery, callback_data: PickCb, state: FSMContext, api: SchoolApiClient,
) -> None:
    grade = await _picked(callback, callback_data, state)
    if grade is None:
        return
    classes = await _load_options(callback, api.list_classes)
    if classes is None:
        return
    await state.update_data(draft={"grade": grade})
    await _offer(callback.message, state, TeacherDetailStates.choose_class, "class",
                 f"{esc(grade)} — choose a *class*:", classes)
    await callback.answer()


@router.callback_query(PickCb.filter(F.field == "class"), TeacherDetailStates.choose_class)
async def cq_teacher_class(
    callback: CallbackQuery, callback_data: PickCb, state: FSMContext, api: SchoolApiClient,
) -> None:
    class_name = await _picked(callback, callback_data, state)
    if class_name is None:
        return
    subjects = await _load_options(callback, api.list_subjects)
    if subjects is None:
        return
    draft = (await state.get_data()).get("draft") or {}
    draft["class_name"] = class_name
    in_grade = [s for s in subjects if not s.grade or s.grade == draft.get("grade")] or subjects
    names = list(dict.fromkeys(s.main_subject for s in in_grade))
    await state.update_data(draft=draft, subject_media={
        name: sorted({s.medium for s in in_grade if s.main_subject == name and s.medium})
        for name in names
    })
    await _offer(callback.message, state, TeacherDetailStates.choose_subject, "subject",
                 "Choose a *subject*:", names)
    await callback.answer()


@router.callback_query(PickCb.filter(F.field == "subject"), TeacherDetailStates.choose_subject)
async def cq_teacher_subject(callback: CallbackQuery, callback_data: PickCb, state: FSMContext) -> None:
    subject = await _picked(callback, callback_data, state)
    if subject is None:
        return
    data = await state.get_data()
    draft = data.get("draft") or {}
    draft["subject"] = subject
    media = (data.get("subject_media") or {}).get(subject) or list(Medium.ALL)
    await state.update_data(draft=draft)
    await _offer(callback.message, state, TeacherDetailStates.choose_medium, "medium",
                 "Choose the *medium*:", media)
    await callback.answer()


@router.callback_query(PickCb.filter(F.field == "medium"), TeacherDetailStates.choose_medium)
async def cq_teacher_medium(
    callback: CallbackQuery, callback_data: PickCb, state: FSMContext, wizards: WizardRegistry,
) -> None:
    medium = await _picked(callback, callback_data, state)
    if medium is None:
        return
    wizard = await _wizard_in_phase2(wizards, callback.from_user.id, state, callback.message)
    if wizard is None:
        await callback.answer()
        return
    draft = (await state.get_data()).get("draft") or {}
    draft["medium"] = medium
    outcome = wizard.stage_assignment(draft)
    await state.update_data(draft=None, options=None, subject_media=None)
    await state.set_state(TeacherDetailStates.assignment_list)
    if outcome.ok:
        await callback.answer("➕ Added")
    else:
        await callback.answer(f"⚠️ {outcome.message}", show_alert=True)
    await _send_panel(callback.message, wizard, edit=True)


@router.message(TeacherDetailStates.enter_staff_no, F.text)
async def msg_staff_no(message: Message, state: FSMContext, wizards: WizardRegistry) -> None:
    wizard = await _wizard_in_phase2(wizards, message.from_user.id, state, message)
    if wizard is None:
        return
    await _submit(message, state, wizards, wizard, staff_no=message.text.strip())


# ── Parent link / student record text chains ──────────────────────────────────

async def _ask_chain(message: Message, state: FSMContext, chain, index: int, note: str = "") -> None:
    _, st, prompt = chain[index]
    await state.set_state(st)
    text = f"⚠️ {esc(note)}\n\n{prompt}" if note else prompt
    await message.answer(text, parse_mode=ParseMode.MARKDOWN, reply_markup=back_kb())


@router.message(StateFilter(*[st for _, st, _ in PARENT_FIELDS]), F.text)
async def msg_parent_field(message: Message, state: FSMContext, wizards: WizardRegistry) -> None:
    index, field = _chain_lookup(PARENT_FIELDS, await state.get_state())
    if field is None:
        return
    value = message.text.strip()
    if not value:
        await _ask_chain(message, state, PARENT_FIELDS, index, note="This field is required")
        return

    draft = (await state.get_data()).get("draft") or {}
    draft[field] = value
    await state.update_data(draft=draft)
    if index + 1 < len(PARENT_FIELDS):
        await _ask_chain(message, state, PARENT_FIELDS, index + 1)
        return

    wizard = await _wizard_in_phase2(wizards, message.from_user.id, state, message)
    if wizard is None:
        return
    outcome = wizard.stage_assignment(draft)
    await state.update_data(draft=None)
    await state.set_state(ParentDetailStates.link_list)
    if not outcome.ok:
        await message.answer(f"⚠️ {esc(outcome.message)}", parse_mode=ParseMode.MARKDOWN)
    await _send_panel(message, wizard)


async def _ask_student_grade(message: Message, state: FSMContext, api: SchoolApiClient) -> None:
    await state.set_state(StudentDetailStates.choose_grade)
    try:
        grades = await api.list_grades()
    except ApiError as exc:
        await message.answer(f"⚠️ {esc(exc.message)}", reply_markup=back_kb())
        return
    await state.update_data(options=grades, student={})
    await message.answer("Choose your *grade*:", parse_mode=ParseMode.MARKDOWN,
                         reply_markup=pick_kb("grade", grades))


@router.callback_query(PickCb.filter(F.field == "grade"), StudentDetailStates.choose_grade)
async def cq_student_grade(
    callback: CallbackQuery, callback_data: PickCb, state: FSMContext, api: SchoolApiClient,
) -> None:
    grade = await _picked(callback, callback_data, state)
    if grade is None:
        return
    classes = await _load_options(callback, api.list_classes)
    if classes is None:
        return
    await state.update_data(student={"student_grade": grade})
    await _offer(callback.message, state, StudentDetailStates.choose_class, "class",
                 "Choose your *class*:", classes)
    await callback.answer()


@router.callback_query(PickCb.filter(F.field == "class"), StudentDetailStates.choose_class)
async def cq_student_class(callback: CallbackQuery, callback_data: PickCb, state: FSMContext) -> None:
    class_name = await _picked(callback, callback_data, state)
    if class_name is None:
        return
    student = (await state.get_data()).get("student") or {}
    student["student_class"] = class_name
    await state.update_data(student=student)
    await _offer(callback.message, state, StudentDetailStates.choose_medium, "medium",
                 "Choose your *medium*:", list(Medium.ALL))
    await callback.answer()


@router.callback_query(PickCb.filter(F.field == "medium"), StudentDetailStates.choose_medium)
async def cq_student_medium(callback: CallbackQuery, callback_data: PickCb, state: FSMContext) -> None:
    medium = await _picked(callback, callback_data, state)
    if medium is None:
        return
    student = (await state.get_data()).get("student") or {}
    student["medium"] = medium
    await state.update_data(student=student, options=None)
    await callback.message.edit_text(f"🗣 Medium: *{esc(medium)}*", parse_mode=ParseMode.MARKDOWN)
    await callback.answer()
    await _ask_chain(callback.message, state, STUDENT_TEXT_FIELDS, 0)


@router.message(StateFilter(*[st for _, st, _ in STUDENT_TEXT_FIELDS]), F.text)
async def msg_student_field(message: Message, state: FSMContext, wizards: WizardRegistry) -> None:
    index, field = _chain_lookup(STUDENT_TEXT_FIELDS, await state.get_state())
    if field is None:
        return
    value = message.text.strip()
    if not value:
        await _ask_chain(message, state, STUDENT_TEXT_FIELDS, index, note="This field is required")
        return

    data = await state.get_data()
    student = data.get("student") or {}
    student[field] = value
    await state.update_data(student=student)
    if index + 1 < len(STUDENT_TEXT_FIELDS) and not data.get("editing"):
        await _ask_chain(message, state, STUDENT_TEXT_FIELDS, index + 1)
        return

    wizard = await _wizard_in_phase2(wizards, message.from_user.id, state, message)
    if wizard is None:
        return
    await _submit(message, state, wizards, wizard, student_record=student)


# ── Final submit ──────────────────────────────────────────────────────────────

async def _submit(
    message: Message,
    state: FSMContext,
    wizards: WizardRegistry,
    wizard: RegistrationWizard,
    **kwargs,
) -> None:
    outcome = await wizard.submit_role_details(**kwargs)
    if outcome.skipped:
        await message.answer(f"⏳ {esc(outcome.message)}", parse_mode=ParseMode.MARKDOWN)
        return

    if outcome.ok:
        wizards.discard(wizard.owner_id)
        await state.clear()
        await message.answer(
            f"🎉 *{esc(outcome.message)}*",
            parse_mode=ParseMode.MARKDOWN,
            reply_markup=login_prompt_kb(),
        )
        return

    await message.answer(f"⚠️ {esc(outcome.message)}", parse_mode=ParseMode.MARKDOWN)
    if wizard.phase != Phase.COLLECTING_ROLE_DETAILS:
        return
    if wizard.account_role == Role.STUDENT:
        # Re-ask the flagged field (or the last one) and resubmit on answer
        index = next(
            (i for i, (f, _, _) in enumerate(STUDENT_TEXT_FIELDS) if f in outcome.field_errors),
            len(STUDENT_TEXT_FIELDS) - 1,
        )
        await state.update_data(editing=True)
        await _ask_chain(message, state, STUDENT_TEXT_FIELDS, index)
        return
    if "staff_no" in outcome.field_errors:
        await state.set_state(TeacherDetailStates.enter_staff_no)
        await message.answer("Enter your *staff number*:", parse_mode=ParseMode.MARKDOWN, reply_markup=back_kb())
        return
    # Staged entries are still there; let the user retry from the panel
    await state.set_state(
        TeacherDetailStates.assignment_list if wizard.account_role == Role.TEACHER
        else ParentDetailStates.link_list
    )
    await _send_panel(message, wizard)
