"""
Common handlers: /start, /cancel, main menu routing.

Leaving the wizard through any of these counts as navigation away from it:
a wizard that already holds a phase-1 account deletes it.
"""
import logging
from typing import Optional

from aiogram import F, Router
from aiogram.enums import ParseMode
from aiogram.filters import Command, CommandStart
from aiogram.fsm.context import FSMContext
from aiogram.types import CallbackQuery, Message

from schoolbot.handlers.markdown import esc
from schoolbot.keyboards import MainMenuCb, guest_main_menu, user_main_menu
from schoolbot.services import SessionContext, StepOutcome, WizardRegistry

logger = logging.getLogger(__name__)
router = Router(name="common")


def _abandon_note(outcome: Optional[StepOutcome]) -> str:
    if outcome is None:
        return ""
    if outcome.ok:
        return "🗑 Unfinished registration removed.\n\n"
    return f"⚠️ Unfinished registration could not be removed: {esc(outcome.message)}\n\n"


# ── /start ────────────────────────────────────────────────────────────────────

@router.message(CommandStart())
async def cmd_start(
    message: Message,
    state: FSMContext,
    wizards: WizardRegistry,
    auth: Optional[SessionContext] = None,
) -> None:
    outcome = await wizards.abandon(message.from_user.id)
    await state.clear()

    name = message.from_user.first_name
    if auth is not None:
        text = (
            f"{_abandon_note(outcome)}"
            f"🏫 Welcome back, *{esc(auth.display_name)}*!\n\n"
            f"Choose an action:"
        )
        await message.answer(text, parse_mode=ParseMode.MARKDOWN, reply_markup=user_main_menu())
        return

    text = (
        f"{_abandon_note(outcome)}"
        f"🏫 Welcome to the *School Portal*, {esc(name)}!\n\n"
        f"Here you can:\n"
        f"• 📝 Register as a teacher, student or parent\n"
        f"• 🔑 Log in to see your reports\n\n"
        f"Choose an action:"
    )
    await message.answer(text, parse_mode=ParseMode.MARKDOWN, reply_markup=guest_main_menu())


# ── /cancel ───────────────────────────────────────────────────────────────────

@router.message(Command("cancel"))
async def cmd_cancel(message: Message, state: FSMContext, wizards: WizardRegistry) -> None:
    outcome = await wizards.abandon(message.from_user.id)
    await state.clear()
    await message.answer(
        f"{_abandon_note(outcome)}❌ Cancelled.",
        reply_markup=guest_main_menu(),
    )


# ── Main menu callback ────────────────────────────────────────────────────────

@router.callback_query(MainMenuCb.filter(F.action == "main"))
async def cq_main_menu(
    callback: CallbackQuery,
    state: FSMContext,
    wizards: WizardRegistry,
    auth: Optional[SessionContext] = None,
) -> None:
    outcome = await wizards.abandon(callback.from_user.id)
    await state.clear()
    if auth is not None:
        text = f"{_abandon_note(outcome)}🏫 *School Portal*\n\nChoose an action:"
        kb   = user_main_menu()
    else:
        text = f"{_abandon_note(outcome)}🏫 *School Portal*\n\nRegister or log in:"
        kb   = guest_main_menu()

    await callback.message.edit_text(text, parse_mode=ParseMode.MARKDOWN, reply_markup=kb)
    await callback.answer()
