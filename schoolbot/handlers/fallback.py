"""
Global fallback handler — included LAST in the dispatcher.

Catches any callback query that no other router handled.
Prevents infinite Telegram spinners from:
  - Stale keyboards after bot restart (MemoryStorage is wiped on redeploy)
  - Buttons from a wizard step the user already left
"""
from typing import Optional

from aiogram import Router
from aiogram.enums import ParseMode
from aiogram.exceptions import TelegramBadRequest
from aiogram.fsm.context import FSMContext
from aiogram.types import CallbackQuery

from schoolbot.keyboards import guest_main_menu, user_main_menu
from schoolbot.services import SessionContext

router = Router(name="fallback")


@router.callback_query()
async def cq_fallback(
    callback: CallbackQuery,
    state: FSMContext,
    auth: Optional[SessionContext] = None,
) -> None:
    await callback.answer("⚠️ This button is outdated. Please start again.", show_alert=True)
    await state.clear()
    try:
        kb = user_main_menu() if auth is not None else guest_main_menu()
        await callback.message.edit_text(
            "🔄 *Session reset.* Back to the main menu:",
            parse_mode=ParseMode.MARKDOWN,
            reply_markup=kb,
        )
    except TelegramBadRequest:
        pass
