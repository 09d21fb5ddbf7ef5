"""
Login / logout / profile handlers.

Flow:
  /login → username → password → permissions resolved → landing view
"""
import logging
from aiogram import F, Router
from aiogram.enums import ParseMode
from aiogram.exceptions import TelegramBadRequest
from aiogram.filters import Command
from aiogram.fsm.context import FSMContext
from aiogram.types import CallbackQuery, Message

from schoolbot.config import settings
from schoolbot.handlers.markdown import esc
from schoolbot.keyboards import MainMenuCb, back_to_main, guest_main_menu, user_main_menu
from schoolbot.middlewares import IsAuthenticated
from schoolbot.models.models import LandingView
from schoolbot.services import (
    ApiError, SchoolApiClient, SessionStore, WizardRegistry,
    login, logout, refresh_user,
)
from schoolbot.states import LoginStates

logger = logging.getLogger(__name__)
router = Router(name="login")


# ── Entry ─────────────────────────────────────────────────────────────────────

async def _ask_username(message: Message, state: FSMContext, wizards: WizardRegistry) -> None:
    # Leaving an unfinished registration for the login screen abandons it
    await wizards.abandon(message.chat.id)
    await state.clear()
    await state.set_state(LoginStates.enter_username)
    await message.answer("🔑 *Log in*\n\nEnter your *username*:",
                         parse_mode=ParseMode.MARKDOWN, reply_markup=back_to_main())


@router.message(Command("login"))
async def cmd_login(message: Message, state: FSMContext, wizards: WizardRegistry) -> None:
    await _ask_username(message, state, wizards)


@router.callback_query(MainMenuCb.filter(F.action == "login"))
async def cq_login(callback: CallbackQuery, state: FSMContext, wizards: WizardRegistry) -> None:
    await callback.answer()
    await _ask_username(callback.message, state, wizards)


@router.message(LoginStates.enter_username, F.text)
async def msg_username(message: Message, state: FSMContext) -> None:
    username = message.text.strip()
    if not username:
        await message.answer("⚠️ Username is required. Enter your *username*:", parse_mode=ParseMode.MARKDOWN)
        return
    await state.update_data(username=username)
    await state.set_state(LoginStates.enter_password)
    await message.answer("Enter your *password*:", parse_mode=ParseMode.MARKDOWN)


@router.message(LoginStates.enter_password, F.text)
async def msg_password(
    message: Message,
    state: FSMContext,
    api: SchoolApiClient,
    sessions: SessionStore,
) -> None:
    password = message.text
    try:
        await message.delete()
    except TelegramBadRequest:
        logger.debug("Could not delete password message in chat %d", message.chat.id)

    username = (await state.get_data()).get("username", "")
    try:
        context = await login(
            api, username, password,
            retries=settings.PERMISSION_RETRIES,
            delay=settings.PERMISSION_RETRY_DELAY_SECONDS,
        )
    except ApiError as exc:
        await state.set_state(LoginStates.enter_username)
        await message.answer(
            f"⚠️ {esc(exc.message)}\n\nEnter your *username*:",
            parse_mode=ParseMode.MARKDOWN,
            reply_markup=back_to_main(),
        )
        return

    await state.clear()
    sessions.set(message.from_user.id, context)

    if context.landing_view == LandingView.UNAUTHORIZED:
        await message.answer(
            "⛔️ No permissions assigned to your account. Please contact administrator.",
            reply_markup=user_main_menu(),
        )
        return

    await message.answer(
        f"👋 Welcome back, *{esc(context.display_name)}*!\n\n"
        f"Opening: {LandingView.LABELS[context.landing_view]}",
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=user_main_menu(),
    )


# ── Profile / logout ──────────────────────────────────────────────────────────

@router.callback_query(MainMenuCb.filter(F.action == "profile"), IsAuthenticated())
async def cq_profile(
    callback: CallbackQuery,
    api: SchoolApiClient,
    sessions: SessionStore,
) -> None:
    try:
        context = await refresh_user(api, sessions, callback.from_user.id)
    except ApiError as exc:
        await callback.answer(f"⚠️ {exc.message}", show_alert=True)
        return

    if context is None:
        await callback.message.edit_text(
            "🔒 Your session has expired. Please log in again.",
            reply_markup=guest_main_menu(),
        )
        await callback.answer()
        return

    permissions = ", ".join(context.permissions) or "none"
    await callback.message.edit_text(
        f"👤 *{esc(context.display_name)}*\n\n"
        f"📧 {esc(context.user.get('email', '—'))}\n"
        f"🎓 {esc(context.user.get('userType', '—'))}\n"
        f"🔐 Permissions: {esc(permissions)}",
        reply_markup=user_main_menu(),
    )
    await callback.answer()


async def _do_logout(owner_id: int, api: SchoolApiClient, sessions: SessionStore) -> str:
    if await logout(api, sessions, owner_id):
        return "👋 You have been logged out."
    return "You are not logged in."


@router.message(Command("logout"))
async def cmd_logout(message: Message, api: SchoolApiClient, sessions: SessionStore) -> None:
    text = await _do_logout(message.from_user.id, api, sessions)
    await message.answer(text, reply_markup=guest_main_menu())


@router.callback_query(MainMenuCb.filter(F.action == "logout"))
async def cq_logout(
    callback: CallbackQuery,
    api: SchoolApiClient,
    sessions: SessionStore,
) -> None:
    text = await _do_logout(callback.from_user.id, api, sessions)
    await callback.message.edit_text(text, reply_markup=guest_main_menu())
    await callback.answer()
