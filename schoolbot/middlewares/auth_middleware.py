"""
Session middleware.

Attaches `auth: SessionContext | None` to handler data for all updates.
The IsAuthenticated filter (below) can be used as a router-level filter.
"""
from typing import Any, Awaitable, Callable, Dict, Optional

from aiogram import BaseMiddleware
from aiogram.types import TelegramObject

from schoolbot.services.auth_service import SessionContext, SessionStore


class AuthMiddleware(BaseMiddleware):
    """
    Injects the caller's SessionContext (or None) into data dict.
    Must run after ServicesMiddleware, which provides the store.
    """

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        user = data.get("event_from_user")
        store: Optional[SessionStore] = data.get("sessions")
        data["auth"] = store.get(user.id) if (store and user) else None
        return await handler(event, data)


# ── Reusable filter ──────────────────────────────────────────────────────────

from aiogram.filters import BaseFilter
from aiogram.types import Message, CallbackQuery


class IsAuthenticated(BaseFilter):
    """Use on individual routers/handlers to restrict access to logged-in users."""

    async def __call__(
        self,
        event: Message | CallbackQuery,
        auth: Optional[SessionContext] = None,
    ) -> bool:
        if auth is None:
            if isinstance(event, Message):
                await event.answer("🔒 Please log in first: /login")
            elif isinstance(event, CallbackQuery):
                await event.answer("🔒 Please log in first.", show_alert=True)
        return auth is not None
