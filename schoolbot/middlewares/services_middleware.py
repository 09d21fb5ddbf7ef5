"""
Service injection middleware.
Puts the backend client, the wizard registry and the session store into every
handler's data dict under keys "api", "wizards" and "sessions".
"""
from typing import Any, Awaitable, Callable, Dict

from aiogram import BaseMiddleware
from aiogram.types import TelegramObject

from schoolbot.services.api_client import SchoolApiClient
from schoolbot.services.auth_service import SessionStore
from schoolbot.services.registration_wizard import WizardRegistry


class ServicesMiddleware(BaseMiddleware):
    def __init__(
        self,
        api: SchoolApiClient,
        wizards: WizardRegistry,
        sessions: SessionStore,
    ) -> None:
        self._api = api
        self._wizards = wizards
        self._sessions = sessions

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        data["api"] = self._api
        data["wizards"] = self._wizards
        data["sessions"] = self._sessions
        return await handler(event, data)
