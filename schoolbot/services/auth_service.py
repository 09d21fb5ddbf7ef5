"""
Login, permission resolution and the per-user session context.

The session context is an explicit object held in a SessionStore keyed by
Telegram user id: set on login, cleared on logout or on any 401.
"""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from schoolbot.models.models import LandingView
from schoolbot.services.api_client import ApiError, SchoolApiClient, UnauthorizedError

logger = logging.getLogger(__name__)


@dataclass
class SessionContext:
    token: str
    user: Dict[str, Any] = field(default_factory=dict)
    permissions: List[str] = field(default_factory=list)
    landing_view: str = LandingView.UNAUTHORIZED

    @property
    def display_name(self) -> str:
        return str(self.user.get("name") or self.user.get("username") or "user")

    @property
    def is_authorized(self) -> bool:
        return bool(self.permissions)


class SessionStore:
    def __init__(self) -> None:
        self._sessions: Dict[int, SessionContext] = {}

    def set(self, owner_id: int, context: SessionContext) -> None:
        self._sessions[owner_id] = context

    def get(self, owner_id: int) -> Optional[SessionContext]:
        return self._sessions.get(owner_id)

    def clear(self, owner_id: int) -> Optional[SessionContext]:
        return self._sessions.pop(owner_id, None)


# ── Permissions ───────────────────────────────────────────────────────────────

def _granted_keys(mapping: dict) -> List[str]:
    return [str(k) for k, v in mapping.items() if v is True]


def parse_permissions(raw: Any) -> List[str]:
    """
    Normalise every observed shape of `access` to a list of permission keys.

    Accepted: `[json_string]`, `[{"key": true}]`, `[["key", ...]]`, `["key"]`,
    `{"key": true}`, or a JSON string of either.
    """
    if not raw:
        return []

    if isinstance(raw, list):
        first = raw[0]
        if isinstance(first, str):
            try:
                first = json.loads(first)
            except ValueError:
                pass
        if isinstance(first, dict):
            return _granted_keys(first)
        if isinstance(first, list):
            return [str(p) for p in first if p]
        if isinstance(first, str):
            # A list of plain keys rather than a wrapped JSON document
            return [str(p) for p in raw if isinstance(p, str) and p]
        return []

    if isinstance(raw, dict):
        return _granted_keys(raw)

    if isinstance(raw, str):
        try:
            parsed = json.loads(raw)
        except ValueError:
            return [raw]
        if isinstance(parsed, list):
            return [str(p) for p in parsed if p]
        if isinstance(parsed, dict):
            return _granted_keys(parsed)
    return []


def landing_view_for(permissions: List[str]) -> str:
    if not permissions:
        return LandingView.UNAUTHORIZED
    if LandingView.MANAGEMENT_STAFF_REPORT in permissions:
        return LandingView.MANAGEMENT_STAFF_REPORT
    if LandingView.CLASS_TEACHER_REPORT in permissions:
        return LandingView.CLASS_TEACHER_REPORT
    return LandingView.PARENT_REPORT


# ── Login / logout ────────────────────────────────────────────────────────────

async def login(
    api: SchoolApiClient,
    username: str,
    password: str,
    retries: int = 2,
    delay: float = 0.4,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> SessionContext:
    """
    Authenticate and resolve permissions.

    If the login response carries no permissions, the canonical user record
    is queried once and then up to `retries` more times, with `delay` seconds
    between queries.
    Raises ApiError if the credentials are rejected.
    """
    data = await api.login(username, password)
    token = str(data.get("token") or data.get("access_token") or "")
    user = data.get("user") if isinstance(data.get("user"), dict) else data
    user = {k: v for k, v in user.items() if k not in ("token", "access_token")}
    permissions = parse_permissions(user.get("access"))

    if not permissions and token:
        for attempt in range(retries + 1):
            if attempt:
                await sleep(delay)
            try:
                fresh = await api.current_user(token)
            except ApiError as exc:
                logger.info("Permission lookup %d/%d failed: %s", attempt + 1, retries + 1, exc.message)
                continue
            if fresh:
                user = fresh
                permissions = parse_permissions(fresh.get("access"))
                if permissions:
                    break

    context = SessionContext(
        token=token,
        user=user,
        permissions=permissions,
        landing_view=landing_view_for(permissions),
    )
    if not permissions:
        logger.warning("User %s has no permissions assigned", username)
    return context


async def refresh_user(
    api: SchoolApiClient,
    store: SessionStore,
    owner_id: int,
) -> Optional[SessionContext]:
    """Re-read the user record; a 401 drops the stored context."""
    context = store.get(owner_id)
    if context is None:
        return None
    try:
        user = await api.current_user(context.token)
    except UnauthorizedError:
        store.clear(owner_id)
        logger.info("Session for owner=%d expired", owner_id)
        return None
    context.user = user
    context.permissions = parse_permissions(user.get("access"))
    context.landing_view = landing_view_for(context.permissions)
    return context


async def logout(api: SchoolApiClient, store: SessionStore, owner_id: int) -> bool:
    """Clear the local context, then tell the backend. Returns False if not logged in."""
    context = store.clear(owner_id)
    if context is None:
        return False
    if context.token:
        try:
            await api.logout(context.token)
        except ApiError as exc:
            logger.warning("Logout failed for owner=%d: %s", owner_id, exc.message)
    return True
