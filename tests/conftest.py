"""
Shared pytest fixtures for School Portal bot tests.

Sets required environment variables BEFORE any schoolbot module is imported so
that pydantic-settings and SQLAlchemy engine initialisation use safe test values.
"""
from __future__ import annotations

import asyncio
import os
from typing import AsyncGenerator, Optional

# ── Set env vars before any schoolbot import ──────────────────────────────────
os.environ.setdefault("BOT_TOKEN", "test-token-for-pytest")
os.environ.setdefault("API_BASE_URL", "http://backend.test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

# ── Third-party ───────────────────────────────────────────────────────────────
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# ── Project imports (safe after env vars are set) ─────────────────────────────
from schoolbot.models.base import Base
from schoolbot.services.api_client import AccountRef


# ── DB fixtures ───────────────────────────────────────────────────────────────

@pytest.fixture
async def async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Yield a fresh AsyncSession backed by an isolated in-memory SQLite database.
    Schema is created fresh for every test function; engine is always disposed
    on teardown, even if the test raises an exception.
    """
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    try:
        async with factory() as session:
            yield session
    finally:
        await engine.dispose()


# ── Mock helpers ──────────────────────────────────────────────────────────────

class FakeApi:
    """
    In-memory stand-in for SchoolApiClient.

    Records every call as (method_name, args). Set `<method>_error` to an
    exception to make that method raise, or put an asyncio.Event into `gates`
    under the method name to hold the call until the event is set.
    """

    def __init__(self, account_id: str = "42") -> None:
        self.account_id = account_id
        self.calls: list[tuple[str, tuple]] = []
        self.gates: dict[str, asyncio.Event] = {}
        self.create_account_error: Optional[Exception] = None
        self.delete_account_error: Optional[Exception] = None
        self.submit_error: Optional[Exception] = None
        self.login_error: Optional[Exception] = None
        self.logout_error: Optional[Exception] = None
        self.login_payload: dict = {}
        # Successive /api/user responses; an Exception instance is raised
        self.user_responses: list = []

    def count(self, name: str) -> int:
        return sum(1 for call, _ in self.calls if call == name)

    def args(self, name: str) -> tuple:
        return next(args for call, args in self.calls if call == name)

    async def _enter(self, name: str, *args) -> None:
        self.calls.append((name, args))
        gate = self.gates.get(name)
        if gate is not None:
            await gate.wait()

    async def create_account(self, info) -> AccountRef:
        account_id = self.account_id    # fixed at call time, not when a gate opens
        await self._enter("create_account", info)
        if self.create_account_error:
            raise self.create_account_error
        return AccountRef(account_id=account_id, account_role=info.role)

    async def delete_account(self, account_id: str, account_role: str) -> None:
        await self._enter("delete_account", account_id, account_role)
        if self.delete_account_error:
            raise self.delete_account_error

    async def submit_teacher_assignments(self, account_id, account_role, staff_no, assignments) -> None:
        await self._enter("submit_teacher_assignments", account_id, account_role, staff_no, list(assignments))
        if self.submit_error:
            raise self.submit_error

    async def submit_student_record(self, account_id, account_role, record) -> None:
        await self._enter("submit_student_record", account_id, account_role, record)
        if self.submit_error:
            raise self.submit_error

    async def submit_parent_links(self, account_id, account_role, links) -> None:
        await self._enter("submit_parent_links", account_id, account_role, list(links))
        if self.submit_error:
            raise self.submit_error

    async def login(self, username: str, password: str) -> dict:
        await self._enter("login", username)
        if self.login_error:
            raise self.login_error
        return dict(self.login_payload)

    async def current_user(self, token: str) -> dict:
        await self._enter("current_user", token)
        response = self.user_responses.pop(0) if self.user_responses else {}
        if isinstance(response, Exception):
            raise response
        return response

    async def logout(self, token: str) -> None:
        await self._enter("logout", token)
        if self.logout_error:
            raise self.logout_error


@pytest.fixture
def fake_api() -> FakeApi:
    return FakeApi()


def basic_fields(**overrides) -> dict:
    """A valid phase-1 form; override individual fields per test."""
    fields = dict(
        name="Nimal Perera",
        email="nimal.perera@example.com",
        address="12 Lake Road, Kandy",
        birth_day="1985-04-12",
        contact="0771234567",
        role="Teacher",
        username="abc",
        password="secret1",
        password_confirmation="secret1",
        gender="Male",
    )
    fields.update(overrides)
    return fields


@pytest.fixture
def make_form():
    return basic_fields
