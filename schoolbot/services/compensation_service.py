"""
Orphaned-account ledger.

When a wizard's compensating delete fails (backend down, timeout during
shutdown) the account id is written here, and every bot launch retries the
delete once per unresolved row. Functions receive an AsyncSession so they can
be tested against an in-memory database.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from schoolbot.models.base import AsyncSessionFactory
from schoolbot.models.models import OrphanedAccount
from schoolbot.services.api_client import ApiError, SchoolApiClient

logger = logging.getLogger(__name__)


async def record_orphan(
    session: AsyncSession,
    account_id: str,
    account_role: str,
    reason: str,
) -> OrphanedAccount:
    """Add or refresh the ledger row for an account whose delete failed."""
    result = await session.execute(
        select(OrphanedAccount).where(
            OrphanedAccount.account_id == account_id,
            OrphanedAccount.resolved_at.is_(None),
        )
    )
    orphan = result.scalar_one_or_none()
    if orphan is None:
        orphan = OrphanedAccount(
            account_id=account_id,
            account_role=account_role,
            reason=reason[:500],
            attempts=1,
        )
        session.add(orphan)
    else:
        orphan.attempts += 1
        orphan.reason = reason[:500]
    await session.flush()
    return orphan


async def list_unresolved(session: AsyncSession) -> List[OrphanedAccount]:
    result = await session.execute(
        select(OrphanedAccount)
        .where(OrphanedAccount.resolved_at.is_(None))
        .order_by(OrphanedAccount.created_at, OrphanedAccount.id)
    )
    return list(result.scalars().all())


async def reconcile_orphans(
    session: AsyncSession,
    api: SchoolApiClient,
) -> Tuple[int, int]:
    """
    Retry the delete for every unresolved orphan.
    Returns (resolved, still_failing).
    """
    resolved = failed = 0
    for orphan in await list_unresolved(session):
        try:
            await api.delete_account(orphan.account_id, orphan.account_role)
        except ApiError as exc:
            orphan.attempts += 1
            orphan.reason = exc.message[:500]
            failed += 1
            logger.warning(
                "Orphaned account %s still not deleted (attempt %d): %s",
                orphan.account_id, orphan.attempts, exc.message,
            )
            continue
        orphan.resolved_at = datetime.utcnow()
        resolved += 1
        logger.info("Orphaned account %s deleted", orphan.account_id)
    await session.flush()
    return resolved, failed


async def remember_orphan(account_id: str, account_role: str, reason: str) -> None:
    """Wizard hook: persist a failed compensation in its own session."""
    try:
        async with AsyncSessionFactory() as session:
            await record_orphan(session, account_id, account_role, reason)
            await session.commit()
    except SQLAlchemyError:
        logger.exception("Could not record orphaned account %s", account_id)
