"""
School Portal — registration & login bot for the school management backend.
Entry point: creates the bot, registers routers + middleware, handles graceful shutdown.
"""
import asyncio
import logging
import signal
import sys

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.exceptions import TelegramAPIError
from aiogram.fsm.storage.memory import MemoryStorage
from aiogram.types import ErrorEvent
from sqlalchemy.exc import SQLAlchemyError

from schoolbot.config import settings
from schoolbot.middlewares import AuthMiddleware, ServicesMiddleware
from schoolbot.models.base import AsyncSessionFactory, Base, engine
from schoolbot.services import (
    SchoolApiClient, SessionStore, WizardRegistry,
    reconcile_orphans, remember_orphan,
)

# ── Handlers ──────────────────────────────────────────────────────────────────
from schoolbot.handlers.common import router as common_router
from schoolbot.handlers.registration import router as registration_router
from schoolbot.handlers.login import router as login_router
from schoolbot.handlers.fallback import router as fallback_router

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)


async def create_tables() -> None:
    """Create the ledger table on startup."""
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables ready.")
    except (SQLAlchemyError, OSError) as e:
        logger.critical(
            "❌ Cannot connect to database!\n"
            "   URL: %s\n"
            "   Error: %s\n\n"
            "   → Locally: use SQLite (DATABASE_URL=sqlite+aiosqlite:///./schoolbot.db)",
            settings.DATABASE_URL.split("@")[-1],   # hide credentials in log
            e,
        )
        sys.exit(1)


async def reconcile_on_startup(api: SchoolApiClient) -> None:
    """Retry compensating deletes that failed during the previous run."""
    try:
        async with AsyncSessionFactory() as session:
            resolved, failed = await reconcile_orphans(session, api)
            await session.commit()
    except SQLAlchemyError:
        logger.exception("Orphaned-account reconciliation failed")
        return
    if resolved or failed:
        logger.info("Orphaned accounts: %d deleted, %d still pending", resolved, failed)


def build_dispatcher(
    api: SchoolApiClient,
    wizards: WizardRegistry,
    sessions: SessionStore,
) -> Dispatcher:
    dp = Dispatcher(storage=MemoryStorage())

    # ── Global error handler: callbacks are always answered ───────────────────
    @dp.errors()
    async def handle_error(event: ErrorEvent) -> None:
        logger.exception("Unhandled error: %s", event.exception)
        update = event.update
        if update.callback_query:
            try:
                await update.callback_query.answer(
                    "⚠️ Something went wrong. Please try again.", show_alert=True
                )
            except TelegramAPIError:
                pass

    # ── Global middlewares ────────────────────────────────────────────────────
    dp.update.middleware(ServicesMiddleware(api, wizards, sessions))
    dp.update.middleware(AuthMiddleware())

    # ── Routers: order is handler priority ────────────────────────────────────
    dp.include_router(common_router)
    dp.include_router(registration_router)
    dp.include_router(login_router)

    # !! Must be last: catches any callback not handled above !!
    dp.include_router(fallback_router)

    return dp


async def main() -> None:
    logger.info("Starting School Portal bot…")
    await create_tables()

    api = SchoolApiClient(settings.api_base_url, timeout=settings.API_TIMEOUT_SECONDS)
    wizards = WizardRegistry(
        api,
        compensation_timeout=settings.COMPENSATION_TIMEOUT_SECONDS,
        on_compensation_failed=remember_orphan,
    )
    sessions = SessionStore()

    await reconcile_on_startup(api)

    bot = Bot(
        token=settings.BOT_TOKEN,
        default=DefaultBotProperties(parse_mode=ParseMode.MARKDOWN),
    )
    dp = build_dispatcher(api, wizards, sessions)

    # ── Graceful shutdown on SIGTERM (Docker / hosting platform) ──────────────
    loop = asyncio.get_running_loop()

    def _handle_signal():
        logger.info("Received shutdown signal, stopping…")
        asyncio.ensure_future(dp.stop_polling())

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, _handle_signal)
        except NotImplementedError:
            # Windows does not support add_signal_handler
            pass

    try:
        logger.info("Bot is running. Press Ctrl+C to stop.")
        await dp.start_polling(
            bot,
            allowed_updates=dp.resolve_used_update_types(),
            handle_signals=False,
        )
    finally:
        logger.info("Shutting down…")
        # Unload: wizards still holding a phase-1 account delete it now
        abandoned = await wizards.shutdown()
        if abandoned:
            logger.info("Compensated %d unfinished registration(s)", abandoned)
        await api.close()
        await bot.session.close()
        await engine.dispose()
        logger.info("Shutdown complete.")


if __name__ == "__main__":
    asyncio.run(main())
