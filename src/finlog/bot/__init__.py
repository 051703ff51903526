"""Telegram bot factory and entry point.

Creates the aiogram :class:`Bot` and :class:`Dispatcher`, registers the
router, middleware and the :class:`~finlog.bot.transport.TelegramTransport`,
and exposes :func:`run_bot`.

The bot long-polls by default.  When ``WEBHOOK_BASE_URL`` is set it
registers a Telegram webhook instead and serves it from an aiohttp app on
``WEBHOOK_PORT``.
"""

from __future__ import annotations

import asyncio
import logging

from aiohttp import web
from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.types import BotCommand
from aiogram.webhook.aiohttp_server import SimpleRequestHandler, setup_application

from finlog.bot.handlers import router as main_router
from finlog.bot.middleware import AccessControlMiddleware, DbSessionMiddleware
from finlog.bot.transport import TelegramTransport
from finlog.config import settings
from finlog.db.session import engine

logger = logging.getLogger(__name__)

BOT_COMMANDS = [
    BotCommand(command="ayuda", description="Ver los comandos disponibles"),
    BotCommand(command="cuentas", description="Ver cuentas disponibles"),
    BotCommand(command="categorias_gastos", description="Ver categorías de gastos"),
    BotCommand(command="categorias_ingresos", description="Ver categorías de ingresos"),
    BotCommand(command="categorias_inversiones", description="Ver categorías de inversiones"),
    BotCommand(command="subcategorias", description="Ver subcategorías de una categoría"),
    BotCommand(command="saldo", description="Ver el saldo de cada cuenta"),
]


def create_dispatcher(bot: Bot) -> Dispatcher:
    """Build and configure the aiogram Dispatcher.

    Registers routers and attaches middleware in the correct order:
    1. Access control (outermost, rejects unauthorized users first)
    2. DB session injection (provides ``session`` to handlers)

    The transport for *bot* is stored as workflow data, so handlers receive
    it as their ``transport`` argument.
    """
    dp = Dispatcher()
    dp["transport"] = TelegramTransport(bot)

    # Outer middleware runs on the raw Update before routing.
    dp.update.outer_middleware(AccessControlMiddleware())

    dp.message.middleware(DbSessionMiddleware())
    dp.callback_query.middleware(DbSessionMiddleware())

    dp.include_router(main_router)

    return dp


def create_bot() -> Bot:
    """Create the aiogram Bot instance with default properties."""
    return Bot(
        token=settings.telegram_bot_token,
        default=DefaultBotProperties(parse_mode=ParseMode.HTML),
    )


def webhook_url() -> str:
    return settings.webhook_base_url.rstrip("/") + settings.webhook_path


def create_webhook_app(bot: Bot, dp: Dispatcher) -> web.Application:
    """Build the aiohttp app that receives Telegram webhook updates."""
    app = web.Application()
    SimpleRequestHandler(
        dispatcher=dp,
        bot=bot,
        secret_token=settings.webhook_secret or None,
    ).register(app, path=settings.webhook_path)
    setup_application(app, dp, bot=bot)
    return app


async def run_bot() -> None:
    """Start the Telegram bot.

    This is the main coroutine invoked from ``__main__.py``.  It sets up
    logging, creates the bot and dispatcher, and either polls for updates
    or serves the webhook until interrupted.
    """
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    bot = create_bot()
    dp = create_dispatcher(bot)

    @dp.startup.register
    async def on_startup() -> None:
        await bot.set_my_commands(BOT_COMMANDS)
        logger.info("Registered bot commands with Telegram")
        if settings.webhook_base_url:
            await bot.set_webhook(
                webhook_url(),
                secret_token=settings.webhook_secret or None,
                drop_pending_updates=False,
            )
            logger.info("finlog started, webhook at %s", webhook_url())
        else:
            logger.info("finlog started, polling for updates")

    @dp.shutdown.register
    async def on_shutdown() -> None:
        logger.info("finlog shutting down, disposing DB engine")
        await engine.dispose()

    if not settings.webhook_base_url:
        try:
            await bot.delete_webhook()
            await dp.start_polling(bot)
        finally:
            await bot.session.close()
        return

    app = create_webhook_app(bot, dp)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "0.0.0.0", settings.webhook_port)
    await site.start()
    logger.info("Webhook server listening on port %d", settings.webhook_port)
    try:
        # Serve until cancelled (Ctrl+C).
        await asyncio.Event().wait()
    finally:
        await runner.cleanup()
