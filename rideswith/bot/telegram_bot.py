"""
Telegram Bot Runner — sets up and starts the Telegram bot with all handlers.

Development uses long polling; production registers a webhook and serves it
from a small Flask app (see ``rideswith.bot.webhook``).
"""

import asyncio
import logging

from telegram.ext import (
    Application,
    ApplicationBuilder,
    CommandHandler,
    MessageHandler,
    filters,
)
from werkzeug.serving import make_server

from rideswith import config
from rideswith.bot.handlers import (
    start_command,
    help_command,
    settings_command,
    nearby_command,
    rides_command,
    location_handler,
    message_handler,
    error_handler,
)
from rideswith.bot.webhook import create_webhook_app

logger = logging.getLogger(__name__)


def create_bot_application() -> Application:
    """
    Create and configure the Telegram bot application with all handlers.

    Returns:
        Configured Application instance ready to run.
    """
    if not config.TELEGRAM_BOT_TOKEN:
        raise ValueError(
            "TELEGRAM_BOT_TOKEN is not set. "
            "Please set it in your .env file or environment variables."
        )

    app = ApplicationBuilder().token(config.TELEGRAM_BOT_TOKEN).build()

    # ─── Register handlers (order matters!) ───────────────────────────────

    # Commands
    app.add_handler(CommandHandler("start", start_command))
    app.add_handler(CommandHandler("help", help_command))
    app.add_handler(CommandHandler("settings", settings_command))
    app.add_handler(CommandHandler("nearby", nearby_command))
    app.add_handler(CommandHandler("rides", rides_command))

    # Shared locations
    app.add_handler(MessageHandler(filters.LOCATION, location_handler))

    # Natural-language queries and keyboard buttons (catch-all)
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, message_handler))

    # Error handler
    app.add_error_handler(error_handler)

    logger.info("Telegram bot application configured successfully")
    return app


async def _serve_webhook(application: Application) -> None:
    webhook_url = f"{config.WEBHOOK_URL}/webhook"
    await application.initialize()
    await application.bot.set_webhook(webhook_url, drop_pending_updates=True)
    await application.start()
    logger.info("Webhook set to: %s", webhook_url)

    server = make_server(
        config.WEB_HOST,
        config.BOT_PORT,
        create_webhook_app(application, asyncio.get_running_loop()),
        threaded=True,
    )
    logger.info("Webhook server listening on port %s", config.BOT_PORT)
    try:
        await asyncio.to_thread(server.serve_forever)
    finally:
        server.shutdown()
        await application.stop()
        await application.shutdown()


def run_bot():
    """Start the Telegram bot (blocking call)."""
    config.validate_bot_config()
    app = create_bot_application()

    if not config.IS_PRODUCTION:
        logger.info("Starting Telegram bot with long polling...")
        app.run_polling(drop_pending_updates=True)
        return

    if not config.WEBHOOK_URL:
        raise RuntimeError("WEBHOOK_URL is required in production")

    logger.info("Starting Telegram bot in webhook mode...")
    asyncio.run(_serve_webhook(app))
