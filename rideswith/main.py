"""
Main Entry Point — Starts both the web app and the Telegram bot.

Usage:
    python -m rideswith.main              # Start both web app and bot
    python -m rideswith.main --web        # Start only the web app
    python -m rideswith.main --bot        # Start only the Telegram bot
    python -m rideswith.main --seed       # Seed the database with demo data
"""

import argparse
import logging
import sys
import threading

from rideswith import database as db
from rideswith import config

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[
        logging.StreamHandler(sys.stdout),
    ]
)
logger = logging.getLogger(__name__)


def run_seed():
    """Seed the database with demo data."""
    from rideswith.seed_data import seed_database
    seed_database()


def run_web_app():
    """Start the Flask web app."""
    from rideswith.web.app import run_web
    logger.info("Starting web app at http://%s:%s", config.WEB_HOST, config.WEB_PORT)
    run_web()


def run_telegram_bot():
    """Start the Telegram bot."""
    from rideswith.bot.telegram_bot import run_bot

    if not config.TELEGRAM_BOT_TOKEN:
        logger.error(
            "TELEGRAM_BOT_TOKEN is not set! "
            "Please set it in your .env file."
        )
        return

    logger.info("Starting Telegram Bot...")
    run_bot()


def main(argv=None):
    parser = argparse.ArgumentParser(description="RidesWith group ride platform")
    parser.add_argument("--web", action="store_true", help="Start only the web app")
    parser.add_argument("--bot", action="store_true", help="Start only the Telegram bot")
    parser.add_argument("--seed", action="store_true", help="Seed the database with demo data")
    args = parser.parse_args(argv)

    # Always initialize the database
    logger.info("Initializing database...")
    db.init_db()

    if args.seed:
        run_seed()
        return

    if args.bot:
        run_telegram_bot()
        return

    if args.web:
        run_web_app()
        return

    # Default: run both
    logger.info("Starting RidesWith (Web + Bot)...")

    # Start the web app in a background thread
    web_thread = threading.Thread(target=run_web_app, daemon=True)
    web_thread.start()

    # Start the Telegram bot in the main thread (it uses asyncio)
    if config.TELEGRAM_BOT_TOKEN:
        run_telegram_bot()
    else:
        logger.warning(
            "TELEGRAM_BOT_TOKEN not set. Running web app only. "
            "Set TELEGRAM_BOT_TOKEN in .env to enable the Telegram bot."
        )
        # Keep the main thread alive for the web app
        try:
            web_thread.join()
        except KeyboardInterrupt:
            logger.info("Shutting down...")


if __name__ == "__main__":
    main()
