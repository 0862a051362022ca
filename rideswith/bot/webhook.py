"""
Webhook server for production — a small Flask app that hands Telegram updates
to the bot's running event loop.
"""

import asyncio
import logging

from flask import Flask, jsonify, request
from telegram import Update
from telegram.ext import Application

logger = logging.getLogger(__name__)

ENQUEUE_TIMEOUT_SECONDS = 10


def create_webhook_app(application: Application, loop: asyncio.AbstractEventLoop) -> Flask:
    """Build the webhook app for *application*, whose loop is *loop*."""
    app = Flask(__name__)

    @app.route("/health", methods=["GET"])
    def health():
        return jsonify({"status": "ok", "bot": "running"})

    @app.route("/webhook", methods=["POST"])
    def webhook():
        try:
            payload = request.get_json(force=True)
            if not isinstance(payload, dict):
                raise ValueError("Update body must be a JSON object")
            update = Update.de_json(payload, application.bot)
            future = asyncio.run_coroutine_threadsafe(application.update_queue.put(update), loop)
            future.result(timeout=ENQUEUE_TIMEOUT_SECONDS)
        except Exception:
            logger.exception("Webhook error")
            return "", 500
        return "", 200

    @app.errorhandler(404)
    @app.errorhandler(405)
    def not_found(e):
        return "Not Found", 404

    return app
