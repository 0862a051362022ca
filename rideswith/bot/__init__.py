"""Telegram bot: natural-language ride search."""
