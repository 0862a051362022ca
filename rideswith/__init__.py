"""
RidesWith — cycling group-ride discovery: web app, JSON API and Telegram bot.
"""

__version__ = "1.0.0"
