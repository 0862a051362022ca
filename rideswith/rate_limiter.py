"""
Rate Limiter — in-memory fixed-window request limiting.

Each key (a user ID, a Telegram ID...) gets a window of ``interval_ms``
milliseconds in which at most ``limit`` requests succeed.  Expired windows
are swept out at most once a minute.

Data is stored in-memory so it resets on restart and is NOT shared across
processes or instances.  That is acceptable for abuse prevention on a
single-instance deployment.
"""

import logging
import threading
import time
from dataclasses import dataclass
from functools import wraps

from telegram import Update
from telegram.ext import ContextTypes

from rideswith.config import (
    RSVP_RATE_LIMIT,
    RSVP_RATE_INTERVAL_MS,
    BOT_RATE_LIMIT,
    BOT_RATE_INTERVAL_MS,
)

logger = logging.getLogger(__name__)

SWEEP_INTERVAL_SECONDS = 60


@dataclass(frozen=True)
class RateLimitResult:
    success: bool
    remaining: int


class RateLimiter:
    """Fixed-window counter keyed by an arbitrary string."""

    def __init__(self, interval_ms: int, limit: int, clock=time.monotonic):
        self.interval = interval_ms / 1000.0
        self.limit = limit
        self._clock = clock
        # key -> (window_reset_at, count)
        self._windows: dict[str, tuple[float, int]] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def check(self, key: str) -> RateLimitResult:
        """Count one request for *key* and report whether it is allowed."""
        now = self._clock()
        with self._lock:
            if now - self._last_sweep >= SWEEP_INTERVAL_SECONDS:
                self._sweep(now)

            entry = self._windows.get(key)
            if entry is None or now > entry[0]:
                self._windows[key] = (now + self.interval, 1)
                return RateLimitResult(True, self.limit - 1)

            reset_at, count = entry
            if count >= self.limit:
                logger.info("Rate limit hit for %s: %d requests (limit %d)", key, count, self.limit)
                return RateLimitResult(False, 0)

            count += 1
            self._windows[key] = (reset_at, count)
            return RateLimitResult(True, self.limit - count)

    def _sweep(self, now: float) -> None:
        """Drop expired windows. Caller holds the lock."""
        expired = [k for k, (reset_at, _) in self._windows.items() if now > reset_at]
        for k in expired:
            del self._windows[k]
        self._last_sweep = now

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()

    def __len__(self) -> int:
        return len(self._windows)


def rate_limit(interval_ms: int, limit: int) -> RateLimiter:
    return RateLimiter(interval_ms, limit)


rsvp_limiter = rate_limit(RSVP_RATE_INTERVAL_MS, RSVP_RATE_LIMIT)
bot_limiter = rate_limit(BOT_RATE_INTERVAL_MS, BOT_RATE_LIMIT)

BOT_LIMIT_MESSAGE = "⏳ You're sending messages too quickly. Please wait a minute and try again."


# ── Bot-Layer Decorator ──────────────────────────────────────────────────────


def rate_limit_guard(handler):
    """Decorator for bot handlers.

    If the Telegram user has exceeded ``bot_limiter`` the throttle message is
    sent and the wrapped handler is skipped.
    """

    @wraps(handler)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE):
        user = update.effective_user
        if user is None:
            return await handler(update, context)

        result = bot_limiter.check(f"tg:{user.id}")
        if not result.success:
            if update.message:
                await update.message.reply_text(BOT_LIMIT_MESSAGE)
            return None

        return await handler(update, context)

    return wrapper
