"""
i18n — locale list and "common" message catalogues.

Messages live in ``locales/<locale>/common.json``.  Unknown locales fall back
to the default one.
"""

import json
import logging
from functools import lru_cache

from rideswith.config import LOCALES_DIR

logger = logging.getLogger(__name__)

LOCALES = ("en", "de")
DEFAULT_LOCALE = "en"
LOCALE_COOKIE = "NEXT_LOCALE"


def safe_locale(locale: str | None) -> str:
    return locale if locale in LOCALES else DEFAULT_LOCALE


@lru_cache(maxsize=None)
def load_messages(locale: str | None) -> dict:
    """Load the message catalogue for *locale* (default locale if unknown)."""
    locale = safe_locale(locale)
    path = LOCALES_DIR / locale / "common.json"
    with open(path, encoding="utf-8") as fh:
        return json.load(fh)


def translate(messages: dict, key: str, **params) -> str:
    """Resolve a dotted *key*; missing keys render as the key itself."""
    node = messages
    for part in key.split("."):
        if not isinstance(node, dict) or part not in node:
            logger.debug("Missing translation key: %s", key)
            return key
        node = node[part]
    if not isinstance(node, str):
        return key
    return node.format(**params) if params else node
