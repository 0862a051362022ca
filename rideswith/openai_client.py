"""
Shared OpenAI client factory.

The ride-query parser talks to Groq through its OpenAI-compatible API, so the
client is created with Groq's key and base URL.  We keep a single
lazily-initialized instance so that modules don't duplicate connection pools
and configuration.
"""

from __future__ import annotations

import threading
from typing import Optional

from openai import OpenAI

from rideswith import config

_client: Optional[OpenAI] = None
_client_lock = threading.Lock()


def get_openai_client() -> OpenAI:
    global _client
    if _client is None:
        with _client_lock:
            if _client is None:
                if not config.GROQ_API_KEY:
                    raise RuntimeError("GROQ_API_KEY is not configured.")
                _client = OpenAI(api_key=config.GROQ_API_KEY, base_url=config.GROQ_BASE_URL)
    return _client


def reset_openai_client() -> None:
    global _client
    with _client_lock:
        _client = None
