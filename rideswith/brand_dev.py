"""
Brand.dev integration — fetches logo, colours and fonts for a community's domain.

https://www.brand.dev/  (needs BRAND_DEV_API_KEY)
"""

import logging
import re
import threading
import time
from dataclasses import dataclass, field
from typing import Optional

import requests as http_requests

from rideswith import config

logger = logging.getLogger(__name__)

_DOMAIN_RE = re.compile(r"^(?:[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,}$", re.IGNORECASE)

# Brand assets rarely change; keep lookups for a day.
_CACHE_TTL_SECONDS = 86400
_cache: dict[str, tuple[float, Optional["BrandAssets"]]] = {}
_cache_lock = threading.Lock()


@dataclass
class BrandAssets:
    name: str | None = None
    logo: str | None = None
    logo_icon: str | None = None
    primary_color: str | None = None
    secondary_color: str | None = None
    fonts: dict = field(default_factory=dict)
    description: str | None = None
    # Brand.dev does not return these; kept so callers can treat all asset
    # fields uniformly.
    logo_dark: str | None = None
    backdrop: str | None = None
    slogan: str | None = None


def _strip_domain(domain: str) -> str:
    value = re.sub(r"^https?://", "", domain.strip())
    value = re.sub(r"^www\.", "", value)
    return re.sub(r"/$", "", value)


def clean_domain(domain: str) -> str:
    """Strip protocol, ``www.`` and a trailing slash; lowercase."""
    return _strip_domain(domain).lower()


def is_valid_domain(domain: str) -> bool:
    return bool(_DOMAIN_RE.match(_strip_domain(domain)))


def fetch_brand_assets(domain: str) -> Optional[BrandAssets]:
    """Look up brand assets for *domain*.

    Returns ``None`` when no API key is configured, the brand is unknown, or
    the API fails.
    """
    if not config.BRAND_DEV_API_KEY:
        logger.warning("BRAND_DEV_API_KEY not configured, skipping brand lookup")
        return None

    domain = clean_domain(domain)
    now = time.monotonic()
    with _cache_lock:
        cached = _cache.get(domain)
        if cached and now - cached[0] < _CACHE_TTL_SECONDS:
            return cached[1]

    assets = _request_brand(domain)
    with _cache_lock:
        _sweep_cache(now)
        _cache[domain] = (now, assets)
    return assets


def _sweep_cache(now: float) -> None:
    """Drop lookups older than the TTL. Caller holds the lock."""
    stale = [d for d, (fetched_at, _) in _cache.items() if now - fetched_at >= _CACHE_TTL_SECONDS]
    for d in stale:
        del _cache[d]


def _request_brand(domain: str) -> Optional[BrandAssets]:
    try:
        resp = http_requests.get(
            f"{config.BRAND_DEV_API_URL}/brand/{domain}",
            headers={
                "Authorization": f"Bearer {config.BRAND_DEV_API_KEY}",
                "Content-Type": "application/json",
            },
            timeout=10,
        )
        if resp.status_code == 404:
            logger.info("Brand not found for domain: %s", domain)
            return None
        resp.raise_for_status()
        data = resp.json()
    except Exception as e:
        logger.error("Error fetching brand assets for %s: %s", domain, e)
        return None

    logo = data.get("logo") or {}
    colors = data.get("colors") or {}
    return BrandAssets(
        name=data.get("name"),
        logo=logo.get("url"),
        logo_icon=logo.get("icon"),
        primary_color=colors.get("primary"),
        secondary_color=colors.get("secondary"),
        fonts=data.get("fonts") or {},
        description=data.get("description"),
    )


def clear_cache() -> None:
    with _cache_lock:
        _cache.clear()
