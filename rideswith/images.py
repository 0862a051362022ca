"""
Remote image allow-list — hosts whose images may be rendered or stored.
"""

from urllib.parse import urlparse

# (protocol, hostname pattern). "*." matches exactly one subdomain label.
REMOTE_IMAGE_PATTERNS = (
    ("https", "images.unsplash.com"),
    ("https", "res.cloudinary.com"),
    ("https", "asset.brandfetch.io"),
    ("https", "cdn.brandfetch.io"),
    ("https", "*.brandfetch.io"),
)


def _host_matches(pattern: str, host: str) -> bool:
    if pattern.startswith("*."):
        suffix = pattern[1:]
        label = host[: -len(suffix)] if host.endswith(suffix) else ""
        return bool(label) and "." not in label
    return host == pattern


def is_allowed_image_url(url: str | None) -> bool:
    if not url:
        return False
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    host = (parsed.hostname or "").lower()
    return any(
        parsed.scheme == scheme and _host_matches(pattern, host)
        for scheme, pattern in REMOTE_IMAGE_PATTERNS
    )


def safe_image(url: str | None) -> str:
    """Jinja filter: the URL if its host is allowed, else an empty string."""
    return url if is_allowed_image_url(url) else ""
