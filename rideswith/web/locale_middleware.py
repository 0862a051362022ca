"""
Locale routing middleware (WSGI) with an "as-needed" prefix strategy.

- The default locale is served without a prefix: ``/rides/1``.
- Other locales are prefixed: ``/de/rides/1``.  The prefix is stripped from
  ``PATH_INFO`` and moved into ``SCRIPT_NAME``, so ``url_for`` keeps
  generating prefixed links.
- An explicit default-locale prefix (``/en/...``) redirects to the bare path.
- Bare paths pick the locale from the ``NEXT_LOCALE`` cookie, then from
  ``Accept-Language``; a non-default match redirects to the prefixed path.

API routes, framework internals and anything that looks like a file are
passed through untouched.
"""

import logging

from werkzeug.http import dump_cookie
from werkzeug.utils import redirect
from werkzeug.wrappers import Request

from rideswith.i18n import DEFAULT_LOCALE, LOCALES, LOCALE_COOKIE

logger = logging.getLogger(__name__)

LOCALE_ENVIRON_KEY = "rideswith.locale"
_COOKIE_MAX_AGE = 365 * 24 * 3600
_EXCLUDED_PREFIXES = ("/api", "/_next", "/static")


def is_excluded_path(path: str) -> bool:
    if path.startswith(_EXCLUDED_PREFIXES):
        return True
    return "." in path


def split_locale(path: str) -> tuple[str | None, str]:
    """Split ``/de/rides`` into ``("de", "/rides")``; no prefix gives ``(None, path)``."""
    segments = path.split("/")
    if len(segments) > 1 and segments[1] in LOCALES:
        rest = "/" + "/".join(segments[2:])
        return segments[1], rest
    return None, path


def detect_locale(request: Request) -> str:
    cookie = request.cookies.get(LOCALE_COOKIE)
    if cookie in LOCALES:
        return cookie
    match = request.accept_languages.best_match(LOCALES)
    return match or DEFAULT_LOCALE


class LocaleMiddleware:
    """Wrap a WSGI app with locale prefix handling."""

    def __init__(self, app):
        self.app = app

    def __call__(self, environ, start_response):
        path = environ.get("PATH_INFO") or "/"
        if is_excluded_path(path):
            return self.app(environ, start_response)

        request = Request(environ)
        prefix, rest = split_locale(path)

        if prefix == DEFAULT_LOCALE:
            return self._redirect(request, rest, DEFAULT_LOCALE)(environ, start_response)

        if prefix is None:
            locale = detect_locale(request)
            if locale != DEFAULT_LOCALE:
                target = f"/{locale}" + ("" if path == "/" else path)
                return self._redirect(request, target, locale)(environ, start_response)
        else:
            locale = prefix
            environ["PATH_INFO"] = rest
            environ["SCRIPT_NAME"] = environ.get("SCRIPT_NAME", "").rstrip("/") + f"/{locale}"

        environ[LOCALE_ENVIRON_KEY] = locale
        cookie = dump_cookie(LOCALE_COOKIE, locale, max_age=_COOKIE_MAX_AGE, path="/", samesite="Lax")

        def _start_response(status, headers, exc_info=None):
            headers = list(headers) + [("Set-Cookie", cookie)]
            return start_response(status, headers, exc_info)

        return self.app(environ, _start_response)

    @staticmethod
    def _redirect(request: Request, target: str, locale: str):
        query = request.query_string.decode("latin-1")
        location = f"{target}?{query}" if query else target
        logger.debug("Locale redirect %s -> %s", request.path, location)
        response = redirect(location, code=307)
        response.set_cookie(LOCALE_COOKIE, locale, max_age=_COOKIE_MAX_AGE, path="/", samesite="Lax")
        return response
