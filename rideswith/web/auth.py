"""
Auth — e-mail magic-link sign in and session helpers.

A sign-in link carries a signed, time-limited token holding the e-mail
address.  Following the link creates the user on first visit and stores the
user ID in the Flask session.
"""

import logging
from functools import wraps
from typing import Optional

import requests as http_requests
from flask import current_app, g, jsonify, session
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from rideswith import config
from rideswith import database as db
from rideswith.roles import PLATFORM_ADMIN, is_platform_admin

logger = logging.getLogger(__name__)

_TOKEN_SALT = "rideswith-magic-link"


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.secret_key, salt=_TOKEN_SALT)


def make_sign_in_token(email: str) -> str:
    return _serializer().dumps({"email": email.strip().lower()})


def read_sign_in_token(token: str, max_age: int | None = None) -> Optional[str]:
    """Return the e-mail inside *token*, or ``None`` if it is invalid or expired."""
    try:
        data = _serializer().loads(token, max_age=max_age or config.MAGIC_LINK_MAX_AGE)
    except SignatureExpired:
        logger.info("Expired sign-in token")
        return None
    except BadSignature:
        logger.warning("Invalid sign-in token")
        return None
    email = data.get("email") if isinstance(data, dict) else None
    return email or None


def send_sign_in_email(email: str, link: str) -> bool:
    """Send the magic link via Resend; without an API key the link is logged."""
    if not config.RESEND_API_KEY:
        logger.info("RESEND_API_KEY not set. Sign-in link for %s: %s", email, link)
        return True
    try:
        resp = http_requests.post(
            "https://api.resend.com/emails",
            headers={"Authorization": f"Bearer {config.RESEND_API_KEY}"},
            json={
                "from": config.EMAIL_FROM,
                "to": [email],
                "subject": "Sign in to RidesWith",
                "html": (
                    f'<p>Click <a href="{link}">here</a> to sign in to RidesWith.</p>'
                    "<p>If you did not request this e-mail you can safely ignore it.</p>"
                ),
            },
            timeout=10,
        )
        if not resp.ok:
            logger.error("Resend API error %s: %s", resp.status_code, resp.text)
        return resp.ok
    except Exception as e:
        logger.error("Failed to send sign-in e-mail to %s: %s", email, e)
        return False


def sign_in_user(email: str) -> dict:
    """Upsert the user for *email* and bind it to the session."""
    role = PLATFORM_ADMIN if email.lower() in config.PLATFORM_ADMIN_EMAILS else None
    user = db.upsert_user_by_email(email, role=role)
    session.clear()
    session["user_id"] = user["id"]
    session.permanent = True
    logger.info("User %s signed in", user["id"])
    return user


def current_user() -> Optional[dict]:
    """The signed-in user for this request (cached on ``g``)."""
    if "current_user" not in g:
        user_id = session.get("user_id")
        g.current_user = db.get_user(user_id) if user_id else None
    return g.current_user


# ─── Decorators for JSON routes ──────────────────────────────────────────────

def api_login_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        if current_user() is None:
            return jsonify({"error": "Unauthorized"}), 401
        return f(*args, **kwargs)
    return decorated


def platform_admin_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        if not is_platform_admin(current_user()):
            return jsonify(
                {"error": "You do not have permission to access this resource"}
            ), 403
        return f(*args, **kwargs)
    return decorated
