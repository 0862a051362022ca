"""
Web application — Flask app serving the localized pages, the JSON API and
magic-link sign in.

Pages:
- Home, discover (upcoming and past rides), ride detail with QR code
- Communities and their chapters, public user profiles
- Telegram bot landing page
- Platform analytics for platform admins
- sitemap.xml
"""

import io
import logging
import re
from datetime import timedelta
from functools import wraps
from urllib.parse import urlparse

from flask import (
    Flask,
    abort,
    flash,
    g,
    redirect,
    render_template,
    request,
    send_file,
    session,
    url_for,
)
from flask_wtf.csrf import CSRFError, CSRFProtect

from rideswith import config
from rideswith import database as db
from rideswith.dates import normalize_iso, now_iso, parse_datetime, to_iso, utc_now
from rideswith.i18n import DEFAULT_LOCALE, LOCALES, load_messages, safe_locale, translate
from rideswith.images import safe_image
from rideswith.qr import ride_qr_png, ride_url
from rideswith.roles import is_platform_admin, role_display_name
from rideswith.web.api import VALID_PACES, build_analytics, create_api_blueprint
from rideswith.web.auth import (
    current_user,
    make_sign_in_token,
    read_sign_in_token,
    send_sign_in_email,
    sign_in_user,
)
from rideswith.web.locale_middleware import LOCALE_ENVIRON_KEY, LocaleMiddleware

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

SITEMAP_STATIC_PAGES = (
    ("", "daily", "1.0"),
    ("/discover", "hourly", "0.9"),
    ("/discover/past", "daily", "0.5"),
    ("/communities", "daily", "0.8"),
    ("/about", "monthly", "0.5"),
    ("/telegram", "monthly", "0.6"),
    ("/privacy", "yearly", "0.3"),
    ("/terms", "yearly", "0.3"),
)
SITEMAP_RIDE_DAYS = 90


def _format_ride_date(value) -> str:
    """Format a stored timestamp as ``Sat, Oct 24 · 9:00 AM`` (UTC)."""
    if not value:
        return ""
    try:
        dt = parse_datetime(value)
    except (ValueError, TypeError):
        return str(value)
    hour = dt.strftime("%I").lstrip("0") or "12"
    return f"{dt.strftime('%a, %b')} {dt.day} · {hour}:{dt.strftime('%M %p')}"


def _format_day(value) -> str:
    if not value:
        return ""
    try:
        return parse_datetime(value).strftime("%Y-%m-%d")
    except (ValueError, TypeError):
        return str(value)


def _request_locale() -> str:
    return safe_locale(request.environ.get(LOCALE_ENVIRON_KEY, DEFAULT_LOCALE))


def _messages() -> dict:
    if "messages" not in g:
        g.messages = load_messages(_request_locale())
    return g.messages


def _t(key: str, **params) -> str:
    return translate(_messages(), key, **params)


def _validate_web_security_config() -> None:
    if not config.SECRET_KEY:
        raise RuntimeError(
            "SECRET_KEY must be set (required for sessions, CSRF protection and sign-in links)."
        )


def _safe_redirect_back(default_url: str) -> str:
    """
    Return a safe same-origin redirect target derived from Referer, or a default.
    """
    ref = request.referrer
    if not ref:
        return default_url
    try:
        ref_url = urlparse(ref)
        host_url = urlparse(request.host_url)
        if ref_url.scheme in ("http", "https") and ref_url.netloc == host_url.netloc:
            path = ref_url.path or "/"
            # Reject protocol-relative targets such as "//evil.com".
            if not path.startswith("/") or path.startswith("//"):
                return default_url
            return f"{path}?{ref_url.query}" if ref_url.query else path
    except ValueError:
        return default_url
    return default_url


def create_web_app() -> Flask:
    """Create and configure the Flask web application."""
    _validate_web_security_config()
    app = Flask(__name__, template_folder="templates", static_folder=None)
    app.secret_key = config.SECRET_KEY
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(days=30)
    app.config["SESSION_COOKIE_SAMESITE"] = "Lax"
    app.config["SESSION_COOKIE_SECURE"] = config.IS_PRODUCTION

    csrf = CSRFProtect()
    csrf.init_app(app)

    api = create_api_blueprint()
    csrf.exempt(api)
    app.register_blueprint(api)

    app.jinja_env.filters["ride_date"] = _format_ride_date
    app.jinja_env.filters["day"] = _format_day
    app.jinja_env.filters["safe_image"] = safe_image
    app.jinja_env.filters["t"] = _t
    app.jinja_env.filters["role_name"] = role_display_name

    @app.context_processor
    def _inject_globals():
        return {
            "current_user": current_user(),
            "is_platform_admin": is_platform_admin(current_user()),
            "locale": _request_locale(),
            "locales": LOCALES,
            "messages": _messages(),
            "bot_username": config.TELEGRAM_BOT_USERNAME,
        }

    @app.errorhandler(CSRFError)
    def _handle_csrf_error(e):
        flash(_t("errors.csrf"), "danger")
        return redirect(_safe_redirect_back(url_for("home")))

    @app.errorhandler(404)
    def _not_found(e):
        return render_template("error.html", message=_t("errors.notFound")), 404

    # ─── Auth Decorator ───────────────────────────────────────────────────

    def login_required(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            if current_user() is None:
                return redirect(url_for("signin"))
            return f(*args, **kwargs)
        return decorated

    # ─── Auth Routes ──────────────────────────────────────────────────────

    @app.route("/auth/signin", methods=["GET", "POST"])
    def signin():
        if request.method == "POST":
            email = (request.form.get("email") or "").strip().lower()
            if not _EMAIL_RE.match(email):
                flash(_t("auth.invalidEmail"), "danger")
                return render_template("signin.html", email=email), 400
            token = make_sign_in_token(email)
            link = url_for("auth_callback", token=token, _external=True)
            if not send_sign_in_email(email, link):
                flash(_t("auth.sendFailed"), "danger")
                return render_template("signin.html", email=email), 502
            return redirect(url_for("verify"))
        return render_template("signin.html", email="")

    @app.route("/auth/verify")
    def verify():
        return render_template("verify.html")

    @app.route("/auth/callback")
    def auth_callback():
        email = read_sign_in_token(request.args.get("token", ""))
        if not email:
            return render_template("error.html", message=_t("auth.invalidLink")), 400
        sign_in_user(email)
        return redirect(url_for("home"))

    @app.route("/auth/signout")
    def signout():
        session.clear()
        return redirect(url_for("home"))

    # ─── Rides ────────────────────────────────────────────────────────────

    @app.route("/")
    def home():
        rides = db.get_latest_rides(now_iso(), limit=6)
        return render_template("home.html", rides=rides)

    @app.route("/discover")
    def discover():
        pace = (request.args.get("pace") or "").upper()
        if pace not in VALID_PACES:
            pace = ""
        rides = db.get_upcoming_rides(now_iso(), pace=pace or None, limit=50)
        return render_template(
            "discover.html", rides=rides, pace=pace.lower(), paces=VALID_PACES, past=False
        )

    @app.route("/discover/past")
    def discover_past():
        rides = db.get_past_rides(now_iso(), limit=100)
        return render_template("discover.html", rides=rides, pace="", paces=(), past=True)

    @app.route("/rides/<ride_id>")
    def ride_detail(ride_id):
        ride = db.get_ride(ride_id)
        if not ride:
            abort(404)
        attendees = [r for r in db.get_rsvps_for_ride(ride_id) if r["status"] == "GOING"]
        comments = db.get_comments_for_ride(ride_id)
        spots_left = None
        if ride["max_attendees"]:
            spots_left = max(ride["max_attendees"] - ride["attendee_count"], 0)
        return render_template(
            "ride.html",
            ride=ride,
            attendees=attendees,
            comments=comments,
            spots_left=spots_left,
            share_url=ride_url(ride_id),
        )

    @app.route("/rides/<ride_id>/qr.png")
    def ride_qr(ride_id):
        if not db.get_ride(ride_id):
            abort(404)
        buf = io.BytesIO(ride_qr_png(ride_id))
        return send_file(buf, mimetype="image/png", download_name=f"ride-{ride_id}.png")

    # ─── Communities ──────────────────────────────────────────────────────

    @app.route("/communities")
    def communities():
        chapters_by_brand: dict[str, list] = {}
        for chapter in db.get_chapters():
            chapters_by_brand.setdefault(chapter["brand_id"], []).append(chapter)
        brands = db.get_all_brands()
        return render_template(
            "communities.html", brands=brands, chapters_by_brand=chapters_by_brand
        )

    @app.route("/communities/<slug>")
    def community(slug):
        brand = db.get_brand_by_slug(slug)
        if not brand:
            abort(404)
        chapters = db.get_chapters(brand_id=brand["id"])
        return render_template("community.html", brand=brand, chapters=chapters)

    @app.route("/communities/<slug>/<chapter_slug>")
    def chapter_page(slug, chapter_slug):
        brand = db.get_brand_by_slug(slug)
        if not brand:
            abort(404)
        chapter = db.get_chapter_by_slug(brand["id"], chapter_slug)
        if not chapter:
            abort(404)
        now = now_iso()
        return render_template(
            "chapter.html",
            brand=brand,
            chapter=chapter,
            members=db.get_chapter_members(chapter["id"]),
            rides=db.get_chapter_rides(chapter["id"], now, upcoming=True, limit=10),
        )

    @app.route("/u/<slug>")
    def profile(slug):
        user = db.get_user_by_slug(slug)
        if not user:
            abort(404)
        return render_template(
            "profile.html", profile=user, rides=db.get_user_rides(user["id"], now_iso())
        )

    # ─── Static pages ─────────────────────────────────────────────────────

    @app.route("/telegram")
    def telegram():
        return render_template("telegram.html")

    @app.route("/about")
    def about():
        return render_template("page.html", page="about")

    @app.route("/privacy")
    def privacy():
        return render_template("page.html", page="privacy")

    @app.route("/terms")
    def terms():
        return render_template("page.html", page="terms")

    # ─── Platform Admin ───────────────────────────────────────────────────

    @app.route("/admin")
    @login_required
    def admin():
        if not is_platform_admin(current_user()):
            return render_template("error.html", message=_t("errors.forbidden")), 403
        communities = db.get_admin_communities()
        return render_template("admin.html", analytics=build_analytics(), communities=communities)

    # ─── Sitemap ──────────────────────────────────────────────────────────

    @app.route("/sitemap.xml")
    def sitemap():
        now = utc_now()
        base = config.APP_URL
        today = to_iso(now)
        entries = [
            {"loc": f"{base}{path}", "lastmod": today, "changefreq": freq, "priority": prio}
            for path, freq, prio in SITEMAP_STATIC_PAGES
        ]

        rides = db.get_sitemap_rides(
            to_iso(now), to_iso(now + timedelta(days=SITEMAP_RIDE_DAYS)), limit=1000
        )
        for ride in rides:
            entries.append({
                "loc": f"{base}/rides/{ride['id']}",
                "lastmod": normalize_iso(ride["updated_at"]) if ride["updated_at"] else today,
                "changefreq": "daily",
                "priority": "0.8",
            })

        brands = db.get_all_brands()[:500]
        chapters_by_brand: dict[str, list] = {}
        for chapter in db.get_chapters():
            chapters_by_brand.setdefault(chapter["brand_id"], []).append(chapter)
        for brand in brands:
            entries.append({
                "loc": f"{base}/communities/{brand['slug']}",
                "lastmod": brand["updated_at"] or today,
                "changefreq": "weekly",
                "priority": "0.7",
            })
            for chapter in chapters_by_brand.get(brand["id"], []):
                entries.append({
                    "loc": f"{base}/communities/{brand['slug']}/{chapter['slug']}",
                    "lastmod": chapter["updated_at"] or today,
                    "changefreq": "weekly",
                    "priority": "0.6",
                })

        for user in db.get_users_with_slug(limit=1000):
            entries.append({
                "loc": f"{base}/u/{user['slug']}",
                "lastmod": user["updated_at"] or today,
                "changefreq": "weekly",
                "priority": "0.4",
            })

        xml = render_template("sitemap.xml", entries=entries)
        return app.response_class(xml, mimetype="application/xml")

    app.wsgi_app = LocaleMiddleware(app.wsgi_app)
    return app


def run_web():
    """Start the Flask web app (blocking call)."""
    logger.info("Starting web app on %s:%s", config.WEB_HOST, config.WEB_PORT)
    app = create_web_app()
    app.run(host=config.WEB_HOST, port=config.WEB_PORT, debug=False)
