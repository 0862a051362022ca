"""
WSGI entrypoint for production servers (e.g. gunicorn).

  gunicorn rideswith.web.wsgi:app --bind 0.0.0.0:$PORT
"""

from rideswith import database as db
from rideswith.web.app import create_web_app

db.init_db()
app = create_web_app()
