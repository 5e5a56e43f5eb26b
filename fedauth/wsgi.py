"""
WSGI entry point.

    gunicorn "fedauth.wsgi:app"
    flask --app fedauth.wsgi run

The config is picked from FLASK_ENV (development by default).
"""

import os

from fedauth.app import create_app

app = create_app(os.getenv("FLASK_ENV", "development"))
