"""
wsgi.py — WSGI entry point.

    gunicorn "wsgi:app"
    flask --app wsgi run
"""

import os

from roadbook.app import create_app

app = create_app(os.getenv("FLASK_ENV", "development"))
