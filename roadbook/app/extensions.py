"""
extensions.py — Flask extension singletons.

Initialises SQLAlchemy and the login throttle as module-level objects so they
can be imported anywhere without creating circular dependencies.

Pattern:
    1. Create the extension object here (no app attached yet).
    2. Call init_app(app) inside the app factory in app/__init__.py.
    3. Import `db` or `login_throttle` from here wherever needed.

    from roadbook.app.extensions import db, login_throttle

Do not pass the app object directly to SQLAlchemy() at import time — that
would prevent running tests with a separate test app instance.
"""

from flask_sqlalchemy import SQLAlchemy

from roadbook.app.services.login_throttle import LoginThrottle

db = SQLAlchemy()

# Process-local failed-login bookkeeping. Limits are read from app config in
# init_app(); a multi-process deployment swaps this object for one backed by
# a shared cache without touching auth_service.
login_throttle = LoginThrottle()
