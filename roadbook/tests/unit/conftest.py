"""
tests/unit/conftest.py — Fixtures for unit tests that read current_app.config.

Token signing and bcrypt cost come from the app config, so those units run
inside an app context. No tables are created: unit tests hand services a
MagicMock session instead of the database.
"""

from __future__ import annotations

import pytest

from roadbook.app import create_app


@pytest.fixture(scope="session")
def unit_app():
    return create_app("testing")


@pytest.fixture
def app_context(unit_app):
    with unit_app.app_context():
        yield unit_app
