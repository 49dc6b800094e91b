# tests/conftest.py
from __future__ import annotations

import os
from dataclasses import replace

import pytest
from fastapi.testclient import TestClient

# ---------------------------------------------------------------------
# Set at import time so load_settings() never demands production secrets.
# ---------------------------------------------------------------------
os.environ.setdefault("ENV", "test")
os.environ.setdefault("STOREFRONT_TESTING", "1")

from helpers import (  # noqa: E402
    JWT_SECRET,
    ORDER_TOKEN_SECRET,
    WEBHOOK_SECRET,
    FakeGateway,
    RecordingEmail,
    admin_headers,
)
from storefront.app_server.main import create_app  # noqa: E402
from storefront.config import Settings  # noqa: E402
from storefront.db.models import Base  # noqa: E402
from storefront.db.session import make_engine, make_session_factory  # noqa: E402


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        env="test",
        database_url=f"sqlite:///{tmp_path / 'storefront.db'}",
        auth_jwt_secret=JWT_SECRET,
        stripe_webhook_secret=WEBHOOK_SECRET,
        order_token_secret=ORDER_TOKEN_SECRET,
        public_url="http://shop.test",
        notify_workers=0,
    )


@pytest.fixture
def session_factory(settings):
    engine = make_engine(settings.database_url)
    Base.metadata.create_all(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    s = session_factory()
    try:
        yield s
    finally:
        s.close()


def build_app(settings: Settings):
    app = create_app(settings)
    app.state.payment_gateway = FakeGateway()
    app.state.order_notifier.email = RecordingEmail()
    return app


@pytest.fixture
def app(settings):
    return build_app(settings)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def app_db(app):
    s = app.state.session_factory()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def admin():
    return admin_headers()


@pytest.fixture
def make_client(settings):
    """TestClient for an app built from ``settings`` with some fields changed."""

    def _make(**changes) -> TestClient:
        return TestClient(build_app(replace(settings, **changes)))

    return _make
