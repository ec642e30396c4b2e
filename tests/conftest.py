from __future__ import annotations

import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Ensure the repository root is importable in pytest runs.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from tracker import create_app
from tracker.db import Base, get_db
from tracker.models import PriceSnapshot
from tracker.services.pricing import PricingService


class MockPriceProvider:
    """Deterministic in-memory price feed for tests."""

    def __init__(self) -> None:
        self.latest: dict[str, PriceSnapshot] = {}
        self.calls: list[list[str]] = []
        self.fail = False

    def set_price(self, asset_id: str, usd: float, change_24h: float | None = None) -> None:
        self.latest[asset_id] = PriceSnapshot(usd=float(usd), usd_24h_change=change_24h)

    def get_prices(self, asset_ids: list[str]) -> dict[str, PriceSnapshot]:
        self.calls.append(list(asset_ids))
        if self.fail:
            raise RuntimeError("feed down")
        return {asset_id: self.latest[asset_id] for asset_id in asset_ids if asset_id in self.latest}


@pytest.fixture()
def test_env():
    provider = MockPriceProvider()

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, class_=Session)

    Base.metadata.create_all(bind=engine)

    app = create_app(
        pricing_service=PricingService(provider=provider, ttl_seconds=60),
        enable_startup_init=False,
    )

    def override_get_db():
        db = SessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as client:
        yield {
            "app": app,
            "client": client,
            "session_factory": SessionLocal,
            "provider": provider,
        }

    engine.dispose()


@pytest.fixture()
def client(test_env):
    return test_env["client"]


@pytest.fixture()
def db_session_factory(test_env):
    return test_env["session_factory"]


@pytest.fixture()
def mock_provider(test_env):
    return test_env["provider"]
