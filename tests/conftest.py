"""Pytest fixtures for testing"""

import json

import pytest
from typing import Generator
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from po_gateway.api.main import create_app
from po_gateway.api.dependencies import SyncRegistry, get_repo_fee_config, get_sync_registry
from po_gateway.infrastructure.database.models import Base
from po_gateway.infrastructure.database.session import get_db
from po_gateway.infrastructure.storage.fee_config_loader import parse_repo_fee_config
from po_gateway.domain.models import RepoFeeConfig


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


RAW_FEE_CONFIG = {
    "arancelCaucionColocadora": {"ARS": 0.2, "USD": 0.2},
    "arancelCaucionTomadora": {"ARS": 0.25, "USD": 0.25},
    "derechosDeMercadoDailyRate": {"ARS": 0.0005, "USD": 0.0005},
    "gastosGarantiaDailyRate": {"ARS": 0.00035, "USD": 0.00035},
    "ivaRepoRate": 0.21,
}


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def raw_fee_config() -> dict:
    """Rate table as stored on disk"""
    return json.loads(json.dumps(RAW_FEE_CONFIG))


@pytest.fixture
def fee_config(raw_fee_config: dict) -> RepoFeeConfig:
    """Rate table matching the venue's published caucion tariffs"""
    return parse_repo_fee_config(raw_fee_config)


@pytest.fixture
def sync_registry() -> SyncRegistry:
    return SyncRegistry()


@pytest.fixture
def client(db: Session, fee_config: RepoFeeConfig, sync_registry: SyncRegistry) -> TestClient:
    """Create FastAPI test client with test database"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_repo_fee_config] = lambda: fee_config
    app.dependency_overrides[get_sync_registry] = lambda: sync_registry
    return TestClient(app)


@pytest.fixture
def venue_orders() -> list[dict]:
    """Two filled orders as returned by /rest/order/all"""
    return [
        {
            "clOrdId": "ord-1",
            "execId": "exec-1",
            "instrumentId": {"marketId": "ROFX", "symbol": "GGAL"},
            "side": "BUY",
            "lastQty": 100,
            "lastPx": 1520.5,
            "transactTime": "20241015-14:30:00.000-0300",
            "status": "FILLED",
        },
        {
            "clOrdId": "ord-2",
            "execId": "exec-2",
            "instrumentId": {"marketId": "ROFX", "symbol": "YPFD"},
            "side": "SELL",
            "lastQty": 20,
            "lastPx": 30100.0,
            "transactTime": "20241015-15:05:10.250-0300",
            "status": "FILLED",
        },
    ]
