"""Integration tests for API endpoints"""

import pytest
from unittest.mock import AsyncMock, MagicMock
from fastapi.testclient import TestClient
from po_gateway.api.dependencies import SyncRegistry, get_broker_client, get_repo_fee_config
from po_gateway.domain.exceptions import BrokerAPIError
from po_gateway.domain.models import BrokerAuth, OperationsPage
from po_gateway.infrastructure.storage.fee_config_loader import empty_repo_fee_config
from po_gateway.utils.date_utils import now_ms


@pytest.fixture
def broker(venue_orders) -> MagicMock:
    """Broker client double serving the sample orders"""
    broker = MagicMock()
    broker.login = AsyncMock(return_value=BrokerAuth(token="tok-123", expiry=now_ms() + 8 * 3600 * 1000))
    broker.refresh_token = AsyncMock(return_value=BrokerAuth(token="tok-456", expiry=now_ms() + 8 * 3600 * 1000))
    broker.list_operations = AsyncMock(return_value=OperationsPage(operations=venue_orders, estimated_total=2))
    return broker


@pytest.fixture
def api(client: TestClient, broker: MagicMock) -> TestClient:
    client.app.dependency_overrides[get_broker_client] = lambda: broker
    return client


def auth_payload(expiry_offset_ms: int = 3600 * 1000) -> dict:
    return {"token": "tok-123", "expiry": now_ms() + expiry_offset_ms, "account_id": "REM123"}


def repo_payload(**overrides) -> dict:
    operation = {
        "id": "repo-1",
        "principal_amount": 81700,
        "base_amount": 81701.79,
        "price_tna": 0.8,
        "role": "colocadora",
        "currency": "USD",
        "cfi_code": "RPXXXX",
        "display_name": "MERV - XMEV - DOLAR - 1D",
    }
    operation.update(overrides)
    return operation


def test_health_endpoint(client: TestClient):
    """Test health check endpoint"""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert "X-Request-ID" in response.headers


def test_metrics_endpoint(client: TestClient):
    """Test Prometheus metrics endpoint"""
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "po_sync_sessions" in response.text
    assert "po_repo_breakdowns" in response.text


def test_login_returns_session(api: TestClient):
    """Test POST /v1/broker/login"""
    response = api.post(
        "/v1/broker/login",
        json={"username": "user", "password": "secret", "account_id": "REM123"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["token"] == "tok-123"
    assert data["account_id"] == "REM123"


@pytest.mark.parametrize(
    "error,status",
    [
        (BrokerAPIError("AUTH_FAILED: Invalid credentials", status_code=401), 401),
        (BrokerAPIError("LOGIN_ERROR: Network error - check your connection"), 503),
    ],
)
def test_login_failures(api: TestClient, broker: MagicMock, error: BrokerAPIError, status: int):
    """Test venue login failures map to HTTP errors"""
    broker.login.side_effect = error

    response = api.post("/v1/broker/login", json={"username": "user", "password": "bad"})

    assert response.status_code == status


def test_sync_imports_operations(api: TestClient):
    """Test POST /v1/sync commits new operations once"""
    response = api.post("/v1/sync", json={"auth": auth_payload()})

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "success"
    assert data["operations_added"] == 2
    assert data["has_new_operations"] is True
    assert data["refreshed_auth"] is None

    operations = api.get("/v1/operations").json()
    assert operations["total"] == 2
    assert [op["order_id"] for op in operations["operations"]] == ["ord-1", "ord-2"]

    again = api.post("/v1/sync", json={"auth": auth_payload()}).json()
    assert again["operations_added"] == 0
    assert api.get("/v1/operations").json()["total"] == 2

    history = api.get("/v1/sync/history").json()["sessions"]
    assert len(history) == 2
    assert all(s["status"] == "success" for s in history)


def test_operations_symbol_filter(api: TestClient):
    """Test GET /v1/operations?symbol="""
    api.post("/v1/sync", json={"auth": auth_payload()})

    data = api.get("/v1/operations", params={"symbol": "YPFD"}).json()
    assert data["total"] == 1
    assert data["operations"][0]["side"] == "SELL"


def test_sync_returns_refreshed_auth(api: TestClient, broker: MagicMock):
    """Test near-expiry token is refreshed and handed back"""
    response = api.post("/v1/sync", json={"auth": auth_payload(expiry_offset_ms=10_000)})

    data = response.json()
    assert data["status"] == "success"
    assert data["refreshed_auth"]["token"] == "tok-456"
    assert data["refreshed_auth"]["account_id"] == "REM123"


def test_refresh_mode_skips_operations_before_last_sync(api: TestClient):
    """Test refresh only imports executions after the last successful sync"""
    first = api.post("/v1/sync", json={"auth": auth_payload()}).json()
    assert first["operations_added"] == 2

    refresh = api.post("/v1/sync", json={"auth": auth_payload(), "mode": "refresh"}).json()
    assert refresh["mode"] == "refresh"
    assert refresh["evaluated_count"] == 0
    assert refresh["operations_added"] == 0


def test_sync_auth_failure_reports_reauth(api: TestClient, broker: MagicMock):
    """Test venue 401 comes back as a failed session, nothing stored"""
    broker.list_operations.side_effect = BrokerAPIError("AUTH_REQUIRED: Token invalid or expired", status_code=401)

    data = api.post("/v1/sync", json={"auth": auth_payload()}).json()

    assert data["status"] == "failed"
    assert data["error"] == "TOKEN_EXPIRED"
    assert data["needs_reauth"] is True
    assert api.get("/v1/operations").json()["total"] == 0
    assert api.get("/v1/sync/history").json()["sessions"][0]["status"] == "failed"


def test_sync_without_session(api: TestClient, broker: MagicMock):
    """Test missing token never reaches the venue"""
    data = api.post("/v1/sync", json={"auth": {}}).json()

    assert data["error"] == "NOT_AUTHENTICATED"
    assert data["needs_reauth"] is True
    broker.list_operations.assert_not_awaited()


def test_sync_conflict_while_running(api: TestClient, sync_registry: SyncRegistry):
    """Test only one sync runs at a time"""
    sync_registry.begin()

    response = api.post("/v1/sync", json={"auth": auth_payload()})

    assert response.status_code == 409


def test_cancel_sync(api: TestClient, sync_registry: SyncRegistry):
    """Test POST /v1/sync/cancel"""
    assert api.post("/v1/sync/cancel").json() == {"canceled": False}

    cancel_event = sync_registry.begin()
    assert api.post("/v1/sync/cancel").json() == {"canceled": True}
    assert cancel_event.is_set()


def test_repo_fees_breakdown(api: TestClient):
    """Test POST /v1/repo/fees with a single caucion"""
    response = api.post("/v1/repo/fees", json={"operations": [repo_payload()]})

    assert response.status_code == 200
    result = response.json()["results"][0]
    assert result["is_repo"] is True
    breakdown = result["breakdown"]
    assert breakdown["status"] == "ok"
    assert breakdown["display"]["total_expenses"] == "1.04"
    assert breakdown["display"]["net_settlement"] == "81700.75"
    assert breakdown["rounding"] == {"display_decimals": 2, "rounding_mode": "HALF_UP"}


@pytest.mark.parametrize("role", ["TOMADORA", "borrower", ""])
def test_repo_fees_rejects_unknown_role(api: TestClient, role):
    """Test POST /v1/repo/fees only accepts colocadora or tomadora"""
    operation = repo_payload(role=role, base_amount=100002.19, currency="ARS", display_name="MERV - XMEV - PESOS - 1D")

    response = api.post("/v1/repo/fees", json={"operations": [operation]})

    assert response.status_code == 422


def test_repo_fees_borrower_settles_above_base(api: TestClient):
    """Test a tomadora caucion adds its expenses to the base amount"""
    operation = repo_payload(role="tomadora", base_amount=100002.19, currency="ARS", display_name="MERV - XMEV - PESOS - 1D")

    response = api.post("/v1/repo/fees", json={"operations": [operation], "aggregate": False})

    breakdown = response.json()["results"][0]["breakdown"]
    assert breakdown["role"] == "tomadora"
    assert breakdown["status"] == "ok"
    assert breakdown["net_settlement"] > 100002.19


def test_repo_fees_rows_and_groups(api: TestClient):
    """Test loose rows, non-repo rows and aggregation"""
    response = api.post(
        "/v1/repo/fees",
        json={
            "operations": [repo_payload(id="a"), repo_payload(id="b")],
            "rows": [
                {"symbol": "GGAL", "cfiCode": "ESVUFR", "side": "BUY", "quantity": 10, "price": 1500},
                {"symbol": "CAUCION PESOS 7D", "side": "BUY", "quantity": 365000, "price": 10},
            ],
        },
    )

    data = response.json()
    assert [r["is_repo"] for r in data["results"]] == [True, True, False, True]
    assert data["results"][3]["breakdown"]["role"] == "tomadora"

    groups = {g["instrument"]: g for g in data["groups"]}
    assert groups["MERV - XMEV - DOLAR - 1D"]["size"] == 2
    assert groups["MERV - XMEV - DOLAR - 1D"]["breakdown"]["principal_amount"] == pytest.approx(163400)
    assert groups["CAUCION PESOS 7D"]["size"] == 1


def test_repo_fees_without_config_blocks_rows(api: TestClient):
    """Test empty rate table returns blocked breakdowns, not an error"""
    api.app.dependency_overrides[get_repo_fee_config] = empty_repo_fee_config

    response = api.post("/v1/repo/fees", json={"operations": [repo_payload()], "aggregate": False})

    assert response.status_code == 200
    data = response.json()
    breakdown = data["results"][0]["breakdown"]
    assert breakdown["blocked"] is True
    assert breakdown["source"] == "repo-config-error"
    assert breakdown["warnings"][0]["code"] == "REPO_CONFIG_INCOMPLETE"
    assert data["groups"] == []
