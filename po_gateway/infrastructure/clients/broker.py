"""Broker venue (Primary / Matba Rofex REST) HTTP client"""

import logging
from typing import Any, Callable, Dict, List, Optional

import httpx

from po_gateway.config import settings
from po_gateway.domain.exceptions import BrokerAPIError
from po_gateway.domain.models import BrokerAuth, OperationsPage
from po_gateway.infrastructure.observability.metrics import broker_failure_counter, broker_latency_histogram
from po_gateway.utils.date_utils import now_ms, venue_trading_date


class BrokerClient:
    """
    Client for the broker venue REST API.

    Holds only its base URL and timeouts; tokens are passed per call so one
    instance can serve any session.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        session_hours: float | None = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.base_url = (base_url or settings.broker_api_base).strip().rstrip("/")
        self.timeout = timeout or settings.http_timeout_seconds
        self.session_hours = session_hours or settings.broker_session_hours
        self._clock = clock

    def _session_expiry(self) -> int:
        return self._clock() + int(self.session_hours * 60 * 60 * 1000)

    async def login(self, username: str, password: str) -> BrokerAuth:
        """
        Authenticate and obtain a session token.

        The venue returns the token in the X-Auth-Token response header and
        sessions last a fixed number of hours.

        Raises:
            BrokerAPIError: AUTH_FAILED on bad credentials, LOGIN_ERROR otherwise
        """
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                with broker_latency_histogram.labels(endpoint="login").time():
                    response = await client.post(
                        f"{self.base_url}/auth/getToken",
                        headers={"X-Username": username, "X-Password": password},
                    )
            except httpx.RequestError as e:
                broker_failure_counter.labels(endpoint="login").inc()
                raise BrokerAPIError("LOGIN_ERROR: Network error - check your connection") from e

        if response.status_code in (401, 403):
            broker_failure_counter.labels(endpoint="login").inc()
            raise BrokerAPIError("AUTH_FAILED: Invalid credentials", status_code=response.status_code)
        if response.is_error:
            broker_failure_counter.labels(endpoint="login").inc()
            raise BrokerAPIError(f"LOGIN_ERROR: HTTP {response.status_code}", status_code=response.status_code)

        token = response.headers.get("X-Auth-Token")
        if not token:
            raise BrokerAPIError("AUTH_FAILED: No token received")

        logging.info("Broker login succeeded", extra={"broker_url": self.base_url})
        return BrokerAuth(token=token, expiry=self._session_expiry())

    async def refresh_token(self, token: str) -> BrokerAuth:
        """The venue has no refresh endpoint: the same token gets a new expiry"""
        return BrokerAuth(token=token, expiry=self._session_expiry())

    async def _get_json(self, path: str, endpoint: str, token: str, params: Dict[str, Any] | None = None) -> Dict[str, Any]:
        error_prefix = f"{endpoint.upper()}_ERROR"
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                with broker_latency_histogram.labels(endpoint=endpoint).time():
                    response = await client.get(
                        f"{self.base_url}{path}",
                        params=params,
                        headers={"X-Auth-Token": token},
                    )
                response.raise_for_status()
                return response.json()

            except httpx.TimeoutException as e:
                broker_failure_counter.labels(endpoint=endpoint).inc()
                raise BrokerAPIError(f"{error_prefix}: Request timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                broker_failure_counter.labels(endpoint=endpoint).inc()
                raise _status_error(e.response, error_prefix) from e
            except httpx.RequestError as e:
                broker_failure_counter.labels(endpoint=endpoint).inc()
                raise BrokerAPIError(f"{error_prefix}: network error ({e.__class__.__name__})") from e
            except ValueError as e:
                raise BrokerAPIError(f"{error_prefix}: Invalid JSON from broker") from e

    async def get_accounts(self, token: str) -> List[Dict[str, Any]]:
        data = await self._get_json("/rest/accounts", "get_accounts", token)
        return data.get("accounts") or []

    async def get_all_orders(self, account_name: str, token: str) -> List[Dict[str, Any]]:
        """All order status reports for an account (the API wants the account name)"""
        data = await self._get_json("/rest/order/all", "get_orders", token, params={"accountId": account_name})
        return data.get("orders") or []

    async def list_operations(
        self,
        token: Optional[str],
        date: Optional[str] = None,
        page_token: Optional[str] = None,
        account_id: Optional[str] = None,
    ) -> OperationsPage:
        """
        List executions for a trading day.

        The venue does not paginate orders, so the page token is accepted but
        the single page returned never carries a next token.

        Raises:
            BrokerAPIError: AUTH_REQUIRED / RATE_LIMITED / SERVER_ERROR prefixed
        """
        if not token:
            raise BrokerAPIError("AUTH_REQUIRED: No authentication token available")

        account_name = account_id
        if not account_name:
            accounts = await self.get_accounts(token)
            if not accounts:
                raise BrokerAPIError("LIST_OPERATIONS_ERROR: No accounts found for this user")
            account_name = accounts[0].get("name")

        orders = await self.get_all_orders(account_name, token)

        if date:
            orders = [
                order for order in orders
                if venue_trading_date(order.get("transactTime") or "") == date
            ]

        return OperationsPage(operations=orders, next_page_token=None, estimated_total=len(orders))


def _status_error(response: httpx.Response, prefix: str) -> BrokerAPIError:
    status = response.status_code
    if status in (401, 403):
        return BrokerAPIError("AUTH_REQUIRED: Token invalid or expired", status_code=status)
    if status == 429:
        retry_after = _retry_after_seconds(response)
        return BrokerAPIError(
            f"RATE_LIMITED: Retry after {int(retry_after)} seconds",
            status_code=status,
            retry_after=retry_after,
        )
    if status >= 500:
        return BrokerAPIError(f"SERVER_ERROR: HTTP {status}", status_code=status)
    return BrokerAPIError(f"{prefix}: HTTP {status}", status_code=status)


def _retry_after_seconds(response: httpx.Response) -> float:
    header = response.headers.get("Retry-After")
    try:
        return float(header)
    except (TypeError, ValueError):
        return settings.rate_limit_default_wait_ms / 1000
