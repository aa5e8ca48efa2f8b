"""Broker token expiry tracking and proactive refresh"""

import logging
from typing import Awaitable, Callable, Optional, Protocol

from po_gateway.config import settings
from po_gateway.domain.exceptions import NotAuthenticatedError, TokenExpiredError
from po_gateway.domain.models import BrokerAuth
from po_gateway.utils.date_utils import now_ms


class TokenRefresher(Protocol):
    async def refresh_token(self, token: str) -> BrokerAuth: ...


OnRefreshed = Callable[[BrokerAuth], Optional[Awaitable[None]]]


class TokenManager:
    """
    Keeps a broker session usable for the duration of a sync.

    Refresh is proactive only: a token inside the threshold window is
    exchanged, an already expired one is rejected because the venue needs a
    live session to issue a new one.
    """

    def __init__(
        self,
        refresher: TokenRefresher,
        refresh_threshold_ms: int | None = None,
        clock: Callable[[], int] = now_ms,
    ):
        self._refresher = refresher
        self.refresh_threshold_ms = (
            settings.token_refresh_threshold_ms if refresh_threshold_ms is None else refresh_threshold_ms
        )
        self._clock = clock

    def needs_refresh(self, auth: Optional[BrokerAuth]) -> bool:
        if not auth or not auth.token or not auth.expiry:
            return False
        return self._clock() >= auth.expiry - self.refresh_threshold_ms

    def is_valid(self, auth: Optional[BrokerAuth]) -> bool:
        if not auth or not auth.token or not auth.expiry:
            return False
        return self._clock() < auth.expiry

    async def refresh(self, auth: BrokerAuth) -> BrokerAuth:
        """Swap the token, keeping account metadata"""
        if not auth.token:
            raise NotAuthenticatedError("REFRESH_FAILED: No current token available")

        renewed = await self._refresher.refresh_token(auth.token)
        return BrokerAuth(
            token=renewed.token,
            expiry=renewed.expiry,
            account_id=auth.account_id,
            display_name=auth.display_name,
        )

    async def ensure_valid(self, auth: Optional[BrokerAuth], on_refreshed: OnRefreshed | None = None) -> BrokerAuth:
        """
        Return a usable auth, refreshing it when close to expiry.

        Raises:
            NotAuthenticatedError: No token present
            TokenExpiredError: Token already past expiry
        """
        if not auth or not auth.token:
            raise NotAuthenticatedError()

        if not self.is_valid(auth):
            raise TokenExpiredError()

        if self.needs_refresh(auth):
            renewed = await self.refresh(auth)
            logging.info("Broker token refreshed", extra={"account_id": auth.account_id, "expiry": renewed.expiry})
            if on_refreshed is not None:
                result = on_refreshed(renewed)
                if result is not None:
                    await result
            return renewed

        return auth

    async def ensure_valid_token(self, auth: Optional[BrokerAuth], on_refreshed: OnRefreshed | None = None) -> str:
        """Token string of ensure_valid"""
        return (await self.ensure_valid(auth, on_refreshed)).token
