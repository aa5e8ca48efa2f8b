"""Dependency injection for FastAPI endpoints"""

import asyncio
from functools import lru_cache
from typing import Optional

from fastapi import Depends, Request

from po_gateway.application.token_manager import TokenManager
from po_gateway.config import settings
from po_gateway.domain.exceptions import SyncInProgressError
from po_gateway.domain.models import RepoFeeConfig
from po_gateway.infrastructure.clients.broker import BrokerClient
from po_gateway.infrastructure.storage.fee_config_loader import load_repo_fee_config


class SyncRegistry:
    """Tracks the single sync allowed to run at a time and its cancel signal"""

    def __init__(self) -> None:
        self._cancel_event: Optional[asyncio.Event] = None

    @property
    def active(self) -> bool:
        return self._cancel_event is not None

    def begin(self) -> asyncio.Event:
        if self._cancel_event is not None:
            raise SyncInProgressError("A broker sync is already in progress")
        self._cancel_event = asyncio.Event()
        return self._cancel_event

    def end(self) -> None:
        self._cancel_event = None

    def cancel(self) -> bool:
        if self._cancel_event is None:
            return False
        self._cancel_event.set()
        return True


sync_registry = SyncRegistry()


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_broker_client() -> BrokerClient:
    """Provide broker API client instance"""
    return BrokerClient()


def get_token_manager(broker_client: BrokerClient = Depends(get_broker_client)) -> TokenManager:
    """Token manager refreshing through the same broker client"""
    return TokenManager(broker_client)


def get_sync_registry() -> SyncRegistry:
    return sync_registry


@lru_cache(maxsize=1)
def get_repo_fee_config() -> RepoFeeConfig:
    """Rate table loaded once per process; read-only afterwards"""
    return load_repo_fee_config(settings.repo_fee_config_path)
