"""POST /v1/sync - Broker operations sync endpoints"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from po_gateway.api.v1.schemas import (
    BrokerAuthSchema,
    CancelResponse,
    SyncHistoryResponse,
    SyncRequest,
    SyncResponse,
    SyncSessionSchema,
)
from po_gateway.api.dependencies import (
    SyncRegistry,
    get_broker_client,
    get_request_id,
    get_sync_registry,
    get_token_manager,
)
from po_gateway.application.sync_service import SyncOrchestrator
from po_gateway.application.token_manager import TokenManager
from po_gateway.domain.exceptions import SyncInProgressError
from po_gateway.domain.models import BrokerAuth, SyncMode
from po_gateway.infrastructure.clients.broker import BrokerClient
from po_gateway.infrastructure.database.repositories import OperationRepository, SyncSessionRepository
from po_gateway.infrastructure.database.session import get_db
from po_gateway.infrastructure.database.sync_sink import SqlSyncSink

router = APIRouter()


@router.post("/sync", response_model=SyncResponse)
async def run_sync(
    request_body: SyncRequest,
    request: Request,
    db: Session = Depends(get_db),
    broker_client: BrokerClient = Depends(get_broker_client),
    token_manager: TokenManager = Depends(get_token_manager),
    registry: SyncRegistry = Depends(get_sync_registry),
):
    """
    Import broker executions into the operation store.

    Flow:
    1. Reject if another sync is running (409)
    2. Load committed operations as the dedupe baseline
    3. daily: whole trading day; refresh: only newer than last successful sync
    4. Commit merged set atomically, or leave the store untouched on fail/cancel
    """
    request_id = get_request_id(request)

    try:
        cancel_event = registry.begin()
    except SyncInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))

    refreshed: List[BrokerAuth] = []

    try:
        baseline = OperationRepository(db).list_operations()
        orchestrator = SyncOrchestrator(broker_client, token_manager, SqlSyncSink(db))
        auth = request_body.auth.to_domain()

        if request_body.mode == SyncMode.REFRESH:
            last_sync = SyncSessionRepository(db).last_successful_sync_timestamp()
            result = await orchestrator.refresh(
                auth,
                baseline,
                last_sync_timestamp=last_sync,
                trading_day=request_body.trading_day,
                cancel_event=cancel_event,
                on_auth_refreshed=refreshed.append,
            )
        else:
            result = await orchestrator.sync_daily(
                auth,
                baseline,
                trading_day=request_body.trading_day,
                cancel_event=cancel_event,
                on_auth_refreshed=refreshed.append,
            )

    except Exception as e:
        logging.error(f"Unexpected sync error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    finally:
        registry.end()

    return SyncResponse(
        session_id=result.session_id,
        status=result.status,
        mode=result.mode,
        operations_added=result.operations_added,
        new_orders_count=result.new_orders_count,
        total_operations=result.total_operations,
        pages_fetched=result.pages_fetched,
        evaluated_count=result.evaluated_count,
        retry_attempts=result.retry_attempts,
        has_new_operations=result.has_new_operations,
        error=result.error,
        needs_reauth=result.needs_reauth,
        rate_limited=result.rate_limited,
        rate_limit_ms=result.rate_limit_ms,
        refreshed_auth=BrokerAuthSchema.from_domain(refreshed[-1]) if refreshed else None,
    )


@router.post("/sync/cancel", response_model=CancelResponse)
async def cancel_sync(registry: SyncRegistry = Depends(get_sync_registry)):
    """Ask the running sync to stop before its next page or before commit"""
    return CancelResponse(canceled=registry.cancel())


@router.get("/sync/history", response_model=SyncHistoryResponse)
def get_sync_history(
    limit: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
):
    """
    Retrieve recent sync sessions, newest first.

    Returns:
        Session status, timings, imported counts and errors
    """
    sessions = SyncSessionRepository(db).get_history(limit=limit)
    return SyncHistoryResponse(sessions=[SyncSessionSchema.from_domain(s) for s in sessions])
