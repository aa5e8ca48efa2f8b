"""POST /v1/broker/login - Broker session login"""

import logging
from fastapi import APIRouter, Depends, HTTPException, Request

from po_gateway.api.v1.schemas import BrokerAuthSchema, LoginRequest
from po_gateway.api.dependencies import get_broker_client, get_request_id
from po_gateway.domain.error_taxonomy import classify
from po_gateway.domain.exceptions import BrokerAPIError
from po_gateway.domain.models import ErrorCategory
from po_gateway.infrastructure.clients.broker import BrokerClient

router = APIRouter()


@router.post("/broker/login", response_model=BrokerAuthSchema)
async def login(
    request_body: LoginRequest,
    request: Request,
    broker_client: BrokerClient = Depends(get_broker_client),
):
    """
    Exchange broker credentials for a session token.

    Returns:
        Token, expiry (epoch ms) and the account metadata to sync with
    """
    request_id = get_request_id(request)

    try:
        auth = await broker_client.login(request_body.username, request_body.password)
    except BrokerAPIError as e:
        logging.warning(f"Broker login failed: {e}", extra={"request_id": request_id})
        if classify(e) == ErrorCategory.AUTH:
            raise HTTPException(status_code=401, detail=str(e))
        raise HTTPException(status_code=503, detail=str(e))

    return BrokerAuthSchema(
        token=auth.token,
        expiry=auth.expiry,
        account_id=request_body.account_id,
        display_name=request_body.display_name,
    )
