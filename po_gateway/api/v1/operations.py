"""GET /v1/operations - Committed operations"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from po_gateway.api.v1.schemas import OperationSchema, OperationsResponse
from po_gateway.domain.dedupe import operation_to_dict
from po_gateway.infrastructure.database.repositories import OperationRepository
from po_gateway.infrastructure.database.session import get_db

router = APIRouter()


@router.get("/operations", response_model=OperationsResponse)
def list_operations(
    symbol: str | None = Query(None, description="Exact symbol filter"),
    db: Session = Depends(get_db),
):
    """
    Retrieve the committed operation store in import order.

    Returns:
        Every operation merged by a successful sync
    """
    operations = OperationRepository(db).list_operations()
    if symbol:
        operations = [op for op in operations if op.symbol == symbol]

    return OperationsResponse(
        total=len(operations),
        operations=[OperationSchema(**operation_to_dict(op)) for op in operations],
    )
