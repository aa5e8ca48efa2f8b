"""Pydantic schemas for API request/response validation"""

from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional

from po_gateway.domain.models import (
    BreakdownStatus,
    BrokerAuth,
    RepoFeeBreakdown,
    RepoRole,
    SyncMode,
    SyncSession,
    SyncStatus,
)
from po_gateway.utils.date_utils import to_iso
from po_gateway.utils.rounding import display_amounts


class LoginRequest(BaseModel):
    """Request body for POST /v1/broker/login"""

    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    account_id: Optional[str] = Field(None, description="Account name to sync; first account when omitted")
    display_name: Optional[str] = None


class BrokerAuthSchema(BaseModel):
    token: Optional[str] = None
    expiry: Optional[int] = Field(None, description="Epoch milliseconds")
    account_id: Optional[str] = None
    display_name: Optional[str] = None

    @classmethod
    def from_domain(cls, auth: BrokerAuth) -> "BrokerAuthSchema":
        return cls(token=auth.token, expiry=auth.expiry, account_id=auth.account_id, display_name=auth.display_name)

    def to_domain(self) -> BrokerAuth:
        return BrokerAuth(token=self.token, expiry=self.expiry, account_id=self.account_id, display_name=self.display_name)


class SyncRequest(BaseModel):
    """Request body for POST /v1/sync"""

    auth: BrokerAuthSchema
    mode: SyncMode = SyncMode.DAILY
    trading_day: Optional[str] = Field(None, description="YYYY-MM-DD; today when omitted")


class SyncResponse(BaseModel):
    """Response for POST /v1/sync"""

    session_id: str
    status: SyncStatus
    mode: SyncMode
    operations_added: int
    new_orders_count: int
    total_operations: int
    pages_fetched: int
    evaluated_count: int
    retry_attempts: int
    has_new_operations: bool
    error: Optional[str] = None
    needs_reauth: bool = False
    rate_limited: bool = False
    rate_limit_ms: Optional[int] = None
    refreshed_auth: Optional[BrokerAuthSchema] = None


class CancelResponse(BaseModel):
    canceled: bool


class SyncSessionSchema(BaseModel):
    session_id: str
    mode: SyncMode
    status: SyncStatus
    start_time: Optional[str]
    end_time: Optional[str]
    duration_ms: Optional[int]
    operations_imported_count: int
    pages_fetched: int
    retry_attempts: int
    error: Optional[str] = None

    @classmethod
    def from_domain(cls, session: SyncSession) -> "SyncSessionSchema":
        return cls(
            session_id=session.session_id,
            mode=session.mode,
            status=session.status,
            start_time=to_iso(session.start_time),
            end_time=to_iso(session.end_time),
            duration_ms=session.end_time - session.start_time if session.end_time else None,
            operations_imported_count=session.operations_imported_count,
            pages_fetched=session.pages_fetched,
            retry_attempts=session.retry_attempts,
            error=session.error,
        )


class SyncHistoryResponse(BaseModel):
    """Response for GET /v1/sync/history"""

    sessions: List[SyncSessionSchema]


class OperationSchema(BaseModel):
    id: str
    order_id: Optional[str]
    execution_id: Optional[str]
    symbol: str
    side: Optional[str]
    quantity: float
    price: float
    trade_timestamp: int
    source: str
    category: Optional[str] = None
    option_type: Optional[str] = None
    strike: Optional[float] = None
    expiration: Optional[str] = None


class OperationsResponse(BaseModel):
    """Response for GET /v1/operations"""

    total: int
    operations: List[OperationSchema]


class RepoOperationSchema(BaseModel):
    """Caucion row already normalized by an upstream adapter"""

    id: Optional[str] = None
    principal_amount: float = Field(..., ge=0)
    base_amount: float = Field(..., ge=0)
    price_tna: float = Field(..., description="Annualized nominal rate, percent")
    role: RepoRole
    currency: str
    cfi_code: str
    display_name: str = ""
    tenor_days: Optional[int] = None


class RepoFeesRequest(BaseModel):
    """Request body for POST /v1/repo/fees"""

    operations: List[RepoOperationSchema] = Field(default_factory=list)
    rows: List[Dict[str, Any]] = Field(default_factory=list, description="Loosely keyed operation rows")
    aggregate: bool = True


class FeeWarningSchema(BaseModel):
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class ReconciliationSchema(BaseModel):
    reconciles: bool
    diff: float
    expected: float
    actual: float
    tolerance: float


class RoundingSchema(BaseModel):
    display_decimals: int
    rounding_mode: str


class RepoBreakdownSchema(BaseModel):
    repo_operation_id: Optional[str]
    currency: Optional[str]
    role: Optional[RepoRole]
    tenor_days: Optional[int]
    principal_amount: float
    base_amount: float
    accrued_interest: float
    arancel_amount: float
    derechos_mercado_amount: float
    gastos_garantia_amount: float
    iva_amount: float
    total_expenses: float
    net_settlement: float
    reconciliation: ReconciliationSchema
    status: BreakdownStatus
    blocked: bool
    source: str
    warnings: List[FeeWarningSchema]
    error_message: Optional[str] = None
    rounding: RoundingSchema
    display: Dict[str, str]

    @classmethod
    def from_domain(cls, breakdown: RepoFeeBreakdown) -> "RepoBreakdownSchema":
        return cls(
            repo_operation_id=breakdown.repo_operation_id,
            currency=breakdown.currency,
            role=breakdown.role,
            tenor_days=breakdown.tenor_days,
            principal_amount=breakdown.principal_amount,
            base_amount=breakdown.base_amount,
            accrued_interest=breakdown.accrued_interest,
            arancel_amount=breakdown.arancel_amount,
            derechos_mercado_amount=breakdown.derechos_mercado_amount,
            gastos_garantia_amount=breakdown.gastos_garantia_amount,
            iva_amount=breakdown.iva_amount,
            total_expenses=breakdown.total_expenses,
            net_settlement=breakdown.net_settlement,
            reconciliation=ReconciliationSchema(**vars(breakdown.reconciliation)),
            status=breakdown.status,
            blocked=breakdown.blocked,
            source=breakdown.source,
            warnings=[
                FeeWarningSchema(code=w.code, message=w.message, details=dict(w.details))
                for w in breakdown.warnings
            ],
            error_message=breakdown.error_message,
            rounding=RoundingSchema(**vars(breakdown.rounding)),
            display=display_amounts(breakdown),
        )


class RepoFeeResult(BaseModel):
    """One input row; breakdown is null for non-caucion instruments"""

    index: int
    is_repo: bool
    breakdown: Optional[RepoBreakdownSchema] = None


class RepoGroupSchema(BaseModel):
    instrument: str
    currency: Optional[str]
    role: Optional[RepoRole]
    size: int
    breakdown: RepoBreakdownSchema


class RepoFeesResponse(BaseModel):
    """Response for POST /v1/repo/fees"""

    results: List[RepoFeeResult]
    groups: List[RepoGroupSchema] = Field(default_factory=list)
