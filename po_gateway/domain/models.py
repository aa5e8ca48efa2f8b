"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional


class Side(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class OperationSource(str, Enum):
    CSV = "csv"
    BROKER = "broker"


class Currency(str, Enum):
    ARS = "ARS"
    USD = "USD"


class RepoRole(str, Enum):
    """Participant role in a caucion"""

    COLOCADORA = "colocadora"  # lender
    TOMADORA = "tomadora"  # borrower


class BreakdownStatus(str, Enum):
    PENDING = "pending"
    OK = "ok"
    ERROR = "error"


class ErrorCategory(str, Enum):
    AUTH = "AUTH"
    RATE_LIMIT = "RATE_LIMIT"
    TRANSIENT = "TRANSIENT"
    PERMANENT = "PERMANENT"


class SyncStatus(str, Enum):
    IDLE = "idle"
    IN_PROGRESS = "in-progress"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELED = "canceled"


class SyncMode(str, Enum):
    DAILY = "daily"
    REFRESH = "refresh"


@dataclass(frozen=True)
class Operation:
    """Normalized trade execution (one fill)"""

    id: str
    order_id: Optional[str]
    execution_id: Optional[str]
    symbol: str
    side: Optional[Side]
    quantity: float
    price: float
    trade_timestamp: int  # epoch ms
    source: OperationSource
    category: Optional[str] = None
    option_type: Optional[str] = None
    strike: Optional[float] = None
    expiration: Optional[str] = None
    import_timestamp: Optional[int] = None
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class RepoInstrument:
    cfi_code: str
    display_name: str = ""
    tenor_days: Optional[int] = None


@dataclass(frozen=True)
class RepoOperation:
    """Caucion operation ready for fee calculation"""

    id: Optional[str]
    principal_amount: float
    base_amount: float
    price_tna: float  # annualized nominal rate, percent
    role: Optional[RepoRole]
    currency: Optional[str]
    instrument: RepoInstrument
    tenor_days: Optional[int] = None


@dataclass(frozen=True)
class RepoFeeConfig:
    """Repo rate table keyed by currency; percentages except iva_repo_rate (fraction)"""

    arancel_caucion_colocadora: Mapping[Currency, float]
    arancel_caucion_tomadora: Mapping[Currency, float]
    derechos_de_mercado_daily_rate: Mapping[Currency, float]
    gastos_garantia_daily_rate: Mapping[Currency, float]
    iva_repo_rate: float

    def __post_init__(self) -> None:
        # Freeze the rate maps so a calculation pass can't see them change
        for name in (
            "arancel_caucion_colocadora",
            "arancel_caucion_tomadora",
            "derechos_de_mercado_daily_rate",
            "gastos_garantia_daily_rate",
        ):
            object.__setattr__(self, name, MappingProxyType(dict(getattr(self, name))))


@dataclass(frozen=True)
class Rounding:
    """Presentation rounding; internal math keeps full precision"""

    display_decimals: int = 2
    rounding_mode: str = "HALF_UP"


DISPLAY_ROUNDING = Rounding()


@dataclass(frozen=True)
class FeeWarning:
    code: str
    message: str
    details: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Reconciliation:
    reconciles: bool
    diff: float
    expected: float
    actual: float
    tolerance: float


@dataclass(frozen=True)
class RepoFeeBreakdown:
    """Fee and settlement figures for one caucion (or an aggregated group)"""

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
    reconciliation: Reconciliation
    status: BreakdownStatus
    blocked: bool
    source: str
    warnings: List[FeeWarning] = field(default_factory=list)
    error_message: Optional[str] = None
    rounding: Rounding = DISPLAY_ROUNDING


@dataclass(frozen=True)
class BrokerAuth:
    """Broker session credential; replaced (never edited) on refresh"""

    token: Optional[str]
    expiry: Optional[int]  # epoch ms
    account_id: Optional[str] = None
    display_name: Optional[str] = None


@dataclass(frozen=True)
class OperationsPage:
    """One page returned by the broker transport"""

    operations: List[Dict[str, Any]]
    next_page_token: Optional[str] = None
    estimated_total: Optional[int] = None


@dataclass
class SyncSession:
    """Sync run metadata; mutated through staging, finalized once"""

    session_id: str
    mode: SyncMode
    start_time: int
    status: SyncStatus = SyncStatus.IDLE
    end_time: Optional[int] = None
    operations_imported_count: int = 0
    pages_fetched: int = 0
    retry_attempts: int = 0
    error: Optional[str] = None


@dataclass(frozen=True)
class MergeResult:
    merged: List[Operation]
    new_orders_count: int
    new_ops_count: int


@dataclass(frozen=True)
class SyncResult:
    """Terminal outcome of a sync run"""

    status: SyncStatus
    mode: SyncMode
    session_id: str
    operations_added: int = 0
    new_orders_count: int = 0
    total_operations: int = 0
    pages_fetched: int = 0
    evaluated_count: int = 0
    retry_attempts: int = 0
    error: Optional[str] = None
    needs_reauth: bool = False
    rate_limited: bool = False
    rate_limit_ms: Optional[int] = None

    @property
    def success(self) -> bool:
        return self.status == SyncStatus.SUCCESS

    @property
    def canceled(self) -> bool:
        return self.status == SyncStatus.CANCELED

    @property
    def has_new_operations(self) -> bool:
        return self.operations_added > 0
