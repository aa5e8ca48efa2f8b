"""Repo (caucion) fee engine - accrued interest, expenses and net settlement"""

import logging
import math
import re
from typing import Dict, List, Optional

from po_gateway.domain.models import (
    BreakdownStatus,
    Currency,
    FeeWarning,
    Reconciliation,
    RepoFeeBreakdown,
    RepoFeeConfig,
    RepoOperation,
    RepoRole,
)

REPO_RECONCILIATION_TOLERANCE = 0.01

REPO_TENOR_INVALID = "REPO_TENOR_INVALID"
REPO_CONFIG_INCOMPLETE = "REPO_CONFIG_INCOMPLETE"
REPO_BASE_AMOUNT_MISMATCH = "REPO_BASE_AMOUNT_MISMATCH"
REPO_ROLE_INVALID = "REPO_ROLE_INVALID"

SOURCE_REPO = "repo"
SOURCE_TENOR_INVALID = "repo-tenor-invalid"
SOURCE_CONFIG_ERROR = "repo-config-error"
SOURCE_ROLE_INVALID = "repo-role-invalid"

_REPO_CFI_PATTERN = re.compile(r"^(RP|FR)")
_TENOR_PATTERN = re.compile(r"(-?\d+)\s*[dD]\b")

RATE_LABELS = {
    "arancel": "Caucion arancel",
    "derechos": "Market rights (daily)",
    "gastos": "Guarantee expenses (daily)",
    "iva": "Repo VAT",
}


def _finite(value: Optional[float]) -> float:
    if value is None or not math.isfinite(value):
        return 0.0
    return value


def parse_role(value: Optional[str]) -> Optional[RepoRole]:
    """Exact role value; anything else is not a role"""
    if isinstance(value, RepoRole):
        return value
    try:
        return RepoRole(value)
    except ValueError:
        return None


def is_repo_instrument(cfi_code: Optional[str]) -> bool:
    """Collateralized-lending CFI codes start with RP or FR"""
    return isinstance(cfi_code, str) and bool(_REPO_CFI_PATTERN.match(cfi_code))


def parse_tenor_days(display_name: Optional[str]) -> int:
    """
    Tenor from an instrument label such as "MERV - CAUCION USD 1D".

    Returns 0 when there is no "<N>D" token or N is not positive.
    """
    if not isinstance(display_name, str) or not display_name:
        return 0

    match = _TENOR_PATTERN.search(display_name)
    if not match:
        return 0

    days = int(match.group(1))
    return days if days > 0 else 0


def resolve_tenor_days(repo_operation: RepoOperation) -> int:
    """Explicit tenor (operation, then instrument) wins over the display-name token"""
    for explicit in (repo_operation.tenor_days, repo_operation.instrument.tenor_days):
        if explicit is not None and _finite(explicit) > 0:
            return int(explicit)
    return parse_tenor_days(repo_operation.instrument.display_name)


def calculate_accrued_interest(principal_amount: float, price_tna: float, tenor_days: int) -> float:
    """principal × TNA% × days/365; zero when any factor is not positive"""
    principal = _finite(principal_amount)
    tna = _finite(price_tna)
    days = _finite(tenor_days)

    if principal <= 0 or tna <= 0 or days <= 0:
        return 0.0

    return principal * (tna / 100) * (days / 365)


def reconcile_base_amount(
    principal_amount: float,
    accrued_interest: float,
    base_amount: float,
    tolerance: float = REPO_RECONCILIATION_TOLERANCE,
) -> Reconciliation:
    """Check base amount against principal + accrued interest within tolerance"""
    expected = _finite(principal_amount) + _finite(accrued_interest)
    actual = _finite(base_amount)
    diff = actual - expected

    return Reconciliation(
        reconciles=abs(diff) <= tolerance,
        diff=diff,
        expected=expected,
        actual=actual,
        tolerance=tolerance,
    )


def calculate_arancel(base_amount: float, annual_rate_percent: float, tenor_days: int) -> float:
    """Arancel is an annualized rate: base × rate% × days/365"""
    if base_amount <= 0 or annual_rate_percent <= 0 or tenor_days <= 0:
        return 0.0
    return base_amount * (annual_rate_percent / 100) * (tenor_days / 365)


def calculate_daily_rate_fee(base_amount: float, daily_rate_percent: float, tenor_days: int) -> float:
    """Literal daily rate applied per day: base × rate% × days (no /365)"""
    if base_amount <= 0 or daily_rate_percent <= 0 or tenor_days <= 0:
        return 0.0
    return base_amount * (daily_rate_percent / 100) * tenor_days


def calculate_gastos_garantia(base_amount: float, daily_rate_percent: float, tenor_days: int, role: Optional[RepoRole]) -> float:
    """Guarantee expenses are charged to the borrower only"""
    if role != RepoRole.TOMADORA:
        return 0.0
    return calculate_daily_rate_fee(base_amount, daily_rate_percent, tenor_days)


def calculate_iva(amounts: List[float], iva_rate: float) -> float:
    """VAT over the sum of expense components (never principal or interest)"""
    if iva_rate <= 0:
        return 0.0
    return sum(amounts) * iva_rate


def settle(base_amount: float, total_expenses: float, role: Optional[RepoRole]) -> float:
    """Borrower pays base + expenses; lender receives base - expenses"""
    if role == RepoRole.TOMADORA:
        return base_amount + total_expenses
    return base_amount - total_expenses


def _to_currency(value: Optional[str]) -> Optional[Currency]:
    try:
        return Currency(value)
    except ValueError:
        return None


def resolve_rates(config: RepoFeeConfig, currency: Optional[str], role: Optional[RepoRole]) -> Dict[str, float]:
    """Rates for (currency, role); unknown currencies resolve to zero"""
    key = _to_currency(currency)
    arancel_table = (
        config.arancel_caucion_tomadora
        if role == RepoRole.TOMADORA
        else config.arancel_caucion_colocadora
    )

    return {
        "arancel": _finite(arancel_table.get(key, 0.0)) if key else 0.0,
        "derechos": _finite(config.derechos_de_mercado_daily_rate.get(key, 0.0)) if key else 0.0,
        "gastos": _finite(config.gastos_garantia_daily_rate.get(key, 0.0)) if key else 0.0,
        "iva": _finite(config.iva_repo_rate),
    }


def detect_missing_rates(rates: Dict[str, float], role: Optional[RepoRole]) -> List[str]:
    """Required rates that are zero or negative; gastos is required only for tomadora"""
    missing = [name for name in ("arancel", "derechos") if rates[name] <= 0]
    if role == RepoRole.TOMADORA and rates["gastos"] <= 0:
        missing.append("gastos")
    if rates["iva"] <= 0:
        missing.append("iva")
    return missing


def missing_rates_message(currency: Optional[str], role: Optional[RepoRole], missing: List[str]) -> str:
    labels = ", ".join(RATE_LABELS.get(name, name) for name in missing)
    return (
        f"Missing repo rates for {currency or '---'} {role.value if role else '---'}: {labels}. "
        "Complete them in the fee settings."
    )


def _blocked(
    repo_operation: RepoOperation,
    role: Optional[RepoRole],
    tenor_days: int,
    source: str,
    warning: FeeWarning,
    tolerance: float,
) -> RepoFeeBreakdown:
    base = _finite(repo_operation.base_amount)
    return RepoFeeBreakdown(
        repo_operation_id=repo_operation.id,
        currency=repo_operation.currency,
        role=role,
        tenor_days=tenor_days,
        principal_amount=_finite(repo_operation.principal_amount),
        base_amount=base,
        accrued_interest=0.0,
        arancel_amount=0.0,
        derechos_mercado_amount=0.0,
        gastos_garantia_amount=0.0,
        iva_amount=0.0,
        total_expenses=0.0,
        net_settlement=base,
        reconciliation=Reconciliation(True, 0.0, base, base, tolerance),
        status=BreakdownStatus.ERROR,
        blocked=True,
        source=source,
        warnings=[warning],
        error_message=warning.message,
    )


def compute_breakdown(
    repo_operation: RepoOperation,
    config: RepoFeeConfig,
    tolerance: float = REPO_RECONCILIATION_TOLERANCE,
) -> Optional[RepoFeeBreakdown]:
    """
    Compute the caucion fee breakdown for one operation.

    Steps:
    1. Non-repo instruments (CFI not RP*/FR*) → None
    2. Tenor missing or not positive → blocked, REPO_TENOR_INVALID
    3. Role other than colocadora or tomadora → blocked, REPO_ROLE_INVALID
    4. Required rate missing for (currency, role) → blocked, REPO_CONFIG_INCOMPLETE
    5. Accrued interest and base-amount reconciliation (mismatch only warns)
    6. arancel (annualized), derechos and gastos (daily), IVA over the three
    7. Net settlement by role

    Missing data never raises: the breakdown comes back blocked with zero
    expenses so callers can show the problem per row.
    """
    if not is_repo_instrument(repo_operation.instrument.cfi_code):
        return None

    role = parse_role(repo_operation.role)
    tenor_days = resolve_tenor_days(repo_operation)
    if tenor_days <= 0:
        warning = FeeWarning(
            code=REPO_TENOR_INVALID,
            message="Tenor not available for the caucion operation.",
        )
        logging.warning(
            "Repo tenor invalid",
            extra={
                "repo_operation_id": repo_operation.id,
                "display_name": repo_operation.instrument.display_name,
            },
        )
        return _blocked(repo_operation, role, 0, SOURCE_TENOR_INVALID, warning, tolerance)

    if role is None:
        warning = FeeWarning(
            code=REPO_ROLE_INVALID,
            message="Caucion role must be colocadora or tomadora.",
            details={"role": str(repo_operation.role)},
        )
        logging.warning(
            "Repo role invalid",
            extra={"repo_operation_id": repo_operation.id, "role": str(repo_operation.role)},
        )
        return _blocked(repo_operation, None, tenor_days, SOURCE_ROLE_INVALID, warning, tolerance)

    currency = repo_operation.currency
    rates = resolve_rates(config, currency, role)

    missing = detect_missing_rates(rates, role)
    if missing:
        warning = FeeWarning(
            code=REPO_CONFIG_INCOMPLETE,
            message=missing_rates_message(currency, role, missing),
            details={"missing_rates": missing, "currency": currency, "role": role.value},
        )
        logging.warning(
            "Repo fee config incomplete",
            extra={
                "repo_operation_id": repo_operation.id,
                "currency": currency,
                "role": role.value,
                "missing_rates": missing,
            },
        )
        return _blocked(repo_operation, role, tenor_days, SOURCE_CONFIG_ERROR, warning, tolerance)

    principal = _finite(repo_operation.principal_amount)
    base = _finite(repo_operation.base_amount)
    warnings: List[FeeWarning] = []

    accrued_interest = calculate_accrued_interest(principal, repo_operation.price_tna, tenor_days)
    reconciliation = reconcile_base_amount(principal, accrued_interest, base, tolerance)

    if not reconciliation.reconciles:
        warnings.append(
            FeeWarning(
                code=REPO_BASE_AMOUNT_MISMATCH,
                message="Base amount does not reconcile with principal + accrued interest.",
                details={"diff": reconciliation.diff},
            )
        )
        logging.warning(
            "Repo base amount mismatch",
            extra={
                "repo_operation_id": repo_operation.id,
                "diff": reconciliation.diff,
                "expected": reconciliation.expected,
                "actual": reconciliation.actual,
            },
        )

    arancel_amount = calculate_arancel(base, rates["arancel"], tenor_days)
    derechos_mercado_amount = calculate_daily_rate_fee(base, rates["derechos"], tenor_days)
    gastos_garantia_amount = calculate_gastos_garantia(base, rates["gastos"], tenor_days, role)
    iva_amount = calculate_iva([arancel_amount, derechos_mercado_amount, gastos_garantia_amount], rates["iva"])

    total_expenses = arancel_amount + derechos_mercado_amount + gastos_garantia_amount + iva_amount

    return RepoFeeBreakdown(
        repo_operation_id=repo_operation.id,
        currency=currency,
        role=role,
        tenor_days=tenor_days,
        principal_amount=principal,
        base_amount=base,
        accrued_interest=accrued_interest,
        arancel_amount=arancel_amount,
        derechos_mercado_amount=derechos_mercado_amount,
        gastos_garantia_amount=gastos_garantia_amount,
        iva_amount=iva_amount,
        total_expenses=total_expenses,
        net_settlement=settle(base, total_expenses, role),
        reconciliation=reconciliation,
        status=BreakdownStatus.OK,
        blocked=False,
        source=SOURCE_REPO,
        warnings=warnings,
    )
