"""Aggregation of repo fee breakdowns that share an instrument and settlement"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from po_gateway.domain.models import (
    BreakdownStatus,
    FeeWarning,
    RepoFeeBreakdown,
    RepoOperation,
    RepoRole,
)
from po_gateway.domain.repo_fees import (
    REPO_RECONCILIATION_TOLERANCE,
    SOURCE_REPO,
    parse_role,
    reconcile_base_amount,
    settle,
)

REPO_TENOR_MISMATCH = "REPO_TENOR_MISMATCH"

SUMMED_FIELDS = (
    "principal_amount",
    "base_amount",
    "accrued_interest",
    "arancel_amount",
    "derechos_mercado_amount",
    "gastos_garantia_amount",
    "iva_amount",
)


@dataclass(frozen=True)
class RepoGroupKey:
    """Rows settle together when instrument, currency and role match"""

    instrument: str
    currency: Optional[str]
    role: Optional[RepoRole]


def group_key(repo_operation: RepoOperation) -> RepoGroupKey:
    return RepoGroupKey(
        instrument=(repo_operation.instrument.display_name or repo_operation.instrument.cfi_code).strip().upper(),
        currency=repo_operation.currency,
        role=parse_role(repo_operation.role),
    )


def _aggregate_status(breakdowns: Sequence[RepoFeeBreakdown]) -> BreakdownStatus:
    statuses = {b.status for b in breakdowns}
    if BreakdownStatus.ERROR in statuses:
        return BreakdownStatus.ERROR
    if BreakdownStatus.PENDING in statuses:
        return BreakdownStatus.PENDING
    return BreakdownStatus.OK


def _merge_warnings(breakdowns: Sequence[RepoFeeBreakdown]) -> List[FeeWarning]:
    seen = set()
    merged: List[FeeWarning] = []
    for breakdown in breakdowns:
        for warning in breakdown.warnings:
            key = (warning.code, warning.message)
            if key in seen:
                continue
            seen.add(key)
            merged.append(warning)
    return merged


def aggregate_repo_breakdowns(
    breakdowns: Sequence[RepoFeeBreakdown],
    tolerance: float = REPO_RECONCILIATION_TOLERANCE,
) -> RepoFeeBreakdown:
    """
    Combine sibling breakdowns into one settlement total.

    Each component is summed at full precision, then total expenses, net
    settlement and reconciliation are derived from the sums, so the result
    equals a single breakdown over the combined amounts.

    Raises:
        ValueError: On an empty group or members with different roles
    """
    if not breakdowns:
        raise ValueError("Cannot aggregate an empty group of repo breakdowns")

    roles = {b.role for b in breakdowns}
    if len(roles) > 1:
        raise ValueError(f"Cannot aggregate repo breakdowns with different roles: {sorted(r.value if r else '---' for r in roles)}")
    role = breakdowns[0].role

    sums: Dict[str, float] = {name: sum(getattr(b, name) for b in breakdowns) for name in SUMMED_FIELDS}

    total_expenses = (
        sums["arancel_amount"]
        + sums["derechos_mercado_amount"]
        + sums["gastos_garantia_amount"]
        + sums["iva_amount"]
    )

    warnings = _merge_warnings(breakdowns)
    tenors = {b.tenor_days for b in breakdowns}
    tenor_days = next(iter(tenors)) if len(tenors) == 1 else None
    if tenor_days is None:
        warnings.append(
            FeeWarning(
                code=REPO_TENOR_MISMATCH,
                message="Grouped caucion rows have different tenors.",
                details={"tenors": sorted(t for t in tenors if t is not None)},
            )
        )

    status = _aggregate_status(breakdowns)
    errored = next((b for b in breakdowns if b.status == BreakdownStatus.ERROR), None)
    currencies = {b.currency for b in breakdowns}

    return RepoFeeBreakdown(
        repo_operation_id=None,
        currency=next(iter(currencies)) if len(currencies) == 1 else None,
        role=role,
        tenor_days=tenor_days,
        **sums,
        total_expenses=total_expenses,
        net_settlement=settle(sums["base_amount"], total_expenses, role),
        reconciliation=reconcile_base_amount(
            sums["principal_amount"], sums["accrued_interest"], sums["base_amount"], tolerance
        ),
        status=status,
        blocked=any(b.blocked for b in breakdowns),
        source=errored.source if errored else SOURCE_REPO,
        warnings=warnings,
        error_message=errored.error_message if errored else None,
    )


def group_repo_breakdowns(
    rows: Iterable[Tuple[RepoOperation, RepoFeeBreakdown]],
    tolerance: float = REPO_RECONCILIATION_TOLERANCE,
) -> Dict[RepoGroupKey, RepoFeeBreakdown]:
    """Group (operation, breakdown) pairs by settlement key and aggregate each group"""
    groups: Dict[RepoGroupKey, List[RepoFeeBreakdown]] = {}
    for repo_operation, breakdown in rows:
        groups.setdefault(group_key(repo_operation), []).append(breakdown)

    return {key: aggregate_repo_breakdowns(members, tolerance) for key, members in groups.items()}
