"""Presentation rounding for monetary figures"""

from decimal import ROUND_HALF_EVEN, ROUND_HALF_UP, Decimal
from typing import Dict

from po_gateway.domain.models import RepoFeeBreakdown, Rounding

_MODES = {"HALF_UP": ROUND_HALF_UP, "HALF_EVEN": ROUND_HALF_EVEN}

MONEY_FIELDS = (
    "principal_amount",
    "base_amount",
    "accrued_interest",
    "arancel_amount",
    "derechos_mercado_amount",
    "gastos_garantia_amount",
    "iva_amount",
    "total_expenses",
    "net_settlement",
)


def round_for_display(value: float, rounding: Rounding) -> Decimal:
    """
    Round a full-precision float for display only.

    Goes through str() so 1.005 rounds as written rather than as its binary
    approximation.
    """
    quantum = Decimal(1).scaleb(-rounding.display_decimals)
    return Decimal(str(value)).quantize(quantum, rounding=_MODES.get(rounding.rounding_mode, ROUND_HALF_UP))


def display_amounts(breakdown: RepoFeeBreakdown) -> Dict[str, str]:
    """Rounded string amounts for every monetary field of a breakdown"""
    return {
        name: str(round_for_display(getattr(breakdown, name), breakdown.rounding))
        for name in MONEY_FIELDS
    }
