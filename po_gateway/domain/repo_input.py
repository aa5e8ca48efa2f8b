"""Build RepoOperation inputs from loosely keyed operation rows"""

from typing import Any, Mapping, Optional, Sequence

from po_gateway.domain.models import RepoInstrument, RepoOperation, RepoRole
from po_gateway.domain.repo_fees import calculate_accrued_interest, is_repo_instrument, parse_tenor_days

_LENDER_WORDS = {"colocadora", "colocador", "lender", "sell", "seller", "venta", "vende"}
_BORROWER_WORDS = {"tomadora", "tomador", "borrower", "buy", "buyer", "compra", "comprarepo"}

_DISPLAY_NAME_KEYS = ("instrumentDisplayName", "instrument_name", "instrumentName", "instrument", "description", "symbol")
_CFI_KEYS = ("cfiCode", "cfi_code", "CFICode", "cfi")
_CURRENCY_KEYS = ("repoCurrency", "currency", "currencyId", "settlementCurrency")
_ROLE_KEYS = ("repoRole", "role", "repo_role", "participant_role")
_PRINCIPAL_KEYS = ("principalAmount", "principal_amount", "principal", "capital", "quantity")
_BASE_KEYS = ("baseAmount", "base_amount", "montoBase", "monto_base")
_TNA_KEYS = ("priceTNA", "price_tna", "tna", "repoRate", "price")
_TENOR_KEYS = ("tenorDays", "tenor_days", "tenor", "plazoDias", "days")


def _pick_str(row: Mapping[str, Any], keys: Sequence[str]) -> Optional[str]:
    for key in keys:
        value = row.get(key)
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def _pick_number(row: Mapping[str, Any], keys: Sequence[str]) -> Optional[float]:
    for key in keys:
        value = row.get(key)
        if value is None or isinstance(value, bool):
            continue
        try:
            return float(value)
        except (TypeError, ValueError):
            continue
    return None


def normalize_currency(raw: Optional[str]) -> Optional[str]:
    if not raw:
        return None
    value = raw.strip().upper()
    if value in ("U$S", "US$", "UUSD", "DOLAR", "DÓLAR") or value.startswith("USD"):
        return "USD"
    if value in ("PESO", "PESOS") or value.startswith("ARS"):
        return "ARS"
    return value or None


def _currency_from_labels(labels: Sequence[Optional[str]]) -> Optional[str]:
    for label in labels:
        if not label:
            continue
        upper = label.upper()
        if "PESO" in upper or "ARS" in upper:
            return "ARS"
        if any(token in upper for token in ("DOLAR", "DÓLAR", "USD", "U$S", "US$")):
            return "USD"
    return None


def normalize_role(raw_role: Optional[str], side: Optional[str] = None) -> Optional[RepoRole]:
    """Role from explicit value or trade side (BUY borrows, SELL lends)"""
    for candidate in (raw_role, side):
        if not candidate:
            continue
        value = candidate.strip().lower()
        if value in _LENDER_WORDS:
            return RepoRole.COLOCADORA
        if value in _BORROWER_WORDS:
            return RepoRole.TOMADORA
    return None


def _has_repo_hint(labels: Sequence[Optional[str]]) -> bool:
    for label in labels:
        if label:
            upper = label.upper()
            if "CAUCION" in upper or "CAUCIÓN" in upper or "REPO" in upper:
                return True
    return False


def extract_repo_operation(row: Mapping[str, Any]) -> Optional[RepoOperation]:
    """
    Extract a RepoOperation from a normalized operation row.

    Returns None when the row is not a caucion or when currency or role
    cannot be resolved.
    """
    display_name = _pick_str(row, _DISPLAY_NAME_KEYS) or ""
    description = _pick_str(row, ("securityDescription", "instrumentDescription", "productType"))

    cfi_code = (_pick_str(row, _CFI_KEYS) or "").upper()
    if not is_repo_instrument(cfi_code):
        if not _has_repo_hint([display_name, description]):
            return None
        cfi_code = cfi_code or "RP-UNKNOWN"

    currency = normalize_currency(_pick_str(row, _CURRENCY_KEYS)) or _currency_from_labels([display_name, description])
    role = normalize_role(_pick_str(row, _ROLE_KEYS), _pick_str(row, ("side", "action")))
    if not currency or not role:
        return None

    principal = abs(_pick_number(row, _PRINCIPAL_KEYS) or 0.0)
    price_tna = _pick_number(row, _TNA_KEYS) or 0.0

    explicit_tenor = _pick_number(row, _TENOR_KEYS)
    tenor_days = int(explicit_tenor) if explicit_tenor and explicit_tenor > 0 else parse_tenor_days(display_name) or None

    base_amount = _pick_number(row, _BASE_KEYS)
    if not base_amount and principal > 0 and tenor_days:
        base_amount = principal + calculate_accrued_interest(principal, price_tna, tenor_days)

    return RepoOperation(
        id=_pick_str(row, ("id", "order_id", "orderId")),
        principal_amount=principal,
        base_amount=base_amount or 0.0,
        price_tna=price_tna,
        role=role,
        currency=currency,
        instrument=RepoInstrument(cfi_code=cfi_code, display_name=display_name),
        tenor_days=tenor_days,
    )
