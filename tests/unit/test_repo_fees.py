"""Unit tests for the caucion fee engine"""

import math

import pytest
from po_gateway.domain.models import BreakdownStatus, RepoInstrument, RepoOperation, RepoRole
from po_gateway.domain.repo_fees import (
    REPO_BASE_AMOUNT_MISMATCH,
    REPO_CONFIG_INCOMPLETE,
    REPO_ROLE_INVALID,
    REPO_TENOR_INVALID,
    SOURCE_CONFIG_ERROR,
    SOURCE_ROLE_INVALID,
    SOURCE_TENOR_INVALID,
    calculate_accrued_interest,
    calculate_arancel,
    calculate_daily_rate_fee,
    calculate_gastos_garantia,
    calculate_iva,
    compute_breakdown,
    is_repo_instrument,
    parse_role,
    parse_tenor_days,
    reconcile_base_amount,
    resolve_tenor_days,
    settle,
)
from po_gateway.infrastructure.storage.fee_config_loader import empty_repo_fee_config, parse_repo_fee_config
from po_gateway.utils.rounding import round_for_display
from po_gateway.domain.models import DISPLAY_ROUNDING


def make_repo(
    principal: float = 81700.0,
    base: float = 81701.79,
    tna: float = 0.8,
    role: str = "colocadora",
    currency: str = "USD",
    cfi_code: str = "RPXXXX",
    display_name: str = "MERV - XMEV - PESOS - 1D",
    tenor_days=None,
) -> RepoOperation:
    return RepoOperation(
        id="repo-1",
        principal_amount=principal,
        base_amount=base,
        price_tna=tna,
        role=role,
        currency=currency,
        instrument=RepoInstrument(cfi_code=cfi_code, display_name=display_name),
        tenor_days=tenor_days,
    )


def rounded(value: float) -> str:
    return str(round_for_display(value, DISPLAY_ROUNDING))


def test_is_repo_instrument():
    """Test CFI prefix detection for collateralized lending"""
    assert is_repo_instrument("RPXXXX")
    assert is_repo_instrument("FRXXXX")
    assert not is_repo_instrument("ESXXXX")
    assert not is_repo_instrument("rpxxxx")
    assert not is_repo_instrument(None)
    assert not is_repo_instrument("")


@pytest.mark.parametrize(
    "label,expected",
    [
        ("MERV - XMEV - PESOS - 1D", 1),
        ("CAUCION USD 7D", 7),
        ("caucion 30 d", 30),
        ("USD CAUCION 1D", 1),
        ("caucion 7d", 7),
        ("no tenor here", 0),
        ("CAUCION 0D", 0),
        ("CAUCION -3D", 0),
        ("CAUCION PESOS", 0),
        ("", 0),
        (None, 0),
    ],
)
def test_parse_tenor_days(label, expected):
    """Test tenor token extraction from instrument labels"""
    assert parse_tenor_days(label) == expected


def test_resolve_tenor_prefers_explicit_value():
    """Test explicit tenor beats the display-name token"""
    assert resolve_tenor_days(make_repo(tenor_days=7)) == 7
    assert resolve_tenor_days(make_repo(tenor_days=None)) == 1
    assert resolve_tenor_days(make_repo(tenor_days=0, display_name="CAUCION 3D")) == 3


def test_accrued_interest_zero_for_non_positive_inputs():
    """Test accrued interest short-circuits on non-positive factors"""
    assert calculate_accrued_interest(0, 10, 1) == 0
    assert calculate_accrued_interest(1000, 0, 1) == 0
    assert calculate_accrued_interest(1000, 10, 0) == 0
    assert calculate_accrued_interest(1000, -5, 1) == 0
    assert calculate_accrued_interest(math.nan, 10, 1) == 0


def test_accrued_interest_formula():
    """Test principal × TNA% × days/365"""
    assert calculate_accrued_interest(365000, 10, 1) == pytest.approx(100.0)
    assert calculate_accrued_interest(81700, 0.8, 1) == pytest.approx(1.790685, abs=1e-6)


def test_reconcile_base_amount_tolerance():
    """Test reconciliation accepts differences within tolerance only"""
    ok = reconcile_base_amount(1000, 10, 1010.005)
    assert ok.reconciles
    assert ok.expected == pytest.approx(1010)

    off = reconcile_base_amount(1000, 10, 1011)
    assert not off.reconciles
    assert off.diff == pytest.approx(1.0)


def test_fee_primitives():
    """Test annualized versus daily rate application"""
    assert calculate_arancel(36500, 1, 1) == pytest.approx(1.0)
    assert calculate_daily_rate_fee(10000, 0.01, 3) == pytest.approx(3.0)
    assert calculate_gastos_garantia(10000, 0.01, 3, "colocadora") == 0
    assert calculate_gastos_garantia(10000, 0.01, 3, "tomadora") == pytest.approx(3.0)
    assert calculate_iva([1.0, 2.0, 3.0], 0.21) == pytest.approx(1.26)
    assert calculate_iva([1.0, 2.0], 0) == 0


def test_settle_sign_by_role():
    """Test borrower pays expenses on top, lender receives base minus expenses"""
    assert settle(1000, 5, "tomadora") == 1005
    assert settle(1000, 5, "colocadora") == 995


def test_compute_breakdown_usd_colocadora_one_day(fee_config):
    """Test full breakdown against venue statement figures"""
    breakdown = compute_breakdown(make_repo(), fee_config)

    assert breakdown.status == BreakdownStatus.OK
    assert not breakdown.blocked
    assert breakdown.warnings == []
    assert breakdown.tenor_days == 1
    assert rounded(breakdown.accrued_interest) == "1.79"
    assert rounded(breakdown.arancel_amount) == "0.45"
    assert rounded(breakdown.derechos_mercado_amount) == "0.41"
    assert breakdown.gastos_garantia_amount == 0
    assert rounded(breakdown.iva_amount) == "0.18"
    assert rounded(breakdown.total_expenses) == "1.04"
    assert rounded(breakdown.net_settlement) == "81700.75"
    assert breakdown.reconciliation.reconciles


def test_compute_breakdown_totals_are_full_precision(fee_config):
    """Test totals derive from unrounded components"""
    breakdown = compute_breakdown(make_repo(role="tomadora", tenor_days=7), fee_config)

    components = (
        breakdown.arancel_amount
        + breakdown.derechos_mercado_amount
        + breakdown.gastos_garantia_amount
        + breakdown.iva_amount
    )
    assert breakdown.total_expenses == pytest.approx(components, abs=1e-12)
    assert breakdown.net_settlement == pytest.approx(breakdown.base_amount + breakdown.total_expenses, abs=1e-9)
    assert breakdown.gastos_garantia_amount > 0


def test_compute_breakdown_non_repo_returns_none(fee_config):
    """Test equities and other instruments are ignored"""
    assert compute_breakdown(make_repo(cfi_code="ESVUFR"), fee_config) is None


def test_compute_breakdown_invalid_tenor_is_blocked(fee_config):
    """Test missing tenor blocks the row without raising"""
    breakdown = compute_breakdown(make_repo(display_name="CAUCION PESOS"), fee_config)

    assert breakdown.blocked
    assert breakdown.status == BreakdownStatus.ERROR
    assert breakdown.source == SOURCE_TENOR_INVALID
    assert breakdown.warnings[0].code == REPO_TENOR_INVALID
    assert breakdown.total_expenses == 0
    assert breakdown.net_settlement == breakdown.base_amount


def test_compute_breakdown_empty_config_is_blocked():
    """Test all-zero rate table reports the config as incomplete"""
    breakdown = compute_breakdown(make_repo(role="tomadora"), empty_repo_fee_config())

    assert breakdown.blocked
    assert breakdown.source == SOURCE_CONFIG_ERROR
    warning = breakdown.warnings[0]
    assert warning.code == REPO_CONFIG_INCOMPLETE
    assert set(warning.details["missing_rates"]) == {"arancel", "derechos", "gastos", "iva"}
    assert breakdown.error_message == warning.message


def test_compute_breakdown_gastos_required_only_for_borrower():
    """Test zero guarantee rate blocks tomadora but not colocadora"""
    config = parse_repo_fee_config(
        {
            "arancelCaucionColocadora": {"ARS": 0.2, "USD": 0.2},
            "arancelCaucionTomadora": {"ARS": 0.25, "USD": 0.25},
            "derechosDeMercadoDailyRate": {"ARS": 0.0005, "USD": 0.0005},
            "gastosGarantiaDailyRate": {"ARS": 0, "USD": 0},
            "ivaRepoRate": 0.21,
        }
    )

    assert not compute_breakdown(make_repo(role="colocadora"), config).blocked

    blocked = compute_breakdown(make_repo(role="tomadora"), config)
    assert blocked.blocked
    assert blocked.warnings[0].details["missing_rates"] == ["gastos"]


def test_compute_breakdown_unknown_currency_is_blocked(fee_config):
    """Test currencies outside the rate table resolve to missing rates"""
    breakdown = compute_breakdown(make_repo(currency="EUR"), fee_config)
    assert breakdown.blocked
    assert breakdown.source == SOURCE_CONFIG_ERROR


def test_compute_breakdown_base_mismatch_only_warns(fee_config):
    """Test reconciliation failure keeps the breakdown usable"""
    breakdown = compute_breakdown(make_repo(base=81750.0), fee_config)

    assert breakdown.status == BreakdownStatus.OK
    assert not breakdown.blocked
    assert not breakdown.reconciliation.reconciles
    assert [w.code for w in breakdown.warnings] == [REPO_BASE_AMOUNT_MISMATCH]


def test_parse_role_accepts_exact_values_only():
    """Test roles are matched exactly, without case folding"""
    assert parse_role("tomadora") is RepoRole.TOMADORA
    assert parse_role(RepoRole.COLOCADORA) is RepoRole.COLOCADORA
    assert parse_role("TOMADORA") is None
    assert parse_role("borrower") is None
    assert parse_role(None) is None


@pytest.mark.parametrize("role", ["TOMADORA", "borrower", ""])
def test_compute_breakdown_unknown_role_is_blocked(fee_config, role):
    """Test an unrecognized role is never priced as a lender"""
    breakdown = compute_breakdown(make_repo(base=100002.19, role=role, currency="ARS"), fee_config)

    assert breakdown.blocked
    assert breakdown.status == BreakdownStatus.ERROR
    assert breakdown.source == SOURCE_ROLE_INVALID
    assert breakdown.role is None
    assert breakdown.warnings[0].code == REPO_ROLE_INVALID
    assert breakdown.warnings[0].details == {"role": role}
    assert breakdown.total_expenses == 0
    assert breakdown.net_settlement == 100002.19


def test_compute_breakdown_net_side_follows_role(fee_config):
    """Test borrower settles above base and lender below"""
    borrower = compute_breakdown(make_repo(base=100002.19, role=RepoRole.TOMADORA, currency="ARS"), fee_config)
    lender = compute_breakdown(make_repo(base=100002.19, role=RepoRole.COLOCADORA, currency="ARS"), fee_config)

    assert borrower.role is RepoRole.TOMADORA
    assert borrower.net_settlement > 100002.19
    assert lender.role is RepoRole.COLOCADORA
    assert lender.net_settlement < 100002.19
