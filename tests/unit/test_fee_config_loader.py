"""Unit tests for repo fee configuration loading"""

import json
import math

import pytest
from po_gateway.domain.exceptions import RepoFeeConfigError
from po_gateway.domain.models import Currency
from po_gateway.infrastructure.storage.fee_config_loader import (
    load_repo_fee_config,
    parse_repo_fee_config,
)


def with_changes(raw_fee_config, **changes):
    raw = json.loads(json.dumps(raw_fee_config))
    raw.update(changes)
    return raw


def test_parse_valid_config(raw_fee_config):
    """Test camelCase table maps to the domain config"""
    config = parse_repo_fee_config(raw_fee_config)

    assert config.arancel_caucion_tomadora[Currency.USD] == 0.25
    assert config.iva_repo_rate == 0.21


def test_parsed_config_is_read_only(raw_fee_config):
    """Test rate tables cannot be mutated after load"""
    config = parse_repo_fee_config(raw_fee_config)
    with pytest.raises(TypeError):
        config.arancel_caucion_colocadora[Currency.ARS] = 1.0


@pytest.mark.parametrize(
    "changes",
    [
        {"arancelCaucionColocadora": {"ARS": 0.2}},
        {"derechosDeMercadoDailyRate": {"ARS": -1, "USD": 0.0005}},
        {"gastosGarantiaDailyRate": {"ARS": math.inf, "USD": 0.0005}},
        {"ivaRepoRate": 1.5},
    ],
)
def test_parse_rejects_invalid_tables(raw_fee_config, changes):
    """Test missing currencies and out-of-range rates are rejected"""
    with pytest.raises(RepoFeeConfigError):
        parse_repo_fee_config(with_changes(raw_fee_config, **changes))


def test_load_from_file(tmp_path, raw_fee_config):
    """Test JSON file loading"""
    path = tmp_path / "fees.json"
    path.write_text(json.dumps(raw_fee_config), encoding="utf-8")

    assert load_repo_fee_config(str(path)).iva_repo_rate == 0.21


def test_load_unreadable_file_raises(tmp_path):
    """Test unreadable and malformed files raise config errors"""
    with pytest.raises(RepoFeeConfigError):
        load_repo_fee_config(str(tmp_path / "missing.json"))

    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    with pytest.raises(RepoFeeConfigError):
        load_repo_fee_config(str(broken))


def test_load_without_path_returns_empty_table():
    """Test no configured path yields the all-zero table"""
    config = load_repo_fee_config(None)
    assert config.iva_repo_rate == 0
    assert set(config.derechos_de_mercado_daily_rate) == set(Currency)
    assert all(rate == 0 for rate in config.derechos_de_mercado_daily_rate.values())
