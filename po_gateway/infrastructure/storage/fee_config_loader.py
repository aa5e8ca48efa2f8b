"""Repo fee configuration loading with exhaustive currency validation"""

import json
import logging
import math
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from po_gateway.domain.exceptions import RepoFeeConfigError
from po_gateway.domain.models import Currency, RepoFeeConfig


def _check_rate_table(table: Dict[Currency, float]) -> Dict[Currency, float]:
    missing = [currency.value for currency in Currency if currency not in table]
    if missing:
        raise ValueError(f"missing currencies: {', '.join(missing)}")
    for currency, rate in table.items():
        if not math.isfinite(rate) or rate < 0:
            raise ValueError(f"rate for {currency.value} must be a finite number >= 0")
    return table


class RepoFeeConfigSchema(BaseModel):
    """On-disk shape of the repo rate table (percentages keyed by currency)"""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    arancel_caucion_colocadora: Dict[Currency, float] = Field(..., alias="arancelCaucionColocadora")
    arancel_caucion_tomadora: Dict[Currency, float] = Field(..., alias="arancelCaucionTomadora")
    derechos_de_mercado_daily_rate: Dict[Currency, float] = Field(..., alias="derechosDeMercadoDailyRate")
    gastos_garantia_daily_rate: Dict[Currency, float] = Field(..., alias="gastosGarantiaDailyRate")
    iva_repo_rate: float = Field(..., ge=0, le=1, alias="ivaRepoRate")

    @field_validator(
        "arancel_caucion_colocadora",
        "arancel_caucion_tomadora",
        "derechos_de_mercado_daily_rate",
        "gastos_garantia_daily_rate",
    )
    @classmethod
    def every_currency_present(cls, value: Dict[Currency, float]) -> Dict[Currency, float]:
        return _check_rate_table(value)

    def to_domain(self) -> RepoFeeConfig:
        return RepoFeeConfig(
            arancel_caucion_colocadora=self.arancel_caucion_colocadora,
            arancel_caucion_tomadora=self.arancel_caucion_tomadora,
            derechos_de_mercado_daily_rate=self.derechos_de_mercado_daily_rate,
            gastos_garantia_daily_rate=self.gastos_garantia_daily_rate,
            iva_repo_rate=self.iva_repo_rate,
        )


def empty_repo_fee_config() -> RepoFeeConfig:
    """All-zero rates; every caucion calculation reports the config as incomplete"""
    zeros = {currency: 0.0 for currency in Currency}
    return RepoFeeConfig(zeros, zeros, zeros, zeros, 0.0)


def parse_repo_fee_config(raw: Mapping[str, Any]) -> RepoFeeConfig:
    """
    Validate a raw rate table.

    Raises:
        RepoFeeConfigError: When a currency key is missing, a rate is negative
            or not finite, or the VAT rate is outside [0, 1]
    """
    try:
        return RepoFeeConfigSchema.model_validate(raw).to_domain()
    except ValidationError as e:
        raise RepoFeeConfigError(f"Invalid repo fee config: {e}") from e

def load_repo_fee_config(path: Optional[str]) -> RepoFeeConfig:
    """Load the rate table from a JSON file; no path means an empty (all-zero) table"""
    if not path:
        logging.warning("No repo fee config configured, caucion fees will be blocked")
        return empty_repo_fee_config()

    file = Path(path)
    try:
        raw = json.loads(file.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise RepoFeeConfigError(f"Cannot read repo fee config {file}: {e}") from e

    config = parse_repo_fee_config(raw)
    logging.info("Repo fee config loaded", extra={"path": str(file)})
    return config
