import logging
import random
from dataclasses import asdict, dataclass
from datetime import datetime
from collections.abc import Mapping
from typing import Any, Optional

logger = logging.getLogger("country_api.refresh")

GDP_MULTIPLIER_MIN = 1000
GDP_MULTIPLIER_MAX = 2000


@dataclass
class NormalizedCountry:
    name: str
    capital: Optional[str]
    region: Optional[str]
    population: int
    currency_code: Optional[str]
    exchange_rate: Optional[float]
    estimated_gdp: Optional[float]
    flag_url: Optional[str]
    last_refreshed_at: datetime

    def to_values(self) -> dict:
        return asdict(self)


def _coerce_population(value: Any) -> int:
    try:
        population = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return 0
    return max(population, 0)


def _first_currency_code(currencies: Any) -> Optional[str]:
    if not isinstance(currencies, list) or not currencies:
        return None
    first = currencies[0]
    code = first.get("code") if isinstance(first, dict) else None
    if isinstance(code, str) and code.strip():
        return code.strip()
    return None


def _usable_rate(value: Any) -> Optional[float]:
    try:
        rate = float(value)
    except (TypeError, ValueError):
        return None
    return rate or None


def normalize(
    raw: Mapping[str, Any],
    rates: Mapping[str, Any],
    refreshed_at: datetime,
    rng=random,
) -> Optional[NormalizedCountry]:
    """Turn one raw country record into a storage-ready record.

    Returns None when the record lacks a name or a population. A population
    of 0 is kept; only a missing or null value counts as absent.

    GDP policy:
      - no currency: exchange_rate None, estimated_gdp 0
      - currency without a usable rate: both None
      - otherwise population * randint(1000, 2000) / rate. The multiplier is
        drawn per record per refresh, so the estimate changes between runs.
    """
    if not isinstance(raw, Mapping):
        logger.warning("Skipping country record of type %s", type(raw).__name__)
        return None
    name = raw.get("name")
    if not name or not isinstance(name, str) or not name.strip():
        logger.warning("Skipping country record without a name")
        return None
    if raw.get("population") is None:
        logger.warning("Skipping %s: missing population", name)
        return None

    population = _coerce_population(raw["population"])
    currency = _first_currency_code(raw.get("currencies"))

    exchange_rate: Optional[float] = None
    estimated_gdp: Optional[float] = None
    if currency is None:
        estimated_gdp = 0
    else:
        exchange_rate = _usable_rate(rates.get(currency))
        if exchange_rate is not None:
            multiplier = rng.randint(GDP_MULTIPLIER_MIN, GDP_MULTIPLIER_MAX)
            estimated_gdp = population * multiplier / exchange_rate

    return NormalizedCountry(
        name=name,
        capital=raw.get("capital") or None,
        region=raw.get("region") or None,
        population=population,
        currency_code=currency,
        exchange_rate=exchange_rate,
        estimated_gdp=estimated_gdp,
        flag_url=raw.get("flag") or None,
        last_refreshed_at=refreshed_at,
    )
