from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping

from settings import settings


class Country(str, Enum):
    AT = "AT"
    AU = "AU"
    BE = "BE"
    BG = "BG"
    CA = "CA"
    CH = "CH"
    CY = "CY"
    CZ = "CZ"
    DE = "DE"
    DK = "DK"
    EE = "EE"
    ES = "ES"
    FI = "FI"
    FR = "FR"
    GB = "GB"
    GR = "GR"
    HK = "HK"
    HR = "HR"
    HU = "HU"
    IE = "IE"
    IT = "IT"
    JP = "JP"
    LT = "LT"
    LU = "LU"
    LV = "LV"
    MT = "MT"
    NL = "NL"
    NO = "NO"
    NZ = "NZ"
    PL = "PL"
    PT = "PT"
    RO = "RO"
    SE = "SE"
    SG = "SG"
    SI = "SI"
    SK = "SK"
    US = "US"


@dataclass(frozen=True)
class DelayRule:
    country: Country
    minimum_delay_days: int

    def __post_init__(self) -> None:
        if int(self.minimum_delay_days) < 1:
            raise ValueError(f"minimum_delay_days must be >= 1 for {self.country.value}")


# Processor-mandated holding period for new connected accounts, per payee country.
_BASE_DELAY_DAYS: dict[Country, int] = {
    Country.US: 2,
    Country.CA: 2,
    Country.AU: 2,
    Country.SG: 2,
    Country.GB: 3,
    Country.NZ: 4,
    Country.HK: 4,
    Country.JP: 4,
    Country.AT: 7,
    Country.BE: 7,
    Country.BG: 7,
    Country.CH: 7,
    Country.CY: 7,
    Country.CZ: 7,
    Country.DE: 7,
    Country.DK: 7,
    Country.EE: 7,
    Country.ES: 7,
    Country.FI: 7,
    Country.FR: 7,
    Country.GR: 7,
    Country.HR: 7,
    Country.HU: 7,
    Country.IE: 7,
    Country.IT: 7,
    Country.LT: 7,
    Country.LU: 7,
    Country.LV: 7,
    Country.MT: 7,
    Country.NL: 7,
    Country.NO: 7,
    Country.PL: 7,
    Country.PT: 7,
    Country.RO: 7,
    Country.SE: 7,
    Country.SI: 7,
    Country.SK: 7,
}


def _normalize_code(value: object) -> str:
    if not isinstance(value, str):
        return ""
    return value.strip().upper()


def _as_country(value: object) -> Country | None:
    try:
        return Country(_normalize_code(value))
    except ValueError:
        return None


def _parse_overrides(raw: str | None) -> dict[Country, int]:
    """
    "US:2,BR:30" -> {Country.US: 2}. Unknown countries and non-positive
    or non-numeric delays are dropped.
    """
    overrides: dict[Country, int] = {}
    for item in (raw or "").split(","):
        if ":" not in item:
            continue
        code, days = item.split(":", 1)
        country = _as_country(code)
        if country is None:
            continue
        try:
            value = int(days.strip())
        except ValueError:
            continue
        if value >= 1:
            overrides[country] = value
    return overrides


def build_rules(overrides: str | None = None) -> Mapping[Country, DelayRule]:
    days = dict(_BASE_DELAY_DAYS)
    days.update(_parse_overrides(overrides))
    return MappingProxyType({c: DelayRule(country=c, minimum_delay_days=d) for c, d in days.items()})


class CountryDelayPolicy:
    """
    Country -> minimum days between capture and release.

    Total over every input: unknown, empty or non-string codes resolve to
    the strictest known rule.
    """

    def __init__(self, rules: Mapping[Country, DelayRule]):
        if not rules:
            raise ValueError("CountryDelayPolicy needs at least one rule")
        self._rules = rules
        self.default_delay_days = max(r.minimum_delay_days for r in rules.values())

    @classmethod
    def from_settings(cls) -> "CountryDelayPolicy":
        return cls(build_rules(settings.PAYOUT_DELAY_OVERRIDES))

    def rule_for(self, country_code: object) -> DelayRule | None:
        country = _as_country(country_code)
        if country is None:
            return None
        return self._rules.get(country)

    def minimum_delay_days(self, country_code: object) -> int:
        rule = self.rule_for(country_code)
        if rule is None:
            return self.default_delay_days
        return rule.minimum_delay_days

    def is_known_country(self, country_code: object) -> bool:
        return self.rule_for(country_code) is not None


# Loaded once at process start; immutable afterwards.
DEFAULT_POLICY = CountryDelayPolicy.from_settings()


def minimum_delay_days(country_code: object) -> int:
    return DEFAULT_POLICY.minimum_delay_days(country_code)
