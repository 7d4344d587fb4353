"""Runtime configuration for the CSV pipeline.

``PipelineConfig`` holds every tunable with a sensible default. Entrypoints
call :meth:`PipelineConfig.from_env` after loading ``.env`` so environment
variables (``PNL_*``) override the defaults; library callers and tests build
the dataclass directly.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from decimal import Decimal, InvalidOperation
from typing import Literal, TypeAlias

ClassifierBackend: TypeAlias = Literal["heuristic", "ai"]

DEFAULT_FALLBACK_RATES: dict[str, Decimal] = {
    "USD": Decimal("4.2"),
    "EUR": Decimal("4.5"),
    "GBP": Decimal("5.3"),
    "CHF": Decimal("4.7"),
    "PLN": Decimal("1.0"),
}


@dataclass(frozen=True, slots=True)
class PipelineConfig:
    """Tunables for rate fetching, rule matching, classifiers and uploads."""

    reporting_currency: str = "PLN"

    # Exchange rates
    rates_url: str = "https://api.exchangerate-api.com/v4/latest"
    rate_timeout_sec: float = 5.0
    rate_cache_ttl_sec: float = 60 * 60
    rate_ceiling: Decimal = Decimal("1000")
    fallback_rates: dict[str, Decimal] = field(
        default_factory=lambda: dict(DEFAULT_FALLBACK_RATES)
    )

    # Rules
    rule_cache_ttl_sec: float = 5 * 60
    min_substring_length: int = 3

    # Classifiers
    classifier_backend: ClassifierBackend = "heuristic"
    openai_model: str = "gpt-4o-mini"
    openai_timeout_sec: float = 30.0
    openai_max_attempts: int = 3
    mapping_sample_size: int = 5

    # Uploads / persistence
    max_upload_bytes: int = 10 * 1024 * 1024
    database_url: str | None = None

    def __post_init__(self) -> None:
        code = self.reporting_currency.strip().upper()
        if len(code) != 3 or not code.isalpha():
            raise ValueError(f"reporting_currency must be a 3-letter code, got {code!r}")
        object.__setattr__(self, "reporting_currency", code)
        if self.classifier_backend not in ("heuristic", "ai"):
            raise ValueError(f"unknown classifier backend: {self.classifier_backend!r}")
        if self.rate_timeout_sec <= 0 or self.openai_timeout_sec <= 0:
            raise ValueError("timeouts must be positive")
        if self.mapping_sample_size < 1:
            raise ValueError("mapping_sample_size must be a positive integer")
        if self.openai_max_attempts < 1 or self.min_substring_length < 1:
            raise ValueError("openai_max_attempts and min_substring_length must be positive")
        if self.max_upload_bytes <= 0 or self.rate_ceiling <= 0:
            raise ValueError("max_upload_bytes and rate_ceiling must be positive")

    @classmethod
    def from_env(cls, **overrides: object) -> PipelineConfig:
        """Build a config from ``PNL_*`` environment variables.

        Explicit keyword ``overrides`` win over the environment. Unset or blank
        variables keep the dataclass defaults.
        """

        values: dict[str, object] = {}

        def _env(name: str) -> str | None:
            raw = os.getenv(name)
            return raw.strip() if raw and raw.strip() else None

        if (v := _env("PNL_REPORTING_CURRENCY")) is not None:
            values["reporting_currency"] = v
        if (v := _env("PNL_RATES_URL")) is not None:
            values["rates_url"] = v.rstrip("/")
        if (v := _env("PNL_RATE_TIMEOUT_SEC")) is not None:
            values["rate_timeout_sec"] = float(v)
        if (v := _env("PNL_RATE_CACHE_TTL_SEC")) is not None:
            values["rate_cache_ttl_sec"] = float(v)
        if (v := _env("PNL_FALLBACK_RATES")) is not None:
            values["fallback_rates"] = parse_rate_table(v)
        if (v := _env("PNL_RATE_CEILING")) is not None:
            values["rate_ceiling"] = _parse_decimal("PNL_RATE_CEILING", v)
        if (v := _env("PNL_RULE_CACHE_TTL_SEC")) is not None:
            values["rule_cache_ttl_sec"] = float(v)
        if (v := _env("PNL_MIN_SUBSTRING_LENGTH")) is not None:
            values["min_substring_length"] = int(v)
        if (v := _env("PNL_CLASSIFIER_BACKEND")) is not None:
            values["classifier_backend"] = v.lower()
        if (v := _env("PNL_OPENAI_MODEL")) is not None:
            values["openai_model"] = v
        if (v := _env("PNL_OPENAI_TIMEOUT_SEC")) is not None:
            values["openai_timeout_sec"] = float(v)
        if (v := _env("PNL_OPENAI_MAX_ATTEMPTS")) is not None:
            values["openai_max_attempts"] = int(v)
        if (v := _env("PNL_MAPPING_SAMPLE_SIZE")) is not None:
            values["mapping_sample_size"] = int(v)
        if (v := _env("PNL_MAX_UPLOAD_BYTES")) is not None:
            values["max_upload_bytes"] = int(v)
        if (v := _env("DATABASE_URL")) is not None:
            values["database_url"] = v

        values.update(overrides)
        return cls(**values)  # type: ignore[arg-type]

    def with_backend(self, backend: ClassifierBackend) -> PipelineConfig:
        return replace(self, classifier_backend=backend)


def _parse_decimal(name: str, raw: str) -> Decimal:
    try:
        return Decimal(raw)
    except InvalidOperation as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


def parse_rate_table(raw: str) -> dict[str, Decimal]:
    """Parse ``"USD=4.2,EUR=4.5"`` into a rate table.

    Raises ``ValueError`` on malformed entries so a typo in the environment is
    loud at startup instead of silently producing 1.0 rates later.
    """

    table: dict[str, Decimal] = {}
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        code, sep, value = chunk.partition("=")
        if not sep:
            raise ValueError(f"invalid fallback rate entry: {chunk!r}")
        try:
            rate = Decimal(value.strip())
        except InvalidOperation as exc:
            raise ValueError(f"invalid fallback rate value: {chunk!r}") from exc
        table[code.strip().upper()] = rate
    return table


__all__ = ["ClassifierBackend", "DEFAULT_FALLBACK_RATES", "PipelineConfig", "parse_rate_table"]
