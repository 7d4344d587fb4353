"""Pytest configuration for test isolation.

Configuration is read from ``PNL_*`` variables, ``DATABASE_URL`` and
``OPENAI_API_KEY``. A developer shell (or a ``.env`` loaded by an earlier CLI
test) may have any of them set, which would silently switch backends, rate
endpoints or databases under the tests. An autouse fixture clears them for
every test.
"""

from __future__ import annotations

import datetime as dt
import sys
from pathlib import Path

import pytest

# Make sure the workspace `packages/` and `libs/db/src` dirs are on sys.path so
# `pnl_categorizer` and `db` are importable without an install.
_ROOT = Path(__file__).resolve().parents[1]
sys.path[:0] = [
    p
    for p in [str(_ROOT / "packages"), str(_ROOT / "libs" / "db" / "src"), str(_ROOT)]
    if p not in sys.path
]

from pnl_categorizer.models import DEVELOPMENT_CATEGORIES, CategoryLists  # noqa: E402
from pnl_categorizer.store import InMemoryRecordStore  # noqa: E402

_ENV_VARS = (
    "DATABASE_URL",
    "OPENAI_API_KEY",
    "PNL_CLASSIFIER_BACKEND",
    "PNL_FALLBACK_RATES",
    "PNL_MAPPING_SAMPLE_SIZE",
    "PNL_MAX_UPLOAD_BYTES",
    "PNL_MIN_SUBSTRING_LENGTH",
    "PNL_LOG_FORMAT",
    "PNL_LOG_LEVEL",
    "PNL_OPENAI_MAX_ATTEMPTS",
    "PNL_OPENAI_MODEL",
    "PNL_OPENAI_TIMEOUT_SEC",
    "PNL_RATES_URL",
    "PNL_RATE_CACHE_TTL_SEC",
    "PNL_RATE_CEILING",
    "PNL_RATE_TIMEOUT_SEC",
    "PNL_REPORTING_CURRENCY",
    "PNL_RULE_CACHE_TTL_SEC",
)

TODAY = dt.date(2024, 3, 31)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def categories() -> CategoryLists:
    return DEVELOPMENT_CATEGORIES


@pytest.fixture
def store(categories: CategoryLists) -> InMemoryRecordStore:
    return InMemoryRecordStore.with_categories(categories)
