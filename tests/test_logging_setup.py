from __future__ import annotations

import logging

import pytest

from pnl_categorizer.logging_setup import get_logger, resolve_level


@pytest.mark.parametrize(
    ("level", "env", "expected"),
    [
        ("debug", None, logging.DEBUG),
        (" WARNING ", "DEBUG", logging.WARNING),
        ("15", None, 15),
        (logging.ERROR, None, logging.ERROR),
        (None, "error", logging.ERROR),
        ("nonsense", "DEBUG", logging.DEBUG),
        (None, None, logging.INFO),
    ],
)
def test_resolve_level(
    monkeypatch: pytest.MonkeyPatch, level: int | str | None, env: str | None, expected: int
) -> None:
    if env is not None:
        monkeypatch.setenv("PNL_LOG_LEVEL", env)
    assert resolve_level(level) == expected


def test_module_loggers_are_package_children() -> None:
    logger = get_logger("pnl_categorizer.rates")
    assert logger.name == "pnl_categorizer.rates"
    assert logger.parent is logging.getLogger("pnl_categorizer")
