"""Thin async wrapper over the OpenAI Responses API.

Both AI-backed oracles (column mapping and categorization) go through
:class:`ResponsesClient.complete`, which owns the timeout, the retry policy
(HTTP 429/5xx only, bounded attempts, jittered backoff) and extraction of the
reply text. Every terminal failure is raised as
:class:`~pnl_categorizer.errors.OracleError` so callers have a single
exception to turn into their fallback path.
"""

from __future__ import annotations

import asyncio
import random
import time
from collections.abc import Awaitable, Callable
from typing import Any

from openai import AsyncOpenAI

from .errors import OracleError
from .logging_setup import get_logger

_logger = get_logger("pnl_categorizer.openai_client")

# ---- Tunables ---------------------------------------------------------------
_BACKOFF_SCHEDULE_SEC: tuple[float, ...] = (0.5, 2.0)
_JITTER_PCT: float = 0.20


def _extract_response_text(resp: Any) -> str:
    """Return the text output of a Responses API result.

    Prefers ``resp.output_text`` and falls back to
    ``resp.output[0].content[0].text``. Raises ``ValueError`` when no text can
    be located.
    """

    text: str | None = getattr(resp, "output_text", None)
    if not text:
        output = getattr(resp, "output", None)
        first = output[0] if output else None
        content = getattr(first, "content", None)
        if content:
            txt_obj = getattr(content[0], "text", None)
            if isinstance(txt_obj, str):
                text = txt_obj
            else:
                maybe_val = getattr(txt_obj, "value", None)
                if isinstance(maybe_val, str):
                    text = maybe_val
    if not text or not isinstance(text, str):
        raise ValueError("Unexpected Responses API shape; unable to locate text output")
    return text


def _is_retryable(exc: BaseException) -> bool:
    """Return True only for HTTP 429 and 5xx errors."""

    sc = getattr(exc, "status_code", None)
    return isinstance(sc, int) and (sc == 429 or 500 <= sc < 600)


def _backoff_delay(attempt_no: int) -> float:
    if attempt_no - 1 < len(_BACKOFF_SCHEDULE_SEC):
        base = _BACKOFF_SCHEDULE_SEC[attempt_no - 1]
    else:
        base = _BACKOFF_SCHEDULE_SEC[-1]
    jitter = base * _JITTER_PCT
    return max(0.0, base + random.uniform(-jitter, jitter))


class ResponsesClient:
    """Send one prompt and return the model's text reply.

    Parameters
    ----------
    model:
        Responses API model name.
    timeout_sec:
        Upper bound for a single attempt.
    max_attempts:
        Total attempts for retryable (429/5xx) failures.
    client:
        Pre-built ``AsyncOpenAI``; created lazily from the environment when
        omitted.
    sleep:
        Awaitable used between attempts.
    """

    def __init__(
        self,
        *,
        model: str,
        timeout_sec: float = 30.0,
        max_attempts: int = 3,
        client: AsyncOpenAI | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.model = model
        self._timeout = timeout_sec
        self._max_attempts = max(1, max_attempts)
        self._client = client
        self._sleep = sleep

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI()
        return self._client

    async def complete(self, *, instructions: str, content: str, label: str) -> str:
        client = self._get_client()
        attempt = 1
        while True:
            t0 = time.perf_counter()
            try:
                resp = await asyncio.wait_for(
                    client.responses.create(
                        model=self.model,
                        instructions=instructions,
                        input=content,
                    ),
                    timeout=self._timeout,
                )
                text = _extract_response_text(resp)
                _logger.info(
                    "%s:oracle_done attempt=%d latency_ms=%.2f",
                    label,
                    attempt,
                    (time.perf_counter() - t0) * 1000.0,
                )
                return text
            except TimeoutError as e:
                _logger.warning("%s:oracle_timeout timeout_sec=%.1f", label, self._timeout)
                raise OracleError(f"{label}: oracle timed out") from e
            except Exception as e:  # noqa: BLE001 - SDK errors vary by transport
                dt_ms = (time.perf_counter() - t0) * 1000.0
                if attempt >= self._max_attempts or not _is_retryable(e):
                    _logger.error(
                        "%s:oracle_failed_terminal attempt=%d latency_ms=%.2f error=%s",
                        label,
                        attempt,
                        dt_ms,
                        e.__class__.__name__,
                    )
                    raise OracleError(f"{label}: {e}") from e
                _logger.warning(
                    "%s:oracle_retry attempt=%d latency_ms=%.2f error=%s",
                    label,
                    attempt,
                    dt_ms,
                    e.__class__.__name__,
                )
                await self._sleep(_backoff_delay(attempt))
                attempt += 1


__all__ = ["ResponsesClient"]
