"""Test helpers to stub the ``AsyncOpenAI`` Responses client.

Tests pass a ``reply`` callable that receives the kwargs of each
``responses.create`` call and returns either the reply text or an exception
to raise. Calls are recorded so tests can assert on prompts and retry counts.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from types import SimpleNamespace
from typing import Any


class StatusError(Exception):
    """Stand-in for an SDK ``APIStatusError``; only ``status_code`` matters."""

    def __init__(self, status_code: int) -> None:
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}")


class AsyncOpenAIStub:
    """Minimal stub matching the ``openai.AsyncOpenAI`` shape used by the client.

    Parameters
    ----------
    reply:
        Callable receiving the ``responses.create`` kwargs; returns the text
        placed in ``output_text`` or an exception instance to raise.
    calls_out:
        Optional list appended with each call's kwargs.
    """

    def __init__(
        self,
        reply: Callable[[dict[str, Any]], str | BaseException],
        calls_out: list[dict[str, Any]] | None = None,
    ) -> None:
        self._reply = reply
        self._calls = calls_out if calls_out is not None else []

        class _Responses:
            def __init__(self, outer: AsyncOpenAIStub) -> None:
                self._outer = outer

            async def create(self, **kwargs: Any) -> Any:
                self._outer._calls.append(kwargs)
                value = self._outer._reply(kwargs)
                if isinstance(value, BaseException):
                    raise value
                return SimpleNamespace(output_text=value)

        self.responses = _Responses(self)

    @property
    def calls(self) -> list[dict[str, Any]]:
        return self._calls


def is_mapping_prompt(kwargs: dict[str, Any]) -> bool:
    return "HEADERS:" in kwargs["input"]


def pipeline_reply(
    *,
    mapping: dict[str, Any],
    assignments: list[dict[str, Any]],
) -> Callable[[dict[str, Any]], str]:
    """Answer mapping prompts with ``mapping`` and categorization prompts with ``assignments``.

    Both are wrapped in chatter so extraction of the embedded JSON is exercised.
    """

    def _reply(kwargs: dict[str, Any]) -> str:
        if is_mapping_prompt(kwargs):
            return f"Here is the mapping:\n{json.dumps(mapping)}\nDone."
        return f"Sure!\n```json\n{json.dumps(assignments)}\n```"

    return _reply
