"""User-defined categorization rules.

A rule maps a description pattern to a category. For each operation every
active rule is tried with four strategies, strongest first:

1. exact: case-insensitive, trimmed equality;
2. substring: pattern contained in the description, only for patterns longer
   than ``min_substring_length``;
3. regex: only for regex-looking patterns (leading ``^``, ``.*`` or a
   ``[...]`` class); invalid expressions fall back to plain containment;
4. multi-word: every whitespace-separated token of the pattern is present.

The winning rule is the one with the strongest match kind, then the highest
usage count, then the earliest position in the store's listing. The rule's
``priority`` field is stored but not used for selection.

The rule list is read once per batch through a TTL cache that is invalidated
whenever rules are created, updated or deleted. Any store failure while
fetching rules or counting usage leaves the whole batch unmatched.
"""

from __future__ import annotations

import dataclasses
import re
from collections.abc import Mapping, Sequence
from typing import Any

from .cache import TTLCache
from .config import PipelineConfig
from .errors import DuplicateRuleError, StoreError
from .logging_setup import get_logger
from .models import MatchKind, Rule, RuleStats, Transaction
from .store import DEFAULT_RULE_PRIORITY, RecordStore

_logger = get_logger("pnl_categorizer.rule_engine")

RULES_CACHE_KEY = "all_rules"
_TOP_RULES = 5

_CHAR_CLASS_RE = re.compile(r"\[[^\]]+\]")


def looks_like_regex(pattern: str) -> bool:
    return pattern.startswith("^") or ".*" in pattern or _CHAR_CLASS_RE.search(pattern) is not None


def match_kind(pattern: str, description: str, *, min_substring_length: int = 3) -> MatchKind | None:
    """Return how ``pattern`` matches ``description``, or ``None``."""

    raw_pattern = pattern.strip()
    p = raw_pattern.lower()
    d = description.strip().lower()
    if not p or not d:
        return None

    if p == d:
        return MatchKind.EXACT
    if len(p) > min_substring_length and p in d:
        return MatchKind.SUBSTRING
    if looks_like_regex(raw_pattern):
        try:
            if re.search(raw_pattern, description, re.IGNORECASE):
                return MatchKind.REGEX
        except re.error:
            if p in d:
                return MatchKind.REGEX
    tokens = p.split()
    if len(tokens) > 1 and all(t in d for t in tokens):
        return MatchKind.MULTI_WORD
    return None


def find_best_match(
    description: str, rules: Sequence[Rule], *, min_substring_length: int = 3
) -> tuple[Rule, MatchKind] | None:
    best: tuple[tuple[int, int, int], Rule, MatchKind] | None = None
    for pos, rule in enumerate(rules):
        if not rule.is_active:
            continue
        kind = match_kind(rule.pattern, description, min_substring_length=min_substring_length)
        if kind is None:
            continue
        key = (kind.rank, -rule.usage_count, pos)
        if best is None or key < best[0]:
            best = (key, rule, kind)
    return None if best is None else (best[1], best[2])


class RuleEngine:
    """Apply, create and manage categorization rules.

    Parameters
    ----------
    store:
        The :class:`RecordStore` holding rules.
    cache:
        TTL cache for the rule list; a private five-minute cache by default.
    config:
        Supplies the cache TTL and the minimum substring length.
    """

    def __init__(
        self,
        store: RecordStore,
        *,
        cache: TTLCache | None = None,
        config: PipelineConfig | None = None,
    ) -> None:
        cfg = config or PipelineConfig()
        self._store = store
        self._cache = cache if cache is not None else TTLCache(cfg.rule_cache_ttl_sec, name="rules")
        self._min_substring = cfg.min_substring_length

    @property
    def cache(self) -> TTLCache:
        return self._cache

    def invalidate_cache(self) -> None:
        self._cache.invalidate(RULES_CACHE_KEY)

    async def get_rules(self) -> list[Rule]:
        cached = self._cache.get(RULES_CACHE_KEY)
        if cached is not None:
            return list(cached)
        rules = await self._store.get_all_rules()
        self._cache.set(RULES_CACHE_KEY, tuple(rules))
        _logger.debug("rules:fetched count=%d", len(rules))
        return rules

    def test_pattern(self, pattern: str, text: str) -> MatchKind | None:
        return match_kind(pattern, text, min_substring_length=self._min_substring)

    # ---- Matching ----------------------------------------------------------

    async def apply_rules(self, operations: Sequence[Transaction]) -> list[Transaction]:
        """Tag each operation with ``rule_matched`` and, on a hit, its category.

        The winning rule's usage count is incremented once per matched
        operation at match time.
        """

        try:
            rules = [r for r in await self.get_rules() if r.is_active]
            out: list[Transaction] = []
            for op in operations:
                hit = find_best_match(op.description, rules, min_substring_length=self._min_substring)
                if hit is None:
                    out.append(dataclasses.replace(op, rule_matched=False))
                    continue
                rule, kind = hit
                usage = await self._store.increment_usage(rule.id)
                _logger.debug(
                    "rules:match row=%d rule_id=%s kind=%s usage=%d",
                    op.row_index,
                    rule.id,
                    kind.value,
                    usage,
                )
                out.append(
                    dataclasses.replace(
                        op,
                        category=rule.category_name or rule.category_id,
                        category_id=rule.category_id,
                        categorization_method="rule",
                        rule_matched=True,
                        rule_pattern=rule.pattern,
                    )
                )
        except StoreError as exc:
            _logger.warning("rules:unavailable count=%d error=%s", len(operations), exc)
            return [dataclasses.replace(op, rule_matched=False) for op in operations]

        _logger.info(
            "rules:applied count=%d matched=%d",
            len(out),
            sum(1 for op in out if op.rule_matched),
        )
        return out

    # ---- Management --------------------------------------------------------

    async def create_rule(
        self,
        pattern: str,
        category_id: str,
        *,
        category_name: str | None = None,
        description: str | None = None,
        priority: int = DEFAULT_RULE_PRIORITY,
    ) -> Rule:
        rule = await self._store.create_rule(
            pattern,
            category_id,
            category_name=category_name,
            description=description,
            priority=priority,
        )
        self.invalidate_cache()
        _logger.info("rules:created rule_id=%s pattern=%r category_id=%s", rule.id, rule.pattern, rule.category_id)
        return rule

    async def create_rule_from_correction(
        self, description: str, category_id: str, category_name: str
    ) -> Rule:
        """Create an exact-pattern rule from a user's manual recategorization."""

        pattern = (description or "").strip()
        if not pattern or not category_id or not category_name:
            raise ValueError("description, category_id and category_name are required")
        return await self.create_rule(
            pattern,
            category_id,
            category_name=category_name,
            description=f"Created from correction: {category_name}",
        )

    async def create_rules_bulk(self, entries: Sequence[Mapping[str, Any]]) -> list[Rule]:
        """Create several rules; duplicates are skipped and logged.

        Each entry needs ``pattern`` and ``category_id`` and may carry
        ``category_name``, ``description`` and ``priority``.
        """

        created: list[Rule] = []
        for entry in entries:
            try:
                rule = await self._store.create_rule(
                    str(entry["pattern"]),
                    str(entry["category_id"]),
                    category_name=entry.get("category_name"),
                    description=entry.get("description"),
                    priority=int(entry.get("priority", DEFAULT_RULE_PRIORITY)),
                )
            except DuplicateRuleError as exc:
                _logger.info("rules:bulk_skip_duplicate pattern=%r", exc.pattern)
                continue
            created.append(rule)
        self.invalidate_cache()
        _logger.info("rules:bulk_created requested=%d created=%d", len(entries), len(created))
        return created

    async def update_rule(self, rule_id: str, patch: Mapping[str, Any]) -> Rule:
        rule = await self._store.update_rule(rule_id, patch)
        self.invalidate_cache()
        return rule

    async def delete_rule(self, rule_id: str) -> None:
        await self._store.delete_rule(rule_id)
        self.invalidate_cache()
        _logger.info("rules:deleted rule_id=%s", rule_id)

    async def rule_stats(self) -> RuleStats:
        rules = await self._store.get_all_rules()
        total = len(rules)
        usage = sum(r.usage_count for r in rules)
        top = sorted(rules, key=lambda r: -r.usage_count)[:_TOP_RULES]
        return RuleStats(
            total_rules=total,
            total_usage=usage,
            average_usage=(usage / total) if total else 0.0,
            top_rules=tuple(top),
        )


__all__ = [
    "RULES_CACHE_KEY",
    "RuleEngine",
    "find_best_match",
    "looks_like_regex",
    "match_kind",
]
