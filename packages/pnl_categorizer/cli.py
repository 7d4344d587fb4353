# ruff: noqa: I001
"""CLI for the ``pnl_categorizer`` package.

Command handlers (``cmd_*``) return a process exit code; the Typer commands
below are thin wrappers around them. Environment variables (``OPENAI_API_KEY``,
``DATABASE_URL``, ``PNL_*``) are loaded from a local ``.env`` using
``python-dotenv`` before any command runs. Results go to stdout, errors to
stderr.

Without a database URL the commands run against an in-memory store seeded
with the development categories, which is enough for dry runs of ``analyze``.
Rule and category management need a real database.
"""

from __future__ import annotations

import asyncio
import json
import shutil
import sys
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Annotated, Any

import typer
from dotenv import load_dotenv
from typer.models import OptionInfo

from .config import PipelineConfig
from .errors import PipelineError, StoreError
from .logging_setup import configure_logging
from .models import DEVELOPMENT_CATEGORIES, Rule
from .store import InMemoryRecordStore, RecordStore


# ---- Small module-level helpers used by CLI commands -------------------------


def _error(message: str) -> int:
    print(f"Error: {message}", file=sys.stderr)
    return 1


def _pipeline_error(exc: PipelineError) -> int:
    print(f"Error: {exc.message} (reason={exc.reason})", file=sys.stderr)
    return 2 if exc.reason == "period_exists" else 1


def _load_config(**overrides: Any) -> PipelineConfig:
    return PipelineConfig.from_env(**{k: v for k, v in overrides.items() if v is not None})


@contextmanager
def _open_store(database_url: str | None, *, require_database: bool = False) -> Iterator[RecordStore]:
    """Yield a SQL store when a URL is known, else an in-memory one.

    Raises ``RuntimeError`` when ``require_database`` is set and no URL is
    configured.
    """

    if not database_url:
        if require_database:
            raise RuntimeError("this command needs --database-url or DATABASE_URL")
        yield InMemoryRecordStore.with_categories(DEVELOPMENT_CATEGORIES)
        return

    # Local import keeps SQLAlchemy off the dry-run path
    from .persistence import SqlRecordStore

    store = SqlRecordStore.from_url(database_url)
    try:
        yield store
    finally:
        store.database.dispose()


def _format_rule(rule: Rule) -> str:
    return "\t".join(
        [
            rule.id,
            rule.pattern,
            rule.category_name or rule.category_id,
            str(rule.usage_count),
            "active" if rule.is_active else "inactive",
        ]
    )


# ---- Command handlers --------------------------------------------------------


def cmd_analyze(
    csv_path: str,
    *,
    year: int,
    month: int,
    save: bool = False,
    overwrite: bool = False,
    backend: str | None = None,
    database_url: str | None = None,
) -> int:
    """Categorize a bank CSV for ``year``/``month`` and print the result as JSON.

    The file is copied to a temporary location first because the upload
    entrypoint deletes what it processes. With ``save`` the operations are
    stored for the period; an existing period is a conflict (exit status 2)
    unless ``overwrite`` is given.
    """

    from .api import analyze_csv_upload, result_to_dict, save_results
    from .processor import build_processor

    source = Path(csv_path)
    if not source.is_file():
        return _error(f"File not found: {csv_path}")

    try:
        config = _load_config(classifier_backend=backend, database_url=database_url)
    except ValueError as e:
        return _error(f"invalid configuration: {e}")

    async def _run(store: RecordStore, upload: Path) -> int:
        processor = build_processor(config, store)
        try:
            result = await analyze_csv_upload(
                upload,
                year=year,
                month=month,
                processor=processor,
                store=store,
                filename=source.name,
            )
        except PipelineError as e:
            return _pipeline_error(e)

        payload = result_to_dict(result)
        code = 0
        if save:
            try:
                saved = await save_results(
                    store, result.operations, result.period, overwrite=overwrite
                )
            except PipelineError as e:
                code = _pipeline_error(e)
            else:
                payload["saved"] = {
                    "stored_count": saved.stored_count,
                    "deleted_count": saved.deleted_count,
                    "created_categories": list(saved.created_categories),
                }
        print(json.dumps(payload, indent=2, ensure_ascii=False))
        return code

    try:
        with _open_store(config.database_url) as store, tempfile.TemporaryDirectory() as tmp:
            upload = Path(tmp) / source.name
            shutil.copyfile(source, upload)
            return asyncio.run(_run(store, upload))
    except (StoreError, RuntimeError) as e:
        return _error(f"analyze failed: {e}")
    except OSError as e:
        return _error(f"could not read '{csv_path}': {e}")


def cmd_correct(
    *, description: str, category_id: str, category_name: str, database_url: str | None = None
) -> int:
    """Create an exact-match rule from a manual recategorization."""

    from .rule_engine import RuleEngine

    try:
        config = _load_config(database_url=database_url)
        with _open_store(config.database_url, require_database=True) as store:
            engine = RuleEngine(store, config=config)
            rule = asyncio.run(
                engine.create_rule_from_correction(description, category_id, category_name)
            )
    except (ValueError, StoreError, RuntimeError) as e:
        return _error(f"correction failed: {e}")

    print(_format_rule(rule))
    return 0


def cmd_rules_list(*, database_url: str | None = None) -> int:
    from .rule_engine import RuleEngine

    try:
        config = _load_config(database_url=database_url)
        with _open_store(config.database_url, require_database=True) as store:
            rules = asyncio.run(RuleEngine(store, config=config).get_rules())
    except (StoreError, RuntimeError) as e:
        return _error(f"could not list rules: {e}")

    for rule in rules:
        print(_format_rule(rule))
    return 0


def cmd_rules_add(
    *,
    pattern: str,
    category_id: str,
    category_name: str | None = None,
    description: str | None = None,
    priority: int | None = None,
    database_url: str | None = None,
) -> int:
    from .rule_engine import RuleEngine
    from .store import DEFAULT_RULE_PRIORITY

    try:
        config = _load_config(database_url=database_url)
        with _open_store(config.database_url, require_database=True) as store:
            rule = asyncio.run(
                RuleEngine(store, config=config).create_rule(
                    pattern,
                    category_id,
                    category_name=category_name,
                    description=description,
                    priority=DEFAULT_RULE_PRIORITY if priority is None else priority,
                )
            )
    except (ValueError, StoreError, RuntimeError) as e:
        return _error(f"could not add rule: {e}")

    print(_format_rule(rule))
    return 0


def cmd_rules_delete(*, rule_id: str, database_url: str | None = None) -> int:
    from .rule_engine import RuleEngine

    try:
        config = _load_config(database_url=database_url)
        with _open_store(config.database_url, require_database=True) as store:
            asyncio.run(RuleEngine(store, config=config).delete_rule(rule_id))
    except (StoreError, RuntimeError) as e:
        return _error(f"could not delete rule: {e}")

    print(f"deleted\t{rule_id}")
    return 0


def cmd_rules_stats(*, database_url: str | None = None) -> int:
    from .rule_engine import RuleEngine

    try:
        config = _load_config(database_url=database_url)
        with _open_store(config.database_url, require_database=True) as store:
            stats = asyncio.run(RuleEngine(store, config=config).rule_stats())
    except (StoreError, RuntimeError) as e:
        return _error(f"could not compute rule stats: {e}")

    print(
        json.dumps(
            {
                "total_rules": stats.total_rules,
                "total_usage": stats.total_usage,
                "average_usage": round(stats.average_usage, 2),
                "top_rules": [
                    {"id": r.id, "pattern": r.pattern, "usage_count": r.usage_count}
                    for r in stats.top_rules
                ],
            },
            indent=2,
            ensure_ascii=False,
        )
    )
    return 0


def cmd_rules_test(*, pattern: str, text: str) -> int:
    """Print how ``pattern`` matches ``text``; exit status 1 when it does not."""

    from .rule_engine import match_kind

    config = PipelineConfig.from_env()
    kind = match_kind(pattern, text, min_substring_length=config.min_substring_length)
    if kind is None:
        print("no_match")
        return 1
    print(kind.value)
    return 0


def cmd_categories_list(*, database_url: str | None = None) -> int:
    try:
        config = _load_config(database_url=database_url)
        with _open_store(config.database_url) as store:
            categories = asyncio.run(store.list_categories())
    except (StoreError, RuntimeError) as e:
        return _error(f"could not list categories: {e}")

    for c in categories:
        print(f"{c.id}\t{c.type}\t{c.name}")
    return 0


def cmd_categories_seed(*, database_url: str | None = None) -> int:
    """Create the development category set in the configured database."""

    async def _seed(store: RecordStore) -> int:
        n = 0
        for type_, names in (("income", DEVELOPMENT_CATEGORIES.income), ("expense", DEVELOPMENT_CATEGORIES.expense)):
            for name in names:
                await store.create_category(name, type_)  # type: ignore[arg-type]
                n += 1
        return n

    try:
        config = _load_config(database_url=database_url)
        with _open_store(config.database_url, require_database=True) as store:
            n = asyncio.run(_seed(store))
    except (StoreError, RuntimeError) as e:
        return _error(f"could not seed categories: {e}")

    print(f"seeded\t{n}")
    return 0


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Categorize bank CSV exports into P&L categories with user rules and "
        "heuristic or OpenAI fallbacks. Loads .env before running."
    ),
)
rules_app = typer.Typer(no_args_is_help=True, add_completion=False, help="Manage categorization rules.")
categories_app = typer.Typer(no_args_is_help=True, add_completion=False, help="Inspect and seed categories.")
app.add_typer(rules_app, name="rules")
app.add_typer(categories_app, name="categories")

# Module-level option objects to satisfy ruff B008 (no calls in parameter
# defaults).
CSV_PATH_OPTION: OptionInfo = typer.Option(
    ...,  # required
    "--csv-path",
    help="Path to a bank CSV export",
    dir_okay=False,
    file_okay=True,
    exists=False,  # the handler reports missing files itself
)
DATABASE_URL_OPTION: OptionInfo = typer.Option(
    ..., "--database-url", help="Override DATABASE_URL (falls back to env var)."
)


@app.command("analyze")
def analyze_cmd(
    csv_path: Annotated[Path, CSV_PATH_OPTION],
    *,
    year: int = typer.Option(..., help="Reporting year, e.g. 2024."),
    month: int = typer.Option(..., help="Reporting month, 1-12."),
    save: bool = typer.Option(False, help="Store the categorized operations for the period."),
    overwrite: bool = typer.Option(
        False, help="Replace operations already stored for the period (with --save)."
    ),
    backend: str | None = typer.Option(
        None, help="Classifier backend: heuristic or ai (falls back to PNL_CLASSIFIER_BACKEND)."
    ),
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """Categorize a CSV and print operations plus a summary as JSON."""

    raise typer.Exit(
        cmd_analyze(
            str(csv_path),
            year=year,
            month=month,
            save=save,
            overwrite=overwrite,
            backend=backend,
            database_url=database_url,
        )
    )


@app.command("correct")
def correct_cmd(
    *,
    description: str = typer.Option(..., help="Operation description to match exactly."),
    category_id: str = typer.Option(..., help="Target category id."),
    category_name: str = typer.Option(..., help="Target category name."),
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """Turn a manual recategorization into a rule."""

    raise typer.Exit(
        cmd_correct(
            description=description,
            category_id=category_id,
            category_name=category_name,
            database_url=database_url,
        )
    )


@rules_app.command("list")
def rules_list_cmd(database_url: Annotated[str | None, DATABASE_URL_OPTION] = None) -> None:
    """Print rules as ``id<TAB>pattern<TAB>category<TAB>usage<TAB>state``."""

    raise typer.Exit(cmd_rules_list(database_url=database_url))


@rules_app.command("add")
def rules_add_cmd(
    *,
    pattern: str = typer.Option(..., help="Description pattern (text or regex)."),
    category_id: str = typer.Option(..., help="Target category id."),
    category_name: str | None = typer.Option(None, help="Category label; looked up when omitted."),
    description: str | None = typer.Option(None, help="Free-text note for the rule."),
    priority: int | None = typer.Option(None, help="Stored priority (default 5)."),
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    raise typer.Exit(
        cmd_rules_add(
            pattern=pattern,
            category_id=category_id,
            category_name=category_name,
            description=description,
            priority=priority,
            database_url=database_url,
        )
    )


@rules_app.command("delete")
def rules_delete_cmd(
    *,
    rule_id: str = typer.Option(..., help="Id of the rule to delete."),
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    raise typer.Exit(cmd_rules_delete(rule_id=rule_id, database_url=database_url))


@rules_app.command("stats")
def rules_stats_cmd(database_url: Annotated[str | None, DATABASE_URL_OPTION] = None) -> None:
    """Print rule totals and the five most used rules as JSON."""

    raise typer.Exit(cmd_rules_stats(database_url=database_url))


@rules_app.command("test")
def rules_test_cmd(
    *,
    pattern: str = typer.Option(..., help="Pattern to try."),
    text: str = typer.Option(..., help="Description to match against."),
) -> None:
    """Print the match kind (exact, substring, regex, multi_word) or no_match."""

    raise typer.Exit(cmd_rules_test(pattern=pattern, text=text))


@categories_app.command("list")
def categories_list_cmd(database_url: Annotated[str | None, DATABASE_URL_OPTION] = None) -> None:
    raise typer.Exit(cmd_categories_list(database_url=database_url))


@categories_app.command("seed")
def categories_seed_cmd(database_url: Annotated[str | None, DATABASE_URL_OPTION] = None) -> None:
    raise typer.Exit(cmd_categories_seed(database_url=database_url))


@app.callback()
def _root(
    log_level: str | None = typer.Option(
        None, help="Log level (falls back to PNL_LOG_LEVEL, then INFO)."
    ),
) -> None:
    """Root command.

    Loads ``.env`` from the current working directory (without overriding any
    already-set environment variables) and configures package logging.
    """

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)

    # Central logging setup so child loggers inherit configuration
    configure_logging(log_level)


if __name__ == "__main__":  # pragma: no cover - exercised via the console script
    # Running as a module: `python -m pnl_categorizer.cli`
    app()
