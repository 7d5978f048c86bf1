# ruff: noqa: I001
"""CLI for the ``statement_consolidator`` package.

Command handlers (``cmd_batch``, ``cmd_categorize``) return process exit
codes and print errors to stderr; the Typer commands below are thin wrappers.
Environment variables (``SC_*`` settings and ``OPENAI_API_KEY``) are loaded
from a local ``.env`` with ``python-dotenv`` before any command runs.
"""

from __future__ import annotations

import os
import signal
import sys
import threading
from datetime import date
from decimal import Decimal, InvalidOperation
from functools import partial
from pathlib import Path
from typing import Annotated

import typer
from dotenv import load_dotenv
from typer.models import OptionInfo

from .config import Settings, load_settings
from .logging_setup import configure_logging

_EXIT_CANCELLED = 130


def _build_engine(settings: Settings, *, ai: bool):
    # Local imports keep `--help` fast.
    from .ai import OpenAICategorizer
    from .engine import CategorizationEngine
    from .rate_limit import RateLimiter
    from .store import CategoryStore

    store = CategoryStore.from_settings(settings)
    ai_client = (
        OpenAICategorizer(model=settings.ai_model, timeout=settings.ai_timeout_seconds)
        if ai
        else None
    )
    return CategorizationEngine(
        store,
        rate_limiter=RateLimiter(settings.ai_requests_per_minute, 60.0),
        ai_client=ai_client,
        auto_learn=settings.auto_learn,
        max_workers=settings.max_workers,
        parallel_threshold=settings.parallel_threshold,
    )


def _resolve_settings(ai: bool | None) -> tuple[Settings, bool] | None:
    try:
        settings = load_settings()
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return None
    use_ai = settings.ai_enabled if ai is None else ai
    if use_ai and not os.getenv("OPENAI_API_KEY"):
        print(
            "Error: OPENAI_API_KEY is not set in the environment (required with --ai).",
            file=sys.stderr,
        )
        return None
    return settings, use_ai


def cmd_batch(input_dir: str, output_dir: str, *, ai: bool | None = None) -> int:
    """Consolidate every statement CSV in ``input_dir`` into ``output_dir``.

    One output file is written per account, named
    ``<account>_<start>_<end>.csv``. Every transaction is categorized on the
    way and learned mappings are saved at the end, also after Ctrl-C (which
    keeps the groups already written and exits with status 130).
    """

    from . import csv_io
    from .aggregator import BatchAggregator
    from .errors import BatchError, OperationCancelled

    resolved = _resolve_settings(ai)
    if resolved is None:
        return 1
    settings, use_ai = resolved

    engine = _build_engine(settings, ai=use_ai)
    aggregator = BatchAggregator(
        engine,
        max_workers=settings.max_workers,
        parallel_threshold=settings.parallel_threshold,
    )
    delimiter = settings.csv_delimiter

    cancel = threading.Event()
    previous_handler = None
    if threading.current_thread() is threading.main_thread():
        previous_handler = signal.signal(signal.SIGINT, lambda _sig, _frm: cancel.set())

    try:
        files = aggregator.discover_files(input_dir)
        report = aggregator.run(
            files,
            parse=partial(csv_io.parse_file, delimiter=delimiter),
            validate=partial(csv_io.validate_format, delimiter=delimiter),
            write=partial(csv_io.write_transactions, delimiter=delimiter),
            output_dir=output_dir,
            cancel_event=cancel,
        )
    except OperationCancelled as e:
        partial_report = e.partial
        done = partial_report.groups_consolidated if partial_report is not None else 0
        print(f"Cancelled: consolidated {done} account group(s) before stopping.", file=sys.stderr)
        return _EXIT_CANCELLED
    except BatchError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        if previous_handler is not None:
            signal.signal(signal.SIGINT, previous_handler)
        engine.save()

    for path in report.outputs:
        print(path)
    print(f"Consolidated {report.groups_consolidated} of {report.groups_total} account groups")
    return 0


def cmd_categorize(
    party: str,
    *,
    is_debtor: bool,
    description: str = "",
    amount: str = "0",
    currency: str = "CHF",
    ai: bool | None = None,
) -> int:
    """Categorize a single party and print ``"<category>\\t<tier>"``."""

    from .models import Transaction

    resolved = _resolve_settings(ai)
    if resolved is None:
        return 1
    settings, use_ai = resolved

    try:
        value = Decimal(amount)
    except InvalidOperation:
        print(f"Error: invalid amount: {amount!r}", file=sys.stderr)
        return 1

    engine = _build_engine(settings, ai=use_ai)
    tx = Transaction(
        date=date.today(),
        amount=value,
        currency=currency,
        party_name=party,
        is_debtor=is_debtor,
        description=description,
    )
    result = engine.categorize(tx)
    engine.save()
    print(f"{result.category}\t{result.source}")
    return 0


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Consolidate bank statement files per account and categorize every "
        "transaction (mapping tables, keyword rules, optional OpenAI fallback). "
        "Loads settings from a local .env before running."
    ),
)

# Module-level option objects to satisfy ruff B008 (no calls in parameter
# defaults).
INPUT_DIR_OPTION: OptionInfo = typer.Option(
    ...,
    "--input-dir",
    help="Directory holding the statement CSV files",
    file_okay=False,
    dir_okay=True,
    exists=False,  # the handler reports a readable error
)
OUTPUT_DIR_OPTION: OptionInfo = typer.Option(
    ...,
    "--output-dir",
    help="Directory for the consolidated per-account files",
    file_okay=False,
    dir_okay=True,
)
AI_OPTION: OptionInfo = typer.Option(
    None,
    "--ai/--no-ai",
    help="Enable the OpenAI fallback tier (defaults to SC_AI_ENABLED).",
)


@app.command("batch")
def batch_cmd(
    input_dir: Annotated[Path, INPUT_DIR_OPTION],
    output_dir: Annotated[Path, OUTPUT_DIR_OPTION],
    ai: bool | None = AI_OPTION,
) -> None:
    """Consolidate a directory of statements, one output file per account."""

    code = cmd_batch(str(input_dir), str(output_dir), ai=ai)
    if code:
        raise typer.Exit(code)


@app.command("categorize")
def categorize_cmd(
    party: str = typer.Option(..., "--party", help="Counterparty name"),
    debtor: bool = typer.Option(
        True,
        "--debtor/--creditor",
        help="--debtor: you paid the party; --creditor: the party paid you.",
    ),
    description: str = typer.Option("", help="Transaction description"),
    amount: str = typer.Option("0", help="Transaction amount"),
    currency: str = typer.Option("CHF", help="ISO currency code"),
    ai: bool | None = AI_OPTION,
) -> None:
    """Categorize one party and print the category and the tier that matched."""

    code = cmd_categorize(
        party,
        is_debtor=debtor,
        description=description,
        amount=amount,
        currency=currency,
        ai=ai,
    )
    if code:
        raise typer.Exit(code)


LOG_LEVEL_OPTION: OptionInfo = typer.Option(
    None,
    "--log-level",
    help="Log level name or number (defaults to SC_LOG_LEVEL, else INFO).",
)


@app.callback()
def _root(log_level: str | None = LOG_LEVEL_OPTION) -> None:
    """Load ``.env`` from the working directory and configure logging."""

    # override=False keeps variables already set in the environment
    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    try:
        configure_logging(log_level)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise typer.Exit(1) from e


if __name__ == "__main__":  # pragma: no cover
    app()
