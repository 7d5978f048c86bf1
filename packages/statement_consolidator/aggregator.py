"""Batch consolidation of statement files into one output per account.

A batch run moves through ``idle → discovering → grouping`` and then, for
every account group, ``aggregating → sorting → writing`` before ``done``.

Failures stay as local as possible: an invalid or unparseable file is
skipped with a warning and its group carries on; a group that fails for any
reason is skipped and the batch carries on. Two groups never share an output
file within one run. Only a batch in which no file at all is readable raises
:class:`BatchError`.

Cancellation is cooperative: a ``threading.Event`` is checked between files
and between groups, and :class:`OperationCancelled` carries the partial
result back to the caller.
"""

from __future__ import annotations

import os
import threading
from collections import Counter
from collections.abc import Callable, Container, Iterable, Sequence
from datetime import datetime
from enum import StrEnum
from pathlib import Path
from typing import TypeAlias

from .accounts import (
    account_from_filename,
    account_from_transactions,
    date_range_from_filename,
    sanitize_account_id,
)
from .engine import CategorizationEngine
from .errors import BatchError, ConsolidationError, OperationCancelled
from .logging_setup import get_logger
from .models import (
    AccountSource,
    Aggregation,
    BatchReport,
    DateRange,
    DuplicateCluster,
    FileGroup,
    Transaction,
)
from .pmap import p_map

ParseFunc: TypeAlias = Callable[[str], Sequence[Transaction]]
ValidateFunc: TypeAlias = Callable[[str], bool]
WriteFunc: TypeAlias = Callable[[Sequence[Transaction], str, str], None]

# ---- Tunables (private) ------------------------------------------------------

_PARALLEL_THRESHOLD: int = 100
_MAX_WORKERS: int = 8

_logger = get_logger("statement_consolidator.aggregator")


class BatchState(StrEnum):
    IDLE = "idle"
    DISCOVERING = "discovering"
    GROUPING = "grouping"
    AGGREGATING = "aggregating"
    SORTING = "sorting"
    WRITING = "writing"
    DONE = "done"


# ---- Pure helpers ------------------------------------------------------------


def sort_transactions(transactions: Iterable[Transaction]) -> list[Transaction]:
    """Stable ascending sort by (date, value date, amount)."""

    return sorted(transactions, key=lambda tx: tx.sort_key)


def detect_duplicates(
    transactions: Sequence[Transaction], account_id: str = ""
) -> tuple[DuplicateCluster, ...]:
    """Find clusters sharing (date, amount, party, currency); warn once per cluster.

    Nothing is removed: same-day repeat purchases are legitimate and look
    exactly like duplicates.
    """

    counts = Counter(tx.duplicate_key for tx in transactions)
    clusters = tuple(DuplicateCluster(key, n) for key, n in counts.items() if n > 1)
    for cluster in clusters:
        day, amount, party, currency = cluster.key
        _logger.warning(
            "aggregate:potential_duplicate account=%s date=%s amount=%s currency=%s "
            "party=%s count=%d",
            account_id,
            day.isoformat(),
            amount,
            currency,
            party,
            cluster.count,
        )
    return clusters


def calculate_date_range(transactions: Sequence[Transaction]) -> DateRange:
    return DateRange.covering([tx.date for tx in transactions])


def resolve_date_range(group: FileGroup, transactions: Sequence[Transaction]) -> DateRange:
    """Filename-derived range when complete, else the span of the transactions."""

    if group.date_range.is_complete:
        return group.date_range
    return calculate_date_range(transactions)


def generate_output_filename(account_id: str, date_range: DateRange) -> str:
    safe = sanitize_account_id(account_id)
    if date_range.is_complete:
        return f"{safe}_{date_range}.csv"
    return f"{safe}.csv"


def _unique_name(base: str, taken: Container[str]) -> str:
    """``base``, or ``base_2``, ``base_3``... whichever is not in ``taken`` first."""

    if base not in taken:
        return base
    n = 2
    while f"{base}_{n}" in taken:
        n += 1
    return f"{base}_{n}"


def generate_source_file_header(
    source_files: Sequence[str], *, generated_at: datetime | None = None
) -> str:
    """Comment block listing the files an output was consolidated from."""

    if not source_files:
        return ""
    stamp = (generated_at or datetime.now()).strftime("%Y-%m-%d %H:%M:%S")
    lines = ["# Consolidated from source files:"]
    lines += [f"# - {name}" for name in source_files]
    lines += [f"# Generated on: {stamp}", "#"]
    return "\n".join(lines) + "\n"


# ---- Aggregator --------------------------------------------------------------


class BatchAggregator:
    """Group statement files by account and consolidate each group.

    Parameters
    ----------
    engine:
        Optional categorization engine applied to every consolidated
        transaction before it is written.
    max_workers / parallel_threshold:
        Groups with at least ``parallel_threshold`` files are parsed on a
        bounded pool of ``max_workers`` threads.
    """

    def __init__(
        self,
        engine: CategorizationEngine | None = None,
        *,
        max_workers: int = _MAX_WORKERS,
        parallel_threshold: int = _PARALLEL_THRESHOLD,
    ) -> None:
        self.engine = engine
        self.max_workers = max_workers
        self.parallel_threshold = parallel_threshold
        self.state = BatchState.IDLE

    # ---- Discovery & grouping ------------------------------------------------

    def discover_files(
        self, input_dir: str | os.PathLike[str], extensions: Iterable[str] = (".csv",)
    ) -> list[str]:
        self.state = BatchState.DISCOVERING
        exts = {e.lower() if e.startswith(".") else f".{e.lower()}" for e in extensions}
        root = Path(input_dir)
        if not root.is_dir():
            raise BatchError(f"input directory not found: {root}")
        files = sorted(
            os.fspath(p) for p in root.iterdir() if p.is_file() and p.suffix.lower() in exts
        )
        _logger.info("batch:discovered dir=%s files=%d", root, len(files))
        return files

    def group_files_by_account(self, files: Iterable[str]) -> list[FileGroup]:
        """Group files by the account in their name; unmatched files stand alone.

        The result does not depend on the order of ``files``. Account ids taken
        from statement names are reserved first; a file identified by its base
        name alone never joins one of those groups and gets a ``_<n>`` suffix
        when its id is already taken.
        """

        self.state = BatchState.GROUPING
        grouped: dict[str, list[str]] = {}
        ranges: dict[str, DateRange] = {}
        sources: dict[str, AccountSource] = {}
        fallback: list[tuple[str, str]] = []
        for path in sorted(files):
            ident = account_from_filename(path)
            if ident.source == "default":
                fallback.append((ident.id, path))
                continue
            grouped.setdefault(ident.id, []).append(path)
            ranges[ident.id] = ranges.get(ident.id, DateRange()).merge(
                date_range_from_filename(path)
            )
            sources[ident.id] = ident.source

        for base, path in fallback:
            key = _unique_name(base, grouped)
            if key != base:
                _logger.warning("batch:account_id_taken path=%s id=%s using=%s", path, base, key)
            grouped[key] = [path]
            ranges[key] = DateRange()
            sources[key] = "default"

        groups = [
            FileGroup(key, tuple(paths), ranges[key], sources[key])
            for key, paths in sorted(grouped.items())
        ]
        _logger.info(
            "batch:grouped files=%d groups=%d", sum(len(g.files) for g in groups), len(groups)
        )
        return groups

    # ---- Aggregation -----------------------------------------------------------

    def _load_file(
        self, path: str, parse: ParseFunc, validate: ValidateFunc | None
    ) -> list[Transaction] | None:
        try:
            if validate is not None and not validate(path):
                _logger.warning("aggregate:file_invalid path=%s", path)
                return None
            return list(parse(path))
        except (ConsolidationError, OSError, UnicodeDecodeError) as e:
            _logger.warning("aggregate:file_skipped path=%s error=%s", path, e)
            return None
        except Exception:
            _logger.exception("aggregate:file_skipped path=%s error=unexpected", path)
            return None

    def aggregate_transactions(
        self,
        group: FileGroup,
        parse: ParseFunc,
        validate: ValidateFunc | None = None,
        *,
        cancel_event: threading.Event | None = None,
    ) -> Aggregation:
        """Parse every file of ``group`` and return the sorted union.

        Duplicate-looking transactions are kept and reported. Raises
        :class:`OperationCancelled` (with the partial :class:`Aggregation`)
        when ``cancel_event`` is set before all files were read.
        """

        self.state = BatchState.AGGREGATING
        loaded: list[tuple[str, list[Transaction] | None]] = []

        def _one(path: str) -> tuple[str, list[Transaction] | None]:
            return path, self._load_file(path, parse, validate)

        if len(group.files) >= self.parallel_threshold and self.max_workers > 1:
            loaded = p_map(
                group.files, _one, concurrency=self.max_workers, cancel_event=cancel_event
            )
        else:
            for path in group.files:
                if cancel_event is not None and cancel_event.is_set():
                    break
                loaded.append(_one(path))

        transactions: list[Transaction] = []
        used: list[str] = []
        skipped: list[str] = []
        for path, txs in loaded:
            if txs is None:
                skipped.append(path)
                continue
            used.append(path)
            transactions.extend(txs)
            _logger.debug("aggregate:file_parsed path=%s transactions=%d", path, len(txs))

        self.state = BatchState.SORTING
        aggregation = Aggregation(
            account_id=group.account_id,
            transactions=tuple(sort_transactions(transactions)),
            source_files=tuple(used),
            skipped_files=tuple(skipped),
            duplicates=detect_duplicates(transactions, group.account_id),
        )

        if cancel_event is not None and cancel_event.is_set() and len(loaded) < len(group.files):
            raise OperationCancelled(
                f"aggregation of account {group.account_id} cancelled", partial=aggregation
            )

        _logger.info(
            "aggregate:group_done account=%s files=%d skipped=%d transactions=%d duplicates=%d",
            group.account_id,
            len(used),
            len(skipped),
            len(aggregation.transactions),
            len(aggregation.duplicates),
        )
        return aggregation

    # ---- Whole batch -----------------------------------------------------------

    def _output_account_id(self, group: FileGroup, transactions: Sequence[Transaction]) -> str:
        if group.account_source == "default":
            derived = account_from_transactions(transactions)
            if derived is not None:
                return derived.id
        return group.account_id

    def _output_path(
        self,
        group: FileGroup,
        transactions: Sequence[Transaction],
        output_dir: str | os.PathLike[str],
        used_stems: set[str],
    ) -> str:
        """Pick the output path of ``group``, never reusing one from this run."""

        account_id = self._output_account_id(group, transactions)
        name = generate_output_filename(account_id, resolve_date_range(group, transactions))
        stem, ext = os.path.splitext(name)
        unique = _unique_name(stem, used_stems)
        if unique != stem:
            _logger.warning(
                "batch:output_name_taken account=%s name=%s using=%s",
                group.account_id,
                name,
                unique + ext,
            )
        used_stems.add(unique)
        return os.path.join(os.fspath(output_dir), unique + ext)

    def run(
        self,
        files: Sequence[str],
        *,
        parse: ParseFunc,
        write: WriteFunc,
        output_dir: str | os.PathLike[str],
        validate: ValidateFunc | None = None,
        cancel_event: threading.Event | None = None,
    ) -> BatchReport:
        """Consolidate ``files`` into one output per account under ``output_dir``."""

        if not files:
            raise BatchError("no input files to consolidate")

        groups = self.group_files_by_account(files)
        report = BatchReport(groups_total=len(groups))
        readable_files = 0
        used_stems: set[str] = set()

        for group in groups:
            if cancel_event is not None and cancel_event.is_set():
                report.cancelled = True
                break
            try:
                aggregation = self.aggregate_transactions(
                    group, parse, validate, cancel_event=cancel_event
                )
            except OperationCancelled:
                report.cancelled = True
                break
            except Exception:
                _logger.exception(
                    "batch:group_failed account=%s reason=aggregation_error", group.account_id
                )
                report.failed_groups.append(group.account_id)
                continue

            readable_files += len(aggregation.source_files)
            if not aggregation.source_files:
                _logger.error(
                    "batch:group_failed account=%s reason=no_readable_files", group.account_id
                )
                report.failed_groups.append(group.account_id)
                continue

            try:
                transactions: Sequence[Transaction] = aggregation.transactions
                if self.engine is not None:
                    transactions = self.engine.categorize_all(transactions)
                self.state = BatchState.WRITING
                output_path = self._output_path(group, transactions, output_dir, used_stems)
                header = generate_source_file_header(
                    [os.path.basename(p) for p in aggregation.source_files]
                )
            except Exception:
                _logger.exception(
                    "batch:group_failed account=%s reason=prepare_error", group.account_id
                )
                report.failed_groups.append(group.account_id)
                continue

            try:
                write(transactions, output_path, header)
            except (ConsolidationError, OSError) as e:
                _logger.error(
                    "batch:group_failed account=%s reason=write_error error=%s",
                    group.account_id,
                    e,
                )
                report.failed_groups.append(group.account_id)
                continue
            except Exception:
                _logger.exception(
                    "batch:group_failed account=%s reason=write_error", group.account_id
                )
                report.failed_groups.append(group.account_id)
                continue

            report.groups_consolidated += 1
            report.outputs.append(output_path)
            _logger.info(
                "batch:group_written account=%s output=%s transactions=%d",
                group.account_id,
                output_path,
                len(transactions),
            )

        if report.cancelled:
            _logger.warning(
                "batch:cancelled consolidated=%d of %d",
                report.groups_consolidated,
                report.groups_total,
            )
            raise OperationCancelled("batch cancelled", partial=report)

        if readable_files == 0:
            raise BatchError("none of the input files could be read")

        self.state = BatchState.DONE
        _logger.info(
            "batch:done consolidated=%d of %d failed=%d",
            report.groups_consolidated,
            report.groups_total,
            len(report.failed_groups),
        )
        return report


__all__ = [
    "BatchAggregator",
    "BatchState",
    "calculate_date_range",
    "detect_duplicates",
    "generate_output_filename",
    "generate_source_file_header",
    "resolve_date_range",
    "sort_transactions",
]
