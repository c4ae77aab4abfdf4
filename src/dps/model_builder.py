# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Symbol graph building from front-end source units."""

import concurrent.futures
import logging
import threading
import time
from dataclasses import dataclass

from dps.analyzer import SourceUnit, TypeDeclaration, UnparseableUnitError
from dps.config import ScanConfig
from dps.model import (
    Relationship,
    SkippedUnit,
    Symbol,
    SymbolGraph,
    make_symbol_id,
)
from dps.shapes import (
    has_identity,
    identity_reference_target,
    normalize_name,
    parse_type_reference,
    resolve_type,
)

logger = logging.getLogger(__name__)

_RECOVERABLE_ERRORS = (
    UnparseableUnitError,
    OSError,
    UnicodeDecodeError,
    SyntaxError,
    ValueError,
)


@dataclass(frozen=True)
class BuildResult:
    """Represent the merged symbol graph of one build.

    Attributes:
        graph: Merged graph of every unit that finished.
        skipped: Units excluded from the graph, in input order.
        processed_paths: Paths of units whose symbols are in the graph.
        unit_count: Number of units handed to the builder.
        complete: ``False`` when the build was cancelled.
    """

    graph: SymbolGraph
    skipped: tuple[SkippedUnit, ...]
    processed_paths: tuple[str, ...]
    unit_count: int
    complete: bool


@dataclass(frozen=True)
class _PartialGraph:
    """Represent the symbols one worker extracted from one unit."""

    index: int
    path: str
    symbols: tuple[Symbol, ...]


class _UnitTask:
    """Track one unit and the moment its worker started."""

    def __init__(self, index: int, unit: SourceUnit) -> None:
        self.index = index
        self.unit = unit
        self.started_at: float | None = None


class SymbolModelBuilder:
    """Build a normalized symbol graph from source units."""

    def __init__(self, config: ScanConfig) -> None:
        """Initialize builder.

        Args:
            config: Run configuration providing pool size and timeouts.
        """
        self._config = config

    def build(
        self,
        units: list[SourceUnit],
        cancel_event: threading.Event | None = None,
    ) -> BuildResult:
        """Extract symbols from units in parallel and merge them.

        Args:
            units: Source units in caller order.
            cancel_event: Event that stops the build when set.

        Returns:
            Build result with the merged graph and skipped-unit diagnostics.
        """
        cancel_event = cancel_event or threading.Event()
        tasks = [_UnitTask(index=index, unit=unit) for index, unit in enumerate(units)]
        partials: dict[int, _PartialGraph] = {}
        skipped: dict[int, SkippedUnit] = {}
        complete = True

        executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=self._config.max_workers, thread_name_prefix="dps-extract"
        )
        try:
            future_to_task = {
                executor.submit(self._run_task, task, cancel_event): task
                for task in tasks
            }
            pending = set(future_to_task)
            abandoned = 0
            while pending:
                if cancel_event.is_set():
                    complete = False
                    finished = [
                        future
                        for future in pending
                        if future.done() and not future.cancelled()
                    ]
                    for future in sorted(
                        finished, key=lambda item: future_to_task[item].index
                    ):
                        self._collect(future, future_to_task[future], partials, skipped)
                    logger.warning(
                        f"Build cancelled (finished={len(partials)} "
                        f"skipped={len(skipped)} "
                        f"outstanding={len(pending) - len(finished)})"
                    )
                    break
                done, pending = concurrent.futures.wait(
                    pending,
                    timeout=self._config.poll_interval_seconds,
                    return_when=concurrent.futures.FIRST_COMPLETED,
                )
                for future in sorted(done, key=lambda item: future_to_task[item].index):
                    self._collect(future, future_to_task[future], partials, skipped)

                now = time.monotonic()
                for future in sorted(pending, key=lambda item: future_to_task[item].index):
                    task = future_to_task[future]
                    started_at = task.started_at
                    if started_at is None:
                        continue
                    if now - started_at <= self._config.unit_timeout_seconds:
                        continue
                    pending.discard(future)
                    future.cancel()
                    abandoned += 1
                    logger.warning(
                        f"Skipping unit due to timeout (path={task.unit.path} "
                        f"timeout_seconds={self._config.unit_timeout_seconds})"
                    )
                    skipped[task.index] = SkippedUnit(
                        path=task.unit.path,
                        kind="timeout",
                        reason=(
                            f"extraction exceeded {self._config.unit_timeout_seconds}s"
                        ),
                    )

                if abandoned >= self._config.max_workers and pending:
                    for future in sorted(
                        pending, key=lambda item: future_to_task[item].index
                    ):
                        task = future_to_task[future]
                        if task.started_at is not None:
                            continue
                        pending.discard(future)
                        future.cancel()
                        skipped[task.index] = SkippedUnit(
                            path=task.unit.path,
                            kind="timeout",
                            reason="no worker available; all workers timed out",
                        )
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        graph = self._merge(partials)
        processed_paths = tuple(partials[index].path for index in sorted(partials))
        logger.info(
            f"Symbol graph built (units={len(units)} symbols={len(graph)} "
            f"relationships={len(graph.relationships)} skipped={len(skipped)} "
            f"complete={complete})"
        )
        return BuildResult(
            graph=graph,
            skipped=tuple(skipped[index] for index in sorted(skipped)),
            processed_paths=processed_paths,
            unit_count=len(units),
            complete=complete,
        )

    def _collect(
        self,
        future: "concurrent.futures.Future[_PartialGraph | None]",
        task: _UnitTask,
        partials: dict[int, _PartialGraph],
        skipped: dict[int, SkippedUnit],
    ) -> None:
        """Record the outcome of one finished unit future."""
        try:
            partial = future.result()
        except _RECOVERABLE_ERRORS as exc:
            logger.warning(
                f"Skipping unit due to parse failure "
                f"(path={task.unit.path} error={exc})"
            )
            skipped[task.index] = SkippedUnit(
                path=task.unit.path, kind="unparseable", reason=str(exc)
            )
            return
        except Exception as exc:
            logger.warning(
                f"Skipping unit due to unexpected extraction error "
                f"(path={task.unit.path} error_type={type(exc).__name__} error={exc})"
            )
            skipped[task.index] = SkippedUnit(
                path=task.unit.path,
                kind="unparseable",
                reason=f"{type(exc).__name__}: {exc}",
            )
            return
        if partial is not None:
            partials[task.index] = partial

    def _run_task(
        self, task: _UnitTask, cancel_event: threading.Event
    ) -> _PartialGraph | None:
        """Extract the local partial graph of one unit.

        Args:
            task: Unit task; only its ``started_at`` stamp is written.
            cancel_event: Run cancellation event.

        Returns:
            Partial graph, or ``None`` when the run was cancelled before start.
        """
        if cancel_event.is_set():
            return None
        task.started_at = time.monotonic()
        parsed = task.unit.handle()
        symbols = tuple(
            self._to_symbol(task.unit, declaration)
            for declaration in parsed.declarations
        )
        return _PartialGraph(index=task.index, path=task.unit.path, symbols=symbols)

    def _to_symbol(self, unit: SourceUnit, declaration: TypeDeclaration) -> Symbol:
        """Normalize one declaration into a symbol.

        Raises:
            ValueError: If the declaration has no name.
        """
        if not declaration.name.strip():
            raise ValueError(f"Declaration without a name in {unit.path}")
        qualified_name = (
            f"{declaration.namespace}.{declaration.name}"
            if declaration.namespace
            else declaration.name
        )
        return Symbol(
            symbol_id=make_symbol_id(unit.path, qualified_name),
            name=declaration.name,
            qualified_name=qualified_name,
            namespace=declaration.namespace,
            kind=declaration.kind,
            origin_path=unit.path,
            language=unit.language,
            fields=tuple(declaration.fields),
            methods=tuple(declaration.methods),
            bases=tuple(declaration.bases),
            value_equality=declaration.value_equality,
            is_abstract=declaration.is_abstract or declaration.kind == "interface",
        )

    def _merge(self, partials: dict[int, _PartialGraph]) -> SymbolGraph:
        """Merge partial graphs in unit order and derive relationships."""
        symbols: list[Symbol] = []
        seen: set[str] = set()
        for index in sorted(partials):
            for symbol in partials[index].symbols:
                if symbol.symbol_id in seen:
                    logger.warning(
                        f"Duplicate symbol id ignored (symbol_id={symbol.symbol_id})"
                    )
                    continue
                seen.add(symbol.symbol_id)
                symbols.append(symbol)
        arena = SymbolGraph(symbols)
        return SymbolGraph(symbols, derive_relationships(arena))


def derive_relationships(arena: SymbolGraph) -> list[Relationship]:
    """Derive relationship edges between the symbols of an edge-less arena.

    Args:
        arena: Graph holding every symbol of the run.

    Returns:
        Composition, association and inheritance edges.
    """
    by_normalized: dict[str, list[Symbol]] = {}
    for symbol in arena.symbols:
        by_normalized.setdefault(normalize_name(symbol.name), []).append(symbol)

    relationships: list[Relationship] = []
    for symbol in arena.symbols:
        for field in symbol.fields:
            reference = parse_type_reference(field.declared_type)
            target_name = identity_reference_target(symbol, field)
            if target_name is not None:
                target = _closest(by_normalized.get(target_name, []), symbol)
                if target is not None:
                    relationships.append(
                        Relationship(
                            source_id=symbol.symbol_id,
                            target_id=target.symbol_id,
                            kind="association_by_identity",
                            cardinality=reference.cardinality,
                            via=field.name,
                        )
                    )
                    continue
            for target_id in resolve_type(arena, symbol, field.declared_type):
                target = arena.get(target_id)
                owned = _is_owned(symbol, target)
                relationships.append(
                    Relationship(
                        source_id=symbol.symbol_id,
                        target_id=target_id,
                        kind="composition" if owned else "association_by_reference",
                        cardinality=reference.cardinality,
                        via=field.name,
                    )
                )
        for base in symbol.bases:
            target_id = arena.lookup(base, near=symbol)
            if target_id is None or target_id == symbol.symbol_id:
                continue
            relationships.append(
                Relationship(
                    source_id=symbol.symbol_id,
                    target_id=target_id,
                    kind="inheritance",
                    via=base,
                )
            )
    return relationships


def _closest(candidates: list[Symbol], near: Symbol) -> Symbol | None:
    candidates = [
        candidate for candidate in candidates if candidate.symbol_id != near.symbol_id
    ]
    if not candidates:
        return None
    for candidate in candidates:
        if candidate.origin_path == near.origin_path:
            return candidate
    for candidate in candidates:
        if candidate.namespace == near.namespace:
            return candidate
    return candidates[0]


def _is_owned(owner: Symbol, target: Symbol) -> bool:
    """Return whether ``owner`` holds ``target`` as an owned, value-like part.

    Targets with their own identity are owned only when named after the
    owner (``OrderLine`` inside ``Order``); holding one in a collection does
    not make it a part.
    """
    if not has_identity(target):
        return True
    return normalize_name(target.name).startswith(normalize_name(owner.name))
