# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Baseline store SQLite implementation for scan runs."""

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from dps.baseline import (
    BASELINE_SCHEMA_VERSION,
    Baseline,
    baseline_from_dict,
    baseline_to_dict,
    build_baseline,
)
from dps.persistence import (
    BaselineStoreError,
    PersistRunInput,
    PersistRunResult,
    run_status,
)

logger = logging.getLogger(__name__)


class SQLiteBaselineStore:
    """Persist scan runs to a SQLite database and read them back as baselines."""

    def __init__(self, db_path: Path) -> None:
        """Initialize store.

        Args:
            db_path: SQLite database file path.
        """
        self._db_path = db_path

    def save_run(self, payload: PersistRunInput) -> PersistRunResult:
        """Persist one run with its classifications and findings atomically.

        Args:
            payload: Run payload to persist.

        Returns:
            Persisted run summary.

        Raises:
            BaselineStoreError: If schema setup or write operations fail.
        """
        report = payload.report
        status = run_status(report)
        baseline = build_baseline(
            graph=report.graph,
            classifications=report.classifications,
            registry_version=report.registry_version,
            registry_fingerprint=report.registry_fingerprint,
            root_path=payload.root_path,
        )
        created_at = datetime.now(tz=timezone.utc).isoformat()

        connection = sqlite3.connect(self._db_path)
        try:
            connection.execute("PRAGMA foreign_keys = ON")
            self._ensure_schema(connection=connection)
            connection.execute("BEGIN")
            run_cursor = connection.execute(
                "INSERT INTO runs ("
                "created_at, root_path, schema_version, registry_version, "
                "registry_fingerprint, status, symbol_count, finding_count, "
                "skipped_count, baseline_json"
                ") VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    created_at,
                    payload.root_path,
                    BASELINE_SCHEMA_VERSION,
                    report.registry_version,
                    report.registry_fingerprint,
                    status,
                    report.symbol_count,
                    len(report.findings),
                    len(report.skipped),
                    json.dumps(baseline_to_dict(baseline), sort_keys=True),
                ),
            )
            row_id = run_cursor.lastrowid
            if row_id is None:
                logger.warning(f"SQLite did not return a run id (db_path={self._db_path})")
                raise BaselineStoreError("SQLite did not return a run id.")
            run_id = int(row_id)
            connection.executemany(
                "INSERT INTO classifications ("
                "run_id, symbol_id, role, confidence, score, support, ambiguous, "
                "evidence, rationale"
                ") VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        run_id,
                        item.symbol_id,
                        item.role,
                        item.confidence,
                        item.score,
                        item.support,
                        int(item.ambiguous),
                        ",".join(item.evidence),
                        item.rationale,
                    )
                    for item in report.classifications
                ],
            )
            connection.executemany(
                "INSERT INTO findings ("
                "run_id, anti_pattern, rule_id, severity, symbol_ids, evidence, "
                "rationale"
                ") VALUES (?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        run_id,
                        item.anti_pattern,
                        item.rule_id,
                        item.severity,
                        ",".join(item.symbol_ids),
                        "; ".join(item.evidence),
                        item.rationale,
                    )
                    for item in report.findings
                ],
            )
            connection.commit()
            logger.info(
                f"Run persisted (run_id={run_id} status={status} "
                f"symbols={report.symbol_count} db_path={self._db_path})"
            )
            return PersistRunResult(
                run_id=run_id,
                symbol_count=report.symbol_count,
                finding_count=len(report.findings),
                skipped_count=len(report.skipped),
                status=status,
            )
        except sqlite3.DatabaseError as exc:
            connection.rollback()
            logger.warning(
                f"SQLite persistence failed (db_path={self._db_path} error={exc})"
            )
            raise BaselineStoreError(str(exc)) from exc
        finally:
            connection.close()

    def load_baseline(self, run_id: int) -> Baseline:
        """Load the baseline stored with one run.

        Args:
            run_id: Stored run id.

        Returns:
            Baseline of that run.

        Raises:
            BaselineStoreError: If the run is unknown, was incomplete, or the
                store cannot be read.
            SchemaVersionMismatchError: If the stored baseline is incompatible.
        """
        row = self._fetch_one(
            "SELECT baseline_json, status FROM runs WHERE id = ?", (run_id,)
        )
        if row is None:
            raise BaselineStoreError(f"Run not found: {run_id}")
        if row[1] == "incomplete":
            raise BaselineStoreError(f"Run {run_id} is incomplete and has no baseline")
        return self._decode(row[0])

    def load_latest_baseline(self, root_path: str) -> Baseline | None:
        """Load the most recent complete run recorded for a root path.

        Incomplete runs are never used as a baseline.

        Args:
            root_path: Root path the runs were recorded for.

        Returns:
            Latest baseline, or ``None`` when no complete run exists.

        Raises:
            BaselineStoreError: If the store cannot be read.
            SchemaVersionMismatchError: If the stored baseline is incompatible.
        """
        row = self._fetch_one(
            "SELECT baseline_json FROM runs "
            "WHERE root_path = ? AND status != 'incomplete' "
            "ORDER BY id DESC LIMIT 1",
            (root_path,),
        )
        if row is None:
            logger.info(f"No stored baseline found (root_path={root_path})")
            return None
        return self._decode(row[0])

    def _fetch_one(
        self, query: str, parameters: tuple[object, ...]
    ) -> tuple[str, ...] | None:
        connection = sqlite3.connect(self._db_path)
        try:
            self._ensure_schema(connection=connection)
            return connection.execute(query, parameters).fetchone()
        except sqlite3.DatabaseError as exc:
            logger.warning(
                f"SQLite baseline read failed (db_path={self._db_path} error={exc})"
            )
            raise BaselineStoreError(str(exc)) from exc
        finally:
            connection.close()

    def _decode(self, document: str) -> Baseline:
        try:
            payload = json.loads(document)
        except json.JSONDecodeError as exc:
            raise BaselineStoreError(f"Stored baseline is not valid JSON: {exc}") from exc
        try:
            return baseline_from_dict(payload)
        except ValueError as exc:
            raise BaselineStoreError(str(exc)) from exc

    def _ensure_schema(self, connection: sqlite3.Connection) -> None:
        """Create required tables and indexes when missing.

        Args:
            connection: Open SQLite connection.
        """
        connection.execute(
            "CREATE TABLE IF NOT EXISTS runs ("
            "id INTEGER PRIMARY KEY, "
            "created_at TEXT NOT NULL, "
            "root_path TEXT NOT NULL, "
            "schema_version TEXT NOT NULL, "
            "registry_version TEXT NOT NULL, "
            "registry_fingerprint TEXT NOT NULL, "
            "status TEXT NOT NULL, "
            "symbol_count INTEGER NOT NULL, "
            "finding_count INTEGER NOT NULL, "
            "skipped_count INTEGER NOT NULL, "
            "baseline_json TEXT NOT NULL"
            ")"
        )
        connection.execute(
            "CREATE TABLE IF NOT EXISTS classifications ("
            "id INTEGER PRIMARY KEY, "
            "run_id INTEGER NOT NULL REFERENCES runs(id), "
            "symbol_id TEXT NOT NULL, "
            "role TEXT NOT NULL, "
            "confidence TEXT NOT NULL, "
            "score REAL NOT NULL, "
            "support REAL NOT NULL, "
            "ambiguous INTEGER NOT NULL, "
            "evidence TEXT NOT NULL, "
            "rationale TEXT NOT NULL"
            ")"
        )
        connection.execute(
            "CREATE TABLE IF NOT EXISTS findings ("
            "id INTEGER PRIMARY KEY, "
            "run_id INTEGER NOT NULL REFERENCES runs(id), "
            "anti_pattern TEXT NOT NULL, "
            "rule_id TEXT NOT NULL, "
            "severity TEXT NOT NULL, "
            "symbol_ids TEXT NOT NULL, "
            "evidence TEXT NOT NULL, "
            "rationale TEXT NOT NULL"
            ")"
        )
        connection.execute(
            "CREATE INDEX IF NOT EXISTS idx_runs_root_path ON runs(root_path)"
        )
        connection.execute(
            "CREATE INDEX IF NOT EXISTS idx_classifications_run_id "
            "ON classifications(run_id)"
        )
        connection.execute(
            "CREATE INDEX IF NOT EXISTS idx_findings_run_id ON findings(run_id)"
        )
