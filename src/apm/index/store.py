#!/usr/bin/env python3
"""
APM PACKAGE INDEX - The Ledger
------------------------------
Local SQLite store of known nixpkgs packages. It is rebuilt wholesale by
`apm makecache` and only read afterwards: existence checks before an
install and ranked search for suggestions.

A rebuild deletes the old store before writing anything, so old and new
records are never mixed. Records are committed in batches; an interrupted
rebuild keeps what was committed and reports failed records as a list
instead of aborting.

Author: APM Team
Date: 2026-10-17
"""

import logging
import sqlite3
from contextlib import closing
from pathlib import Path
from typing import Iterable, List

from apm.core.errors import IndexMissingError
from apm.core.models import PackageRecord, RebuildResult
from apm.index.ranking import DEFAULT_LIMIT, rank_by_relevance

logger = logging.getLogger("apm.index")


class PackageIndex:
    """SQLite implementation of the package index, keyed by package name."""

    COMMIT_EVERY = 1000

    def __init__(self, db_path: Path):
        self._db_path = Path(db_path)

    @property
    def path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        if not self._db_path.exists():
            raise IndexMissingError()
        return sqlite3.connect(self._db_path)

    def _query(self, sql: str, params: tuple) -> List[tuple]:
        try:
            with closing(self._connect()) as conn:
                return conn.execute(sql, params).fetchall()
        except sqlite3.OperationalError as e:
            if "no such table" in str(e):
                raise IndexMissingError() from e
            raise

    def rebuild(self, records: Iterable[PackageRecord]) -> RebuildResult:
        """Replaces the whole store with `records`."""
        self.remove()
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        result = RebuildResult()
        with closing(sqlite3.connect(self._db_path)) as conn:
            conn.execute("""
                CREATE TABLE packages (
                    name TEXT PRIMARY KEY,
                    version TEXT NOT NULL DEFAULT '',
                    description TEXT NOT NULL DEFAULT ''
                )
            """)
            for record in records:
                try:
                    conn.execute(
                        "INSERT INTO packages (name, version, description) VALUES (?, ?, ?)",
                        (record.name, record.version, record.description),
                    )
                    result.count += 1
                except sqlite3.Error as e:
                    result.errors.append(f"Error inserting package {record.name}: {e}")
                    continue
                if result.count % self.COMMIT_EVERY == 0:
                    conn.commit()
            conn.commit()

        logger.info(f"Index rebuilt with {result.count} packages ({len(result.errors)} errors)")
        return result

    def exists(self, name: str) -> bool:
        rows = self._query("SELECT 1 FROM packages WHERE name = ? LIMIT 1", (name,))
        return bool(rows)

    def search(self, query: str, limit: int = DEFAULT_LIMIT) -> List[PackageRecord]:
        rows = self._query(
            "SELECT name, version, description FROM packages "
            "WHERE instr(lower(name), ?) > 0 ORDER BY name",
            (query.lower(),),
        )
        return rank_by_relevance((PackageRecord(*row) for row in rows), query,
                                 lambda record: record.name, limit)

    def remove(self) -> bool:
        """Deletes the store. False means there was nothing to delete."""
        try:
            self._db_path.unlink()
        except FileNotFoundError:
            return False
        logger.info(f"Removed package index {self._db_path}")
        return True
