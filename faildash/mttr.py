"""Live mean-time-to-recovery statistics computed from the failures table."""

from __future__ import annotations

import sqlite3
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from .models import MTTRStats, format_time

_RESOLVED = "resolved_at IS NOT NULL"


class MTTRCalculator:
    """Computes MTTR statistics from a SQLite connection holding a failures table."""

    def __init__(self, conn: sqlite3.Connection, clock: Callable[[], datetime] = datetime.now):
        self._conn = conn
        self._clock = clock

    def _scalar(self, sql: str, params: tuple[Any, ...] = ()) -> Any:
        try:
            row = self._conn.execute(sql, params).fetchone()
        except sqlite3.Error:
            return None
        return None if row is None else row[0]

    def _averages(self, column: str) -> dict[str, float]:
        sql = (
            f"SELECT {column}, AVG(mttr_seconds) FROM failures "
            f"WHERE {_RESOLVED} AND {column} != '' GROUP BY {column}"
        )
        try:
            rows = self._conn.execute(sql).fetchall()
        except sqlite3.Error:
            return {}
        return {name: float(avg) if avg is not None else 0.0 for name, avg in rows}

    def _average_since(self, cutoff: datetime | None) -> float:
        sql = f"SELECT COALESCE(AVG(mttr_seconds), 0) FROM failures WHERE {_RESOLVED}"
        params: tuple[Any, ...] = ()
        if cutoff is not None:
            sql += " AND failed_at >= ?"
            params = (format_time(cutoff),)
        value = self._scalar(sql, params)
        return float(value) if value is not None else 0.0

    def _count(self, condition: str) -> int:
        value = self._scalar(f"SELECT COUNT(*) FROM failures WHERE {condition}")
        return int(value) if value is not None else 0

    def calculate(self) -> MTTRStats:
        """Return the current statistics; a query that fails leaves its figure at zero."""
        now = self._clock()
        return MTTRStats(
            overall_avg_seconds=self._average_since(None),
            avg_7day_seconds=self._average_since(now - timedelta(days=7)),
            avg_30day_seconds=self._average_since(now - timedelta(days=30)),
            by_team=self._averages("responsible_team"),
            by_category=self._averages("category"),
            total_resolved=self._count("resolved_at IS NOT NULL"),
            total_unresolved=self._count("resolved_at IS NULL"),
        )