"""SQLite-backed feedback log and per-screen seen marks."""

from __future__ import annotations

import sqlite3
from contextlib import closing
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterable, List, Sequence

from .feedback import FeedbackIndex
from .models import FeedbackRecord, Match
from .utils import parse_timestamp, utcnow


class InsightStore:
    """Persist feedback rows and seen marks for insight rotation."""

    def __init__(self, db_path: str | Path = ":memory:") -> None:
        self.db_path = str(db_path)
        self.conn = sqlite3.connect(self.db_path)
        self.conn.row_factory = sqlite3.Row
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        with closing(self.conn.cursor()) as cur:
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS insight_feedback (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    rule_id TEXT NOT NULL,
                    helpful INTEGER NOT NULL,
                    reason TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_insight_feedback_created
                ON insight_feedback(created_at)
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS insight_seen (
                    screen TEXT NOT NULL,
                    rule_id TEXT NOT NULL,
                    seen_at TEXT NOT NULL,
                    PRIMARY KEY (screen, rule_id)
                )
                """
            )
            self.conn.commit()

    def record_feedback(
        self,
        rule_id: str,
        helpful: bool,
        *,
        reason: str | None = None,
        created_at: datetime | None = None,
    ) -> FeedbackRecord:
        record = FeedbackRecord(
            rule_id=rule_id.strip(),
            helpful=bool(helpful),
            created_at=parse_timestamp(created_at) or utcnow(),
            reason=reason or None,
        )
        with closing(self.conn.cursor()) as cur:
            cur.execute(
                """
                INSERT INTO insight_feedback (rule_id, helpful, reason, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (record.rule_id, int(record.helpful), record.reason, record.created_at.isoformat()),
            )
            self.conn.commit()
        return record

    def feedback_rows(self, *, limit: int = 250) -> List[FeedbackRecord]:
        """Most recent feedback rows, newest first."""

        with closing(self.conn.cursor()) as cur:
            cur.execute(
                "SELECT * FROM insight_feedback ORDER BY created_at DESC, id DESC LIMIT ?",
                (limit,),
            )
            rows = cur.fetchall()
        return [self._row_to_record(row) for row in rows]

    def feedback_index(self, *, limit: int = 250) -> FeedbackIndex:
        return FeedbackIndex.from_rows(self.feedback_rows(limit=limit))

    def mark_seen(self, screen: str, rule_id: str, ts: datetime | None = None) -> None:
        seen_at = parse_timestamp(ts) or utcnow()
        with closing(self.conn.cursor()) as cur:
            cur.execute(
                """
                INSERT INTO insight_seen (screen, rule_id, seen_at)
                VALUES (?, ?, ?)
                ON CONFLICT(screen, rule_id) DO UPDATE SET seen_at=excluded.seen_at
                """,
                (screen, rule_id, seen_at.isoformat()),
            )
            self.conn.commit()

    def was_seen_recently(self, screen: str, rule_id: str, now: datetime, ttl: timedelta) -> bool:
        with closing(self.conn.cursor()) as cur:
            cur.execute(
                "SELECT seen_at FROM insight_seen WHERE screen = ? AND rule_id = ?",
                (screen, rule_id),
            )
            row = cur.fetchone()
        if not row:
            return False
        seen_at = parse_timestamp(row["seen_at"])
        if seen_at is None:
            return False
        age = (parse_timestamp(now) or utcnow()) - seen_at
        return timedelta(0) <= age < ttl

    def filter_unseen(
        self,
        matches: Sequence[Match],
        screen: str,
        now: datetime,
        ttl: timedelta,
    ) -> List[Match]:
        """Matches not seen on ``screen`` within ``ttl``, in their original order."""

        return [match for match in matches if not self.was_seen_recently(screen, match.rule_id, now, ttl)]

    def prune_seen(self, now: datetime, ttl: timedelta) -> int:
        cutoff = (parse_timestamp(now) or utcnow()) - ttl
        with closing(self.conn.cursor()) as cur:
            cur.execute("DELETE FROM insight_seen WHERE seen_at < ?", (cutoff.isoformat(),))
            removed = cur.rowcount
            self.conn.commit()
        return removed

    def bulk_record(self, records: Iterable[FeedbackRecord]) -> None:
        for record in records:
            self.record_feedback(
                record.rule_id,
                record.helpful,
                reason=record.reason,
                created_at=record.created_at,
            )

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> FeedbackRecord:
        return FeedbackRecord(
            rule_id=row["rule_id"],
            helpful=bool(row["helpful"]),
            created_at=parse_timestamp(row["created_at"]) or utcnow(),
            reason=row["reason"],
        )

    def close(self) -> None:
        self.conn.close()
