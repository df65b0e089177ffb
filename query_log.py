"""
Append-only history of terminal case queries, with statistics derived on
demand. Memory is the source of truth; a persistence surface mirrors writes
best-effort and its failures only ever produce a PersistenceWarning.
"""
import logging
import threading
import uuid
import warnings
from collections import Counter
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Set

from errors import PersistenceWarning, make_error
from schemas import (
    CaseQuery,
    CaseTypeCount,
    CourtCount,
    QueryLogEntry,
    QueryStats,
    RawSnapshot,
)

logger = logging.getLogger("court_app.query_log")

TOP_N = 5


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class LogPersistence(Protocol):
    def save(self, entries: Iterable[QueryLogEntry]) -> None: ...

    def load(self) -> List[QueryLogEntry]: ...

    def clear(self) -> None: ...


def _ranking(values: Iterable[str]) -> List[tuple]:
    # Counter keeps first-seen order and sorted() is stable, so ties stay in that order
    counts = Counter(values)
    return sorted(counts.items(), key=lambda kv: kv[1], reverse=True)[:TOP_N]


class QueryLogStore:
    def __init__(
        self,
        persistence: Optional[LogPersistence] = None,
        clock: Callable[[], datetime] = utc_now,
        sync_on_read: bool = True,
    ):
        self.persistence = persistence
        self.clock = clock
        self.sync_on_read = sync_on_read
        self.last_error: Optional[dict] = None
        self._entries: Dict[str, QueryLogEntry] = {}
        self._seq: Dict[str, int] = {}
        self._next_seq = 0
        self._pending: List[QueryLogEntry] = []
        self._discarded: Set[str] = set()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def _warn(self, action: str, exc: Exception) -> None:
        self.last_error = make_error("PERSISTENCE_FAILED", details=f"{action}: {exc}")
        logger.warning("Query history %s failed: %s", action, exc)
        warnings.warn(f"Query history {action} failed: {exc}", PersistenceWarning, stacklevel=3)

    def _add(self, entry: QueryLogEntry) -> None:
        # callers hold self._lock
        self._entries[entry.id] = entry
        self._seq[entry.id] = self._next_seq
        self._next_seq += 1

    # ---------- persistence ----------
    def load(self) -> bool:
        """Merge persisted entries into memory. Returns False if the surface failed."""
        if self.persistence is None:
            return True
        try:
            stored = self.persistence.load()
        except Exception as e:
            self._warn("load", e)
            return False
        with self._lock:
            added = 0
            for entry in stored:
                if entry.id in self._entries or entry.id in self._discarded:
                    continue
                self._add(entry)
                added += 1
        if added:
            logger.info("Loaded %s query log entries", added)
        return True

    def flush(self) -> bool:
        """Retry saving entries that previously failed to persist."""
        if self.persistence is None:
            with self._lock:
                self._pending.clear()
            return True
        with self._lock:
            batch = list(self._pending)
        if not batch:
            return True
        try:
            self.persistence.save(batch)
        except Exception as e:
            self._warn("save", e)
            return False
        with self._lock:
            saved = {e.id for e in batch}
            self._pending = [e for e in self._pending if e.id not in saved]
        self.last_error = None
        return True

    # ---------- writes ----------
    def append(
        self,
        query: CaseQuery,
        success: bool,
        result_snapshot: Optional[RawSnapshot] = None,
        error: Optional[str] = None,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> QueryLogEntry:
        entry = QueryLogEntry(
            id=uuid.uuid4().hex,
            case_type=query.case_type,
            case_number=query.case_number,
            filing_year=query.filing_year,
            court=query.court,
            timestamp=self.clock(),
            success=success,
            error=error,
            result_snapshot=result_snapshot,
            user_agent=user_agent,
            ip_address=ip_address,
        )
        with self._lock:
            self._add(entry)
            self._pending.append(entry)
        logger.info(
            "Query logged: %s %s/%s success=%s",
            entry.court, entry.case_number, entry.filing_year, entry.success,
        )
        self.flush()
        return entry

    def clear(self) -> None:
        with self._lock:
            self._discarded.update(self._entries)
            self._entries.clear()
            self._seq.clear()
            self._pending.clear()
        if self.persistence is not None:
            try:
                self.persistence.clear()
            except Exception as e:
                self._warn("clear", e)
                return
        with self._lock:
            self._discarded.clear()
        logger.info("Query history cleared")

    # ---------- reads ----------
    def _snapshot(self) -> List[QueryLogEntry]:
        if self.sync_on_read:
            self.load()
        with self._lock:
            return sorted(self._entries.values(), key=lambda e: self._seq[e.id])

    def recent(self, limit: int = 10) -> List[QueryLogEntry]:
        if limit <= 0:
            return []
        entries = self._snapshot()
        with self._lock:
            seq = dict(self._seq)
        ordered = sorted(
            entries, key=lambda e: (e.timestamp, seq.get(e.id, -1)), reverse=True
        )
        return ordered[:limit]

    def stats(self) -> QueryStats:
        entries = self._snapshot()
        total = len(entries)
        successful = sum(1 for e in entries if e.success)
        rate = (successful / total) * 100 if total > 0 else 0.0
        return QueryStats(
            total_queries=total,
            successful_queries=successful,
            success_rate=rate,
            popular_courts=[
                CourtCount(court=c, count=n) for c, n in _ranking(e.court for e in entries)
            ],
            popular_case_types=[
                CaseTypeCount(case_type=t, count=n)
                for t, n in _ranking(e.case_type for e in entries)
            ],
        )
