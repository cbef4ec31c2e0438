"""
Flight Recorder — per-attempt lifecycle timelines.

Captures milestones for every generation attempt a session makes:
  validated → gate acquired → first chunk → completed / failed

In-memory LRU (max_records with retention). Nothing is persisted;
this is for live debugging, not historical analysis.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from datetime import datetime, timezone
from uuid import uuid4

logger = logging.getLogger(__name__)


class FlightRecord:
    """Timeline for a single generation attempt."""

    __slots__ = ("id", "session_id", "model", "attempt", "start_time", "events", "outcome", "_closed")

    def __init__(self, session_id: str = "", model: str = "", attempt: int = 0):
        self.id: str = uuid4().hex[:12]
        self.session_id = session_id
        self.model = model
        self.attempt = attempt
        self.start_time: float = time.monotonic()
        self.events: list[dict] = []
        self.outcome: str = ""
        self._closed = False

    def log(self, stage: str, **details):
        """Record a milestone."""
        if self._closed:
            return
        elapsed = (time.monotonic() - self.start_time) * 1000
        event = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "elapsed_ms": round(elapsed, 2),
            "stage": stage,
        }
        if details:
            event["details"] = {k: v for k, v in details.items() if v is not None}
        self.events.append(event)

    def close(self, outcome: str = "completed"):
        if not self._closed:
            self.outcome = outcome
            self.log("Closed", outcome=outcome)
            self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def total_ms(self) -> float:
        if not self.events:
            return 0.0
        return self.events[-1]["elapsed_ms"]

    def stage_ms(self, stage: str) -> float | None:
        """Elapsed time at the first event with this stage name."""
        for event in self.events:
            if event["stage"] == stage:
                return event["elapsed_ms"]
        return None

    def to_json(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "model": self.model,
            "attempt": self.attempt,
            "outcome": self.outcome,
            "total_ms": round(self.total_ms, 2),
            "events": self.events,
        }

    def render_text(self) -> str:
        """Render as human-readable timeline."""
        lines = [f"FLIGHT RECORD: {self.id} (attempt {self.attempt})"]
        if self.session_id:
            lines.append(f"Session: {self.session_id[:16]}")
        if self.model:
            lines.append(f"Model: {self.model}")
        lines.append("")

        for event in self.events:
            line = f"  [{event['elapsed_ms']:8.1f}ms] {event['stage']}"
            details = event.get("details", {})
            if details:
                line += f"  ({', '.join(f'{k}={v}' for k, v in details.items())})"
            lines.append(line)

        lines.append("")
        lines.append(f"  TOTAL: {self.total_ms:.0f}ms  OUTCOME: {self.outcome or 'open'}")
        return "\n".join(lines)


class FlightRecorderStore:
    """
    In-memory store for flight records.
    Thread-safe LRU with max size and time-based retention; one store may be
    shared by many sessions.
    """

    def __init__(self, max_records: int = 1000, retention_hours: int = 24):
        self.max_records = max_records
        self.retention_seconds = retention_hours * 3600
        self._records: OrderedDict[str, FlightRecord] = OrderedDict()
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, cfg: dict) -> FlightRecorderStore | None:
        """Build from the `flight_recorder:` section. Returns None when disabled."""
        if not cfg or not cfg.get("enabled", True):
            return None
        return cls(
            max_records=int(cfg.get("max_records", 1000)),
            retention_hours=int(cfg.get("retention_hours", 24)),
        )

    def store(self, record: FlightRecord):
        with self._lock:
            while len(self._records) >= self.max_records:
                self._records.popitem(last=False)
            self._records[record.id] = record

    def get(self, record_id: str) -> FlightRecord | None:
        with self._lock:
            return self._records.get(record_id)

    def recent(self, n: int = 10, session_id: str | None = None) -> list[FlightRecord]:
        """The N most recent records, optionally for one session only."""
        with self._lock:
            items = list(self._records.values())
        if session_id is not None:
            items = [r for r in items if r.session_id == session_id]
        return items[-n:]

    def evict_stale(self):
        """Remove records older than retention period."""
        cutoff = time.monotonic() - self.retention_seconds
        with self._lock:
            stale = [
                rid for rid, rec in self._records.items()
                if rec.start_time < cutoff
            ]
            for rid in stale:
                del self._records[rid]
            if stale:
                logger.debug("Flight recorder evicted %d stale records", len(stale))

    @property
    def count(self) -> int:
        return len(self._records)
