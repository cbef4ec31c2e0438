"""
Tests for flight recorder.
Run with: pytest tests/test_flight_recorder.py
"""

import time

from parley.flight_recorder import FlightRecord, FlightRecorderStore


# ---------------------------------------------------------------------------
# FlightRecord
# ---------------------------------------------------------------------------

def test_record_basic_timeline():
    """FlightRecord captures ordered events with elapsed time."""
    rec = FlightRecord(session_id="sess1", model="gemini-2.5-flash-lite", attempt=2)
    rec.log("Validated", length=10)
    time.sleep(0.01)
    rec.log("Gate Acquired")
    time.sleep(0.01)
    rec.log("First Chunk")
    rec.close("completed")

    assert rec.id
    assert rec.attempt == 2
    assert rec.outcome == "completed"
    assert len(rec.events) == 4  # 3 logged + "Closed"
    assert rec.events[0]["details"] == {"length": 10}
    assert rec.events[-1]["stage"] == "Closed"

    for i in range(1, len(rec.events)):
        assert rec.events[i]["elapsed_ms"] >= rec.events[i - 1]["elapsed_ms"]


def test_record_ignores_events_after_close():
    rec = FlightRecord()
    rec.log("Received")
    rec.close("network_error")
    rec.log("Late")
    rec.close("completed")

    assert rec.closed
    assert rec.outcome == "network_error"
    assert [e["stage"] for e in rec.events] == ["Received", "Closed"]


def test_record_stage_ms_and_total():
    rec = FlightRecord()
    rec.log("Received")
    time.sleep(0.02)
    rec.log("First Chunk")

    assert rec.stage_ms("Received") is not None
    assert rec.stage_ms("First Chunk") >= 15
    assert rec.stage_ms("Missing") is None
    assert rec.total_ms == rec.stage_ms("First Chunk")


def test_record_drops_none_details():
    rec = FlightRecord()
    rec.log("Closed", outcome="x", extra=None)
    assert rec.events[0]["details"] == {"outcome": "x"}


def test_record_export():
    rec = FlightRecord(session_id="abcdef0123456789abcdef", model="m")
    rec.log("Received")
    rec.close()

    data = rec.to_json()
    assert data["session_id"] == "abcdef0123456789abcdef"
    assert data["outcome"] == "completed"
    assert len(data["events"]) == 2

    text = rec.render_text()
    assert "FLIGHT RECORD" in text
    assert "Session: abcdef0123456789" in text
    assert "OUTCOME: completed" in text


# ---------------------------------------------------------------------------
# FlightRecorderStore
# ---------------------------------------------------------------------------

def test_store_and_get():
    store = FlightRecorderStore()
    rec = FlightRecord(session_id="s1")
    store.store(rec)
    assert store.get(rec.id) is rec
    assert store.get("missing") is None
    assert store.count == 1


def test_store_evicts_oldest_at_capacity():
    store = FlightRecorderStore(max_records=3)
    records = [FlightRecord() for _ in range(5)]
    for r in records:
        store.store(r)

    assert store.count == 3
    assert store.get(records[0].id) is None
    assert store.get(records[4].id) is records[4]


def test_recent_filters_by_session():
    store = FlightRecorderStore()
    for sid in ("a", "b", "a", "a"):
        store.store(FlightRecord(session_id=sid))

    assert len(store.recent(10)) == 4
    assert len(store.recent(2)) == 2
    assert [r.session_id for r in store.recent(10, session_id="a")] == ["a", "a", "a"]


def test_evict_stale():
    store = FlightRecorderStore(retention_hours=0)
    rec = FlightRecord()
    rec.start_time -= 1
    store.store(rec)
    store.evict_stale()
    assert store.count == 0


def test_store_from_config():
    store = FlightRecorderStore.from_config({"max_records": 7, "retention_hours": 1})
    assert store.max_records == 7
    assert store.retention_seconds == 3600
    assert FlightRecorderStore.from_config({"enabled": False}) is None
    assert FlightRecorderStore.from_config({}) is None
