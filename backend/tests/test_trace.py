"""Tests for the bounded debug/trace log."""

import logging

import pytest

from portal.services.trace import LogLevel, StageStatus, TraceLog, serialize_error


@pytest.mark.unit
class TestTraceLog:
    def test_status_maps_to_level(self):
        trace = TraceLog()
        trace.log_stage("delete", StageStatus.START)
        trace.log_stage("delete", "progress")
        trace.log_stage("delete", StageStatus.COMPLETE, {"deleted_count": 2})
        trace.log_stage("verify", StageStatus.WARNING)
        trace.log_stage("verify", StageStatus.ERROR)
        assert [e.level for e in trace.entries()] == [
            LogLevel.INFO,
            LogLevel.INFO,
            LogLevel.SUCCESS,
            LogLevel.WARNING,
            LogLevel.ERROR,
        ]
        assert trace.entries()[2].data == {"deleted_count": 2}

    def test_ring_buffer_evicts_oldest(self):
        trace = TraceLog(capacity=3)
        for i in range(5):
            trace.add(LogLevel.INFO, f"entry {i}")
        assert [e.message for e in trace.entries()] == ["entry 2", "entry 3", "entry 4"]
        assert trace.dropped == 2

    def test_clear_resets_dropped(self):
        trace = TraceLog(capacity=1)
        trace.add(LogLevel.INFO, "a")
        trace.add(LogLevel.INFO, "b")
        trace.clear()
        assert len(trace) == 0
        assert trace.dropped == 0

    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            TraceLog(capacity=0)

    def test_hidden_log_still_records(self):
        trace = TraceLog(visible=False)
        trace.add(LogLevel.INFO, "recorded")
        assert trace.visible_entries() == []
        assert len(trace.entries()) == 1
        trace.visible = True
        assert len(trace.visible_entries()) == 1

    def test_log_error_serializes_exception(self):
        trace = TraceLog()
        entry = trace.log_error("Error saving", ValueError("boom"), {"state_id": 4})
        assert entry.level == LogLevel.ERROR
        assert entry.data == {
            "state_id": 4,
            "error": {"type": "ValueError", "message": "boom"},
        }

    def test_serialize_error_variants(self):
        assert serialize_error(None) is None
        assert serialize_error("plain") == {"type": "str", "message": "plain"}

    def test_entries_mirrored_to_logger(self, caplog):
        trace = TraceLog()
        with caplog.at_level(logging.INFO, logger="portal.trace"):
            trace.log_stage("insert", StageStatus.ERROR, {"error": "x"})
        assert any(r.levelno == logging.ERROR for r in caplog.records)

    def test_as_dict(self):
        entry = TraceLog().log_stage("verify", StageStatus.COMPLETE)
        data = entry.as_dict()
        assert data["level"] == "success"
        assert data["stage"] == "verify"
        assert data["status"] == "complete"
        assert "timestamp" in data
