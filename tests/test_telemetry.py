"""
Unit tests for telemetry processing, storage and export.
"""

import csv
import time

import pytest

from rover_gs.ground.telemetry import (
    TelemetryBuffer,
    TelemetryDatabase,
    TelemetryPoint,
    TelemetryProcessor,
)


@pytest.fixture
def processor(tmp_path):
    alerts = []
    proc = TelemetryProcessor(
        db_path=str(tmp_path / "telemetry.db"),
        buffer_size=10,
        on_alert=lambda t, m, d: alerts.append(t),
        session_id="test_session",
    )
    proc.alerts = alerts
    yield proc
    proc.close()


def make_point(received_at, lat=40.0, lon=-105.0, status="OK"):
    return TelemetryPoint(
        received_at=received_at, rssi=-70, rover_time="12:00:00",
        latitude=lat, longitude=lon, altitude=1600.0, speed=0.0,
        satellites=8, heading=0, signal_strength=-60, free_memory=1000,
        status=status,
    )


class TestTelemetryPoint:
    """Tests for TelemetryPoint."""

    def test_from_message(self, make_telemetry):
        point = TelemetryPoint.from_message(make_telemetry(status="DRIVE"), 1000.0, -77)
        assert point.rover_time == "12:34:56"
        assert point.rssi == -77
        assert point.satellites == 8
        assert point.heading == 90
        assert point.status == "DRIVE"
        assert point.to_dict()["free_memory"] == 1200


class TestTelemetryBuffer:
    """Tests for the ring buffer."""

    def test_max_size(self):
        buf = TelemetryBuffer(max_size=3)
        for i in range(5):
            buf.add(make_point(i))
        assert len(buf) == 3
        assert [p.received_at for p in buf.get_all()] == [2, 3, 4]

    def test_get_latest_and_since(self):
        buf = TelemetryBuffer()
        for i in range(5):
            buf.add(make_point(i))
        assert [p.received_at for p in buf.get_latest(2)] == [3, 4]
        assert [p.received_at for p in buf.get_since(3)] == [3, 4]
        buf.clear()
        assert len(buf) == 0


class TestTelemetryDatabase:
    """Tests for sqlite storage."""

    def test_insert_and_query(self, tmp_path):
        db = TelemetryDatabase(str(tmp_path / "t.db"), session_id="s1")
        db.insert(make_point(1.0, status="A"))
        db.insert(make_point(2.0, status="B"))

        points = db.query()
        assert [p.status for p in points] == ["B", "A"]
        assert db.get_stats()["total_points"] == 2
        db.close()

    def test_track_thinning_and_sessions(self, tmp_path):
        db = TelemetryDatabase(str(tmp_path / "t.db"), session_id="s1")
        for t in (0.0, 0.5, 1.0, 2.5):
            db.insert(make_point(t))
        db.insert(make_point(3.0, lat=0, lon=0))
        db.insert(make_point(4.0), session_id="s2")

        assert len(db.get_track(min_interval_sec=1.0, session_id="s1")) == 3
        assert len(db.get_track(min_interval_sec=0, session_id="all")) == 5
        assert len(db.get_track(session_id="current")) == 3
        assert {s["session_id"] for s in db.get_sessions()} == {"s1", "s2"}

        assert db.clear_track("s2") == 1
        db.close()

    def test_session_rows(self, tmp_path):
        db = TelemetryDatabase(str(tmp_path / "t.db"))
        db.start_session("s1", "ROVERGND")
        assert db.session_id == "s1"
        db.end_session()
        db.close()


class TestTelemetryProcessor:
    """Tests for TelemetryProcessor."""

    def test_process_message(self, processor, make_telemetry):
        received = []
        processor.on_telemetry = received.append

        point = processor.process_message(make_telemetry(), rssi=-65)

        assert processor.get_latest() is point
        assert received == [point]
        assert len(processor.buffer) == 1
        assert processor.database.get_stats()["total_points"] == 1
        assert processor.get_current_position()["lat"] == pytest.approx(40.015, abs=1e-4)

    def test_no_alerts_when_healthy(self, processor, make_telemetry):
        processor.process_message(make_telemetry(), rssi=-65)
        assert processor.alerts == []

    def test_weak_signal_and_low_memory(self, processor, make_telemetry):
        processor.process_message(make_telemetry(signal_strength=-100, free_memory=100), rssi=-65)
        assert "weak_signal" in processor.alerts
        assert "low_memory" in processor.alerts

    def test_gps_lost_on_transition_only(self, processor, make_telemetry):
        processor.process_message(make_telemetry(sats=8), rssi=-65)
        processor.process_message(make_telemetry(sats=2), rssi=-65)
        processor.process_message(make_telemetry(sats=1), rssi=-65)
        assert processor.alerts.count("gps_lost") == 1

    def test_status_change(self, processor, make_telemetry):
        processor.process_message(make_telemetry(status="IDLE"), rssi=-65)
        processor.process_message(make_telemetry(status="IDLE"), rssi=-65)
        processor.process_message(make_telemetry(status="DRIVE"), rssi=-65)
        assert processor.alerts == ["rover_status"]

    def test_callback_errors_are_contained(self, processor, make_telemetry):
        def boom(point):
            raise RuntimeError("boom")

        processor.on_telemetry = boom
        processor.process_message(make_telemetry(), rssi=-65)
        assert processor.stats["packets_received"] == 1

    def test_session_stats(self, processor, make_telemetry):
        processor.process_message(make_telemetry(status="IDLE"), rssi=-65)
        stats = processor.get_session_stats()
        assert stats["total_packets"] == 1
        assert stats["current_status"] == "IDLE"
        assert stats["last_rssi"] == -65

    def test_export_csv(self, processor, make_telemetry, tmp_path):
        processor.process_message(make_telemetry(status="A"), rssi=-65)
        time.sleep(0.01)
        processor.process_message(make_telemetry(status="B"), rssi=-65)
        path = tmp_path / "out.csv"

        processor.export_csv(str(path))

        with open(path, newline="") as f:
            rows = list(csv.DictReader(f))
        assert [r["status"] for r in rows] == ["A", "B"]

    def test_export_kml(self, processor, make_telemetry, tmp_path):
        processor.process_message(make_telemetry(), rssi=-65)
        path = tmp_path / "track.kml"

        processor.export_kml(str(path))

        content = path.read_text()
        assert "<kml" in content
        assert "-105.2705" in content
