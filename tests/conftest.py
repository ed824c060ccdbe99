"""
Pytest configuration and shared fixtures.
"""

import time
from collections import deque

import pytest

from rover_gs.common.protocol import RoverLocation, RoverTimestamp, TelemetryMessage
from rover_gs.ground.config import GroundConfig
from rover_gs.ground.radio import Radio


class FakeRadio(Radio):
    """
    Scripted radio for link tests.

    Payloads in `incoming` are handed out one per receive() call. A
    `responder` sees every sent payload and may return a reply to queue.
    """

    def __init__(self, max_payload: int = 250):
        super().__init__()
        self.max_payload = max_payload
        self.incoming = deque()
        self.sent = []
        self.send_result = True
        self.send_error = None
        self.receive_error = None
        self.responder = None
        self.last_rssi = -60
        self.closed = False

    def init(self):
        pass

    def send(self, payload: bytes) -> bool:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(bytes(payload))
        if self.responder is not None:
            reply = self.responder(payload)
            if reply is not None:
                self.incoming.append(reply)
        return self.send_result

    def receive(self, timeout: float):
        if self.receive_error is not None:
            raise self.receive_error
        if self.incoming:
            return self.incoming.popleft()
        time.sleep(timeout)
        return None

    @property
    def frequency_mhz(self) -> float:
        return 868.0

    def close(self):
        self.closed = True


@pytest.fixture
def config(tmp_path):
    """Configuration writing into a temp dir, with short timeouts."""
    return GroundConfig(
        data_path=str(tmp_path),
        log_path=str(tmp_path / "logs"),
        telemetry_db_path=str(tmp_path / "telemetry.db"),
        msg_delay_sec=0,
        listen_delay_sec=0.01,
        ack_timeout_sec=0.3,
        telemetry_timeout_sec=0.3,
        display_enabled=False,
        enable_web=False,
        status_interval_sec=3600,
    )


@pytest.fixture
def fake_radio():
    return FakeRadio()


@pytest.fixture
def make_telemetry():
    """Factory for telemetry messages with sensible defaults."""

    def _make(status="OK", sats=8, free_memory=1200, signal_strength=-60,
              lat=40.0150, lon=-105.2705, alt=1655.0):
        return TelemetryMessage(
            timestamp=RoverTimestamp(12, 34, 56),
            location=RoverLocation(
                gps_lat=lat,
                gps_long=lon,
                gps_alt=alt,
                gps_speed=0.5,
                gps_sats=sats,
                mag_hdg=90,
            ),
            signal_strength=signal_strength,
            free_memory=free_memory,
            status=status,
        )

    return _make
