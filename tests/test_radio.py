"""
Tests for the radio implementations that run without hardware.
"""

import sys
import types

import pytest

from rover_gs.common.constants import REG_AFC_BW, REG_RX_BW, RX_BW_REGISTER_VALUE
from rover_gs.common.errors import RadioError
from rover_gs.common.protocol import (
    CommandAck,
    CommandMessage,
    CommandReady,
    TelemetryAck,
    TelemetryMessage,
    decode_message,
)
from rover_gs.ground.radio import RFM69Radio, SimulatedRadio


class TestSimulatedRadio:
    """Tests for the simulated rover."""

    def test_requires_init(self):
        radio = SimulatedRadio(telemetry_interval_sec=None)
        with pytest.raises(RadioError):
            radio.receive(0.01)

    def test_generates_telemetry(self):
        radio = SimulatedRadio(telemetry_interval_sec=10)
        radio.init()
        payload = radio.receive(0.5)
        assert isinstance(decode_message(payload), TelemetryMessage)
        assert -90 <= radio.last_rssi <= -50
        # next one is not due yet
        assert radio.receive(0.05) is None

    def test_command_waiting_answered(self):
        radio = SimulatedRadio(telemetry_interval_sec=None)
        radio.init()
        radio.send(TelemetryAck(command_waiting=True).serialize())
        assert isinstance(decode_message(radio.receive(0.1)), CommandReady)

    def test_plain_ack_not_answered(self):
        radio = SimulatedRadio(telemetry_interval_sec=None)
        radio.init()
        radio.send(TelemetryAck(command_waiting=False).serialize())
        assert radio.receive(0.02) is None

    def test_command_acked(self):
        radio = SimulatedRadio(telemetry_interval_sec=None)
        radio.init()
        radio.ack_commands = False
        radio.send(CommandMessage(command="FWD 1").serialize())
        ack = decode_message(radio.receive(0.1))
        assert isinstance(ack, CommandAck)
        assert ack.ack is False
        assert radio.received_commands == ["FWD 1"]
        assert radio.status == "CMD FWD 1"


class TestRFM69Radio:
    """Tests for RFM69Radio that need no bonnet."""

    def test_send_before_init(self, config):
        with pytest.raises(RadioError):
            RFM69Radio(config).send(b"\x00")

    def test_frequency_from_config(self, config):
        assert RFM69Radio(config).frequency_mhz == config.frequency_mhz

    def test_max_payload(self, config):
        assert RFM69Radio(config).max_payload == 60


class FakeRFM69:
    """Stands in for adafruit_rfm69.RFM69 and records what the driver is told."""

    fail_with = None

    def __init__(self, spi, cs, reset, frequency, **kwargs):
        if FakeRFM69.fail_with is not None:
            raise FakeRFM69.fail_with
        self.args = (spi, cs, reset, frequency)
        self.kwargs = kwargs
        self.frequency_mhz = frequency
        self.registers = {}
        self.packets = []
        self.receive_kwargs = None
        self.last_rssi = -72.5
        self.asleep = False

    def _write_u8(self, address, value):
        self.registers[address] = value

    def _read_u8(self, address):
        return 0x24

    def send(self, data, keep_listening=False):
        return True

    def receive(self, **kwargs):
        self.receive_kwargs = kwargs
        return self.packets.pop(0) if self.packets else None

    def sleep(self):
        self.asleep = True


@pytest.fixture
def bonnet(monkeypatch):
    """Blinka and adafruit_rfm69 replaced by in-memory modules."""
    created = []

    def make_rfm(*args, **kwargs):
        rfm = FakeRFM69(*args, **kwargs)
        created.append(rfm)
        return rfm

    board = types.ModuleType("board")
    board.SCK, board.MOSI, board.MISO = "SCK", "MOSI", "MISO"
    board.CE1, board.D25 = "CE1", "D25"

    busio = types.ModuleType("busio")
    busio.SPI = lambda sck, MOSI=None, MISO=None: ("spi", sck, MOSI, MISO)

    digitalio = types.ModuleType("digitalio")
    digitalio.DigitalInOut = lambda pin: ("pin", pin)

    rfm69 = types.ModuleType("adafruit_rfm69")
    rfm69.RFM69 = make_rfm

    for name, module in [("board", board), ("busio", busio),
                         ("digitalio", digitalio), ("adafruit_rfm69", rfm69)]:
        monkeypatch.setitem(sys.modules, name, module)
    monkeypatch.setattr(FakeRFM69, "fail_with", None)
    return created


class TestRFM69Setup:
    """Tests for RFM69Radio.init against a fake bonnet."""

    def test_constructor_settings(self, config, bonnet):
        config.encryption_key = "000102030405060708090a0b0c0d0e0f"

        RFM69Radio(config).init()

        rfm = bonnet[0]
        assert rfm.args == (("spi", "SCK", "MOSI", "MISO"), ("pin", "CE1"), ("pin", "D25"), 868.0)
        assert rfm.kwargs["sync_word"] == b"\x2d\xd4"
        assert rfm.kwargs["preamble_length"] == 4
        assert rfm.kwargs["encryption_key"] == bytes(range(16))
        assert rfm.kwargs["high_power"] is True
        assert rfm.kwargs["baudrate"] == 2000000

    def test_no_key_means_no_encryption(self, config, bonnet):
        RFM69Radio(config).init()
        assert bonnet[0].kwargs["encryption_key"] is None

    def test_modem_settings(self, config, bonnet):
        RFM69Radio(config).init()

        rfm = bonnet[0]
        assert rfm.modulation_shaping == 0
        assert rfm.bitrate == 9600
        assert rfm.frequency_deviation == pytest.approx(19226, abs=1)
        assert rfm.tx_power == 14
        assert rfm.node == 0xFF
        assert rfm.destination == 0xFF
        assert rfm.registers == {
            REG_RX_BW: RX_BW_REGISTER_VALUE,
            REG_AFC_BW: RX_BW_REGISTER_VALUE,
        }
        assert RX_BW_REGISTER_VALUE == 0xEC

    def test_logs_chip_version(self, config, bonnet, monkeypatch, caplog):
        monkeypatch.setattr(FakeRFM69, "_read_u8", lambda self, address: 0x23 if address == 0x10 else 0)

        with caplog.at_level("INFO", logger="rover_gs.ground.radio"):
            RFM69Radio(config).init()

        assert "RFM69 version: 0x23" in caplog.text

    def test_version_mismatch(self, config, bonnet, monkeypatch):
        """The driver's RuntimeError on a bad version register becomes RadioError."""
        monkeypatch.setattr(FakeRFM69, "fail_with", RuntimeError("Invalid RFM69 version"))

        with pytest.raises(RadioError) as exc:
            RFM69Radio(config).init()

        assert "0x24" in str(exc.value)

    def test_missing_libraries(self, config, monkeypatch):
        monkeypatch.setitem(sys.modules, "board", None)
        monkeypatch.setitem(sys.modules, "adafruit_rfm69", None)
        with pytest.raises(RadioError):
            RFM69Radio(config).init()

    def test_receive_body_and_rssi(self, config, bonnet):
        radio = RFM69Radio(config)
        radio.init()
        bonnet[0].packets.append(bytearray(b"\x01\x02"))

        assert radio.receive(0.5) == b"\x01\x02"
        assert radio.last_rssi == -72
        assert bonnet[0].receive_kwargs == {
            "keep_listening": True, "with_header": False, "timeout": 0.5,
        }

    def test_receive_nothing(self, config, bonnet):
        radio = RFM69Radio(config)
        radio.init()
        assert radio.receive(0.1) is None
        assert radio.last_rssi == 0

    def test_frequency_read_back(self, config, bonnet):
        radio = RFM69Radio(config)
        radio.init()
        bonnet[0].frequency_mhz = 868.0001
        assert radio.frequency_mhz == 868.0001

    def test_close_sleeps(self, config, bonnet):
        radio = RFM69Radio(config)
        radio.init()
        radio.close()
        assert bonnet[0].asleep is True
        with pytest.raises(RadioError):
            radio.receive(0.1)
