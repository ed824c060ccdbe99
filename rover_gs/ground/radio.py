"""
Rover Ground Station - Radio Module
RFM69HCW bonnet driver and a simulated rover for running without hardware
"""

import logging
import random
import threading
import time
from collections import deque
from typing import Deque, List, Optional

from rover_gs.common.constants import (
    DEFAULT_SYNC_WORD, RFM69_EXPECTED_VERSION, RFM69_MAX_PAYLOAD, RFM69_SPI_BAUDRATE,
    MAX_FRAME_SIZE_PLAIN, RH_PREFIX_SIZE, REG_RX_BW, REG_AFC_BW, REG_VERSION, RX_BW_REGISTER_VALUE,
)
from rover_gs.common.errors import RadioError, ProtocolError
from rover_gs.common.protocol import (
    RoverMessage, TelemetryMessage, TelemetryAck, CommandReady, CommandMessage,
    CommandAck, RoverLocation, decode_message,
)
from rover_gs.ground.config import GroundConfig

logger = logging.getLogger(__name__)


class Radio:
    """
    Packet radio interface used by the rover link

    Payloads are message bodies; RadioHead LEN/TO/FROM/ID/FLAGS are handled
    below this interface.
    """

    max_payload: int = MAX_FRAME_SIZE_PLAIN - RH_PREFIX_SIZE

    def __init__(self):
        self.last_rssi: int = 0

    def init(self):
        """Bring up the radio. Raises RadioError on failure."""
        raise NotImplementedError

    def send(self, payload: bytes) -> bool:
        """Transmit one payload. Returns True when the radio reports TX done."""
        raise NotImplementedError

    def receive(self, timeout: float) -> Optional[bytes]:
        """Wait up to timeout seconds for one payload"""
        raise NotImplementedError

    @property
    def frequency_mhz(self) -> float:
        raise NotImplementedError

    def close(self):
        pass


class RFM69Radio(Radio):
    """
    Adafruit RFM69HCW Transceiver Radio Bonnet (868 / 915 MHz)

    Configured to match the rover's RadioHead RFM69 settings: FSK without
    shaping at 9600 bps, whitening, CRC, 4 byte preamble, sync word 2D D4.
    """

    max_payload = RFM69_MAX_PAYLOAD

    def __init__(self, config: GroundConfig):
        super().__init__()
        self.config = config
        self._rfm = None
        self._lock = threading.Lock()

    def init(self):
        try:
            import board
            import busio
            import digitalio
            import adafruit_rfm69
        except (ImportError, NotImplementedError) as e:
            raise RadioError(
                f"RFM69 libraries not available: {e}",
                "Install with 'pip install rover-gs[pi]' on the Raspberry Pi, "
                "or run with --simulate"
            ) from e

        cfg = self.config
        try:
            spi = busio.SPI(board.SCK, MOSI=board.MOSI, MISO=board.MISO)
            cs = digitalio.DigitalInOut(getattr(board, cfg.pin_cs))
            reset = digitalio.DigitalInOut(getattr(board, cfg.pin_reset))

            # Constructor pulses reset and checks the version register
            rfm = adafruit_rfm69.RFM69(
                spi, cs, reset, cfg.frequency_mhz,
                sync_word=DEFAULT_SYNC_WORD,
                preamble_length=cfg.preamble_length,
                encryption_key=cfg.encryption_key_bytes,
                high_power=True,
                baudrate=RFM69_SPI_BAUDRATE,
            )
        except RuntimeError as e:
            raise RadioError(
                f"Error connecting to RFM69 (expected version 0x{RFM69_EXPECTED_VERSION:02x}): {e}",
                "Check that the radio bonnet is seated and SPI is enabled (raspi-config)"
            ) from e
        except (AttributeError, OSError, ValueError) as e:
            raise RadioError(f"RFM69 setup failed: {e}") from e

        try:
            rfm.modulation_shaping = 0b00
            rfm.bitrate = cfg.bitrate_bps
            rfm.frequency_deviation = cfg.fdev_hz
            # 25 kHz RX / AFC bandwidth, DCC cutoff 0.125%; no public setter
            rfm._write_u8(REG_RX_BW, RX_BW_REGISTER_VALUE)
            rfm._write_u8(REG_AFC_BW, RX_BW_REGISTER_VALUE)
            rfm.tx_power = cfg.tx_power_dbm
            rfm.node = cfg.node_address
            rfm.destination = cfg.destination_address
            version = rfm._read_u8(REG_VERSION)
        except (OSError, RuntimeError) as e:
            raise RadioError(f"RFM69 configuration failed: {e}") from e

        self._rfm = rfm
        logger.info(f"RFM69 version: 0x{version:02x}")
        logger.info(f"Carrier frequency: {self.frequency_mhz:.3f} MHz")
        logger.info(f"Encryption: {'on' if cfg.use_encryption else 'off'}")

    def send(self, payload: bytes) -> bool:
        if self._rfm is None:
            raise RadioError("Radio not initialized")
        if len(payload) > self.max_payload:
            raise RadioError(f"Payload too long for RFM69 FIFO: {len(payload)} > {self.max_payload}")
        with self._lock:
            try:
                return bool(self._rfm.send(payload, keep_listening=True))
            except OSError as e:
                raise RadioError(f"SPI error while sending: {e}") from e

    def receive(self, timeout: float) -> Optional[bytes]:
        if self._rfm is None:
            raise RadioError("Radio not initialized")
        with self._lock:
            try:
                packet = self._rfm.receive(keep_listening=True, with_header=False, timeout=timeout)
            except OSError as e:
                raise RadioError(f"SPI error while receiving: {e}") from e
            if packet is None:
                return None
            self.last_rssi = int(self._rfm.last_rssi)
            return bytes(packet)

    @property
    def frequency_mhz(self) -> float:
        if self._rfm is None:
            return self.config.frequency_mhz
        return self._rfm.frequency_mhz

    def close(self):
        if self._rfm is not None:
            try:
                self._rfm.sleep()
            except OSError as e:
                logger.warning(f"Could not put RFM69 to sleep: {e}")
            self._rfm = None


class SimulatedRadio(Radio):
    """
    Simulated rover on the other end of the link

    Emits telemetry periodically, answers a TelemetryAck with command_waiting
    by sending CommandReady, and acknowledges every CommandMessage.
    """

    def __init__(
        self,
        telemetry_interval_sec: Optional[float] = 2.0,
        frequency_mhz: float = 868.0,
        start_position: tuple = (40.0150, -105.2705, 1655.0),
    ):
        """
        Args:
            telemetry_interval_sec: Period of rover telemetry; None disables it
            frequency_mhz: Reported carrier frequency
            start_position: (lat, lon, alt) of the simulated rover
        """
        super().__init__()
        self.telemetry_interval = telemetry_interval_sec
        self._frequency_mhz = frequency_mhz
        self._lat, self._lon, self._alt = start_position
        self._heading = 0

        self._inbox: Deque[bytes] = deque()
        self._lock = threading.Lock()
        self._next_telemetry = time.time()
        self._initialized = False

        # Rover behaviour knobs
        self.ready_for_commands = True
        self.ack_commands = True
        self.status = "OK"

        # What the station sent us
        self.sent: List[RoverMessage] = []
        self.received_commands: List[str] = []

    def init(self):
        self._initialized = True
        logger.info(f"Simulated radio at {self._frequency_mhz} MHz")

    def inject(self, message: RoverMessage):
        """Queue a message as if the rover had transmitted it"""
        self.inject_raw(message.serialize())

    def inject_raw(self, payload: bytes):
        with self._lock:
            self._inbox.append(payload)

    def send(self, payload: bytes) -> bool:
        if not self._initialized:
            raise RadioError("Radio not initialized")

        try:
            message = decode_message(payload)
        except ProtocolError as e:
            logger.warning(f"Simulated rover could not decode frame: {e}")
            return True

        self.sent.append(message)

        if isinstance(message, TelemetryAck) and message.command_waiting:
            self.inject(CommandReady(ready=self.ready_for_commands))
        elif isinstance(message, CommandMessage):
            self.received_commands.append(message.command)
            self.status = f"CMD {message.command}"[:31]
            self.inject(CommandAck(ack=self.ack_commands))

        return True

    def receive(self, timeout: float) -> Optional[bytes]:
        if not self._initialized:
            raise RadioError("Radio not initialized")

        deadline = time.time() + timeout
        while True:
            with self._lock:
                if self._inbox:
                    self.last_rssi = random.randint(-90, -50)
                    return self._inbox.popleft()

            now = time.time()
            if self.telemetry_interval is not None and now >= self._next_telemetry:
                self._next_telemetry = now + self.telemetry_interval
                self.inject(self._generate_telemetry())
                continue

            if now >= deadline:
                return None
            time.sleep(min(0.01, deadline - now))

    def _generate_telemetry(self) -> TelemetryMessage:
        """Wander the simulated rover a little and report"""
        self._lat += random.uniform(-0.00005, 0.00005)
        self._lon += random.uniform(-0.00005, 0.00005)
        self._heading = (self._heading + random.randint(-10, 10)) % 360

        return TelemetryMessage(
            location=RoverLocation(
                gps_lat=self._lat,
                gps_long=self._lon,
                gps_alt=self._alt + random.uniform(-1, 1),
                gps_speed=random.uniform(0, 1.5),
                gps_sats=random.randint(6, 11),
                mag_hdg=self._heading,
            ),
            signal_strength=random.randint(-80, -50),
            free_memory=random.randint(900, 1400),
            status=self.status,
        )

    @property
    def frequency_mhz(self) -> float:
        return self._frequency_mhz

    def close(self):
        self._initialized = False
