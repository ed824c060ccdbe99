"""
Rover Ground Station Configuration
All configurable parameters for the ground station
"""

import os
from dataclasses import dataclass
from typing import Optional

from rover_gs.common.constants import (
    DEFAULT_FREQUENCY_MHZ, DEFAULT_BITRATE_BPS, DEFAULT_FDEV_HZ, DEFAULT_TX_POWER_DBM,
    DEFAULT_PREAMBLE_LENGTH, RH_BROADCAST_ADDRESS,
    BONNET_PIN_CS, BONNET_PIN_RESET, BONNET_OLED_ADDRESS, BONNET_OLED_WIDTH, BONNET_OLED_HEIGHT,
    ACK_TIMEOUT_SEC, MSG_DELAY_SEC, LISTEN_DELAY_SEC, TELEMETRY_TIMEOUT_SEC,
    MAX_FRAME_SIZE_ENCRYPTED, MAX_FRAME_SIZE_PLAIN, GPS_BAUDRATE,
)
from rover_gs.common.errors import ConfigError

_TRUE_VALUES = ('1', 'true', 'yes')


@dataclass
class GroundConfig:
    """Ground station configuration"""

    # === Identification ===
    callsign: str = "ROVERGND"

    # === Radio Configuration ===
    frequency_mhz: float = DEFAULT_FREQUENCY_MHZ
    bitrate_bps: int = DEFAULT_BITRATE_BPS
    fdev_hz: float = DEFAULT_FDEV_HZ
    tx_power_dbm: int = DEFAULT_TX_POWER_DBM
    preamble_length: int = DEFAULT_PREAMBLE_LENGTH
    # 32 hex chars (16 byte AES key); must match the rover. None = no encryption
    encryption_key: Optional[str] = None
    node_address: int = RH_BROADCAST_ADDRESS
    destination_address: int = RH_BROADCAST_ADDRESS

    # === RFM69 Bonnet Pins (Blinka board names) ===
    pin_cs: str = BONNET_PIN_CS
    pin_reset: str = BONNET_PIN_RESET

    # === OLED Display ===
    display_enabled: bool = True
    display_width: int = BONNET_OLED_WIDTH
    display_height: int = BONNET_OLED_HEIGHT
    display_address: int = BONNET_OLED_ADDRESS

    # === Timing ===
    ack_timeout_sec: float = ACK_TIMEOUT_SEC
    msg_delay_sec: float = MSG_DELAY_SEC
    listen_delay_sec: float = LISTEN_DELAY_SEC
    telemetry_timeout_sec: float = TELEMETRY_TIMEOUT_SEC
    command_retry_count: int = 0
    status_interval_sec: float = 10.0

    # === Storage ===
    data_path: str = "/var/lib/rover-gs"
    log_path: str = "/var/lib/rover-gs/logs"
    telemetry_db_path: str = "/var/lib/rover-gs/telemetry.db"
    telemetry_buffer_size: int = 1000
    log_raw_packets: bool = True

    # === Web Interface ===
    web_host: str = "0.0.0.0"
    web_port: int = 5000
    enable_web: bool = True

    # === Ground Station GPS ===
    gps_enabled: bool = False
    gps_device: str = "/dev/serial0"
    gps_baudrate: int = GPS_BAUDRATE

    # === Alerts ===
    alert_weak_signal_dbm: int = -95
    alert_low_memory_bytes: int = 256
    alert_min_satellites: int = 4

    # === Debug ===
    debug_mode: bool = False
    simulate_radio: bool = False
    simulated_telemetry_interval_sec: float = 2.0

    def __post_init__(self):
        """Create necessary directories"""
        os.makedirs(self.data_path, exist_ok=True)
        os.makedirs(self.log_path, exist_ok=True)

    def set_data_path(self, data_path: str):
        """Point all storage at a new data directory"""
        self.data_path = data_path
        self.log_path = os.path.join(data_path, "logs")
        self.telemetry_db_path = os.path.join(data_path, "telemetry.db")
        os.makedirs(self.data_path, exist_ok=True)
        os.makedirs(self.log_path, exist_ok=True)

    @property
    def encryption_key_bytes(self) -> Optional[bytes]:
        """AES key as bytes, or None if encryption is off"""
        if not self.encryption_key:
            return None
        try:
            key = bytes.fromhex(self.encryption_key)
        except ValueError as e:
            raise ConfigError(
                f"Encryption key is not valid hex: {self.encryption_key!r}",
                "Use 32 hex characters, e.g. 000102030405060708090a0b0c0d0e0f"
            ) from e
        if len(key) != 16:
            raise ConfigError(
                f"Encryption key must be 16 bytes, got {len(key)}",
                "Use 32 hex characters, e.g. 000102030405060708090a0b0c0d0e0f"
            )
        return key

    @property
    def use_encryption(self) -> bool:
        return bool(self.encryption_key)

    @property
    def max_frame_size(self) -> int:
        """Largest frame the rover accepts with the current encryption setting"""
        return MAX_FRAME_SIZE_ENCRYPTED if self.use_encryption else MAX_FRAME_SIZE_PLAIN

    @classmethod
    def from_env(cls, data_path: Optional[str] = None) -> 'GroundConfig':
        """
        Create config from environment variables

        Environment variables override defaults:
        - ROVERGS_CALLSIGN
        - ROVERGS_FREQUENCY
        - ROVERGS_ENCRYPTION_KEY
        - ROVERGS_DATA_PATH
        - ROVERGS_LOG_PATH
        - ROVERGS_WEB_PORT
        - ROVERGS_DISPLAY
        - ROVERGS_DEBUG
        - ROVERGS_SIMULATE
        - ROVERGS_GPS_ENABLED
        - ROVERGS_GPS_DEVICE

        Args:
            data_path: Data directory, overrides ROVERGS_DATA_PATH
        """
        data_path = data_path or os.getenv('ROVERGS_DATA_PATH')
        if data_path:
            config = cls(
                data_path=data_path,
                log_path=os.path.join(data_path, "logs"),
                telemetry_db_path=os.path.join(data_path, "telemetry.db"),
            )
        else:
            config = cls()

        if os.getenv('ROVERGS_CALLSIGN'):
            config.callsign = os.getenv('ROVERGS_CALLSIGN')

        if os.getenv('ROVERGS_FREQUENCY'):
            try:
                config.frequency_mhz = float(os.getenv('ROVERGS_FREQUENCY'))
            except ValueError as e:
                raise ConfigError(f"Invalid ROVERGS_FREQUENCY: {os.getenv('ROVERGS_FREQUENCY')}") from e

        if os.getenv('ROVERGS_ENCRYPTION_KEY'):
            config.encryption_key = os.getenv('ROVERGS_ENCRYPTION_KEY')

        if os.getenv('ROVERGS_LOG_PATH'):
            config.log_path = os.getenv('ROVERGS_LOG_PATH')
            os.makedirs(config.log_path, exist_ok=True)

        if os.getenv('ROVERGS_WEB_PORT'):
            try:
                config.web_port = int(os.getenv('ROVERGS_WEB_PORT'))
            except ValueError as e:
                raise ConfigError(f"Invalid ROVERGS_WEB_PORT: {os.getenv('ROVERGS_WEB_PORT')}") from e

        if os.getenv('ROVERGS_DISPLAY'):
            config.display_enabled = os.getenv('ROVERGS_DISPLAY').lower() in _TRUE_VALUES

        if os.getenv('ROVERGS_DEBUG'):
            config.debug_mode = os.getenv('ROVERGS_DEBUG').lower() in _TRUE_VALUES

        if os.getenv('ROVERGS_SIMULATE'):
            config.simulate_radio = os.getenv('ROVERGS_SIMULATE').lower() in _TRUE_VALUES

        if os.getenv('ROVERGS_GPS_ENABLED'):
            config.gps_enabled = os.getenv('ROVERGS_GPS_ENABLED').lower() in _TRUE_VALUES

        if os.getenv('ROVERGS_GPS_DEVICE'):
            config.gps_device = os.getenv('ROVERGS_GPS_DEVICE')

        return config
