"""
Rover Ground Station Constants
Shared with the rover firmware - changing these breaks the link
"""

from enum import IntEnum


class MessageType(IntEnum):
    """Message identifiers (first byte of every message body)"""
    # Rover -> Station
    TELEMETRY = 0
    # Station -> Rover
    TELEMETRY_ACK = 1
    # Rover -> Station
    COMMAND_READY = 2
    # Station -> Rover
    COMMAND = 3
    # Rover -> Station
    COMMAND_ACK = 4


MESSAGE_TYPE_NAMES = {
    MessageType.TELEMETRY: "MESSAGE_TELEMETRY",
    MessageType.TELEMETRY_ACK: "MESSAGE_TELEMETRY_ACK",
    MessageType.COMMAND_READY: "MESSAGE_COMMAND_READY",
    MessageType.COMMAND: "MESSAGE_COMMAND",
    MessageType.COMMAND_ACK: "MESSAGE_COMMAND_ACK",
}
MESSAGE_UNKNOWN = "MESSAGE_UNKNOWN"

# RadioHead framing: LEN, TO, FROM, ID, FLAGS precede the message body.
# The rover's RadioHead library adds and strips these itself.
RH_LENGTH_SIZE = 1
RH_HEADER_SIZE = 4
RH_PREFIX_SIZE = RH_LENGTH_SIZE + RH_HEADER_SIZE  # 5 bytes
RH_BROADCAST_ADDRESS = 0xFF
RH_DEFAULT_TO = RH_BROADCAST_ADDRESS
RH_DEFAULT_FROM = RH_BROADCAST_ADDRESS
RH_DEFAULT_ID = 0x00
RH_DEFAULT_FLAGS = 0x00

# Whole frame limits (length byte + header + body)
MAX_FRAME_SIZE_ENCRYPTED = 64
MAX_FRAME_SIZE_PLAIN = 255

# Payload sizes
TIMESTAMP_SIZE = 3
LOCATION_SIZE = 19
TELEMETRY_FIXED_SIZE = 1 + TIMESTAMP_SIZE + LOCATION_SIZE + 2 + 2  # 27 bytes + status

# Timing (seconds)
ACK_TIMEOUT_SEC = 30.0       # wait for an ack message
MSG_DELAY_SEC = 0.25         # between RX and TX, lets the rover switch from TX to RX
LISTEN_DELAY_SEC = 0.1       # between checks of the receive buffer
TELEMETRY_TIMEOUT_SEC = 10.0

# === RFM69HCW radio defaults (must match the rover's RadioHead setup) ===
DEFAULT_FREQUENCY_MHZ = 868.0
DEFAULT_BITRATE_BPS = 9600
# Written as raw register values 0x01/0x3B rather than computed from 19200 Hz;
# the computed value is off by one from what the rover uses.
FDEV_REGISTER_VALUE = 0x013B
FSTEP_HZ = 32000000.0 / 2 ** 19
DEFAULT_FDEV_HZ = FDEV_REGISTER_VALUE * FSTEP_HZ  # ~19226 Hz
DEFAULT_PREAMBLE_LENGTH = 4
DEFAULT_SYNC_WORD = bytes([0x2D, 0xD4])
DEFAULT_TX_POWER_DBM = 14   # PaLevel 0x7C: PA1+PA2, output power 0x1C
PA_LEVEL_REGISTER_VALUE = 0x7C

# RX / AFC bandwidth: DCC cutoff 0.125%, mantissa 20, exponent 4 -> 25 kHz
RX_BW_REGISTER_VALUE = 0xEC
REG_RX_BW = 0x19
REG_AFC_BW = 0x1A
REG_VERSION = 0x10

RFM69_EXPECTED_VERSION = 0x24
RFM69_MAX_PAYLOAD = 60      # FIFO limit for the body once RadioHead headers are added
RFM69_SPI_BAUDRATE = 2000000

# Adafruit RFM69HCW bonnet wiring (Blinka board pin names)
BONNET_PIN_CS = "CE1"       # BCM 7
BONNET_PIN_RESET = "D25"
BONNET_OLED_ADDRESS = 0x3C
BONNET_OLED_WIDTH = 128
BONNET_OLED_HEIGHT = 32

# GPS
GPS_BAUDRATE = 9600
