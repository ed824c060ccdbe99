"""
Rover Ground Station Protocol Definitions
Message structures and serialization/deserialization

Every message body starts with its MessageType byte. On air the body is
preceded by the RadioHead length byte and TO, FROM, ID, FLAGS header, which
the radio layer adds (see build_frame / parse_frame for the raw layout).
All multi-byte fields are little-endian to match the rover's AVR firmware.
"""

import struct
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Dict, Optional, Tuple, Type, Union

from .constants import (
    MessageType, MESSAGE_TYPE_NAMES, MESSAGE_UNKNOWN,
    RH_PREFIX_SIZE, RH_DEFAULT_TO, RH_DEFAULT_FROM, RH_DEFAULT_ID, RH_DEFAULT_FLAGS,
    MAX_FRAME_SIZE_ENCRYPTED, MAX_FRAME_SIZE_PLAIN,
    TIMESTAMP_SIZE, LOCATION_SIZE, TELEMETRY_FIXED_SIZE,
)
from .errors import ProtocolError


def message_type_name(message_id: int) -> str:
    """Get the display name for a message id"""
    try:
        return MESSAGE_TYPE_NAMES[MessageType(message_id)]
    except ValueError:
        return MESSAGE_UNKNOWN


# === Field helpers ===

def encode_string(s: str) -> bytes:
    """
    Encode a string as NUL-terminated ASCII

    The rover only understands 7-bit ASCII; anything else would be
    misinterpreted on the other end, so it is refused here.
    """
    try:
        encoded = s.encode('ascii')
    except UnicodeEncodeError as e:
        raise ProtocolError(f"String is not ASCII: {s!r}") from e
    if b'\x00' in encoded:
        raise ProtocolError(f"String contains NUL: {s!r}")
    return encoded + b'\x00'


def decode_string(data: bytes) -> str:
    """Decode a NUL-terminated string (or up to end of buffer)"""
    return data.split(b'\x00', 1)[0].decode('ascii', errors='replace')


def encode_bool(b: bool) -> bytes:
    return b'\x01' if b else b'\x00'


def decode_bool(byte: int) -> bool:
    return byte > 0


def _pack(fmt: str, *values) -> bytes:
    try:
        return struct.pack(fmt, *values)
    except struct.error as e:
        raise ProtocolError(f"Value out of range for '{fmt}': {values}") from e


# === Shared structures ===

@dataclass
class RoverTimestamp:
    """Wall clock time of day, 3 bytes"""
    hour: int = 0
    minute: int = 0
    second: int = 0

    @classmethod
    def now(cls) -> 'RoverTimestamp':
        """Current local time"""
        t = datetime.now()
        return cls(hour=t.hour, minute=t.minute, second=t.second)

    def serialize(self) -> bytes:
        return _pack('<BBB', self.hour, self.minute, self.second)

    @classmethod
    def deserialize(cls, data: bytes) -> 'RoverTimestamp':
        if len(data) < TIMESTAMP_SIZE:
            raise ProtocolError(f"Timestamp too short: {len(data)} bytes")
        hour, minute, second = struct.unpack('<BBB', data[:TIMESTAMP_SIZE])
        return cls(hour=hour, minute=minute, second=second)

    def __str__(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}:{self.second:02d}"


@dataclass
class RoverLocation:
    """Rover GPS / compass data, 19 bytes"""
    gps_lat: float = 0.0       # degrees
    gps_long: float = 0.0      # degrees
    gps_alt: float = 0.0       # meters
    gps_speed: float = 0.0     # m/s
    gps_sats: int = 0
    mag_hdg: int = 0           # degrees magnetic

    def serialize(self) -> bytes:
        return _pack(
            '<ffffBH',
            self.gps_lat,
            self.gps_long,
            self.gps_alt,
            self.gps_speed,
            self.gps_sats,
            self.mag_hdg,
        )

    @classmethod
    def deserialize(cls, data: bytes) -> 'RoverLocation':
        if len(data) < LOCATION_SIZE:
            raise ProtocolError(f"Location too short: {len(data)} bytes")
        lat, lon, alt, speed, sats, hdg = struct.unpack('<ffffBH', data[:LOCATION_SIZE])
        return cls(
            gps_lat=lat,
            gps_long=lon,
            gps_alt=alt,
            gps_speed=speed,
            gps_sats=sats,
            mag_hdg=hdg,
        )


# === Messages ===

class RoverMessage:
    """Base for all messages exchanged with the rover"""
    MESSAGE_TYPE: MessageType
    MIN_SIZE: int = 1 + TIMESTAMP_SIZE

    @classmethod
    def type_name(cls) -> str:
        return MESSAGE_TYPE_NAMES[cls.MESSAGE_TYPE]

    def serialize(self) -> bytes:
        """Serialize to a message body (type byte first)"""
        return bytes([self.MESSAGE_TYPE]) + self._serialize_fields()

    def _serialize_fields(self) -> bytes:
        raise NotImplementedError

    @classmethod
    def deserialize(cls, data: bytes) -> 'RoverMessage':
        """Deserialize a message body of this type"""
        if not data:
            raise ProtocolError("Empty message")
        if data[0] != cls.MESSAGE_TYPE:
            raise ProtocolError(
                f"Wrong message type: expected {cls.type_name()}, "
                f"got {message_type_name(data[0])}"
            )
        if len(data) < cls.MIN_SIZE:
            raise ProtocolError(
                f"{cls.type_name()} too short: {len(data)} < {cls.MIN_SIZE} bytes"
            )
        return cls._deserialize_fields(data[1:])

    @classmethod
    def _deserialize_fields(cls, data: bytes) -> 'RoverMessage':
        raise NotImplementedError

    def to_dict(self) -> Dict:
        d = asdict(self)
        d['type'] = self.type_name()
        if 'timestamp' in d:
            d['timestamp'] = str(self.timestamp)
        return d


@dataclass
class TelemetryMessage(RoverMessage):
    """
    Sent by the rover to report location and status.

    Max status length is 31 ASCII chars with encryption turned on,
    222 with it off.
    """
    MESSAGE_TYPE = MessageType.TELEMETRY
    MIN_SIZE = TELEMETRY_FIXED_SIZE

    timestamp: RoverTimestamp = field(default_factory=RoverTimestamp.now)
    location: RoverLocation = field(default_factory=RoverLocation)
    signal_strength: int = 0    # dBm as seen by the rover
    free_memory: int = 0        # bytes
    status: str = ""

    def _serialize_fields(self) -> bytes:
        return (
            self.timestamp.serialize()
            + self.location.serialize()
            + _pack('<hH', self.signal_strength, self.free_memory)
            + encode_string(self.status)
        )

    @classmethod
    def _deserialize_fields(cls, data: bytes) -> 'TelemetryMessage':
        loc_end = TIMESTAMP_SIZE + LOCATION_SIZE
        signal_strength, free_memory = struct.unpack('<hH', data[loc_end:loc_end + 4])
        return cls(
            timestamp=RoverTimestamp.deserialize(data[:TIMESTAMP_SIZE]),
            location=RoverLocation.deserialize(data[TIMESTAMP_SIZE:loc_end]),
            signal_strength=signal_strength,
            free_memory=free_memory,
            status=decode_string(data[loc_end + 4:]),
        )


@dataclass
class TelemetryAck(RoverMessage):
    """
    Sent by the station to acknowledge a TelemetryMessage and optionally
    tell the rover to switch to command mode (command_waiting).
    """
    MESSAGE_TYPE = MessageType.TELEMETRY_ACK
    MIN_SIZE = 1 + TIMESTAMP_SIZE + 2

    timestamp: RoverTimestamp = field(default_factory=RoverTimestamp.now)
    ack: bool = True
    command_waiting: bool = False

    def _serialize_fields(self) -> bytes:
        return self.timestamp.serialize() + encode_bool(self.ack) + encode_bool(self.command_waiting)

    @classmethod
    def _deserialize_fields(cls, data: bytes) -> 'TelemetryAck':
        return cls(
            timestamp=RoverTimestamp.deserialize(data),
            ack=decode_bool(data[TIMESTAMP_SIZE]),
            command_waiting=decode_bool(data[TIMESTAMP_SIZE + 1]),
        )


@dataclass
class CommandReady(RoverMessage):
    """Sent by the rover when it is ready to receive commands"""
    MESSAGE_TYPE = MessageType.COMMAND_READY
    MIN_SIZE = 1 + TIMESTAMP_SIZE + 1

    timestamp: RoverTimestamp = field(default_factory=RoverTimestamp.now)
    ready: bool = False

    def _serialize_fields(self) -> bytes:
        return self.timestamp.serialize() + encode_bool(self.ready)

    @classmethod
    def _deserialize_fields(cls, data: bytes) -> 'CommandReady':
        return cls(
            timestamp=RoverTimestamp.deserialize(data),
            ready=decode_bool(data[TIMESTAMP_SIZE]),
        )


@dataclass
class CommandMessage(RoverMessage):
    """
    Sent by the station to deliver one command of a sequence.
    sequence_complete marks the last command of the sequence.
    """
    MESSAGE_TYPE = MessageType.COMMAND
    MIN_SIZE = 1 + TIMESTAMP_SIZE + 1

    timestamp: RoverTimestamp = field(default_factory=RoverTimestamp.now)
    sequence_complete: bool = False
    command: str = ""

    def _serialize_fields(self) -> bytes:
        return (
            self.timestamp.serialize()
            + encode_bool(self.sequence_complete)
            + encode_string(self.command)
        )

    @classmethod
    def _deserialize_fields(cls, data: bytes) -> 'CommandMessage':
        return cls(
            timestamp=RoverTimestamp.deserialize(data),
            sequence_complete=decode_bool(data[TIMESTAMP_SIZE]),
            command=decode_string(data[TIMESTAMP_SIZE + 1:]),
        )


@dataclass
class CommandAck(RoverMessage):
    """Sent by the rover to acknowledge a CommandMessage"""
    MESSAGE_TYPE = MessageType.COMMAND_ACK
    MIN_SIZE = 1 + TIMESTAMP_SIZE + 1

    timestamp: RoverTimestamp = field(default_factory=RoverTimestamp.now)
    ack: bool = False

    def _serialize_fields(self) -> bytes:
        return self.timestamp.serialize() + encode_bool(self.ack)

    @classmethod
    def _deserialize_fields(cls, data: bytes) -> 'CommandAck':
        return cls(
            timestamp=RoverTimestamp.deserialize(data),
            ack=decode_bool(data[TIMESTAMP_SIZE]),
        )


# Message type mapping
MESSAGE_CLASSES: Dict[MessageType, Type[RoverMessage]] = {
    MessageType.TELEMETRY: TelemetryMessage,
    MessageType.TELEMETRY_ACK: TelemetryAck,
    MessageType.COMMAND_READY: CommandReady,
    MessageType.COMMAND: CommandMessage,
    MessageType.COMMAND_ACK: CommandAck,
}


def decode_message(data: bytes) -> RoverMessage:
    """
    Decode a message body of any known type

    Raises:
        ProtocolError: If the body is empty, too short or of unknown type
    """
    if not data:
        raise ProtocolError("Empty message")
    try:
        message_cls = MESSAGE_CLASSES[MessageType(data[0])]
    except ValueError:
        raise ProtocolError(f"Unknown message type {data[0]}: {MESSAGE_UNKNOWN}") from None
    return message_cls.deserialize(data)


def decode_expected(data: bytes, message_cls: Type[RoverMessage]) -> RoverMessage:
    """Decode a message body that must be of the given type"""
    return message_cls.deserialize(data)


# === RadioHead framing ===

@dataclass
class RadioHeadHeader:
    """RadioHead TO, FROM, ID, FLAGS header"""
    to: int = RH_DEFAULT_TO
    from_: int = RH_DEFAULT_FROM
    id: int = RH_DEFAULT_ID
    flags: int = RH_DEFAULT_FLAGS

    def serialize(self) -> bytes:
        return _pack('<BBBB', self.to, self.from_, self.id, self.flags)

    @classmethod
    def deserialize(cls, data: bytes) -> 'RadioHeadHeader':
        if len(data) < 4:
            raise ProtocolError(f"RadioHead header too short: {len(data)} bytes")
        return cls(to=data[0], from_=data[1], id=data[2], flags=data[3])


def build_frame(
    message: Union[RoverMessage, bytes],
    header: Optional[RadioHeadHeader] = None
) -> bytes:
    """
    Build a raw frame: LEN, TO, FROM, ID, FLAGS, body

    The length byte counts header and body, not itself.
    """
    body = message.serialize() if isinstance(message, RoverMessage) else bytes(message)
    header = header or RadioHeadHeader()
    contents = header.serialize() + body
    if len(contents) + 1 > MAX_FRAME_SIZE_PLAIN:
        raise ProtocolError(f"Frame too large: {len(contents) + 1} > {MAX_FRAME_SIZE_PLAIN}")
    return bytes([len(contents)]) + contents


def parse_frame(frame: bytes) -> Tuple[RadioHeadHeader, bytes]:
    """
    Split a raw frame into header and message body

    Trailing bytes past the length byte (FIFO padding) are ignored.
    """
    if len(frame) < RH_PREFIX_SIZE:
        raise ProtocolError(f"Frame too short: {len(frame)} bytes")
    length = frame[0]
    if length < 4 or len(frame) < length + 1:
        raise ProtocolError(f"Bad frame length byte {length} for {len(frame)} bytes")
    header = RadioHeadHeader.deserialize(frame[1:RH_PREFIX_SIZE])
    return header, bytes(frame[RH_PREFIX_SIZE:length + 1])


def frame_size(message: RoverMessage) -> int:
    """Size of the message on air including the RadioHead prefix"""
    return RH_PREFIX_SIZE + len(message.serialize())


def max_frame_size(encrypted: bool) -> int:
    """Largest frame the rover accepts"""
    return MAX_FRAME_SIZE_ENCRYPTED if encrypted else MAX_FRAME_SIZE_PLAIN


def max_string_length(message_cls: Type[RoverMessage], encrypted: bool) -> int:
    """
    Longest status/command string that fits a single frame

    Args:
        message_cls: TelemetryMessage or CommandMessage
        encrypted: Whether AES encryption is on
    """
    if message_cls is TelemetryMessage:
        fixed = TELEMETRY_FIXED_SIZE
    elif message_cls is CommandMessage:
        fixed = CommandMessage.MIN_SIZE
    else:
        raise ValueError(f"{message_cls.__name__} has no string field")
    # minus the terminating NUL
    return max_frame_size(encrypted) - RH_PREFIX_SIZE - fixed - 1
