"""
Rover Ground Station - Link Module
Send / receive protocol with the rover, including acknowledgements

ACK logic is encapsulated here: a CommandMessage expects a CommandAck back,
and every received TelemetryMessage is answered with a TelemetryAck.
"""

import logging
import os
import time
import threading
from dataclasses import dataclass, asdict
from typing import Callable, Dict, Optional, Tuple, Type, Union

from rover_gs.common.constants import RH_PREFIX_SIZE
from rover_gs.common.errors import ProtocolError, RadioError, ReceiveError, SendError
from rover_gs.common.protocol import (
    RoverMessage, TelemetryMessage, TelemetryAck, CommandMessage, CommandAck,
    decode_message,
)
from rover_gs.ground.config import GroundConfig
from rover_gs.ground.radio import Radio

logger = logging.getLogger(__name__)

ExpectedType = Union[Type[RoverMessage], Tuple[Type[RoverMessage], ...]]


@dataclass
class LinkStats:
    """Link statistics"""
    packets_received: int = 0
    packets_valid: int = 0
    packets_invalid: int = 0
    unexpected_messages: int = 0
    timeouts: int = 0
    messages_sent: int = 0
    send_failures: int = 0
    telemetry_acks_sent: int = 0
    last_rssi: int = 0
    last_packet_time: float = 0


def _type_names(expected: ExpectedType) -> str:
    if isinstance(expected, tuple):
        return " or ".join(cls.type_name() for cls in expected)
    return expected.type_name()


class RoverLink:
    """
    Message exchange with the rover over a Radio

    Not thread-safe: one thread (the station's radio loop) owns the link.
    """

    def __init__(
        self,
        radio: Radio,
        config: GroundConfig,
        command_waiting: Optional[Callable[[], bool]] = None,
        on_message: Optional[Callable[[RoverMessage, int], None]] = None,
    ):
        """
        Initialize rover link

        Args:
            radio: Initialized radio
            config: Ground station configuration
            command_waiting: Returns True when commands are queued; sets the
                             command_waiting flag of outgoing TelemetryAcks
            on_message: Callback for every decoded message (message, rssi)
        """
        self.radio = radio
        self.config = config
        self.command_waiting = command_waiting
        self.on_message = on_message

        self.stats = LinkStats()
        self.last_telemetry_ack: Optional[TelemetryAck] = None

        self.max_frame_size = min(config.max_frame_size, radio.max_payload + RH_PREFIX_SIZE)

        self._log_raw = config.log_raw_packets
        self._raw_log_path = os.path.join(config.log_path, "raw_packets.log")
        self._raw_log_lock = threading.Lock()

    # === Send ===

    def send(self, message: RoverMessage) -> Optional[CommandAck]:
        """
        Send a message to the rover, waiting for its ACK if one is due

        Returns:
            The CommandAck for a CommandMessage, otherwise None

        Raises:
            SendError: Message too long or the radio failed
            ReceiveError: No (or the wrong) ACK arrived
        """
        try:
            payload = message.serialize()
        except ProtocolError as e:
            raise SendError(f"Cannot serialize {message.type_name()}: {e.message}") from e

        if len(payload) + RH_PREFIX_SIZE > self.max_frame_size:
            raise SendError(
                f"Cannot send: message too long! {len(payload) + RH_PREFIX_SIZE} > "
                f"{self.max_frame_size} bytes: {message}"
            )

        try:
            sent = self.radio.send(payload)
        except RadioError as e:
            self.stats.send_failures += 1
            raise SendError(f"Error while sending message: {e.message}") from e

        if not sent:
            self.stats.send_failures += 1
            raise SendError("Error while sending message: radio did not finish transmitting")

        self.stats.messages_sent += 1
        logger.debug(f"TX {message.type_name()} ({len(payload)} bytes)")
        if self._log_raw:
            self._log_raw_packet("TX", payload, 0)

        if isinstance(message, CommandMessage):
            return self.receive(CommandAck, self.config.ack_timeout_sec)
        return None

    # === Receive ===

    def receive(self, expected: ExpectedType, timeout: float) -> RoverMessage:
        """
        Receive the next message from the rover

        A TelemetryMessage is acknowledged before anything else happens,
        even if it is not what the caller expected.

        Args:
            expected: Message class (or tuple of classes) the caller wants
            timeout: Seconds to wait for a packet

        Raises:
            ReceiveError: Timeout, undecodable packet or unexpected type
            SendError: The TelemetryAck could not be sent
        """
        payload = self._wait_for_packet(timeout)

        rssi = self.radio.last_rssi
        self.stats.packets_received += 1
        self.stats.last_rssi = rssi
        self.stats.last_packet_time = time.time()
        logger.info(f"Received message from rover; signal strength {rssi}")

        if self._log_raw:
            self._log_raw_packet("RX", payload, rssi)

        try:
            message = decode_message(payload)
        except ProtocolError as e:
            self.stats.packets_invalid += 1
            raise ReceiveError(f"Error while deserializing response: {e.message}") from e

        self.stats.packets_valid += 1
        logger.debug(f"RX {message.type_name()}: {message}")

        if self.on_message:
            try:
                self.on_message(message, rssi)
            except Exception as e:
                logger.error(f"Message callback error: {e}")

        if isinstance(message, TelemetryMessage):
            self._ack_telemetry()

        if not isinstance(message, expected):
            self.stats.unexpected_messages += 1
            raise ReceiveError(
                f"Wrong message type: expected {_type_names(expected)}, got {message.type_name()}",
                received=message
            )

        return message

    def _wait_for_packet(self, timeout: float) -> bytes:
        """Poll the radio every listen delay until a packet or timeout"""
        start = time.time()
        while True:
            try:
                payload = self.radio.receive(self.config.listen_delay_sec)
            except RadioError as e:
                raise ReceiveError(f"Error while waiting for RoverMessage: {e.message}") from e

            if payload:
                return payload

            if time.time() - start > timeout:
                self.stats.timeouts += 1
                raise ReceiveError("Timed out while waiting for RoverMessage.")

    def _ack_telemetry(self):
        """Answer a TelemetryMessage, advertising queued commands"""
        waiting = False
        if self.command_waiting:
            try:
                waiting = bool(self.command_waiting())
            except Exception as e:
                logger.error(f"command_waiting callback error: {e}")

        ack = TelemetryAck(ack=True, command_waiting=waiting)
        # Give the rover time to switch from TX to RX
        time.sleep(self.config.msg_delay_sec)
        self.send(ack)
        self.last_telemetry_ack = ack
        self.stats.telemetry_acks_sent += 1

    def _log_raw_packet(self, direction: str, payload: bytes, rssi: int):
        """Log raw packet to file"""
        try:
            with self._raw_log_lock, open(self._raw_log_path, 'a') as f:
                timestamp = time.strftime("%Y-%m-%d %H:%M:%S")
                f.write(f"{timestamp},{direction},{rssi},{len(payload)},{payload.hex()}\n")
        except OSError as e:
            logger.error(f"Raw packet log error: {e}")

    def get_stats(self) -> Dict:
        """Get link statistics"""
        stats = asdict(self.stats)
        stats['max_frame_size'] = self.max_frame_size
        return stats
