"""
Rover Ground Station - Command Uplink
Queues command sequences and delivers them when the rover is ready

The rover only listens for commands after it has been told, in a
TelemetryAck, that commands are waiting and has answered CommandReady.
Commands of a sequence are then sent one at a time, each waiting for its
CommandAck; the last one carries sequence_complete.
"""

import logging
import time
import threading
from collections import deque
from dataclasses import dataclass, field
from enum import IntEnum, auto
from typing import Callable, Deque, Dict, List, Optional

from rover_gs.common.errors import ProtocolError, ReceiveError, SendError
from rover_gs.common.protocol import CommandMessage, CommandReady, encode_string

logger = logging.getLogger(__name__)


class CommandStatus(IntEnum):
    """Status of a command sequence"""
    QUEUED = auto()
    SENDING = auto()
    ACKED = auto()
    REJECTED = auto()   # rover answered CommandAck with ack=False
    FAILED = auto()     # transport failure / no ACK
    CANCELLED = auto()


FINAL_STATUSES = (CommandStatus.ACKED, CommandStatus.REJECTED,
                  CommandStatus.FAILED, CommandStatus.CANCELLED)


@dataclass
class CommandSequence:
    """A list of commands delivered to the rover in one command window"""
    sequence_id: int
    commands: List[str]
    status: CommandStatus = CommandStatus.QUEUED
    created_at: float = field(default_factory=time.time)
    completed_at: Optional[float] = None
    acked_count: int = 0
    error: Optional[str] = None
    callback: Optional[Callable[['CommandSequence'], None]] = None

    def to_dict(self) -> Dict:
        return {
            'id': self.sequence_id,
            'commands': list(self.commands),
            'status': self.status.name,
            'created_at': self.created_at,
            'completed_at': self.completed_at,
            'acked_count': self.acked_count,
            'error': self.error,
        }


class CommandQueue:
    """
    Thread-safe FIFO of command sequences

    The web interface enqueues, the station's radio loop dequeues.
    """

    def __init__(self, max_command_length: int, max_size: int = 100, history_size: int = 100):
        """
        Initialize command queue

        Args:
            max_command_length: Longest command that fits a single frame
            max_size: Maximum queued sequences
            history_size: Finished sequences to remember
        """
        self.max_command_length = max_command_length
        self.max_size = max_size

        self._queue: Deque[CommandSequence] = deque()
        self._all: Dict[int, CommandSequence] = {}
        self.history: Deque[CommandSequence] = deque(maxlen=history_size)
        self._next_id = 1
        self._lock = threading.Lock()

        self.stats = {
            'sequences_queued': 0,
            'sequences_acked': 0,
            'sequences_rejected': 0,
            'sequences_failed': 0,
            'sequences_cancelled': 0,
        }

    def validate(self, command: str):
        """Raise ValueError if command cannot be sent"""
        if not isinstance(command, str) or not command:
            raise ValueError("Command must be a non-empty string")
        try:
            encode_string(command)
        except ProtocolError as e:
            raise ValueError(e.message) from e
        if len(command) > self.max_command_length:
            raise ValueError(
                f"Command too long: {len(command)} > {self.max_command_length} characters"
            )

    def enqueue(
        self,
        commands: List[str],
        callback: Optional[Callable[[CommandSequence], None]] = None
    ) -> CommandSequence:
        """
        Queue a command sequence

        Raises:
            ValueError: Empty sequence, invalid command or queue full
        """
        if isinstance(commands, str):
            commands = [commands]
        if not commands:
            raise ValueError("Command sequence is empty")
        for command in commands:
            self.validate(command)

        with self._lock:
            if len(self._queue) >= self.max_size:
                raise ValueError("Command queue is full")
            sequence = CommandSequence(
                sequence_id=self._next_id,
                commands=list(commands),
                callback=callback,
            )
            self._next_id += 1
            self._queue.append(sequence)
            self._all[sequence.sequence_id] = sequence
            self.stats['sequences_queued'] += 1

        logger.info(f"Queued command sequence {sequence.sequence_id}: {sequence.commands}")
        return sequence

    def has_pending(self) -> bool:
        """True when a sequence is waiting for the rover"""
        with self._lock:
            return bool(self._queue)

    def peek(self) -> Optional[CommandSequence]:
        with self._lock:
            return self._queue[0] if self._queue else None

    def next_sequence(self) -> Optional[CommandSequence]:
        """Take the oldest queued sequence and mark it SENDING"""
        with self._lock:
            if not self._queue:
                return None
            sequence = self._queue.popleft()
            sequence.status = CommandStatus.SENDING
            return sequence

    def cancel(self, sequence_id: int) -> bool:
        """Cancel a sequence that has not been sent yet"""
        with self._lock:
            sequence = self._all.get(sequence_id)
            if sequence is None or sequence.status != CommandStatus.QUEUED:
                return False
            self._queue.remove(sequence)
        self.finish(sequence, CommandStatus.CANCELLED)
        return True

    def finish(self, sequence: CommandSequence, status: CommandStatus, error: Optional[str] = None):
        """Move a sequence to a final status and fire its callback"""
        with self._lock:
            sequence.status = status
            sequence.error = error
            sequence.completed_at = time.time()
            if len(self.history) == self.history.maxlen:
                dropped = self.history[0]
                self._all.pop(dropped.sequence_id, None)
            self.history.append(sequence)
            self.stats[f'sequences_{status.name.lower()}'] += 1

        if sequence.callback:
            try:
                sequence.callback(sequence)
            except Exception as e:
                logger.error(f"Command callback error: {e}")

    def get(self, sequence_id: int) -> Optional[CommandSequence]:
        with self._lock:
            return self._all.get(sequence_id)

    def list(self) -> List[CommandSequence]:
        """All known sequences, oldest first"""
        with self._lock:
            return list(self._all.values())

    def size(self) -> int:
        with self._lock:
            return len(self._queue)

    def get_stats(self) -> Dict:
        with self._lock:
            return {**self.stats, 'pending': len(self._queue)}


class CommandUplink:
    """
    Delivers queued sequences over a RoverLink

    Features:
    - One CommandMessage per command, last one flagged sequence_complete
    - ACK tracking per command
    - Optional retransmission (off by default: a lost ACK would make the
      rover run the command twice)
    """

    def __init__(
        self,
        link,
        queue: CommandQueue,
        max_retries: int = 0,
        on_update: Optional[Callable[[CommandSequence], None]] = None
    ):
        """
        Initialize command uplink

        Args:
            link: RoverLink used to send
            queue: Source of command sequences
            max_retries: Retransmissions per command
            on_update: Called whenever a sequence changes status
        """
        self.link = link
        self.queue = queue
        self.max_retries = max_retries
        self.on_update = on_update

        self.stats = {
            'commands_sent': 0,
            'commands_acked': 0,
            'commands_rejected': 0,
            'retransmissions': 0,
            'not_ready': 0,
        }

    def handle_ready(self, ready_msg: CommandReady) -> Optional[CommandSequence]:
        """
        Handle CommandReady from the rover

        Returns:
            The sequence that was processed, or None if nothing was sent
        """
        if not ready_msg.ready:
            self.stats['not_ready'] += 1
            logger.warning("Rover not ready for commands")
            return None

        sequence = self.queue.next_sequence()
        if sequence is None:
            logger.info("Rover ready but no commands queued")
            return None

        logger.info(f"Sending command sequence {sequence.sequence_id} ({len(sequence.commands)} commands)")
        self._notify(sequence)

        status, error = self._send_sequence(sequence)
        self.queue.finish(sequence, status, error)

        if status == CommandStatus.ACKED:
            logger.info(f"Command sequence {sequence.sequence_id} acknowledged")
        else:
            logger.error(f"Command sequence {sequence.sequence_id} {status.name}: {error}")

        self._notify(sequence)
        return sequence

    def _send_sequence(self, sequence: CommandSequence):
        last = len(sequence.commands) - 1
        for index, command in enumerate(sequence.commands):
            message = CommandMessage(sequence_complete=(index == last), command=command)
            try:
                ack = self._send_with_retry(message)
            except (SendError, ReceiveError) as e:
                return CommandStatus.FAILED, f"Command '{command}': {e.message}"

            if not ack.ack:
                self.stats['commands_rejected'] += 1
                return CommandStatus.REJECTED, f"Command '{command}' rejected by rover"

            self.stats['commands_acked'] += 1
            sequence.acked_count += 1

        return CommandStatus.ACKED, None

    def _send_with_retry(self, message: CommandMessage):
        attempt = 0
        while True:
            try:
                self.stats['commands_sent'] += 1
                return self.link.send(message)
            except (SendError, ReceiveError) as e:
                if attempt >= self.max_retries:
                    raise
                attempt += 1
                self.stats['retransmissions'] += 1
                logger.warning(f"Retrying command '{message.command}' (attempt {attempt}): {e.message}")

    def _notify(self, sequence: CommandSequence):
        if self.on_update:
            try:
                self.on_update(sequence)
            except Exception as e:
                logger.error(f"Command update callback error: {e}")

    def get_stats(self) -> Dict:
        return {**self.stats, **self.queue.get_stats()}
