"""
Unit tests for the command queue and uplink.
"""

import pytest

from rover_gs.common.protocol import CommandAck, CommandMessage, CommandReady, decode_message
from rover_gs.ground.commands import CommandQueue, CommandStatus, CommandUplink
from rover_gs.ground.link import RoverLink


@pytest.fixture
def queue():
    return CommandQueue(max_command_length=53)


def rover_acks(*answers):
    """Responder answering each CommandMessage with the next ack value."""
    answers = list(answers)

    def _respond(payload):
        msg = decode_message(payload)
        if isinstance(msg, CommandMessage) and answers:
            return CommandAck(ack=answers.pop(0)).serialize()
        return None

    return _respond


class TestCommandQueue:
    """Tests for CommandQueue."""

    def test_enqueue(self, queue):
        seq = queue.enqueue(["FWD 10", "LEFT 90"])
        assert seq.sequence_id == 1
        assert seq.status == CommandStatus.QUEUED
        assert queue.has_pending()
        assert queue.size() == 1

    def test_single_string(self, queue):
        assert queue.enqueue("STOP").commands == ["STOP"]

    def test_ids_increase(self, queue):
        a = queue.enqueue(["A"])
        b = queue.enqueue(["B"])
        assert b.sequence_id == a.sequence_id + 1

    @pytest.mark.parametrize("commands", [[], [""], ["ok", ""], ["héllo"], ["X" * 54]])
    def test_invalid(self, queue, commands):
        with pytest.raises(ValueError):
            queue.enqueue(commands)
        assert not queue.has_pending()

    def test_full(self):
        queue = CommandQueue(max_command_length=53, max_size=1)
        queue.enqueue(["A"])
        with pytest.raises(ValueError):
            queue.enqueue(["B"])

    def test_fifo(self, queue):
        first = queue.enqueue(["A"])
        queue.enqueue(["B"])
        taken = queue.next_sequence()
        assert taken is first
        assert taken.status == CommandStatus.SENDING
        assert queue.size() == 1

    def test_next_sequence_empty(self, queue):
        assert queue.next_sequence() is None

    def test_cancel(self, queue):
        seq = queue.enqueue(["A"])
        assert queue.cancel(seq.sequence_id)
        assert seq.status == CommandStatus.CANCELLED
        assert not queue.has_pending()
        assert queue.get_stats()["sequences_cancelled"] == 1

    def test_cancel_after_sending(self, queue):
        """Only queued sequences can be cancelled."""
        seq = queue.enqueue(["A"])
        queue.next_sequence()
        assert not queue.cancel(seq.sequence_id)

    def test_cancel_unknown(self, queue):
        assert not queue.cancel(99)

    def test_get_and_list(self, queue):
        seq = queue.enqueue(["A"])
        assert queue.get(seq.sequence_id) is seq
        assert queue.get(42) is None
        assert queue.list() == [seq]

    def test_callback_on_finish(self, queue):
        done = []
        seq = queue.enqueue(["A"], callback=done.append)
        queue.finish(seq, CommandStatus.ACKED)
        assert done == [seq]
        assert seq.completed_at is not None
        assert list(queue.history) == [seq]

    def test_old_history_forgotten(self):
        """Sequences that fall out of the history are no longer looked up."""
        queue = CommandQueue(max_command_length=53, history_size=2)
        first, second, third = (queue.enqueue([c]) for c in "ABC")
        for _ in range(3):
            queue.finish(queue.next_sequence(), CommandStatus.ACKED)

        assert queue.get(first.sequence_id) is None
        assert queue.list() == [second, third]
        assert list(queue.history) == [second, third]

    def test_queued_sequences_kept(self):
        queue = CommandQueue(max_command_length=53, history_size=1)
        done = queue.enqueue(["A"])
        waiting = queue.enqueue(["B"])
        queue.finish(queue.next_sequence(), CommandStatus.ACKED)
        queue.cancel(queue.enqueue(["C"]).sequence_id)

        assert queue.get(done.sequence_id) is None
        assert queue.get(waiting.sequence_id) is waiting

    def test_to_dict(self, queue):
        d = queue.enqueue(["A", "B"]).to_dict()
        assert d["status"] == "QUEUED"
        assert d["commands"] == ["A", "B"]


class TestCommandUplink:
    """Tests for CommandUplink.handle_ready."""

    def test_sequence_delivered(self, config, fake_radio, queue):
        """Each command is sent in order, the last one flagged complete."""
        fake_radio.responder = rover_acks(True, True)
        uplink = CommandUplink(RoverLink(fake_radio, config), queue)
        seq = queue.enqueue(["FWD 10", "LEFT 90"])

        result = uplink.handle_ready(CommandReady(ready=True))

        assert result is seq
        assert seq.status == CommandStatus.ACKED
        assert seq.acked_count == 2
        sent = [decode_message(p) for p in fake_radio.sent]
        assert [m.command for m in sent] == ["FWD 10", "LEFT 90"]
        assert [m.sequence_complete for m in sent] == [False, True]
        assert not queue.has_pending()

    def test_not_ready(self, config, fake_radio, queue):
        """Nothing is sent and the sequence stays queued."""
        uplink = CommandUplink(RoverLink(fake_radio, config), queue)
        seq = queue.enqueue(["A"])

        assert uplink.handle_ready(CommandReady(ready=False)) is None

        assert fake_radio.sent == []
        assert seq.status == CommandStatus.QUEUED
        assert uplink.stats["not_ready"] == 1

    def test_nothing_queued(self, config, fake_radio, queue):
        uplink = CommandUplink(RoverLink(fake_radio, config), queue)
        assert uplink.handle_ready(CommandReady(ready=True)) is None
        assert fake_radio.sent == []

    def test_rejected_stops_sequence(self, config, fake_radio, queue):
        fake_radio.responder = rover_acks(True, False, True)
        uplink = CommandUplink(RoverLink(fake_radio, config), queue)
        seq = queue.enqueue(["A", "B", "C"])

        uplink.handle_ready(CommandReady(ready=True))

        assert seq.status == CommandStatus.REJECTED
        assert seq.acked_count == 1
        assert len(fake_radio.sent) == 2
        assert "'B'" in seq.error

    def test_missing_ack_fails(self, config, fake_radio, queue):
        uplink = CommandUplink(RoverLink(fake_radio, config), queue)
        seq = queue.enqueue(["A"])

        uplink.handle_ready(CommandReady(ready=True))

        assert seq.status == CommandStatus.FAILED
        assert "Timed out" in seq.error
        assert len(fake_radio.sent) == 1

    def test_retry(self, config, fake_radio, queue):
        """With retries on, a lost ACK causes one retransmission."""
        calls = {"n": 0}

        def flaky(payload):
            calls["n"] += 1
            if calls["n"] == 1:
                return None
            return CommandAck(ack=True).serialize()

        fake_radio.responder = flaky
        uplink = CommandUplink(RoverLink(fake_radio, config), queue, max_retries=1)
        seq = queue.enqueue(["A"])

        uplink.handle_ready(CommandReady(ready=True))

        assert seq.status == CommandStatus.ACKED
        assert len(fake_radio.sent) == 2
        assert uplink.stats["retransmissions"] == 1

    def test_on_update(self, config, fake_radio, queue):
        updates = []
        fake_radio.responder = rover_acks(True)
        uplink = CommandUplink(
            RoverLink(fake_radio, config), queue,
            on_update=lambda s: updates.append(s.status)
        )
        queue.enqueue(["A"])
        uplink.handle_ready(CommandReady(ready=True))
        assert updates == [CommandStatus.SENDING, CommandStatus.ACKED]
