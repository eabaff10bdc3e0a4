"""
Unit tests for cmdlink.connection_fsm module.

Tests lifecycle transitions and the exactly-once close guarantee.
"""

import threading

from cmdlink.connection_fsm import ConnectionEvent, ConnectionState, ConnectionStateMachine


class TestTransitions:
    """Test valid and invalid transitions."""

    def test_happy_path(self):
        """Connecting -> Established -> Closing -> Closed."""
        fsm = ConnectionStateMachine()
        assert fsm.get_state() == ConnectionState.CONNECTING

        assert fsm.transition(ConnectionEvent.TCP_CONNECTED)
        assert fsm.is_established()

        assert fsm.transition(ConnectionEvent.CLOSE_REQUESTED)
        assert fsm.get_state() == ConnectionState.CLOSING

        assert fsm.transition(ConnectionEvent.CLOSED)
        assert fsm.is_closed()
        assert len(fsm.transition_history) == 3

    def test_closed_is_terminal(self):
        """No event leaves CLOSED."""
        fsm = ConnectionStateMachine(ConnectionState.CLOSED)
        for event in ConnectionEvent:
            assert fsm.transition(event) is False
        assert fsm.is_closed()

    def test_error_message_recorded(self):
        """ERROR_OCCURRED keeps its reason."""
        fsm = ConnectionStateMachine(ConnectionState.ESTABLISHED)
        fsm.transition(ConnectionEvent.ERROR_OCCURRED, "bad frame")
        stats = fsm.get_statistics()
        assert stats["error_message"] == "bad frame"
        assert stats["current_state"] == "CLOSING"


def test_only_one_closer_wins():
    """Concurrent close requests result in exactly one transition."""
    fsm = ConnectionStateMachine(ConnectionState.ESTABLISHED)
    results = []
    barrier = threading.Barrier(8)

    def close():
        barrier.wait()
        results.append(fsm.transition(ConnectionEvent.CONNECTION_LOST))

    threads = [threading.Thread(target=close) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(True) == 1


def test_every_event_drives_a_transition():
    """Each declared event is reachable from some state."""
    used = {event for table in ConnectionStateMachine.TRANSITIONS.values() for event in table}
    assert used == set(ConnectionEvent)
