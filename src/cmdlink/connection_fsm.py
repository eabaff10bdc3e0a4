"""
Cmdlink - Connection State Machine.

This module implements the finite state machine for a single connection:

    CONNECTING -> ESTABLISHED -> CLOSING -> CLOSED

CLOSED is terminal and reached exactly once. Transitions are guarded by a
lock because the receive thread and caller threads may both try to close
the same connection.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Lifecycle states of a connection."""

    CONNECTING = auto()  # Socket being opened or accepted
    ESTABLISHED = auto()  # Socket usable, receive loop running
    CLOSING = auto()  # Close in progress, socket being released
    CLOSED = auto()  # Terminal


class ConnectionEvent(Enum):
    """Events that trigger state transitions."""

    TCP_CONNECTED = auto()  # Socket connected or accepted
    CLOSE_REQUESTED = auto()  # Local close
    CONNECTION_LOST = auto()  # Peer closed or read failed
    ERROR_OCCURRED = auto()  # Framing, crypto or write fault
    CLOSED = auto()  # Socket released


@dataclass
class StateTransition:
    """Represents a state transition."""

    from_state: ConnectionState
    event: ConnectionEvent
    to_state: ConnectionState
    timestamp: float = field(default_factory=time.time)


class ConnectionStateMachine:
    """
    Finite state machine for the connection lifecycle.

    Enforces valid state transitions and records transition history.
    """

    TRANSITIONS: Dict[ConnectionState, Dict[ConnectionEvent, ConnectionState]] = {
        ConnectionState.CONNECTING: {
            ConnectionEvent.TCP_CONNECTED: ConnectionState.ESTABLISHED,
        },
        ConnectionState.ESTABLISHED: {
            ConnectionEvent.CLOSE_REQUESTED: ConnectionState.CLOSING,
            ConnectionEvent.CONNECTION_LOST: ConnectionState.CLOSING,
            ConnectionEvent.ERROR_OCCURRED: ConnectionState.CLOSING,
        },
        ConnectionState.CLOSING: {
            ConnectionEvent.CLOSED: ConnectionState.CLOSED,
        },
        ConnectionState.CLOSED: {},
    }

    def __init__(self, initial_state: ConnectionState = ConnectionState.CONNECTING, label: str = ""):
        self.current_state = initial_state
        self.previous_state: Optional[ConnectionState] = None
        self.state_entry_time = time.time()
        self.error_message: Optional[str] = None
        self.transition_history: List[StateTransition] = []
        self.label = label
        self._lock = threading.Lock()

    def transition(self, event: ConnectionEvent, error_msg: Optional[str] = None) -> bool:
        """
        Attempt state transition based on event.

        Returns:
            True if transition happened, False if the event is not valid
            in the current state
        """
        with self._lock:
            if not self.is_valid_transition(self.current_state, event):
                logger.debug(
                    f"Ignored transition{self._suffix()}: {self.current_state.name} + {event.name}"
                )
                return False

            old_state = self.current_state
            new_state = self.TRANSITIONS[old_state][event]

            if event == ConnectionEvent.ERROR_OCCURRED:
                self.error_message = error_msg or "Unknown error"

            self.previous_state = old_state
            self.current_state = new_state
            self.state_entry_time = time.time()
            self.transition_history.append(StateTransition(old_state, event, new_state))

        logger.debug(
            f"State transition{self._suffix()}: {old_state.name} -> {new_state.name} "
            f"(event: {event.name})"
        )

        return True

    def is_valid_transition(self, from_state: ConnectionState, event: ConnectionEvent) -> bool:
        return event in self.TRANSITIONS.get(from_state, {})

    def get_state(self) -> ConnectionState:
        return self.current_state

    def get_time_in_state(self) -> float:
        """Get time spent in current state (seconds)."""
        return time.time() - self.state_entry_time

    def is_established(self) -> bool:
        return self.current_state == ConnectionState.ESTABLISHED

    def is_closed(self) -> bool:
        return self.current_state == ConnectionState.CLOSED

    def get_statistics(self) -> Dict[str, Any]:
        """Get state machine statistics."""
        return {
            "current_state": self.current_state.name,
            "previous_state": self.previous_state.name if self.previous_state else None,
            "time_in_state": self.get_time_in_state(),
            "error_message": self.error_message,
            "total_transitions": len(self.transition_history),
        }

    def _suffix(self) -> str:
        return f" [{self.label}]" if self.label else ""

    def __repr__(self) -> str:
        return (
            f"ConnectionStateMachine(state={self.current_state.name}, "
            f"time_in_state={self.get_time_in_state():.1f}s)"
        )
