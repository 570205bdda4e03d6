"""
Courier - Connection State Machine for the client's relay connection.

Registration lifecycle:

    DISCONNECTED --connect--> CONNECTING --stream open--> REGISTERING
    REGISTERING --welcome--> CONNECTED --lost--> DISCONNECTED

Losing the relay is terminal for the session: keys are discarded and a
new connect starts from DISCONNECTED with a new identity.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Callable, Dict, List, Optional

from .constants import STATE_HISTORY_SIZE

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Connection states of a participant."""

    DISCONNECTED = auto()  # No relay connection
    CONNECTING = auto()  # Generating identity and opening the stream
    REGISTERING = auto()  # register sent, waiting for welcome
    CONNECTED = auto()  # welcome received
    CLOSED = auto()  # Closed on request
    ERROR = auto()  # Connect or registration failed


class ConnectionEvent(Enum):
    """Events that trigger state transitions."""

    CONNECT_REQUESTED = auto()
    TRANSPORT_OPENED = auto()
    WELCOME_RECEIVED = auto()
    CONNECTION_LOST = auto()
    CLOSE_REQUESTED = auto()
    ERROR_OCCURRED = auto()
    RESET = auto()


@dataclass
class StateTransition:
    """Represents a state transition."""

    from_state: ConnectionState
    event: ConnectionEvent
    to_state: ConnectionState
    timestamp: float = field(default_factory=time.time)


class ConnectionStateMachine:
    """
    Finite state machine for the relay connection.

    Enforces valid transitions, keeps a short history and notifies
    callbacks on connect and disconnect.
    """

    TRANSITIONS: Dict[ConnectionState, Dict[ConnectionEvent, ConnectionState]] = {
        ConnectionState.DISCONNECTED: {
            ConnectionEvent.CONNECT_REQUESTED: ConnectionState.CONNECTING,
        },
        ConnectionState.CONNECTING: {
            ConnectionEvent.TRANSPORT_OPENED: ConnectionState.REGISTERING,
            ConnectionEvent.ERROR_OCCURRED: ConnectionState.ERROR,
            ConnectionEvent.CLOSE_REQUESTED: ConnectionState.CLOSED,
        },
        ConnectionState.REGISTERING: {
            ConnectionEvent.WELCOME_RECEIVED: ConnectionState.CONNECTED,
            ConnectionEvent.CONNECTION_LOST: ConnectionState.DISCONNECTED,
            ConnectionEvent.ERROR_OCCURRED: ConnectionState.ERROR,
            ConnectionEvent.CLOSE_REQUESTED: ConnectionState.CLOSED,
        },
        ConnectionState.CONNECTED: {
            ConnectionEvent.CONNECTION_LOST: ConnectionState.DISCONNECTED,
            ConnectionEvent.ERROR_OCCURRED: ConnectionState.ERROR,
            ConnectionEvent.CLOSE_REQUESTED: ConnectionState.CLOSED,
        },
        ConnectionState.ERROR: {
            ConnectionEvent.RESET: ConnectionState.DISCONNECTED,
            ConnectionEvent.CLOSE_REQUESTED: ConnectionState.CLOSED,
        },
        ConnectionState.CLOSED: {
            ConnectionEvent.RESET: ConnectionState.DISCONNECTED,
        },
    }

    def __init__(self, initial_state: ConnectionState = ConnectionState.DISCONNECTED):
        self.current_state = initial_state
        self.previous_state: Optional[ConnectionState] = None
        self.state_entry_time = time.time()
        self.error_message: Optional[str] = None
        self.transition_history: List[StateTransition] = []

        # Callbacks
        self.on_state_change: Optional[Callable[[ConnectionState, ConnectionState], None]] = None
        self.on_connected: Optional[Callable[[], None]] = None
        self.on_disconnected: Optional[Callable[[], None]] = None

    def transition(self, event: ConnectionEvent, error_msg: Optional[str] = None) -> bool:
        """
        Attempt state transition based on event.

        Returns:
            True if transition successful, False otherwise
        """
        if not self.is_valid_transition(self.current_state, event):
            logger.warning(f"Invalid transition: {self.current_state.name} + {event.name}")
            return False

        new_state = self.TRANSITIONS[self.current_state][event]

        if event == ConnectionEvent.ERROR_OCCURRED:
            self.error_message = error_msg or "Unknown error"
        elif new_state == ConnectionState.CONNECTED:
            self.error_message = None

        old_state = self.current_state
        self.previous_state = old_state
        self.current_state = new_state
        self.state_entry_time = time.time()

        self.transition_history.append(StateTransition(old_state, event, new_state))
        if len(self.transition_history) > STATE_HISTORY_SIZE:
            self.transition_history = self.transition_history[-STATE_HISTORY_SIZE:]

        logger.info(f"State transition: {old_state.name} -> {new_state.name} (event: {event.name})")

        if self.on_state_change:
            try:
                self.on_state_change(old_state, new_state)
            except Exception as e:
                logger.error(f"State change callback error: {e}", exc_info=True)

        if new_state == ConnectionState.CONNECTED and self.on_connected:
            try:
                self.on_connected()
            except Exception as e:
                logger.error(f"Connected callback error: {e}", exc_info=True)

        if (
            old_state == ConnectionState.CONNECTED
            and new_state != ConnectionState.CONNECTED
            and self.on_disconnected
        ):
            try:
                self.on_disconnected()
            except Exception as e:
                logger.error(f"Disconnected callback error: {e}", exc_info=True)

        return True

    def is_valid_transition(self, from_state: ConnectionState, event: ConnectionEvent) -> bool:
        return from_state in self.TRANSITIONS and event in self.TRANSITIONS[from_state]

    def get_state(self) -> ConnectionState:
        return self.current_state

    def get_time_in_state(self) -> float:
        """Get time spent in current state (seconds)."""
        return time.time() - self.state_entry_time

    def is_connected(self) -> bool:
        return self.current_state == ConnectionState.CONNECTED

    def is_connecting(self) -> bool:
        return self.current_state in (ConnectionState.CONNECTING, ConnectionState.REGISTERING)

    def get_history(self, count: int = 10) -> List[StateTransition]:
        return self.transition_history[-count:]

    def __repr__(self) -> str:
        return (
            f"ConnectionStateMachine(state={self.current_state.name}, "
            f"time_in_state={self.get_time_in_state():.1f}s)"
        )
