"""
Connection state machine for upstream MQTT broker connections.

disconnected is both the initial and the terminal state; a BrokerConnection
that gives up simply stays there until someone calls connect() again.
"""

from datetime import UTC, datetime
from typing import Any

from statemachine import State, StateMachine

from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


class BrokerConnectionStateMachine(StateMachine):
    """
    State machine for one (user, broker) connection.

    States:
    - disconnected: No underlying client session
    - connecting: A client session is opening
    - connected: The broker accepted the session

    Transitions:
    - disconnected → connecting: begin_connect
    - connecting → connected: connection_established
    - connecting → disconnected: connection_failed
    - connected → disconnected: connection_lost
    - connecting | connected → disconnected: shutdown (explicit disconnect)

    AI: Invalid transitions raise TransitionNotAllowed, so callers check the
    current state before firing an event.
    """

    disconnected = State("Disconnected", initial=True)
    connecting = State("Connecting")
    connected = State("Connected")

    begin_connect = disconnected.to(connecting)
    connection_established = connecting.to(connected)
    connection_failed = connecting.to(disconnected)
    connection_lost = connected.to(disconnected)
    shutdown = connecting.to(disconnected) | connected.to(disconnected)

    def __init__(self, connection_id: str):
        """
        Initialize connection state machine.

        Args:
            connection_id: Human readable connection key, "user:broker"
        """
        # Set attributes BEFORE super().__init__() because on_enter_state is called during init
        self.connection_id = connection_id
        self.last_connected_time: datetime | None = None
        self.total_attempts = 0
        self.total_connections = 0
        self.total_failures = 0
        self.total_disconnections = 0

        super().__init__()

    @property
    def state_id(self) -> str:
        return self.current_state.id

    def on_enter_state(self, state: State, event: Any = None, **kwargs) -> None:
        """Log every transition with the connection key."""
        logger.debug(
            "Broker connection state transition",
            connection_id=self.connection_id,
            trigger_event=str(event) if event else "initial",
            to_state=state.id,
        )

    def on_begin_connect(self) -> None:
        self.total_attempts += 1

    def on_connection_established(self) -> None:
        self.last_connected_time = datetime.now(UTC)
        self.total_connections += 1
        logger.info(
            "Broker connection established",
            connection_id=self.connection_id,
            total_connections=self.total_connections,
        )

    def on_connection_failed(self) -> None:
        self.total_failures += 1

    def on_connection_lost(self) -> None:
        self.total_disconnections += 1

    def on_shutdown(self) -> None:
        self.total_disconnections += 1

    def get_stats(self) -> dict[str, Any]:
        """
        Get connection statistics.

        Returns:
            Dictionary with current state and lifetime counters
        """
        return {
            "connection_id": self.connection_id,
            "state": self.current_state.id,
            "total_attempts": self.total_attempts,
            "total_connections": self.total_connections,
            "total_failures": self.total_failures,
            "total_disconnections": self.total_disconnections,
            "last_connected": self.last_connected_time.isoformat() if self.last_connected_time else None,
        }
