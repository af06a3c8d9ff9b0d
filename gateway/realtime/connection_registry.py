"""
In-memory registry of broker connections keyed by (user_id, broker_id).

Every method is synchronous. get_or_create() checks, decides and mutates
without yielding to the event loop, so two callers can never both observe a
missing key and create two connections for it.
"""

from collections.abc import Callable
from typing import Any

from ..models.broker import BrokerEndpoint
from ..structured_logging.enhanced_logging_config import get_logger
from .broker_connection import BrokerConnection, ConnectionKey

logger = get_logger(__name__)

ConnectionFactory = Callable[[ConnectionKey, BrokerEndpoint], BrokerConnection]


class ConnectionRegistry:
    """Owns every BrokerConnection in the process; at most one per key."""

    def __init__(self, connection_factory: ConnectionFactory):
        """
        Args:
            connection_factory: Builds a new, not yet connected BrokerConnection
        """
        self._connection_factory = connection_factory
        self._connections: dict[ConnectionKey, BrokerConnection] = {}

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, key: object) -> bool:
        return key in self._connections

    def get_or_create(self, key: ConnectionKey, endpoint: BrokerEndpoint) -> BrokerConnection:
        """
        Return the live connection for key, or replace a stale one with a fresh instance.

        A live (connecting or connected) connection is returned unchanged even
        if the endpoint snapshot differs. A stale connection is disconnected
        before it is discarded.
        """
        existing = self._connections.get(key)
        if existing is not None and existing.is_live():
            return existing

        if existing is not None:
            logger.info("Replacing stale broker connection", connection_key=str(key), state=existing.state)
            existing.disconnect(keep_subscriptions=True)

        connection = self._connection_factory(key, endpoint)
        if existing is not None:
            # Topics survive replacement and are restored once the new connection is up
            connection.subscriptions.update(existing.subscriptions)
        self._connections[key] = connection
        logger.debug("Broker connection registered", connection_key=str(key), total=len(self._connections))
        return connection

    def build(self, key: ConnectionKey, endpoint: BrokerEndpoint) -> BrokerConnection:
        """Build a connection that is not registered, for probes against unsaved endpoints."""
        return self._connection_factory(key, endpoint)

    def lookup(self, key: ConnectionKey) -> BrokerConnection | None:
        return self._connections.get(key)

    def remove(self, key: ConnectionKey) -> bool:
        """
        Disconnect and forget the connection for key.

        Returns:
            bool: True if a connection was registered
        """
        connection = self._connections.pop(key, None)
        if connection is None:
            return False
        connection.disconnect()
        logger.info("Broker connection removed", connection_key=str(key), total=len(self._connections))
        return True

    def keys_for_user(self, user_id: str) -> list[ConnectionKey]:
        return [key for key in self._connections if key.user_id == user_id]

    def keys_for_broker(self, broker_id: str) -> list[ConnectionKey]:
        return [key for key in self._connections if key.broker_id == broker_id]

    def remove_user(self, user_id: str) -> int:
        keys = self.keys_for_user(user_id)
        for key in keys:
            self.remove(key)
        return len(keys)

    def shutdown(self) -> None:
        """Disconnect every connection and empty the registry."""
        for key in list(self._connections):
            self.remove(key)
        logger.info("Connection registry shut down")

    def get_stats(self) -> dict[str, Any]:
        states: dict[str, int] = {}
        for connection in self._connections.values():
            states[connection.state] = states.get(connection.state, 0) + 1
        return {"total_connections": len(self._connections), "by_state": states}
