"""
Persistence collaborator for broker records.

BrokerStore is the protocol the gateway core depends on. InMemoryBrokerStore
is the process-local implementation wired into the application; it keeps no
state beyond the records themselves.
"""

from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Protocol

from ..models.broker import BrokerEndpoint, BrokerStatus
from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


class BrokerStore(Protocol):
    """
    Protocol for broker record persistence.

    The core never caches results across calls.
    """

    async def find_brokers_for_user(self, user_id: str, is_admin: bool) -> list[BrokerEndpoint]:
        """
        Brokers visible to a user.

        Admins see the brokers they own; other users see the broker assigned to them.
        """
        ...

    async def find_broker_by_id(self, broker_id: str) -> BrokerEndpoint | None: ...

    async def update_status(self, broker_id: str, status: BrokerStatus, error: str | None = None) -> None: ...

    async def create_broker(self, broker: BrokerEndpoint) -> BrokerEndpoint: ...

    async def assign_broker(self, broker_id: str, user_id: str | None) -> BrokerEndpoint | None: ...

    async def delete_broker(self, broker_id: str) -> bool: ...


class InMemoryBrokerStore:
    """Dictionary-backed BrokerStore."""

    def __init__(self, brokers: Iterable[BrokerEndpoint] = ()):
        self._brokers: dict[str, BrokerEndpoint] = {broker.id: broker for broker in brokers}

    def __len__(self) -> int:
        return len(self._brokers)

    async def find_brokers_for_user(self, user_id: str, is_admin: bool) -> list[BrokerEndpoint]:
        if is_admin:
            return [b.model_copy() for b in self._brokers.values() if b.owner_id == user_id]
        # Non-admin users are assigned exactly one broker
        for broker in self._brokers.values():
            if broker.assigned_user_id == user_id:
                return [broker.model_copy()]
        return []

    async def find_broker_by_id(self, broker_id: str) -> BrokerEndpoint | None:
        broker = self._brokers.get(broker_id)
        return broker.model_copy() if broker is not None else None

    async def update_status(self, broker_id: str, status: BrokerStatus, error: str | None = None) -> None:
        broker = self._brokers.get(broker_id)
        if broker is None:
            logger.debug("Status update for unknown broker ignored", broker_id=broker_id, status=status.value)
            return
        broker.status = status
        broker.last_error = error
        if status is BrokerStatus.CONNECTED:
            broker.connection_time = datetime.now(UTC)

    async def create_broker(self, broker: BrokerEndpoint) -> BrokerEndpoint:
        self._brokers[broker.id] = broker
        logger.info("Broker record created", broker_id=broker.id, owner_id=broker.owner_id, host=broker.host)
        return broker.model_copy()

    async def assign_broker(self, broker_id: str, user_id: str | None) -> BrokerEndpoint | None:
        broker = self._brokers.get(broker_id)
        if broker is None:
            return None
        if user_id is not None:
            # A user holds at most one assigned broker
            for other in self._brokers.values():
                if other.id != broker_id and other.assigned_user_id == user_id:
                    other.assigned_user_id = None
        broker.assigned_user_id = user_id
        logger.info("Broker assignment updated", broker_id=broker_id, assigned_user_id=user_id)
        return broker.model_copy()

    async def delete_broker(self, broker_id: str) -> bool:
        return self._brokers.pop(broker_id, None) is not None
