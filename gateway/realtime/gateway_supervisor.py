"""
Top-level orchestration of broker connections and real-time sessions.

GatewaySupervisor is the single entry point to the ConnectionRegistry: every
HTTP route and WebSocket message that touches a broker connection goes
through here, so ownership/assignment is always checked before the registry
is touched. It is also the listener for every BrokerConnection, forwarding
events to the owning user's sessions, the message buffer and the broker store.
"""

import secrets
from typing import Any

from ..app.task_registry import TaskRegistry
from ..auth.principal import Principal
from ..config.models import MQTTConfig
from ..exceptions import (
    AuthorizationError,
    BrokerConnectionError,
    BrokerNotConnectedError,
    CredentialError,
    ErrorContext,
    ResourceNotFoundError,
    ValidationError,
)
from ..infrastructure.broker_store import BrokerStore
from ..infrastructure.mqtt_session import ErrorKind
from ..models.broker import BrokerEndpoint, BrokerStatus
from ..structured_logging.enhanced_logging_config import get_logger
from ..validators.broker_address import is_valid_broker_address, is_valid_port
from ..validators.mqtt_topic import is_valid_topic_filter, is_valid_topic_name
from .broker_connection import BrokerConnection, ConnectionKey, ProbeFunction, SessionFactory
from .connection_registry import ConnectionRegistry
from .message_buffer import MessageBuffer
from .realtime_session import RealtimeSession
from .session_router import SessionRouter

logger = get_logger(__name__)

_STATUS_BY_NAME = {
    "connecting": BrokerStatus.CONNECTING,
    "connected": BrokerStatus.CONNECTED,
    "disconnected": BrokerStatus.DISCONNECTED,
}


class GatewaySupervisor:
    """
    Owns the ConnectionRegistry and wires it to the SessionRouter.

    AI: Every await happens before registry access; registry calls themselves
    are synchronous so authorization results cannot go stale mid-update.
    """

    def __init__(
        self,
        store: BrokerStore,
        router: SessionRouter,
        mqtt_config: MQTTConfig,
        task_registry: TaskRegistry,
        message_buffer: MessageBuffer | None = None,
        admin_role: str = "admin",
        session_factory: SessionFactory | None = None,
        probe: ProbeFunction | None = None,
    ):
        self.store = store
        self.router = router
        self.mqtt_config = mqtt_config
        self.task_registry = task_registry
        self.message_buffer = message_buffer or MessageBuffer(mqtt_config.message_buffer_size)
        self.admin_role = admin_role
        self._session_factory = session_factory
        self._probe = probe
        self.registry = ConnectionRegistry(self._build_connection)
        self.router.on_grace_expired = self.teardown_user

    def _build_connection(self, key: ConnectionKey, endpoint: BrokerEndpoint) -> BrokerConnection:
        return BrokerConnection(
            key,
            endpoint,
            self._on_broker_event,
            self.mqtt_config,
            session_factory=self._session_factory,
            probe=self._probe,
        )

    def is_admin(self, principal: Principal) -> bool:
        return principal.has_role(self.admin_role)

    # ------------------------------------------------------------------
    # Broker event listener
    # ------------------------------------------------------------------

    def _on_broker_event(self, key: ConnectionKey, event_type: str, data: dict[str, Any]) -> None:
        if event_type == "mqtt_message":
            self.message_buffer.append(key.user_id, key.broker_id, data["topic"], data["message"], data.get("qos", 0))
        elif event_type == "mqtt_status":
            status = _STATUS_BY_NAME.get(data.get("status", ""), BrokerStatus.DISCONNECTED)
            connection = self.registry.lookup(key)
            self._persist_status(key.broker_id, status, connection.last_error if connection else None)
        elif event_type == "error" and data.get("fatal"):
            self._persist_status(key.broker_id, BrokerStatus.ERROR, data.get("message"))

        self.router.emit(key.user_id, event_type, data)

    def _persist_status(self, broker_id: str, status: BrokerStatus, error: str | None) -> None:
        try:
            self.task_registry.register_task(
                self.store.update_status(broker_id, status, error),
                f"broker_status:{broker_id}",
                "status",
            )
        except RuntimeError:
            logger.debug("Status update skipped during shutdown", broker_id=broker_id, status=status.value)

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def on_session_connect(self, principal: Principal, session: RealtimeSession) -> list[BrokerConnection]:
        """
        Admit a session and bring up connections for every broker the user may use.

        Connections that are already live are reused; the new session is told
        their current status.
        """
        self.router.join(session)
        brokers = await self.store.find_brokers_for_user(principal.user_id, self.is_admin(principal))

        connections: list[BrokerConnection] = []
        for endpoint in brokers:
            key = ConnectionKey(principal.user_id, endpoint.id)
            connection = self.registry.get_or_create(key, endpoint)
            if connection.is_live():
                self.router.emit_to_session(
                    session.session_id, "mqtt_status", {"brokerId": endpoint.id, "status": connection.state}
                )
            else:
                connection.connect()
            connections.append(connection)

        logger.info(
            "Session connected",
            user_id=principal.user_id,
            session_id=session.session_id,
            brokers=[c.key.broker_id for c in connections],
        )
        return connections

    def on_session_disconnect(self, session_id: str) -> None:
        self.router.leave(session_id)

    def teardown_user(self, user_id: str) -> int:
        """Remove every connection held for a user."""
        removed = self.registry.remove_user(user_id)
        logger.info("User connections torn down", user_id=user_id, removed=removed)
        return removed

    async def handle_logout(self, principal: Principal) -> int:
        self.router.close_user_sessions(principal.user_id, 1000, "Logged out")
        return self.teardown_user(principal.user_id)

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    async def authorize(self, principal: Principal, broker_id: str) -> BrokerEndpoint:
        """
        Load a broker and check the caller owns it or has it assigned.

        Raises:
            ResourceNotFoundError: Unknown broker
            AuthorizationError: Broker neither owned by nor assigned to the caller
        """
        context = ErrorContext(user_id=principal.user_id, broker_id=broker_id)
        endpoint = await self.store.find_broker_by_id(broker_id)
        if endpoint is None:
            raise ResourceNotFoundError(
                "Broker not found", context, resource_type="broker", resource_id=broker_id
            )
        if self.is_admin(principal) and endpoint.owner_id == principal.user_id:
            return endpoint
        if endpoint.assigned_user_id == principal.user_id:
            return endpoint
        raise AuthorizationError(
            "Broker is not owned by or assigned to this user",
            context,
            user_friendly="You do not have access to this broker",
        )

    @staticmethod
    def _validate_endpoint(endpoint: BrokerEndpoint, context: ErrorContext) -> None:
        if not is_valid_broker_address(endpoint.host):
            raise ValidationError(f"Invalid IP address: {endpoint.host}", context, field="host", value=endpoint.host)
        if not is_valid_port(endpoint.port):
            raise ValidationError(f"Invalid port: {endpoint.port}", context, field="port", value=endpoint.port)

    @staticmethod
    def _validate_topic(topic: object, context: ErrorContext, allow_wildcards: bool) -> str:
        if not isinstance(topic, str) or not topic.strip():
            raise ValidationError("Topic is required", context, field="topic")
        if allow_wildcards and not is_valid_topic_filter(topic):
            raise ValidationError(f"Invalid topic filter: {topic}", context, field="topic", value=topic)
        if not allow_wildcards and not is_valid_topic_name(topic):
            raise ValidationError(
                f"Invalid publish topic: {topic}",
                context,
                field="topic",
                value=topic,
                user_friendly="Publish topics cannot contain wildcards (+ or #)",
            )
        return topic

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def connect_broker(self, principal: Principal, broker_id: str) -> BrokerConnection:
        endpoint = await self.authorize(principal, broker_id)
        self._validate_endpoint(endpoint, ErrorContext(user_id=principal.user_id, broker_id=broker_id))

        connection = self.registry.get_or_create(ConnectionKey(principal.user_id, broker_id), endpoint)
        connection.connect()
        return connection

    async def disconnect_broker(self, principal: Principal, broker_id: str) -> bool:
        await self.authorize(principal, broker_id)
        removed = self.registry.remove(ConnectionKey(principal.user_id, broker_id))
        if not removed:
            # Still tell the caller where things stand
            self.router.emit(principal.user_id, "mqtt_status", {"brokerId": broker_id, "status": "disconnected"})
        return removed

    async def _ensure_connected(self, principal: Principal, broker_id: str) -> BrokerConnection:
        """
        Return a connected connection, making one bounded connect-and-wait attempt if needed.

        Raises:
            CredentialError: The broker rejected the stored credentials
            BrokerNotConnectedError: No connection within the publish wait timeout
        """
        context = ErrorContext(user_id=principal.user_id, broker_id=broker_id)
        endpoint = await self.authorize(principal, broker_id)
        key = ConnectionKey(principal.user_id, broker_id)

        connection = self.registry.lookup(key)
        if connection is not None and connection.is_connected:
            return connection

        self._validate_endpoint(endpoint, context)
        connection = self.registry.get_or_create(key, endpoint)
        connection.connect()
        connected = await connection.wait_until_connected(
            self.mqtt_config.publish_wait_timeout, self.mqtt_config.publish_wait_poll_interval
        )
        if connected:
            return connection

        if connection.last_error_kind is ErrorKind.CREDENTIALS:
            raise CredentialError(
                "Broker rejected credentials",
                context,
                last_error=connection.last_error,
                user_friendly="The broker rejected the configured username or password",
            )
        raise BrokerNotConnectedError(
            "MQTT client not connected",
            context,
            error_kind=connection.last_error_kind.value if connection.last_error_kind else "network",
            last_error=connection.last_error,
        )

    async def subscribe(self, principal: Principal, broker_id: str, topic: str) -> None:
        context = ErrorContext(user_id=principal.user_id, broker_id=broker_id)
        topic = self._validate_topic(topic, context, allow_wildcards=True)
        connection = await self._ensure_connected(principal, broker_id)
        if not await connection.subscribe(topic):
            raise BrokerConnectionError(f"Subscription error on {topic}", context, last_error=connection.last_error)

    async def publish(self, principal: Principal, broker_id: str, topic: str, message: str) -> None:
        context = ErrorContext(user_id=principal.user_id, broker_id=broker_id)
        topic = self._validate_topic(topic, context, allow_wildcards=False)
        if message is None:
            raise ValidationError("Message is required", context, field="message")
        if not isinstance(message, str):
            raise ValidationError("Message must be text", context, field="message")
        connection = await self._ensure_connected(principal, broker_id)
        if not await connection.publish(topic, message):
            raise BrokerConnectionError(f"Publish error on {topic}", context, last_error=connection.last_error)

    async def broker_status(self, principal: Principal, broker_id: str) -> dict[str, Any]:
        endpoint = await self.authorize(principal, broker_id)
        connection = self.registry.lookup(ConnectionKey(principal.user_id, broker_id))
        if connection is not None:
            return connection.get_status()
        return {
            "userId": principal.user_id,
            "brokerId": broker_id,
            "status": "disconnected",
            "retryAttempts": 0,
            "maxRetries": self.mqtt_config.max_retries,
            "reconnectPending": False,
            "lastError": endpoint.last_error,
            "lastErrorKind": None,
            "subscriptions": [],
        }

    def _probe_connection(self, principal: Principal, endpoint: BrokerEndpoint) -> BrokerConnection:
        key = ConnectionKey(principal.user_id, endpoint.id)
        return self.registry.lookup(key) or self.registry.build(key, endpoint)

    async def test_broker_connection(self, principal: Principal, broker_id: str, port: int | None = None) -> bool:
        """Probe the broker without touching the registered connection."""
        endpoint = await self.authorize(principal, broker_id)
        context = ErrorContext(user_id=principal.user_id, broker_id=broker_id)
        if port is not None and not is_valid_port(port):
            raise ValidationError(f"Invalid port: {port}", context, field="port", value=port)
        self._validate_endpoint(endpoint, context)
        return await self._probe_connection(principal, endpoint).test_connection(port)

    async def diagnose_credentials(self, principal: Principal, broker_id: str) -> dict[str, Any]:
        """
        Guess why a broker rejects the stored credentials.

        Probes once with the stored password and, on a credential rejection,
        once more with a deliberately wrong password. Whether the rejection
        reason changes hints at which half of the credentials is at fault.
        This is a heuristic: brokers are free to answer both probes alike.
        """
        endpoint = await self.authorize(principal, broker_id)
        self._validate_endpoint(endpoint, ErrorContext(user_id=principal.user_id, broker_id=broker_id))
        connection = self._probe_connection(principal, endpoint)

        first = await connection.probe()
        report: dict[str, Any] = {"brokerId": broker_id, "heuristic": True, "error": first.error}
        if first.success:
            report["result"] = "ok"
            return report
        if first.error_kind is not ErrorKind.CREDENTIALS:
            report["result"] = "unreachable"
            report["errorKind"] = first.error_kind.value if first.error_kind else None
            return report

        second = await connection.probe(password=f"invalid-{secrets.token_hex(8)}")
        if second.success:
            # The broker ignores passwords, so the username itself is refused
            report["result"] = "password_ignored"
        elif second.error_kind is ErrorKind.CREDENTIALS and second.error != first.error:
            # The real password changes the answer: it is probably right, the user lacks access
            report["result"] = "not_authorized"
        else:
            report["result"] = "credentials_rejected"
        report["comparisonError"] = second.error
        logger.info("Credential diagnosis finished", broker_id=broker_id, result=report["result"])
        return report

    async def _authorize_owner(self, principal: Principal, broker_id: str, action: str) -> BrokerEndpoint:
        """
        Load a broker and check the caller is the admin that owns it.

        Being assigned the broker is not enough, even for another admin.
        """
        context = ErrorContext(user_id=principal.user_id, broker_id=broker_id)
        if not self.is_admin(principal):
            raise AuthorizationError(f"Only admins may {action} brokers", context, required_role=self.admin_role)
        endpoint = await self.store.find_broker_by_id(broker_id)
        if endpoint is None:
            raise ResourceNotFoundError("Broker not found", context, resource_type="broker", resource_id=broker_id)
        if endpoint.owner_id != principal.user_id:
            raise AuthorizationError(
                f"Only the owning admin may {action} this broker",
                context,
                user_friendly="You do not own this broker",
            )
        return endpoint

    async def delete_broker(self, principal: Principal, broker_id: str) -> None:
        """
        Delete a broker owned by the calling admin.

        Clears the assignment, removes every connection for the broker and
        tells the owner and the assigned user.
        """
        endpoint = await self._authorize_owner(principal, broker_id, "delete")

        await self.store.assign_broker(broker_id, None)
        await self.store.delete_broker(broker_id)

        affected = {endpoint.owner_id}
        if endpoint.assigned_user_id:
            affected.add(endpoint.assigned_user_id)
        for key in self.registry.keys_for_broker(broker_id):
            affected.add(key.user_id)
            self.registry.remove(key)
        for user_id in affected:
            self.router.emit(user_id, "broker_deleted", {"brokerId": broker_id})
        logger.info("Broker deleted", broker_id=broker_id, notified_users=sorted(affected))

    async def assign_broker(self, principal: Principal, broker_id: str, user_id: str | None) -> BrokerEndpoint:
        """
        Assign (or unassign) an owned broker.

        A user holds at most one assigned broker, so the new assignee's
        connection to its previous broker is removed along with the previous
        assignee's connection to this one.
        """
        context = ErrorContext(user_id=principal.user_id, broker_id=broker_id)
        endpoint = await self._authorize_owner(principal, broker_id, "assign")

        released: list[str] = []
        if user_id is not None:
            released = [b.id for b in await self.store.find_brokers_for_user(user_id, False) if b.id != broker_id]

        updated = await self.store.assign_broker(broker_id, user_id)
        if updated is None:
            raise ResourceNotFoundError("Broker not found", context, resource_type="broker", resource_id=broker_id)

        previous = endpoint.assigned_user_id
        if previous and previous != user_id:
            self.registry.remove(ConnectionKey(previous, broker_id))
        for old_broker_id in released:
            self.registry.remove(ConnectionKey(user_id, old_broker_id))  # type: ignore[arg-type]
        logger.info(
            "Broker assigned",
            broker_id=broker_id,
            assigned_user_id=user_id,
            previous_user_id=previous,
            released_brokers=released,
        )
        return updated

    # ------------------------------------------------------------------

    def shutdown(self) -> None:
        self.router.shutdown()
        self.registry.shutdown()
        self.message_buffer.clear()

    def get_stats(self) -> dict[str, Any]:
        return {
            "connections": self.registry.get_stats(),
            "sessions": self.router.get_stats(),
            "buffered_messages": len(self.message_buffer),
        }
