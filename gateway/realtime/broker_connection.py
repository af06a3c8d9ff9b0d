"""
Managed connection from one user to one upstream MQTT broker.

A BrokerConnection owns at most one MQTTClientSession at a time. Every
session event is funnelled through _handle_event(), which is the only place
the state machine moves in response to the network. Whatever the connection
learns is reported to a single listener as (key, event_type, data) triples
whose event types match what the real-time channel sends to browsers:
mqtt_status, mqtt_message, subscribed, published and error.
"""

import asyncio
import json
import time
from collections.abc import Awaitable, Callable
from typing import Any, NamedTuple, Protocol

from aiomqtt import MqttError

from ..config.models import MQTTConfig
from ..error_types import ErrorType
from ..infrastructure.mqtt_session import (
    ClientEvent,
    ClientEventKind,
    ErrorKind,
    EventSink,
    MQTTClientSession,
    ProbeResult,
    SessionOptions,
    probe_broker,
)
from ..models.broker import BrokerEndpoint
from ..structured_logging.enhanced_logging_config import get_logger
from ..validators.broker_address import is_valid_broker_address, is_valid_port
from .connection_state_machine import BrokerConnectionStateMachine
from .retry_policy import RetryConfig

logger = get_logger(__name__)


class ConnectionKey(NamedTuple):
    user_id: str
    broker_id: str

    def __str__(self) -> str:
        return f"{self.user_id}:{self.broker_id}"


class ClientSession(Protocol):
    """What BrokerConnection needs from an underlying client session."""

    def start(self) -> None: ...

    def close(self) -> None: ...

    async def publish(self, topic: str, payload: str | bytes) -> None: ...

    async def subscribe(self, topic: str) -> None: ...


BrokerEventListener = Callable[[ConnectionKey, str, dict[str, Any]], None]
SessionFactory = Callable[[SessionOptions, EventSink], ClientSession]
ProbeFunction = Callable[[SessionOptions], Awaitable[ProbeResult]]


def _default_session_factory(options: SessionOptions, sink: EventSink) -> ClientSession:
    return MQTTClientSession(options, sink)


def _epoch_millis() -> int:
    return int(time.time() * 1000)


class BrokerConnection:
    """
    Connect/retry/backoff lifecycle for one (user, broker) key.

    All public methods except test_connection/probe/subscribe/publish and
    wait_until_connected are synchronous and complete within one event loop
    turn. They must be called from inside a running event loop.
    """

    def __init__(
        self,
        key: ConnectionKey,
        endpoint: BrokerEndpoint,
        listener: BrokerEventListener,
        config: MQTTConfig | None = None,
        session_factory: SessionFactory | None = None,
        probe: ProbeFunction | None = None,
    ):
        self.key = key
        self.endpoint = endpoint.model_copy()
        self.config = config or MQTTConfig()
        self.retry = RetryConfig.from_mqtt_config(self.config)
        self.machine = BrokerConnectionStateMachine(str(key))

        self.retry_attempts = 0
        self.last_error: str | None = None
        self.last_error_kind: ErrorKind | None = None
        self.subscriptions: set[str] = set()

        self._listener = listener
        self._session_factory = session_factory or _default_session_factory
        self._probe = probe or probe_broker
        self._session: ClientSession | None = None
        self._epoch = 0
        self._reconnect_handle: asyncio.TimerHandle | None = None
        self._restore_task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # State inspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> str:
        return self.machine.state_id

    @property
    def is_connected(self) -> bool:
        return self.state == "connected"

    def is_live(self) -> bool:
        """Connecting or connected; anything else is stale from the registry's point of view."""
        return self.state in ("connecting", "connected")

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None

    def get_status(self) -> dict[str, Any]:
        return {
            "userId": self.key.user_id,
            "brokerId": self.key.broker_id,
            "status": self.state,
            "retryAttempts": self.retry_attempts,
            "maxRetries": self.retry.max_attempts,
            "reconnectPending": self.reconnect_pending,
            "lastError": self.last_error,
            "lastErrorKind": self.last_error_kind.value if self.last_error_kind else None,
            "subscriptions": sorted(self.subscriptions),
            "stats": self.machine.get_stats(),
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> bool:
        """
        Start a connect attempt.

        Returns:
            bool: True if a new client session was opened. Redundant calls on a
            live connection, invalid endpoints and an exhausted retry budget
            all return False.
        """
        if self.is_live():
            logger.debug("Connect ignored; connection already live", connection_key=str(self.key), state=self.state)
            return False

        if not is_valid_broker_address(self.endpoint.host):
            self._record_error(f"Invalid IP address: {self.endpoint.host}", None)
            self._notify("error", {"message": self.last_error, "fatal": True})
            return False
        if not is_valid_port(self.endpoint.port):
            self._record_error(f"Invalid port: {self.endpoint.port}", None)
            self._notify("error", {"message": self.last_error, "fatal": True})
            return False

        if self.retry.is_exhausted(self.retry_attempts):
            self._exhaust()
            return False

        self._cancel_reconnect()
        self._release_session()

        self.machine.begin_connect()
        self.retry_attempts += 1
        self._epoch += 1
        epoch = self._epoch

        options = SessionOptions(
            host=self.endpoint.host,
            port=self.endpoint.port,
            client_id=f"{self.config.client_id_prefix}_{self.key.user_id}_{self.key.broker_id}_{_epoch_millis()}",
            username=self.endpoint.username,
            password=self.endpoint.password,
            timeout=self.config.connect_timeout,
            keepalive=self.config.keepalive,
        )
        logger.info(
            "Connecting to MQTT broker",
            connection_key=str(self.key),
            host=self.endpoint.host,
            port=self.endpoint.port,
            attempt=self.retry_attempts,
            max_attempts=self.retry.max_attempts,
        )
        self._notify("mqtt_status", {"status": "connecting"})

        self._session = self._session_factory(options, lambda event: self._handle_event(epoch, event))
        self._session.start()
        return True

    def disconnect(self, keep_subscriptions: bool = False) -> None:
        """
        Terminate the connection regardless of state.

        Idempotent: on an already disconnected connection with nothing pending
        this emits no events.

        Args:
            keep_subscriptions: Remember topics for a later reconnect. An explicit
                disconnect forgets them.
        """
        self._cancel_reconnect()
        if not keep_subscriptions:
            self.subscriptions.clear()
        self.retry_attempts = 0
        self._release_session()
        if self.state != "disconnected":
            self.machine.shutdown()
            logger.info("Broker connection closed", connection_key=str(self.key))
            self._notify("mqtt_status", {"status": "disconnected"})

    def schedule_reconnect(self) -> bool:
        """
        Arrange the next automatic connect attempt.

        Only a disconnected connection reconnects. Once the retry budget is
        spent the connection is shut down and one fatal error is emitted.

        Returns:
            bool: True if a reconnect timer was armed
        """
        if self.state != "disconnected" or self._reconnect_handle is not None:
            return False

        if self.retry.is_exhausted(self.retry_attempts):
            self._exhaust()
            return False

        delay = self.retry.calculate_delay(self.retry_attempts - 1)
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(delay, self._reconnect_due)
        logger.info(
            "Broker reconnect scheduled",
            connection_key=str(self.key),
            delay=delay,
            attempt=self.retry_attempts + 1,
            max_attempts=self.retry.max_attempts,
        )
        return True

    def _reconnect_due(self) -> None:
        self._reconnect_handle = None
        self.connect()

    def _exhaust(self) -> None:
        attempts = self.retry_attempts
        self.disconnect(keep_subscriptions=True)
        message = f"Failed to connect to broker after {attempts} attempts"
        self._record_error(message, self.last_error_kind)
        logger.error("Broker retry budget exhausted", connection_key=str(self.key), attempts=attempts)
        self._notify("error", {"message": message, "fatal": True, "error_type": ErrorType.RETRIES_EXHAUSTED.value})

    def _fail_on_credentials(self, error: str) -> None:
        self.disconnect(keep_subscriptions=True)
        message = f"Authentication failed: {error}"
        self._record_error(message, ErrorKind.CREDENTIALS)
        logger.error("Broker rejected credentials", connection_key=str(self.key), error=error)
        self._notify(
            "error",
            {
                "message": message,
                "fatal": True,
                "errorKind": ErrorKind.CREDENTIALS.value,
                "error_type": ErrorType.BROKER_CREDENTIALS_REJECTED.value,
            },
        )

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    def _release_session(self) -> None:
        """Single release point for the underlying client."""
        if self._restore_task is not None and not self._restore_task.done():
            self._restore_task.cancel()
        self._restore_task = None
        if self._session is not None:
            session = self._session
            self._session = None
            session.close()
        # Events still in flight from the released session are now stale
        self._epoch += 1

    def _record_error(self, message: str | None, kind: ErrorKind | None) -> None:
        self.last_error = message
        self.last_error_kind = kind

    # ------------------------------------------------------------------
    # Session events
    # ------------------------------------------------------------------

    def _handle_event(self, epoch: int, event: ClientEvent) -> None:
        if epoch != self._epoch:
            logger.debug(
                "Stale session event ignored",
                connection_key=str(self.key),
                event_kind=event.kind.value,
            )
            return

        if event.kind is ClientEventKind.CONNECTED:
            self._on_connected()
        elif event.kind is ClientEventKind.MESSAGE:
            self._on_message(event)
        elif event.kind is ClientEventKind.ERROR:
            self._on_error(event)
        elif event.kind is ClientEventKind.OFFLINE:
            logger.info("MQTT client offline", connection_key=str(self.key))
        elif event.kind is ClientEventKind.CLOSED:
            self._on_closed()

    def _on_connected(self) -> None:
        if self.state != "connecting":
            return
        self.machine.connection_established()
        self.retry_attempts = 0
        self._record_error(None, None)
        self._notify("mqtt_status", {"status": "connected"})
        if self.subscriptions:
            self._restore_task = asyncio.create_task(
                self._restore_subscriptions(self._epoch), name=f"restore_subscriptions:{self.key}"
            )

    def _on_message(self, event: ClientEvent) -> None:
        text = event.payload.decode("utf-8", errors="replace")
        try:
            parsed = json.loads(text)
            logger.debug(
                "Structured MQTT message received",
                connection_key=str(self.key),
                topic=event.topic,
                payload_type=type(parsed).__name__,
            )
        except ValueError:
            logger.debug("Opaque MQTT message received", connection_key=str(self.key), topic=event.topic)
        self._notify("mqtt_message", {"topic": event.topic, "message": text, "qos": event.qos})

    def _on_error(self, event: ClientEvent) -> None:
        error = event.error or "unknown error"
        self._record_error(error, event.error_kind)
        self._notify("error", {"message": f"MQTT error: {error}"})
        if event.error_kind is ErrorKind.CREDENTIALS:
            self._fail_on_credentials(error)
            return
        self.schedule_reconnect()

    def _on_closed(self) -> None:
        # The session finished on its own; nothing left to close
        self._session = None
        if self.state == "disconnected":
            return
        if self.state == "connecting":
            self.machine.connection_failed()
        else:
            self.machine.connection_lost()
        logger.info("Broker connection dropped", connection_key=str(self.key), last_error=self.last_error)
        self._notify("mqtt_status", {"status": "disconnected"})
        self.schedule_reconnect()

    async def _restore_subscriptions(self, epoch: int) -> None:
        for topic in sorted(self.subscriptions):
            session = self._session
            if epoch != self._epoch or session is None:
                return
            try:
                await session.subscribe(topic)
            except (MqttError, OSError, ValueError) as e:
                logger.warning("Resubscribe failed", connection_key=str(self.key), topic=topic, error=str(e))
                self._notify("error", {"message": f"Subscription error: {e}"})
        logger.info("Subscriptions restored", connection_key=str(self.key), count=len(self.subscriptions))

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def subscribe(self, topic: str) -> bool:
        """Subscribe at QoS 0. Emits `subscribed` or `error`."""
        session = self._session
        if not self.is_connected or session is None:
            self._notify("error", {"message": "MQTT client not connected"})
            return False
        # The client library rejects malformed topics with ValueError before sending
        try:
            await session.subscribe(topic)
        except (MqttError, OSError, ValueError, TypeError) as e:
            logger.warning("Subscribe failed", connection_key=str(self.key), topic=topic, error=str(e))
            self._notify("error", {"message": f"Subscription error: {e}"})
            return False
        self.subscriptions.add(topic)
        logger.info("Subscribed to topic", connection_key=str(self.key), topic=topic)
        self._notify("subscribed", {"topic": topic})
        return True

    async def publish(self, topic: str, message: str | bytes) -> bool:
        """Publish at QoS 0 (fire-and-forget). Emits `published` or `error`."""
        session = self._session
        if not self.is_connected or session is None:
            self._notify("error", {"message": "MQTT client not connected"})
            return False
        try:
            await session.publish(topic, message)
        except (MqttError, OSError, ValueError, TypeError) as e:
            logger.warning("Publish failed", connection_key=str(self.key), topic=topic, error=str(e))
            self._notify("error", {"message": f"Publish error: {e}"})
            return False
        logger.debug("Published message", connection_key=str(self.key), topic=topic)
        self._notify("published", {"topic": topic})
        return True

    async def probe(self, port: int | None = None, password: str | None = None) -> ProbeResult:
        """
        Open a throwaway client with this connection's credentials.

        Does not touch state, retry counter or the live session.

        Args:
            port: Port override, defaults to the endpoint port
            password: Password override, used by the credential diagnosis heuristic
        """
        options = SessionOptions(
            host=self.endpoint.host,
            port=port if port is not None else self.endpoint.port,
            client_id=f"test_{self.key.user_id}_{_epoch_millis()}",
            username=self.endpoint.username,
            password=password if password is not None else self.endpoint.password,
            timeout=self.config.probe_timeout,
            keepalive=self.config.keepalive,
        )
        if not is_valid_broker_address(options.host) or not is_valid_port(options.port):
            return ProbeResult(False, f"Invalid IP address: {options.host}", None)
        result = await self._probe(options)
        logger.info(
            "Broker probe finished",
            connection_key=str(self.key),
            port=options.port,
            success=result.success,
            error_kind=result.error_kind.value if result.error_kind else None,
        )
        return result

    async def test_connection(self, port: int | None = None) -> bool:
        result = await self.probe(port)
        return result.success

    async def wait_until_connected(self, timeout: float, poll_interval: float) -> bool:
        """
        Poll until connected, the timeout passes, or the connection gives up.

        Returns:
            bool: True if the connection reached `connected`
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            if self.is_connected:
                return True
            if self.state == "disconnected" and not self.reconnect_pending:
                return False
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(poll_interval)

    # ------------------------------------------------------------------

    def _notify(self, event_type: str, data: dict[str, Any]) -> None:
        payload = {"brokerId": self.key.broker_id, **data}
        try:
            self._listener(self.key, event_type, payload)
        except Exception:  # pylint: disable=broad-exception-caught  # Reason: listener failures stay local
            logger.exception(
                "Broker event listener failed",
                connection_key=str(self.key),
                event_type=event_type,
            )
