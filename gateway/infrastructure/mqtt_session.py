"""
aiomqtt-backed client session for one upstream MQTT broker.

A session is a single connect attempt: it opens the client, reports what
happens to it as ClientEvent values on one sink, and is never reused. The
owning BrokerConnection decides what to do about each event.
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import aiomqtt

from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)

# CONNACK return codes for MQTT 3.1.1 and the equivalent v5 reason codes
_CREDENTIAL_REASON_CODES = {4, 5, 134, 135}
_UNAVAILABLE_REASON_CODES = {3, 136}

_CREDENTIAL_MARKERS = ("bad user name or password", "bad username or password", "not authorized", "not authorised")
_TIMEOUT_MARKERS = ("timed out", "timeout")
_REFUSED_MARKERS = ("connection refused", "econnrefused", "server unavailable")
_NOT_FOUND_MARKERS = ("name or service not known", "nodename nor servname", "getaddrinfo", "enotfound", "no address")


class ErrorKind(str, Enum):
    """Classification of an upstream failure."""

    CREDENTIALS = "credentials"
    TIMEOUT = "timeout"
    REFUSED = "refused"
    NOT_FOUND = "not_found"
    NETWORK = "network"
    PROTOCOL = "protocol"

    @property
    def retryable(self) -> bool:
        """Retrying with the same credentials will never fix a credential rejection."""
        return self is not ErrorKind.CREDENTIALS


class ClientEventKind(str, Enum):
    CONNECTED = "connected"
    MESSAGE = "message"
    ERROR = "error"
    OFFLINE = "offline"
    CLOSED = "closed"


@dataclass(frozen=True)
class ClientEvent:
    """
    Single tagged event produced by an MQTTClientSession.

    MESSAGE events carry topic/payload/qos, ERROR events carry error and
    error_kind. The other kinds carry nothing.
    """

    kind: ClientEventKind
    topic: str | None = None
    payload: bytes = b""
    qos: int = 0
    error: str | None = None
    error_kind: ErrorKind | None = None


EventSink = Callable[[ClientEvent], None]


@dataclass(frozen=True)
class SessionOptions:
    """Everything needed to open one client."""

    host: str
    port: int
    client_id: str
    username: str | None = None
    password: str | None = None
    timeout: float = 10.0
    keepalive: int = 60


@dataclass(frozen=True)
class ProbeResult:
    success: bool
    error: str | None = None
    error_kind: ErrorKind | None = None


def _reason_code_value(exc: BaseException) -> int | None:
    rc = getattr(exc, "rc", None)
    if rc is None:
        return None
    # paho ReasonCode objects expose the numeric value; plain ints pass through
    value = getattr(rc, "value", rc)
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def classify_mqtt_error(exc: BaseException) -> ErrorKind:
    """
    Classify an exception raised by the MQTT client.

    Structured CONNACK reason codes win; message inspection is only the
    fallback for errors that carry no code (socket failures are re-raised by
    aiomqtt as plain MqttError with the OS message).

    Args:
        exc: Exception raised while connecting or while the session was open

    Returns:
        ErrorKind: The failure category
    """
    code = _reason_code_value(exc)
    if code in _CREDENTIAL_REASON_CODES:
        return ErrorKind.CREDENTIALS
    if code in _UNAVAILABLE_REASON_CODES:
        return ErrorKind.REFUSED

    if isinstance(exc, ConnectionRefusedError):
        return ErrorKind.REFUSED
    if isinstance(exc, TimeoutError):
        return ErrorKind.TIMEOUT

    text = str(exc).lower()
    if any(marker in text for marker in _CREDENTIAL_MARKERS):
        return ErrorKind.CREDENTIALS
    if any(marker in text for marker in _TIMEOUT_MARKERS):
        return ErrorKind.TIMEOUT
    if any(marker in text for marker in _REFUSED_MARKERS):
        return ErrorKind.REFUSED
    if any(marker in text for marker in _NOT_FOUND_MARKERS):
        return ErrorKind.NOT_FOUND

    if code is not None:
        return ErrorKind.PROTOCOL
    return ErrorKind.NETWORK


def _build_client(options: SessionOptions, client_factory: Callable[..., Any]) -> Any:
    return client_factory(
        hostname=options.host,
        port=options.port,
        username=options.username or None,
        password=options.password or None,
        identifier=options.client_id,
        timeout=options.timeout,
        keepalive=options.keepalive,
    )


class MQTTClientSession:
    """
    One aiomqtt client run as a background task.

    close() is synchronous and final: it cancels the task and suppresses any
    further events, so a released session can never reach its owner again.
    The client's async context manager performs the socket teardown.
    """

    def __init__(
        self,
        options: SessionOptions,
        sink: EventSink,
        client_factory: Callable[..., Any] = aiomqtt.Client,
    ):
        self.options = options
        self._sink = sink
        self._client_factory = client_factory
        self._client: Any = None
        self._task: asyncio.Task | None = None
        self._closed = False
        self._logger = get_logger(__name__)

    @property
    def is_open(self) -> bool:
        return self._client is not None and not self._closed

    def start(self) -> None:
        if self._task is not None:
            raise RuntimeError("MQTTClientSession can only be started once")
        self._task = asyncio.create_task(self._run(), name=f"mqtt_session:{self.options.client_id}")

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._client = None
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._logger.debug("MQTT session released", client_id=self.options.client_id)

    def _emit(self, event: ClientEvent) -> None:
        if self._closed:
            return
        self._sink(event)

    async def _run(self) -> None:
        established = False
        try:
            async with _build_client(self.options, self._client_factory) as client:
                if self._closed:
                    return
                self._client = client
                established = True
                self._emit(ClientEvent(ClientEventKind.CONNECTED))
                async for message in client.messages:
                    payload = message.payload
                    if isinstance(payload, str):
                        payload = payload.encode("utf-8")
                    elif not isinstance(payload, bytes | bytearray):
                        payload = str(payload if payload is not None else "").encode("utf-8")
                    self._emit(
                        ClientEvent(
                            ClientEventKind.MESSAGE,
                            topic=str(message.topic),
                            payload=bytes(payload),
                            qos=int(message.qos),
                        )
                    )
        except aiomqtt.MqttError as e:
            kind = classify_mqtt_error(e)
            self._logger.warning(
                "MQTT session error",
                client_id=self.options.client_id,
                host=self.options.host,
                port=self.options.port,
                error=str(e),
                error_kind=kind.value,
            )
            self._emit(ClientEvent(ClientEventKind.ERROR, error=str(e), error_kind=kind))
        except OSError as e:
            kind = classify_mqtt_error(e)
            self._logger.warning(
                "MQTT socket error", client_id=self.options.client_id, error=str(e), error_kind=kind.value
            )
            self._emit(ClientEvent(ClientEventKind.ERROR, error=str(e), error_kind=kind))
        finally:
            self._client = None
            if established:
                self._emit(ClientEvent(ClientEventKind.OFFLINE))
            self._emit(ClientEvent(ClientEventKind.CLOSED))

    async def publish(self, topic: str, payload: str | bytes) -> None:
        """
        Publish at QoS 0.

        Raises:
            aiomqtt.MqttError: If the session is not open or the client rejects the publish
        """
        client = self._client
        if client is None or self._closed:
            raise aiomqtt.MqttError("MQTT client not connected")
        await client.publish(topic, payload, qos=0)

    async def subscribe(self, topic: str) -> None:
        """
        Subscribe at QoS 0.

        Raises:
            aiomqtt.MqttError: If the session is not open or the broker rejects the subscription
        """
        client = self._client
        if client is None or self._closed:
            raise aiomqtt.MqttError("MQTT client not connected")
        await client.subscribe(topic, qos=0)


async def probe_broker(
    options: SessionOptions,
    client_factory: Callable[..., Any] = aiomqtt.Client,
) -> ProbeResult:
    """
    Open and immediately close a throwaway client.

    The context manager disconnects on every path; an outer wait_for bounds
    the whole probe in case the transport never answers.

    Args:
        options: Connection options, with timeout set to the probe timeout
        client_factory: Client constructor

    Returns:
        ProbeResult: Whether the broker accepted the connection
    """

    async def _attempt() -> None:
        async with _build_client(options, client_factory):
            pass

    try:
        await asyncio.wait_for(_attempt(), timeout=options.timeout + 1.0)
    except TimeoutError:
        return ProbeResult(False, "Connection timeout", ErrorKind.TIMEOUT)
    except (aiomqtt.MqttError, OSError) as e:
        return ProbeResult(False, str(e), classify_mqtt_error(e))

    logger.debug("Broker probe succeeded", host=options.host, port=options.port, client_id=options.client_id)
    return ProbeResult(True)
