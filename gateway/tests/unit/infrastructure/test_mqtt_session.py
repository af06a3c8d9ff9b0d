"""
Unit tests for the aiomqtt-backed client session, error classification and probes.
"""

import asyncio
from dataclasses import dataclass

import pytest
from aiomqtt import MqttCodeError, MqttError

from gateway.infrastructure.mqtt_session import (
    ClientEventKind,
    ErrorKind,
    MQTTClientSession,
    SessionOptions,
    classify_mqtt_error,
    probe_broker,
)
from gateway.tests.fixtures.mqtt import wait_for

OPTIONS = SessionOptions(host="127.0.0.1", port=1883, client_id="server_u1_b1_1", username="sensor", password="pw")


@dataclass
class FakeMessage:
    topic: str
    payload: bytes | str
    qos: int = 0


class FakeClient:
    """Async context manager shaped like aiomqtt.Client."""

    def __init__(self, messages=(), enter_error: Exception | None = None, stream_error: Exception | None = None):
        self._messages = list(messages)
        self.enter_error = enter_error
        self.stream_error = stream_error
        self.kwargs: dict = {}
        self.exited = False
        self.published: list[tuple] = []
        self.subscribed: list[tuple] = []

    def __call__(self, **kwargs):
        self.kwargs = kwargs
        return self

    async def __aenter__(self):
        if self.enter_error is not None:
            raise self.enter_error
        return self

    async def __aexit__(self, *exc_info):
        self.exited = True
        return False

    @property
    def messages(self):
        return self._iterate()

    async def _iterate(self):
        for message in self._messages:
            yield message
        if self.stream_error is not None:
            raise self.stream_error
        await asyncio.Event().wait()

    async def publish(self, topic, payload, qos=0):
        self.published.append((topic, payload, qos))

    async def subscribe(self, topic, qos=0):
        self.subscribed.append((topic, qos))


class TestClassifyMqttError:
    @pytest.mark.parametrize(
        "exc, expected",
        [
            (MqttCodeError(5), ErrorKind.CREDENTIALS),
            (MqttCodeError(4), ErrorKind.CREDENTIALS),
            (MqttCodeError(135), ErrorKind.CREDENTIALS),
            (MqttCodeError(3), ErrorKind.REFUSED),
            (MqttCodeError(2), ErrorKind.PROTOCOL),
            (MqttError("Connection Refused: not authorised."), ErrorKind.CREDENTIALS),
            (MqttError("[Errno 111] Connection refused"), ErrorKind.REFUSED),
            (MqttError("timed out"), ErrorKind.TIMEOUT),
            (MqttError("[Errno -2] Name or service not known"), ErrorKind.NOT_FOUND),
            (ConnectionRefusedError(), ErrorKind.REFUSED),
            (TimeoutError(), ErrorKind.TIMEOUT),
            (MqttError("Disconnected during message iteration"), ErrorKind.NETWORK),
        ],
    )
    def test_classification(self, exc, expected):
        assert classify_mqtt_error(exc) is expected

    def test_only_credentials_are_not_retryable(self):
        assert [kind for kind in ErrorKind if not kind.retryable] == [ErrorKind.CREDENTIALS]


class TestMQTTClientSession:
    @pytest.mark.asyncio
    async def test_client_built_from_options(self):
        client = FakeClient(stream_error=MqttError("lost"))
        session = MQTTClientSession(OPTIONS, lambda event: None, client_factory=client)
        session.start()
        assert await wait_for(lambda: client.exited)

        assert client.kwargs["hostname"] == "127.0.0.1"
        assert client.kwargs["identifier"] == "server_u1_b1_1"
        assert client.kwargs["username"] == "sensor"
        assert client.kwargs["timeout"] == OPTIONS.timeout

    @pytest.mark.asyncio
    async def test_events_in_order(self):
        events = []
        client = FakeClient(
            messages=[FakeMessage("a", b"1"), FakeMessage("b", "two", 1)],
            stream_error=MqttError("Disconnected during message iteration"),
        )
        session = MQTTClientSession(OPTIONS, events.append, client_factory=client)
        session.start()

        assert await wait_for(lambda: events and events[-1].kind is ClientEventKind.CLOSED)
        assert [e.kind for e in events] == [
            ClientEventKind.CONNECTED,
            ClientEventKind.MESSAGE,
            ClientEventKind.MESSAGE,
            ClientEventKind.ERROR,
            ClientEventKind.OFFLINE,
            ClientEventKind.CLOSED,
        ]
        assert (events[1].topic, events[1].payload) == ("a", b"1")
        assert (events[2].payload, events[2].qos) == (b"two", 1)
        assert events[3].error_kind is ErrorKind.NETWORK

    @pytest.mark.asyncio
    async def test_connect_failure_has_no_offline_event(self):
        events = []
        client = FakeClient(enter_error=MqttCodeError(5))
        session = MQTTClientSession(OPTIONS, events.append, client_factory=client)
        session.start()

        assert await wait_for(lambda: events and events[-1].kind is ClientEventKind.CLOSED)
        assert [e.kind for e in events] == [ClientEventKind.ERROR, ClientEventKind.CLOSED]
        assert events[0].error_kind is ErrorKind.CREDENTIALS

    @pytest.mark.asyncio
    async def test_close_suppresses_further_events(self):
        events = []
        client = FakeClient()
        session = MQTTClientSession(OPTIONS, events.append, client_factory=client)
        session.start()
        assert await wait_for(lambda: len(events) == 1)

        session.close()

        assert await wait_for(lambda: client.exited)
        await asyncio.sleep(0.01)
        assert [e.kind for e in events] == [ClientEventKind.CONNECTED]
        assert not session.is_open

    @pytest.mark.asyncio
    async def test_start_twice_rejected(self):
        session = MQTTClientSession(OPTIONS, lambda event: None, client_factory=FakeClient())
        session.start()
        with pytest.raises(RuntimeError):
            session.start()
        session.close()

    @pytest.mark.asyncio
    async def test_publish_and_subscribe_use_qos_zero(self):
        client = FakeClient()
        events = []
        session = MQTTClientSession(OPTIONS, events.append, client_factory=client)
        session.start()
        assert await wait_for(lambda: session.is_open)

        await session.publish("t", "42")
        await session.subscribe("t/#")

        assert client.published == [("t", "42", 0)]
        assert client.subscribed == [("t/#", 0)]
        session.close()

    @pytest.mark.asyncio
    async def test_publish_before_open_raises(self):
        session = MQTTClientSession(OPTIONS, lambda event: None, client_factory=FakeClient())
        with pytest.raises(MqttError):
            await session.publish("t", "42")


class TestProbeBroker:
    @pytest.mark.asyncio
    async def test_probe_success(self):
        client = FakeClient()
        result = await probe_broker(OPTIONS, client_factory=client)

        assert result.success
        assert client.exited

    @pytest.mark.asyncio
    async def test_probe_credentials_rejected(self):
        result = await probe_broker(OPTIONS, client_factory=FakeClient(enter_error=MqttCodeError(5)))

        assert not result.success
        assert result.error_kind is ErrorKind.CREDENTIALS

    @pytest.mark.asyncio
    async def test_probe_times_out(self):
        class HangingClient(FakeClient):
            async def __aenter__(self):
                await asyncio.Event().wait()

        options = SessionOptions(host="127.0.0.1", port=1883, client_id="test_u1_1", timeout=0.01)
        result = await probe_broker(options, client_factory=HangingClient())

        assert result.success is False
        assert result.error == "Connection timeout"
        assert result.error_kind is ErrorKind.TIMEOUT
