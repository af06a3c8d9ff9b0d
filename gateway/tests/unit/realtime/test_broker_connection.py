"""
Unit tests for BrokerConnection.

The underlying MQTT client is replaced by FakeSession so every network event
is injected explicitly and the reconnect timers run with millisecond delays.
"""

import asyncio

import pytest
from aiomqtt import MqttError

from gateway.infrastructure.mqtt_session import ErrorKind, ProbeResult
from gateway.realtime.broker_connection import BrokerConnection, ConnectionKey
from gateway.tests.fixtures.brokers import fast_config, make_endpoint
from gateway.tests.fixtures.mqtt import EventRecorder, FakeProbe, FakeSessionFactory, wait_for

KEY = ConnectionKey("u1", "b1")


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def factory() -> FakeSessionFactory:
    return FakeSessionFactory()


@pytest.fixture
def connection(recorder, factory) -> BrokerConnection:
    return BrokerConnection(KEY, make_endpoint(), recorder, fast_config(), session_factory=factory)


class TestConnect:
    """Connect attempts and the happy path."""

    @pytest.mark.asyncio
    async def test_connect_opens_session_and_reports_connecting(self, connection, recorder, factory):
        assert connection.connect() is True

        assert connection.state == "connecting"
        assert connection.retry_attempts == 1
        assert recorder.statuses() == ["connecting"]
        session = factory.latest
        assert session.started
        assert session.options.host == "192.168.1.10"
        assert session.options.username == "sensor"
        assert session.options.client_id.startswith("server_u1_b1_")

    @pytest.mark.asyncio
    async def test_connected_event_resets_retry_budget(self, connection, recorder, factory):
        connection.connect()
        factory.latest.connected()

        assert connection.is_connected
        assert connection.retry_attempts == 0
        assert connection.last_error is None
        assert recorder.statuses() == ["connecting", "connected"]
        assert all(data["brokerId"] == "b1" for _, _, data in recorder.events)

    @pytest.mark.asyncio
    async def test_connect_on_live_connection_is_noop(self, connection, recorder, factory):
        connection.connect()
        assert connection.connect() is False
        factory.latest.connected()
        assert connection.connect() is False

        assert len(factory.sessions) == 1
        assert recorder.statuses() == ["connecting", "connected"]

    @pytest.mark.asyncio
    async def test_invalid_host_is_fatal_without_session(self, recorder, factory):
        connection = BrokerConnection(
            KEY, make_endpoint(host="999.1.1.1"), recorder, fast_config(), session_factory=factory
        )

        assert connection.connect() is False

        assert factory.sessions == []
        assert connection.state == "disconnected"
        fatal = recorder.fatal_errors()
        assert len(fatal) == 1
        assert fatal[0]["message"] == "Invalid IP address: 999.1.1.1"

    @pytest.mark.asyncio
    async def test_listener_failure_does_not_break_lifecycle(self, factory):
        def broken_listener(key, event_type, data):
            raise RuntimeError("listener exploded")

        connection = BrokerConnection(KEY, make_endpoint(), broken_listener, fast_config(), session_factory=factory)
        connection.connect()
        factory.latest.connected()

        assert connection.is_connected


class TestMessages:
    """Inbound message relay."""

    @pytest.mark.asyncio
    async def test_json_payload_relayed_as_text(self, connection, recorder, factory):
        connection.connect()
        factory.latest.connected()
        factory.latest.message("sensors/1", b'{"temp": 21.5}')

        messages = recorder.of_type("mqtt_message")
        assert messages == [{"brokerId": "b1", "topic": "sensors/1", "message": '{"temp": 21.5}', "qos": 0}]

    @pytest.mark.asyncio
    async def test_non_utf8_payload_is_replaced_not_dropped(self, connection, recorder, factory):
        connection.connect()
        factory.latest.connected()
        factory.latest.message("raw", b"\xff\xfeok")

        messages = recorder.of_type("mqtt_message")
        assert len(messages) == 1
        assert messages[0]["message"].endswith("ok")


class TestReconnect:
    """Automatic reconnect and retry exhaustion."""

    @pytest.mark.asyncio
    async def test_close_after_connected_schedules_reconnect(self, connection, recorder, factory):
        connection.connect()
        factory.latest.connected()
        factory.latest.drop()

        assert connection.state == "disconnected"
        assert connection.reconnect_pending
        assert recorder.statuses()[-1] == "disconnected"

        assert await wait_for(lambda: len(factory.sessions) == 2)
        assert connection.state == "connecting"
        factory.latest.connected()
        assert connection.is_connected

    @pytest.mark.asyncio
    async def test_retry_exhaustion_emits_one_fatal_error(self, connection, recorder, factory):
        connection.connect()
        for attempt in range(1, 4):
            assert await wait_for(lambda: len(factory.sessions) == attempt)
            factory.latest.fail()

        assert connection.state == "disconnected"
        assert not connection.reconnect_pending
        fatal = recorder.fatal_errors()
        assert len(fatal) == 1
        assert fatal[0]["message"] == "Failed to connect to broker after 3 attempts"
        assert fatal[0]["error_type"] == "retries_exhausted"

        # Nothing else is scheduled
        await asyncio.sleep(0.1)
        assert len(factory.sessions) == 3
        assert len(recorder.fatal_errors()) == 1

    @pytest.mark.asyncio
    async def test_every_failure_reports_non_fatal_error(self, connection, recorder, factory):
        connection.connect()
        factory.latest.fail("Connection refused")

        errors = recorder.of_type("error")
        assert errors[0] == {"brokerId": "b1", "message": "MQTT error: Connection refused"}
        assert connection.last_error_kind is ErrorKind.REFUSED
        connection.disconnect()

    @pytest.mark.asyncio
    async def test_credential_rejection_is_not_retried(self, connection, recorder, factory):
        connection.connect()
        factory.latest.fail("Not authorized", ErrorKind.CREDENTIALS)

        assert connection.state == "disconnected"
        assert not connection.reconnect_pending
        assert connection.last_error_kind is ErrorKind.CREDENTIALS
        fatal = recorder.fatal_errors()
        assert len(fatal) == 1
        assert fatal[0]["message"] == "Authentication failed: Not authorized"
        assert fatal[0]["errorKind"] == "credentials"
        assert fatal[0]["error_type"] == "broker_credentials_rejected"

        await asyncio.sleep(0.05)
        assert len(factory.sessions) == 1

    @pytest.mark.asyncio
    async def test_subscriptions_restored_after_reconnect(self, connection, factory):
        connection.connect()
        factory.latest.connected()
        assert await connection.subscribe("sensors/#")

        factory.latest.drop()
        assert await wait_for(lambda: len(factory.sessions) == 2)
        factory.latest.connected()

        assert await wait_for(lambda: factory.latest.subscribed == ["sensors/#"])


class TestDisconnect:
    """Explicit disconnect."""

    @pytest.mark.asyncio
    async def test_disconnect_is_idempotent(self, connection, recorder, factory):
        connection.disconnect()
        assert recorder.events == []

        connection.connect()
        factory.latest.connected()
        connection.disconnect()
        connection.disconnect()

        assert recorder.statuses() == ["connecting", "connected", "disconnected"]
        assert factory.latest.closed

    @pytest.mark.asyncio
    async def test_disconnect_cancels_pending_reconnect(self, connection, factory):
        connection.connect()
        factory.latest.connected()
        factory.latest.drop()
        assert connection.reconnect_pending

        connection.disconnect()

        assert not connection.reconnect_pending
        await asyncio.sleep(0.05)
        assert len(factory.sessions) == 1

    @pytest.mark.asyncio
    async def test_explicit_disconnect_forgets_subscriptions(self, connection, factory):
        connection.connect()
        factory.latest.connected()
        assert await connection.subscribe("sensors/#")

        connection.disconnect()
        connection.connect()
        factory.latest.connected()
        await asyncio.sleep(0.02)

        assert connection.subscriptions == set()
        assert factory.latest.subscribed == []

    @pytest.mark.asyncio
    async def test_credential_failure_keeps_subscriptions(self, connection, factory):
        connection.connect()
        factory.latest.connected()
        assert await connection.subscribe("sensors/#")

        factory.latest.fail("Not authorized", ErrorKind.CREDENTIALS)

        assert connection.state == "disconnected"
        assert connection.subscriptions == {"sensors/#"}

    @pytest.mark.asyncio
    async def test_events_from_released_session_are_ignored(self, connection, recorder, factory):
        connection.connect()
        stale = factory.latest
        connection.disconnect()
        event_count = len(recorder.events)

        stale.connected()
        stale.message("t", b"late")
        stale.drop()

        assert connection.state == "disconnected"
        assert len(recorder.events) == event_count


class TestOperations:
    """Subscribe, publish and probes."""

    @pytest.mark.asyncio
    async def test_subscribe_requires_connection(self, connection, recorder):
        assert await connection.subscribe("a/b") is False
        assert recorder.of_type("error") == [{"brokerId": "b1", "message": "MQTT client not connected"}]

    @pytest.mark.asyncio
    async def test_subscribe_and_publish_when_connected(self, connection, recorder, factory):
        connection.connect()
        factory.latest.connected()

        assert await connection.subscribe("a/b") is True
        assert await connection.publish("a/b", "42") is True

        assert factory.latest.subscribed == ["a/b"]
        assert factory.latest.published == [("a/b", "42")]
        assert recorder.of_type("subscribed") == [{"brokerId": "b1", "topic": "a/b"}]
        assert recorder.of_type("published") == [{"brokerId": "b1", "topic": "a/b"}]
        assert connection.subscriptions == {"a/b"}

    @pytest.mark.asyncio
    async def test_publish_failure_reports_error(self, connection, recorder, factory):
        connection.connect()
        factory.latest.connected()
        factory.latest.publish_error = MqttError("queue full")

        assert await connection.publish("a/b", "42") is False
        assert recorder.of_type("error")[-1]["message"] == "Publish error: queue full"

    @pytest.mark.asyncio
    async def test_subscribe_failure_reports_error(self, connection, recorder, factory):
        connection.connect()
        factory.latest.connected()
        factory.latest.subscribe_error = MqttError("bad filter")

        assert await connection.subscribe("a/#/b") is False
        assert recorder.of_type("error")[-1]["message"] == "Subscription error: bad filter"
        assert connection.subscriptions == set()

    @pytest.mark.asyncio
    async def test_publish_rejected_by_client_library_reports_error(self, connection, recorder, factory):
        connection.connect()
        factory.latest.connected()
        factory.latest.publish_error = ValueError("Publish topic cannot contain wildcards.")

        assert await connection.publish("a/#", "42") is False
        assert recorder.of_type("error")[-1]["message"] == "Publish error: Publish topic cannot contain wildcards."
        assert recorder.of_type("published") == []

    @pytest.mark.asyncio
    async def test_subscribe_rejected_by_client_library_reports_error(self, connection, recorder, factory):
        connection.connect()
        factory.latest.connected()
        factory.latest.subscribe_error = TypeError("topic must be a string")

        assert await connection.subscribe(5) is False
        assert recorder.of_type("error")[-1]["message"] == "Subscription error: topic must be a string"
        assert connection.subscriptions == set()

    @pytest.mark.asyncio
    async def test_probe_leaves_connection_untouched(self, recorder, factory):
        probe = FakeProbe(ProbeResult(True))
        connection = BrokerConnection(
            KEY, make_endpoint(), recorder, fast_config(), session_factory=factory, probe=probe
        )

        assert await connection.test_connection(8883) is True

        options = probe.calls[0]
        assert options.port == 8883
        assert options.client_id.startswith("test_u1_")
        assert options.timeout == connection.config.probe_timeout
        assert connection.state == "disconnected"
        assert connection.retry_attempts == 0
        assert recorder.events == []
        assert factory.sessions == []

    @pytest.mark.asyncio
    async def test_wait_until_connected(self, connection, factory):
        connection.connect()
        asyncio.get_running_loop().call_later(0.02, factory.latest.connected)

        assert await connection.wait_until_connected(1.0, 0.005) is True

    @pytest.mark.asyncio
    async def test_wait_until_connected_gives_up_when_nothing_pending(self, connection):
        loop = asyncio.get_running_loop()
        started = loop.time()

        assert await connection.wait_until_connected(1.0, 0.005) is False
        assert loop.time() - started < 0.5

    @pytest.mark.asyncio
    async def test_status_snapshot(self, connection, factory):
        connection.connect()
        factory.latest.connected()
        await connection.subscribe("x/y")

        status = connection.get_status()
        assert status["status"] == "connected"
        assert status["brokerId"] == "b1"
        assert status["maxRetries"] == 3
        assert status["subscriptions"] == ["x/y"]
        assert status["stats"]["total_connections"] == 1
