"""
Tests for ApplicationContainer wiring and shutdown.
"""

import pytest

from gateway.config.models import AppConfig, SessionConfig
from gateway.container import ApplicationContainer
from gateway.infrastructure.broker_store import InMemoryBrokerStore
from gateway.realtime.broker_connection import ConnectionKey
from gateway.tests.fixtures.brokers import fast_config, make_endpoint
from gateway.tests.fixtures.mqtt import FakeSessionFactory


def build_container(sessions: FakeSessionFactory) -> ApplicationContainer:
    return ApplicationContainer(
        config=AppConfig(mqtt=fast_config(), session=SessionConfig(max_sessions_per_user=2, grace_period=1.5)),
        store=InMemoryBrokerStore([make_endpoint()]),
        session_factory=sessions,
    )


class TestApplicationContainer:
    @pytest.mark.asyncio
    async def test_initialize_wires_services(self):
        container = build_container(FakeSessionFactory())

        await container.initialize()

        assert container.supervisor.router is container.router
        assert container.supervisor.message_buffer is container.message_buffer
        assert container.router.max_sessions_per_user == 2

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self):
        container = build_container(FakeSessionFactory())
        await container.initialize()
        supervisor = container.supervisor

        await container.initialize()

        assert container.supervisor is supervisor

    @pytest.mark.asyncio
    async def test_shutdown_disconnects_everything(self):
        sessions = FakeSessionFactory()
        container = build_container(sessions)
        await container.initialize()
        endpoint = make_endpoint()
        container.supervisor.registry.get_or_create(ConnectionKey("u1", endpoint.id), endpoint).connect()
        container.message_buffer.append("u1", endpoint.id, "sensors/1", "42")

        await container.shutdown()

        assert len(container.supervisor.registry) == 0
        assert sessions.latest.closed
        assert len(container.message_buffer) == 0

    @pytest.mark.asyncio
    async def test_shutdown_before_initialize_is_noop(self):
        await build_container(FakeSessionFactory()).shutdown()
