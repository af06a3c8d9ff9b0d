"""
Unit tests for InMemoryBrokerStore and broker address validation.
"""

import pytest

from gateway.infrastructure.broker_store import InMemoryBrokerStore
from gateway.models.broker import BrokerStatus
from gateway.tests.fixtures.brokers import make_endpoint
from gateway.validators.broker_address import is_valid_broker_address, is_valid_port


class TestInMemoryBrokerStore:
    @pytest.mark.asyncio
    async def test_admin_sees_owned_brokers(self):
        store = InMemoryBrokerStore(
            [
                make_endpoint(id="b1"),
                make_endpoint(id="b2", assigned_user_id=None),
                make_endpoint(id="b3", owner_id="x"),
            ]
        )

        brokers = await store.find_brokers_for_user("admin1", is_admin=True)

        assert sorted(b.id for b in brokers) == ["b1", "b2"]

    @pytest.mark.asyncio
    async def test_user_sees_assigned_broker(self):
        store = InMemoryBrokerStore([make_endpoint(id="b1")])

        assert [b.id for b in await store.find_brokers_for_user("u1", is_admin=False)] == ["b1"]
        assert await store.find_brokers_for_user("u2", is_admin=False) == []

    @pytest.mark.asyncio
    async def test_records_returned_as_copies(self):
        store = InMemoryBrokerStore([make_endpoint()])
        broker = await store.find_broker_by_id("b1")
        broker.host = "10.9.9.9"

        assert (await store.find_broker_by_id("b1")).host == "192.168.1.10"

    @pytest.mark.asyncio
    async def test_update_status(self):
        store = InMemoryBrokerStore([make_endpoint()])

        await store.update_status("b1", BrokerStatus.CONNECTED)
        broker = await store.find_broker_by_id("b1")
        assert broker.status is BrokerStatus.CONNECTED
        assert broker.connection_time is not None

        await store.update_status("b1", BrokerStatus.ERROR, "Failed to connect to broker after 5 attempts")
        assert (await store.find_broker_by_id("b1")).last_error == "Failed to connect to broker after 5 attempts"

        # Unknown ids are ignored
        await store.update_status("missing", BrokerStatus.CONNECTED)

    @pytest.mark.asyncio
    async def test_assign_moves_user_off_previous_broker(self):
        store = InMemoryBrokerStore([make_endpoint(id="b1"), make_endpoint(id="b2", assigned_user_id=None)])

        await store.assign_broker("b2", "u1")

        assert (await store.find_broker_by_id("b1")).assigned_user_id is None
        assert [b.id for b in await store.find_brokers_for_user("u1", is_admin=False)] == ["b2"]
        assert await store.assign_broker("missing", "u1") is None

    @pytest.mark.asyncio
    async def test_create_and_delete(self):
        store = InMemoryBrokerStore()
        created = await store.create_broker(make_endpoint(id="new"))

        assert len(store) == 1
        assert await store.delete_broker(created.id) is True
        assert await store.delete_broker(created.id) is False

    def test_public_dict_hides_password(self):
        data = make_endpoint().to_public_dict()

        assert "password" not in data
        assert data["has_password"] is True
        assert data["status"] == "disconnected"


class TestBrokerAddressValidation:
    @pytest.mark.parametrize(
        "address",
        ["192.168.1.10", "0.0.0.0", "255.255.255.255", "localhost", "LOCALHOST", "mqtt.example.com", "broker-1"],
    )
    def test_accepted(self, address):
        assert is_valid_broker_address(address)

    @pytest.mark.parametrize(
        "address",
        ["", None, "   ", "256.1.1.1", "1.2.3", "1.2.3.4.5", "-bad.example.com", "bad_host", "http://x", "a" * 64],
    )
    def test_rejected(self, address):
        assert not is_valid_broker_address(address)

    @pytest.mark.parametrize(
        "port, valid",
        [(1883, True), (1, True), (65535, True), (0, False), (65536, False), (True, False), ("1883", False)],
    )
    def test_port(self, port, valid):
        assert is_valid_port(port) is valid
