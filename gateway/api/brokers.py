"""
Broker management and control endpoints.

Admins create, assign and delete brokers they own. Any caller may drive the
connection of a broker they own or have assigned; every route delegates to
the GatewaySupervisor, which enforces that rule.
"""

from typing import Any

from fastapi import APIRouter, Depends, status

from ..auth.dependencies import get_current_principal, require_roles
from ..auth.principal import Principal
from ..models.broker import BrokerEndpoint
from ..realtime.gateway_supervisor import GatewaySupervisor
from ..schemas.brokers import (
    BrokerAssignRequest,
    BrokerCreateRequest,
    PublishRequest,
    SubscribeRequest,
    TestConnectionRequest,
)
from ..structured_logging.enhanced_logging_config import get_logger
from .dependencies import get_supervisor

logger = get_logger(__name__)

broker_router = APIRouter(prefix="/api/brokers", tags=["brokers"])


@broker_router.get("")
async def list_brokers(
    principal: Principal = Depends(get_current_principal),
    supervisor: GatewaySupervisor = Depends(get_supervisor),
) -> dict[str, Any]:
    """Brokers the caller owns (admins) or has assigned (users)."""
    brokers = await supervisor.store.find_brokers_for_user(principal.user_id, supervisor.is_admin(principal))
    return {"brokers": [b.to_public_dict() for b in brokers]}


@broker_router.post("", status_code=status.HTTP_201_CREATED)
async def create_broker(
    request_data: BrokerCreateRequest,
    principal: Principal = Depends(require_roles()),
    supervisor: GatewaySupervisor = Depends(get_supervisor),
) -> dict[str, Any]:
    endpoint = BrokerEndpoint(owner_id=principal.user_id, **request_data.model_dump())
    created = await supervisor.store.create_broker(endpoint)
    logger.info("Broker created via API", broker_id=created.id, user_id=principal.user_id)
    return created.to_public_dict()


@broker_router.post("/{broker_id}/assign")
async def assign_broker(
    broker_id: str,
    request_data: BrokerAssignRequest,
    principal: Principal = Depends(require_roles()),
    supervisor: GatewaySupervisor = Depends(get_supervisor),
) -> dict[str, Any]:
    updated = await supervisor.assign_broker(principal, broker_id, request_data.user_id)
    return updated.to_public_dict()


@broker_router.delete("/{broker_id}")
async def delete_broker(
    broker_id: str,
    principal: Principal = Depends(require_roles()),
    supervisor: GatewaySupervisor = Depends(get_supervisor),
) -> dict[str, Any]:
    await supervisor.delete_broker(principal, broker_id)
    return {"brokerId": broker_id, "deleted": True}


@broker_router.post("/{broker_id}/connect", status_code=status.HTTP_202_ACCEPTED)
async def connect_broker(
    broker_id: str,
    principal: Principal = Depends(get_current_principal),
    supervisor: GatewaySupervisor = Depends(get_supervisor),
) -> dict[str, Any]:
    """Start connecting; progress arrives as mqtt_status events on the real-time channel."""
    connection = await supervisor.connect_broker(principal, broker_id)
    return {"brokerId": broker_id, "status": connection.state}


@broker_router.post("/{broker_id}/disconnect")
async def disconnect_broker(
    broker_id: str,
    principal: Principal = Depends(get_current_principal),
    supervisor: GatewaySupervisor = Depends(get_supervisor),
) -> dict[str, Any]:
    await supervisor.disconnect_broker(principal, broker_id)
    return {"brokerId": broker_id, "status": "disconnected"}


@broker_router.post("/{broker_id}/subscribe")
async def subscribe(
    broker_id: str,
    request_data: SubscribeRequest,
    principal: Principal = Depends(get_current_principal),
    supervisor: GatewaySupervisor = Depends(get_supervisor),
) -> dict[str, Any]:
    await supervisor.subscribe(principal, broker_id, request_data.topic)
    return {"success": True, "brokerId": broker_id, "topic": request_data.topic}


@broker_router.post("/{broker_id}/publish")
async def publish(
    broker_id: str,
    request_data: PublishRequest,
    principal: Principal = Depends(get_current_principal),
    supervisor: GatewaySupervisor = Depends(get_supervisor),
) -> dict[str, Any]:
    await supervisor.publish(principal, broker_id, request_data.topic, request_data.message)
    return {"success": True, "brokerId": broker_id, "topic": request_data.topic}


@broker_router.get("/{broker_id}/status")
async def broker_status(
    broker_id: str,
    principal: Principal = Depends(get_current_principal),
    supervisor: GatewaySupervisor = Depends(get_supervisor),
) -> dict[str, Any]:
    return await supervisor.broker_status(principal, broker_id)


@broker_router.post("/{broker_id}/test")
async def test_connection(
    broker_id: str,
    request_data: TestConnectionRequest | None = None,
    principal: Principal = Depends(get_current_principal),
    supervisor: GatewaySupervisor = Depends(get_supervisor),
) -> dict[str, Any]:
    """Probe the broker with a throwaway client; the live connection is untouched."""
    port = request_data.port if request_data is not None else None
    success = await supervisor.test_broker_connection(principal, broker_id, port)
    return {"brokerId": broker_id, "success": success}


@broker_router.post("/{broker_id}/diagnose")
async def diagnose(
    broker_id: str,
    principal: Principal = Depends(get_current_principal),
    supervisor: GatewaySupervisor = Depends(get_supervisor),
) -> dict[str, Any]:
    return await supervisor.diagnose_credentials(principal, broker_id)
