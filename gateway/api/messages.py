"""
Recent message endpoint, a polling fallback for clients without a socket.
"""

from typing import Any

from fastapi import APIRouter, Depends, Query

from ..auth.dependencies import get_current_principal
from ..auth.principal import Principal
from ..realtime.gateway_supervisor import GatewaySupervisor
from ..realtime.message_buffer import MessageBuffer
from .dependencies import get_message_buffer, get_supervisor

message_router = APIRouter(prefix="/api", tags=["messages"])


@message_router.get("/messages")
async def recent_messages(
    broker_id: str | None = Query(default=None, alias="brokerId"),
    limit: int | None = Query(default=None, ge=1, le=1000),
    principal: Principal = Depends(get_current_principal),
    supervisor: GatewaySupervisor = Depends(get_supervisor),
    message_buffer: MessageBuffer = Depends(get_message_buffer),
) -> dict[str, Any]:
    """Newest buffered messages relayed for the caller, oldest first."""
    if broker_id is not None:
        await supervisor.authorize(principal, broker_id)
    messages = message_buffer.messages_for(principal.user_id, broker_id, limit)
    return {"messages": messages, "count": len(messages)}
