"""
Session-ending endpoint.

Tokens are issued by the identity collaborator; the gateway only needs to
know when a user logs out so it can drop their sessions and connections at
once instead of waiting out the grace period.
"""

from typing import Any

from fastapi import APIRouter, Depends

from ..auth.dependencies import get_current_principal
from ..auth.principal import Principal
from ..realtime.gateway_supervisor import GatewaySupervisor
from ..structured_logging.enhanced_logging_config import get_logger
from .dependencies import get_supervisor

logger = get_logger(__name__)

auth_router = APIRouter(prefix="/api/auth", tags=["auth"])


@auth_router.post("/logout")
async def logout(
    principal: Principal = Depends(get_current_principal),
    supervisor: GatewaySupervisor = Depends(get_supervisor),
) -> dict[str, Any]:
    removed = await supervisor.handle_logout(principal)
    logger.info("User logged out", user_id=principal.user_id, connections_removed=removed)
    return {"success": True, "connectionsRemoved": removed}
