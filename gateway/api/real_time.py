"""
Real-time WebSocket endpoint for the MQTT gateway.
"""

from fastapi import APIRouter, WebSocket, status

from ..auth.dependencies import authenticate_token
from ..exceptions import AuthenticationError
from ..realtime.websocket_handler import handle_websocket_connection
from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)

realtime_router = APIRouter(prefix="/api", tags=["realtime"])


def extract_token(websocket: WebSocket) -> tuple[str | None, str | None]:
    """
    Find the bearer token on a WebSocket handshake.

    Accepts the `bearer, <token>` subprotocol (preferred) or a `token` query
    parameter.

    Returns:
        (token, subprotocol to echo on accept)
    """
    token = websocket.query_params.get("token")
    subprotocol = None
    header = websocket.headers.get("sec-websocket-protocol")
    if header:
        parts = [p.strip() for p in header.split(",") if p.strip()]
        if parts and parts[0].lower() == "bearer":
            subprotocol = parts[0]
            if len(parts) > 1:
                token = parts[1]
        elif parts:
            token = parts[-1]
    return token, subprotocol


@realtime_router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint carrying MQTT traffic for the authenticated user."""
    token, subprotocol = extract_token(websocket)
    try:
        principal = authenticate_token(token, websocket.app)
    except AuthenticationError:
        logger.warning("WebSocket rejected: invalid token", client=str(websocket.client))
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    container = websocket.app.state.container
    await handle_websocket_connection(
        websocket,
        principal,
        container.supervisor,
        queue_size=container.config.session.outbound_queue_size,
        subprotocol=subprotocol,
    )
