"""
WebSocket handler for the MQTT gateway.

Owns one accepted WebSocket from admission to cleanup: registers the session
with the supervisor, dispatches inbound command frames and reports failures
back as `error` events without dropping the socket.
"""

import json
import uuid
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect

from ..auth.principal import Principal
from ..error_types import ErrorType, create_websocket_error_data
from ..exceptions import (
    AuthenticationError,
    AuthorizationError,
    BrokerConnectionError,
    BrokerNotConnectedError,
    CredentialError,
    GatewayError,
    ResourceNotFoundError,
    ValidationError,
)
from ..structured_logging.enhanced_logging_config import bind_request_context, clear_request_context, get_logger
from .envelope import build_event
from .gateway_supervisor import GatewaySupervisor
from .realtime_session import WebSocketSession

logger = get_logger(__name__)

# Most specific first
_ERROR_TYPES: list[tuple[type[GatewayError], ErrorType]] = [
    (CredentialError, ErrorType.BROKER_CREDENTIALS_REJECTED),
    (BrokerNotConnectedError, ErrorType.BROKER_NOT_CONNECTED),
    (BrokerConnectionError, ErrorType.BROKER_CONNECTION_ERROR),
    (AuthenticationError, ErrorType.AUTHENTICATION_FAILED),
    (AuthorizationError, ErrorType.AUTHORIZATION_DENIED),
    (ResourceNotFoundError, ErrorType.RESOURCE_NOT_FOUND),
    (ValidationError, ErrorType.VALIDATION_ERROR),
]


def error_type_for(exc: GatewayError) -> ErrorType:
    for exc_class, error_type in _ERROR_TYPES:
        if isinstance(exc, exc_class):
            return error_type
    return ErrorType.INTERNAL_ERROR


def _send_error(session: WebSocketSession, error_type: ErrorType, message: str, broker_id: str | None = None) -> None:
    data = create_websocket_error_data(error_type, message, broker_id)
    session.send(build_event("error", data, user_id=session.user_id))


async def handle_websocket_message(
    session: WebSocketSession, principal: Principal, supervisor: GatewaySupervisor, message: dict[str, Any]
) -> None:
    """
    Dispatch one inbound command frame.

    Success is reported by the broker connection itself (mqtt_status,
    subscribed, published) to every session of the user, so nothing is sent
    back here on the happy path.

    Raises:
        GatewayError: Any failure the caller should turn into an error event
    """
    message_type = message.get("type")
    broker_id = message.get("brokerId")
    if not isinstance(broker_id, str) or not broker_id:
        raise ValidationError("brokerId is required", field="brokerId", user_friendly="brokerId is required")

    logger.debug(
        "WebSocket command received", user_id=principal.user_id, message_type=message_type, broker_id=broker_id
    )
    if message_type == "connect_broker":
        await supervisor.connect_broker(principal, broker_id)
    elif message_type == "subscribe":
        await supervisor.subscribe(principal, broker_id, message.get("topic"))
    elif message_type == "publish":
        await supervisor.publish(principal, broker_id, message.get("topic"), message.get("message"))
    elif message_type == "disconnect":
        await supervisor.disconnect_broker(principal, broker_id)
    else:
        raise ValidationError(
            f"Unknown message type: {message_type}",
            field="type",
            value=message_type,
            user_friendly="Unknown message type",
        )


async def _handle_websocket_message_loop(
    websocket: WebSocket, session: WebSocketSession, principal: Principal, supervisor: GatewaySupervisor
) -> None:
    """Handle the main WebSocket message loop."""
    while True:
        try:
            data = await websocket.receive_text()
            message = json.loads(data)
            if not isinstance(message, dict):
                _send_error(session, ErrorType.INVALID_FORMAT, "Message must be a JSON object")
                continue
            await handle_websocket_message(session, principal, supervisor, message)

        except json.JSONDecodeError:
            logger.warning("Invalid JSON from client", user_id=principal.user_id, session_id=session.session_id)
            _send_error(session, ErrorType.INVALID_FORMAT, "Invalid JSON format")

        except GatewayError as e:
            _send_error(session, error_type_for(e), e.user_friendly, e.context.broker_id)

        except WebSocketDisconnect:
            logger.info("WebSocket disconnected", user_id=principal.user_id, session_id=session.session_id)
            break

        except RuntimeError as e:
            error_message = str(e)
            if "WebSocket is not connected" in error_message or 'Need to call "accept" first' in error_message:
                logger.warning(
                    "WebSocket connection lost (not connected)",
                    user_id=principal.user_id,
                    session_id=session.session_id,
                    error=error_message,
                )
                break
            raise

        except Exception as e:  # pylint: disable=broad-exception-caught  # Reason: keep the session open
            logger.error(
                "Error handling WebSocket message",
                user_id=principal.user_id,
                session_id=session.session_id,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            _send_error(session, ErrorType.INTERNAL_ERROR, "An internal error occurred")


async def handle_websocket_connection(
    websocket: WebSocket,
    principal: Principal,
    supervisor: GatewaySupervisor,
    queue_size: int = 1000,
    subprotocol: str | None = None,
) -> None:
    """
    Run one authenticated WebSocket to completion.

    Args:
        websocket: Not yet accepted socket
        principal: Caller resolved from the bearer token
        supervisor: Gateway supervisor the session is registered with
        queue_size: Outbound frame queue bound
        subprotocol: Subprotocol to echo on accept, when the client offered one
    """
    # Tasks started from here (broker sessions, timers) inherit this binding
    bind_request_context(user_id=principal.user_id)
    await websocket.accept(subprotocol=subprotocol)
    session = WebSocketSession(uuid.uuid4().hex, principal.user_id, websocket, queue_size)
    session.start()
    welcome = {"sessionId": session.session_id, "userId": principal.user_id}
    session.send(build_event("welcome", welcome, user_id=principal.user_id))
    logger.info("WebSocket session opened", user_id=principal.user_id, session_id=session.session_id)

    try:
        await supervisor.on_session_connect(principal, session)
        await _handle_websocket_message_loop(websocket, session, principal, supervisor)
    finally:
        supervisor.on_session_disconnect(session.session_id)
        await session.stop()
        logger.info("WebSocket session closed", user_id=principal.user_id, session_id=session.session_id)
        clear_request_context()
