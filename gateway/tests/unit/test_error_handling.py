"""
Unit tests for the exception hierarchy, error responses and websocket error frames.
"""

import pytest

from gateway.error_handlers import create_error_response
from gateway.error_types import ErrorType, create_websocket_error_data
from gateway.exceptions import (
    AuthenticationError,
    AuthorizationError,
    BrokerConnectionError,
    BrokerNotConnectedError,
    CredentialError,
    ErrorContext,
    GatewayError,
    ResourceNotFoundError,
    ValidationError,
    handle_exception,
)
from gateway.realtime.websocket_handler import error_type_for


class TestExceptions:
    def test_context_carried(self):
        error = BrokerNotConnectedError("MQTT client not connected", ErrorContext(user_id="u1", broker_id="b1"))

        data = error.to_dict()
        assert data["error_type"] == "BrokerNotConnectedError"
        assert data["context"]["broker_id"] == "b1"
        assert data["details"]["error_kind"] == "network"

    def test_credential_error_kind(self):
        error = CredentialError("Broker rejected credentials", last_error="Not authorized")
        assert isinstance(error, BrokerConnectionError)
        assert error.details == {"error_kind": "credentials", "last_error": "Not authorized"}

    @pytest.mark.parametrize(
        "exc, expected",
        [
            (ValueError("bad"), ValidationError),
            (KeyError("b1"), ResourceNotFoundError),
            (ConnectionError("reset"), BrokerConnectionError),
            (TimeoutError("slow"), BrokerConnectionError),
        ],
    )
    def test_handle_exception_maps_builtin_errors(self, exc, expected):
        assert isinstance(handle_exception(exc), expected)

    def test_handle_exception_passes_gateway_errors_through(self):
        error = GatewayError("boom")
        assert handle_exception(error) is error


class TestErrorResponses:
    @pytest.mark.parametrize(
        "error, status",
        [
            (AuthenticationError("no token"), 401),
            (AuthorizationError("not yours"), 403),
            (ValidationError("bad topic", field="topic"), 400),
            (ResourceNotFoundError("Broker not found", resource_type="broker", resource_id="b9"), 404),
            (CredentialError("Broker rejected credentials"), 502),
            (BrokerNotConnectedError("MQTT client not connected"), 503),
            (GatewayError("boom"), 500),
        ],
    )
    def test_status_codes(self, error, status):
        assert create_error_response(error).status_code == status

    def test_only_safe_details_exposed(self):
        error = BrokerConnectionError("Publish error", last_error="secret broker detail")

        body = create_error_response(error).to_dict()

        assert body["error"]["details"] == {"error_kind": "network"}
        assert body["error"]["type"] == "BrokerConnectionError"


class TestWebsocketErrorData:
    def test_payload_shape(self):
        data = create_websocket_error_data(ErrorType.VALIDATION_ERROR, "Topic is required", broker_id="b1")
        assert data == {"message": "Topic is required", "error_type": "validation_error", "brokerId": "b1"}

    @pytest.mark.parametrize(
        "error, expected",
        [
            (CredentialError("x"), ErrorType.BROKER_CREDENTIALS_REJECTED),
            (BrokerNotConnectedError("x"), ErrorType.BROKER_NOT_CONNECTED),
            (BrokerConnectionError("x"), ErrorType.BROKER_CONNECTION_ERROR),
            (AuthorizationError("x"), ErrorType.AUTHORIZATION_DENIED),
            (ResourceNotFoundError("x"), ErrorType.RESOURCE_NOT_FOUND),
            (ValidationError("x"), ErrorType.VALIDATION_ERROR),
            (GatewayError("x"), ErrorType.INTERNAL_ERROR),
        ],
    )
    def test_error_type_mapping(self, error, expected):
        assert error_type_for(error) is expected
