"""
Shared route dependencies.
"""

from fastapi import Request

from ..container import ApplicationContainer
from ..realtime.gateway_supervisor import GatewaySupervisor
from ..realtime.message_buffer import MessageBuffer


def get_container(request: Request) -> ApplicationContainer:
    return request.app.state.container


def get_supervisor(request: Request) -> GatewaySupervisor:
    supervisor = get_container(request).supervisor
    assert supervisor is not None, "container not initialized"
    return supervisor


def get_message_buffer(request: Request) -> MessageBuffer:
    buffer = get_container(request).message_buffer
    assert buffer is not None, "container not initialized"
    return buffer
