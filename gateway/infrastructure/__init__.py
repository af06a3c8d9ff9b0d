"""
Infrastructure layer for the MQTT gateway.

Adapters for external dependencies: the upstream MQTT client library and
broker record persistence.
"""

from .broker_store import BrokerStore, InMemoryBrokerStore
from .mqtt_session import ClientEvent, ClientEventKind, ErrorKind, MQTTClientSession, ProbeResult, SessionOptions

__all__ = [
    "BrokerStore",
    "ClientEvent",
    "ClientEventKind",
    "ErrorKind",
    "InMemoryBrokerStore",
    "MQTTClientSession",
    "ProbeResult",
    "SessionOptions",
]
