"""Domain models."""

from .broker import BrokerEndpoint, BrokerStatus

__all__ = ["BrokerEndpoint", "BrokerStatus"]
