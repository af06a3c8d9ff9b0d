"""Input validation helpers."""

from .broker_address import is_valid_broker_address, is_valid_port
from .mqtt_topic import is_valid_topic_filter, is_valid_topic_name

__all__ = ["is_valid_broker_address", "is_valid_port", "is_valid_topic_filter", "is_valid_topic_name"]
