"""
MQTT gateway server package.

Brokers access to remote MQTT brokers on behalf of authenticated users and
relays traffic to browser sessions over WebSockets.
"""

__version__ = "0.1.0"
