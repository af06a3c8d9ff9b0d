"""HTTP and WebSocket routes for the MQTT gateway."""
