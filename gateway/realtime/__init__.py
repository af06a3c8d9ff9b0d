"""Broker connections, session routing and the WebSocket transport."""
