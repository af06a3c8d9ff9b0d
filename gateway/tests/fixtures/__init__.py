"""Shared test doubles for the gateway test suite."""
