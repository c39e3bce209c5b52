"""Ports, shared errors and application state."""
