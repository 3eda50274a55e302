"""Errors, request context and telemetry shared by the engine and the HTTP layer."""
