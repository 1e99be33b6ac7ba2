"""Versioned contract identifiers for boundary payloads and progress events."""

ERROR_SCHEMA_V1 = "error.v1"
INSTALL_EVENT_SCHEMA_V1 = "install_event.v1"
