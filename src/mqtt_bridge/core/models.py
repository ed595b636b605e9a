"""
Data Models for the Connection Registry.

This module defines the value types shared by the registry, the connection
wrapper and the messaging clients. All models use Pydantic for validation.

Key Models:
    - ConnectionHandle: Opaque, hashable identifier for one connection session
    - ConnectionState: Lifecycle state of a registered connection
    - BridgeSettings: Transport settings applied to every underlying client

Handle Design:
    Handles are issued by a monotonic counter and never reused, so a handle
    that has been closed can never silently address a newer connection.
    ConnectionHandle wraps the integer instead of subclassing it, which keeps
    handles from being mixed up with ports, message ids or other counters.

Example:
    >>> handle = ConnectionHandle.parse("3")
    >>> str(handle)
    '3'
    >>> settings = BridgeSettings(websocket_path="/ws")
"""
import os
from enum import Enum
from typing import Any
from pydantic import BaseModel, ConfigDict, Field, field_validator


class ConnectionHandle(BaseModel):
    """
    Opaque identifier for one connection session.

    Handles compare and hash by value, so they can be used as dictionary keys
    and passed across threads freely. The string form is the decimal value,
    which is what callers exchanging handles as text receive and hand back.

    Attributes:
        value: Non-negative integer allocated by the registry
    """
    model_config = ConfigDict(frozen=True)

    value: int = Field(ge=0)

    @classmethod
    def parse(cls, value: Any) -> "ConnectionHandle":
        """
        Coerce a handle, an int or a decimal string into a ConnectionHandle.

        Args:
            value: The value to convert

        Returns:
            ConnectionHandle for the given value

        Raises:
            ValueError: If the value is not a non-negative integer in any accepted form
        """
        if isinstance(value, ConnectionHandle):
            return value
        if isinstance(value, bool):
            raise ValueError(f"Invalid connection handle: {value!r}")
        if isinstance(value, int):
            return cls(value=value)
        if isinstance(value, str) and value.strip().isdigit():
            return cls(value=int(value.strip()))
        raise ValueError(f"Invalid connection handle: {value!r}")

    def __str__(self):
        return str(self.value)

    def __repr__(self):
        return f"ConnectionHandle({self.value})"


class ConnectionState(Enum):
    """
    Lifecycle of a registered connection.

    CONNECTING -> CONNECTED -> CLOSED on the normal path. A failed handshake
    ends in FAILED and the handle is never addressable. Closing during the
    handshake goes straight from CONNECTING to CLOSED. Loss of the underlying
    session is reported to the caller but is not a state of its own.
    """
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"
    CLOSED = "closed"

    def __str__(self):
        return self.value


class BridgeSettings(BaseModel):
    """
    Transport settings used when constructing underlying messaging clients.

    Attributes:
        websocket_path: Path segment of the MQTT-over-WebSocket endpoint (default: "/mqtt")
        keepalive: MQTT keepalive interval in seconds (default: 60)
        clean_session: Request a clean session from the broker (default: True)

    Example:
        >>> settings = BridgeSettings.from_env()
        >>> settings.websocket_path
        '/mqtt'
    """
    websocket_path: str = "/mqtt"
    keepalive: int = Field(default=60, gt=0)
    clean_session: bool = True

    @field_validator("websocket_path")
    @classmethod
    def ensure_leading_slash(cls, value: str) -> str:
        """Brokers expect an absolute request path for the WebSocket upgrade."""
        value = value.strip()
        if not value.startswith("/"):
            value = "/" + value
        return value

    @classmethod
    def from_env(cls) -> "BridgeSettings":
        """
        Build settings from MQTT_BRIDGE_* environment variables.

        Unset variables fall back to the model defaults.
        """
        values: dict[str, Any] = {}
        if (path := os.getenv("MQTT_BRIDGE_WEBSOCKET_PATH")) is not None:
            values["websocket_path"] = path
        if (keepalive := os.getenv("MQTT_BRIDGE_KEEPALIVE")) is not None:
            values["keepalive"] = keepalive
        if (clean_session := os.getenv("MQTT_BRIDGE_CLEAN_SESSION")) is not None:
            values["clean_session"] = clean_session
        return cls(**values)
