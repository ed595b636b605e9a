# Core components
from .core import (
    MessageLogger,
    ClientFormatter,
    generate_unique_id,
    ConnectionHandle,
    ConnectionState,
    BridgeSettings,
    BridgeException,
    ConnectFailure,
    OperationFailure,
    UnknownHandle,
    ConnectionClosedError,
    MessagingClient,
    ClientFactory,
    JsonMessageHandler,
)

# Underlying paho-mqtt client
from .paho_client import PahoWebSocketClient

# Registry and connection wrapper
from .bridge import ConnectionRegistry, BridgeConnection

__version__ = "0.1.0"

__all__ = [
    # Core
    "ConnectionHandle",
    "ConnectionState",
    "BridgeSettings",
    "MessagingClient",
    "ClientFactory",
    # Exceptions
    "BridgeException",
    "ConnectFailure",
    "OperationFailure",
    "UnknownHandle",
    "ConnectionClosedError",
    # Logging
    "MessageLogger",
    "ClientFormatter",
    "generate_unique_id",
    # Handlers
    "JsonMessageHandler",
    # Client
    "PahoWebSocketClient",
    # Registry
    "ConnectionRegistry",
    "BridgeConnection",
]
