"""
Core components shared by the registry and the messaging clients.
"""
from .base import MessageLogger, ClientFormatter, generate_unique_id
from .models import ConnectionHandle, ConnectionState, BridgeSettings
from .exceptions import (
    BridgeException,
    ConnectFailure,
    OperationFailure,
    UnknownHandle,
    ConnectionClosedError,
)
from .protocol import MessagingClient, ClientFactory
from .message_handler import JsonMessageHandler

__all__ = [
    # Logging
    "MessageLogger",
    "ClientFormatter",
    "generate_unique_id",
    # Models
    "ConnectionHandle",
    "ConnectionState",
    "BridgeSettings",
    # Exceptions
    "BridgeException",
    "ConnectFailure",
    "OperationFailure",
    "UnknownHandle",
    "ConnectionClosedError",
    # Client capability
    "MessagingClient",
    "ClientFactory",
    # Handlers
    "JsonMessageHandler",
]
