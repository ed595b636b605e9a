"""
Handle registry and operation bridge over the messaging client.
"""
from .registry import ConnectionRegistry, ConnectionEntry
from .connection import BridgeConnection

__all__ = [
    "ConnectionRegistry",
    "ConnectionEntry",
    "BridgeConnection",
]
