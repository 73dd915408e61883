"""
Communication module.

Provides the messages, serialization and per-worker channels used between
the coordinator and its workers.
"""

from distiter.communication.channels import Channel, wait_any
from distiter.communication.messages import Message, MessageType
from distiter.communication.serialization import serialize_message, deserialize_message

__all__ = [
    "Channel",
    "wait_any",
    "Message",
    "MessageType",
    "serialize_message",
    "deserialize_message",
]
