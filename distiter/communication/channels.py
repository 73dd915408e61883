"""
Per-worker duplex channels and the coordinator's multi-source wait.

Each worker owns one end of a Pipe and the coordinator the other. There is a
single producer per direction: the coordinator writes queries and stop
signals, the worker writes ready/answer/failure/stopped messages.
"""

import logging
import random
from multiprocessing.connection import Connection, wait
from typing import Hashable, Iterable, List, Optional

from distiter.communication.messages import Message, MessageType
from distiter.communication.serialization import (
    serialize_message,
    deserialize_message,
    serialize_failure,
)
from distiter.core.errors import SerializationError, TransportError

logger = logging.getLogger(__name__)


class Channel:
    """
    One end of a worker's pipe.

    All transport failures (closed pipe, EOF, unpicklable payload) surface
    as TransportError tagged with the worker id.
    """

    def __init__(self, worker_id: Hashable, connection: Connection):
        self.worker_id = worker_id
        self.connection = connection
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def fileno(self) -> int:
        return self.connection.fileno()

    def send(self, message: Message):
        """
        Serialize and send a message.

        Raises:
            TransportError: If the message cannot be serialized or delivered
        """
        if self._closed:
            raise TransportError("Channel is closed", worker_id=self.worker_id)

        try:
            if message.type is MessageType.FAILURE:
                data = serialize_failure(message)
            else:
                data = serialize_message(message)
        except Exception as e:
            raise SerializationError(
                f"Cannot serialize {message.type.value} message: {type(e).__name__}: {e}",
                worker_id=self.worker_id
            ) from e

        try:
            self.connection.send_bytes(data)
        except (OSError, ValueError) as e:
            raise TransportError(
                f"Cannot deliver {message.type.value} message: {e}",
                worker_id=self.worker_id
            ) from e

        logger.debug(f"Sent {message.type.value} ({len(data)} bytes) on channel {self.worker_id}")

    def recv(self) -> Message:
        """
        Receive and deserialize the next message (blocking).

        Raises:
            TransportError: If the other end is gone or sent garbage
        """
        if self._closed:
            raise TransportError("Channel is closed", worker_id=self.worker_id)

        try:
            data = self.connection.recv_bytes()
        except (EOFError, OSError) as e:
            raise TransportError(
                f"Channel closed by peer: {type(e).__name__}",
                worker_id=self.worker_id
            ) from e

        try:
            return deserialize_message(data)
        except Exception as e:
            raise SerializationError(
                f"Cannot deserialize message: {type(e).__name__}: {e}",
                worker_id=self.worker_id
            ) from e

    def close(self):
        """Close this end. Closing twice is a no-op."""
        if self._closed:
            return
        self._closed = True
        try:
            self.connection.close()
        except OSError as e:
            logger.debug(f"Error closing channel {self.worker_id}: {e}")


def wait_any(channels: Iterable[Channel], timeout: Optional[float]) -> List[Channel]:
    """
    Block until at least one channel has a message or `timeout` elapses.

    Readiness is reported by the operating system, not by polling the
    channels in a fixed order. The ready channels are shuffled so that no
    worker is systematically served first when several answers are pending.

    Args:
        channels: Channels to wait on (closed ones are ignored)
        timeout: Maximum wait in seconds (None blocks indefinitely)

    Returns:
        Channels with a pending message, possibly empty on timeout
    """
    by_connection = {c.connection: c for c in channels if not c.closed}
    if not by_connection:
        return []

    ready = [by_connection[conn] for conn in wait(list(by_connection), timeout)]
    random.shuffle(ready)
    return ready


__all__ = ["Channel", "wait_any"]
