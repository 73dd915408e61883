"""
Message serialization for coordinator/worker channels.

Messages are turned into bytes with cloudpickle before they cross a
channel, for both the process and the thread backend. Receivers therefore
always get a private copy: torch tensors are copied rather than moved to
shared memory, and lambdas or locally defined classes can be shipped as
worker views.
"""

import logging
import pickle
import traceback

import cloudpickle

from distiter.communication.messages import Message, MessageType

logger = logging.getLogger(__name__)


def serialize_message(message: Message) -> bytes:
    """
    Convert a message to bytes.

    Args:
        message: Message to send

    Returns:
        Serialized message
    """
    return cloudpickle.dumps(message, protocol=pickle.HIGHEST_PROTOCOL)


def deserialize_message(data: bytes) -> Message:
    """Convert bytes back into a message."""
    message = cloudpickle.loads(data)
    if not isinstance(message, Message):
        raise TypeError(f"Expected a Message, got {type(message).__name__}")
    return message


def serialize_failure(message: Message) -> bytes:
    """
    Serialize a FAILURE message, degrading the exception if needed.

    Exceptions raised by user code are not always picklable (they may hold
    locks, sockets or unpicklable arguments). In that case the exception is
    replaced by a RuntimeError carrying its type and message; the formatted
    traceback is preserved either way.
    """
    if message.type is not MessageType.FAILURE:
        raise ValueError(f"Expected a failure message, got {message.type.value}")
    try:
        return serialize_message(message)
    except Exception as e:
        logger.debug(f"Failure from worker {message.worker_id} is not picklable: {e}")
        error = message.error
        message.error = RuntimeError(f"{type(error).__name__}: {error}")
        if message.traceback is None and error is not None:
            message.traceback = "".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            )
        return serialize_message(message)
