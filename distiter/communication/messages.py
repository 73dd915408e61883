"""Message types exchanged between the coordinator and its workers."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Hashable, Optional


class MessageType(Enum):
    """Message kinds on a coordinator/worker channel."""

    # Coordinator -> worker
    QUERY = "query"
    STOP = "stop"

    # Worker -> coordinator
    READY = "ready"  # shard built, waiting for the first query
    ANSWER = "answer"
    FAILURE = "failure"  # a callback or the shard factory raised
    STOPPED = "stopped"  # acknowledgement of STOP


@dataclass
class Message:
    """
    A single message.

    Attributes:
        type: Message kind
        worker_id: Worker the message is for or from
        payload: Query or answer value
        view: Worker view of the algorithm (QUERY only)
        callback: Name of the failing callback (FAILURE only)
        error: Exception raised on the worker (FAILURE only)
        traceback: Formatted worker-side traceback (FAILURE only)
    """
    type: MessageType
    worker_id: Hashable
    payload: Any = None
    view: Any = None
    callback: Optional[str] = None
    error: Optional[BaseException] = None
    traceback: Optional[str] = None

    def __repr__(self) -> str:
        return f"Message({self.type.value}, worker={self.worker_id!r})"


def query(worker_id: Hashable, payload: Any, view: Any) -> Message:
    return Message(MessageType.QUERY, worker_id, payload=payload, view=view)


def stop(worker_id: Hashable) -> Message:
    return Message(MessageType.STOP, worker_id)


def ready(worker_id: Hashable) -> Message:
    return Message(MessageType.READY, worker_id)


def answer(worker_id: Hashable, payload: Any) -> Message:
    return Message(MessageType.ANSWER, worker_id, payload=payload)


def failure(
    worker_id: Hashable,
    callback: str,
    error: BaseException,
    traceback: Optional[str] = None
) -> Message:
    return Message(
        MessageType.FAILURE, worker_id,
        callback=callback, error=error, traceback=traceback
    )


def stopped(worker_id: Hashable) -> Message:
    return Message(MessageType.STOPPED, worker_id)
