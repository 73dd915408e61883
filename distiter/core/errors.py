"""
Error types raised by the execution engine.

Every error carries the identifier of the offending worker (when one is
known) and the History accumulated up to the failure, so partial results
are never lost.
"""

from typing import Any, Hashable, Optional


class EngineError(Exception):
    """Base class for all engine failures."""

    def __init__(
        self,
        message: str,
        worker_id: Optional[Hashable] = None,
        history: Any = None
    ):
        """
        Args:
            message: Human readable description
            worker_id: Worker the failure is attributed to (None if not worker-specific)
            history: Partial History accumulated before the failure
        """
        super().__init__(message)
        self.message = message
        self.worker_id = worker_id
        self.history = history

    def __str__(self) -> str:
        if self.worker_id is not None:
            return f"[worker {self.worker_id}] {self.message}"
        return self.message


class CallbackError(EngineError):
    """An algorithm callback (initialize, worker_step, coordinator_step) raised."""

    def __init__(
        self,
        callback: str,
        message: str,
        worker_id: Optional[Hashable] = None,
        cause: Optional[BaseException] = None,
        remote_traceback: Optional[str] = None,
        history: Any = None
    ):
        super().__init__(f"{callback} failed: {message}", worker_id=worker_id, history=history)
        self.callback = callback
        self.cause = cause
        self.remote_traceback = remote_traceback
        if cause is not None:
            self.__cause__ = cause


class TransportError(EngineError):
    """A message could not be delivered to or received from a worker."""
    pass


class SerializationError(TransportError):
    """A message payload could not be serialized or deserialized."""
    pass


class ConfigurationError(EngineError):
    """The run could not be set up (bad workers, algorithm, bounds or shard factory)."""
    pass


class DispatchError(EngineError):
    """A second query was about to be sent to a worker with one still outstanding."""
    pass


__all__ = [
    "EngineError",
    "CallbackError",
    "TransportError",
    "SerializationError",
    "ConfigurationError",
    "DispatchError",
]
