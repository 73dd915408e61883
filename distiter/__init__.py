"""
distiter: asynchronous distributed iterative algorithms.

An algorithm author supplies three callbacks (initialize, worker_step,
coordinator_step); the engine runs them across a coordinator and a pool of
workers and returns the History of accepted coordinator steps.
"""

from distiter.coordinator.loop import Coordinator, RunPhase
from distiter.coordinator.runner import run, run_async
from distiter.core.algorithm import Algorithm, AggregationAlgorithm
from distiter.core.config import RunConfig
from distiter.core.errors import (
    EngineError,
    CallbackError,
    TransportError,
    SerializationError,
    ConfigurationError,
    DispatchError,
)
from distiter.core.history import History, HistoryEntry
from distiter.core.problem import COORDINATOR_ID
from distiter.core.stopping import StoppingCriteria, StopReason

__version__ = "0.1.0"

__all__ = [
    # Run invocation
    "run",
    "run_async",
    "Coordinator",
    "RunPhase",
    # Contracts
    "Algorithm",
    "AggregationAlgorithm",
    "COORDINATOR_ID",
    # Configuration
    "RunConfig",
    "StoppingCriteria",
    "StopReason",
    # Results
    "History",
    "HistoryEntry",
    # Errors
    "EngineError",
    "CallbackError",
    "TransportError",
    "SerializationError",
    "ConfigurationError",
    "DispatchError",
]
