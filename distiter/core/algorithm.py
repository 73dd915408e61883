"""
Algorithm contract.

An algorithm is any object providing three operations:

    initialize(shard) -> query
        Called exactly once by the coordinator before any worker receives a
        message. The returned query is broadcast, identically, to every worker.

    worker_step(query, shard) -> answer
        Runs on a worker against its local problem shard. It only sees the
        worker view of the algorithm (see below), never coordinator-only
        accumulators. May be stochastic. Exceptions are reported to the
        coordinator and abort the run.

    coordinator_step(answer, worker_id, shard) -> query
        The only place where algorithm state may change. Always returns the
        next query for the worker that produced `answer`. Returning None is a
        contract violation: to idle workers, configure a stopping criterion.

Optionally, `worker_view()` returns the read-only snapshot shipped to
workers with each query (for instance an object holding only the
hyperparameters). Without it the whole algorithm object is shipped. Either
way the worker receives a serialized copy and never shares memory with the
coordinator.

No base class is needed; the Algorithm protocol only documents the shape.
"""

from typing import Any, Dict, Hashable, Protocol, runtime_checkable
import logging

from distiter.core.errors import ConfigurationError

logger = logging.getLogger(__name__)


@runtime_checkable
class Algorithm(Protocol):
    """Protocol for asynchronous iterative algorithms."""

    def initialize(self, shard: Any) -> Any:
        """Produce the first query."""
        ...

    def worker_step(self, query: Any, shard: Any) -> Any:
        """Compute an answer to a query on a worker."""
        ...

    def coordinator_step(self, answer: Any, worker_id: Hashable, shard: Any) -> Any:
        """Consume an answer and return the next query for the same worker."""
        ...


@runtime_checkable
class WorkerStep(Protocol):
    """What a worker needs: the worker_step operation alone."""

    def worker_step(self, query: Any, shard: Any) -> Any:
        ...


def validate_algorithm(algorithm: Any):
    """
    Check that an object satisfies the algorithm contract.

    Raises:
        ConfigurationError: If one of the three operations is missing
    """
    missing = [
        name for name in ("initialize", "worker_step", "coordinator_step")
        if not callable(getattr(algorithm, name, None))
    ]
    if missing:
        raise ConfigurationError(
            f"{type(algorithm).__name__} does not implement {', '.join(missing)}"
        )


def worker_view(algorithm: Any) -> WorkerStep:
    """Return the object shipped to workers alongside each query."""
    view_factory = getattr(algorithm, "worker_view", None)
    if view_factory is None:
        return algorithm

    view = view_factory()
    if not callable(getattr(view, "worker_step", None)):
        raise ConfigurationError(
            f"worker_view() of {type(algorithm).__name__} has no worker_step"
        )
    return view


class AggregationAlgorithm:
    """
    Adapter for algorithms that aggregate the latest answer of every worker.

    The wrapped object provides:

        initialize(shard) -> query
        worker_step(query, shard) -> answer
        aggregate(answers, shard) -> query

    where `answers` maps each worker that has answered so far to its most
    recent answer. Every accepted answer replaces the previous one of the
    same worker, then `aggregate` computes the next query. Typical use is
    gradient averaging, where workers contribute gradients of possibly
    different staleness.
    """

    def __init__(self, inner: Any):
        missing = [
            name for name in ("initialize", "worker_step", "aggregate")
            if not callable(getattr(inner, name, None))
        ]
        if missing:
            raise ConfigurationError(
                f"{type(inner).__name__} does not implement {', '.join(missing)}"
            )
        self.inner = inner
        self.latest_answers: Dict[Hashable, Any] = {}

    def initialize(self, shard: Any) -> Any:
        self.latest_answers = {}
        return self.inner.initialize(shard)

    def worker_step(self, query: Any, shard: Any) -> Any:
        return self.inner.worker_step(query, shard)

    def coordinator_step(self, answer: Any, worker_id: Hashable, shard: Any) -> Any:
        self.latest_answers[worker_id] = answer
        return self.inner.aggregate(dict(self.latest_answers), shard)

    def worker_view(self) -> WorkerStep:
        # The answer table stays on the coordinator.
        return worker_view(self.inner)

    def __getattr__(self, name: str) -> Any:
        # Expose the wrapped algorithm's fields, e.g. for stop_if predicates.
        if name == "inner":
            raise AttributeError(name)
        return getattr(self.inner, name)


__all__ = ["Algorithm", "WorkerStep", "AggregationAlgorithm", "validate_algorithm", "worker_view"]
