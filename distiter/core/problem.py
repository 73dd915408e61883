"""
Problem shard provider glue.

A problem author supplies a factory `worker_id -> shard`. Each worker calls
it once at startup for its own shard, and the coordinator calls it with
COORDINATOR_ID for the shard handed to initialize and coordinator_step.
Shards never travel between processes.
"""

from typing import Any, Callable, Hashable, List, Sequence, Union
import logging

from distiter.core.errors import ConfigurationError

logger = logging.getLogger(__name__)


COORDINATOR_ID = 0

ShardFactory = Callable[[Hashable], Any]


def resolve_worker_ids(workers: Union[int, Sequence[Hashable]]) -> List[Hashable]:
    """
    Turn the `workers` argument of a run into an explicit id list.

    Args:
        workers: Number of workers (ids 1..N) or an explicit sequence of ids

    Returns:
        List of unique worker ids

    Raises:
        ConfigurationError: If the list is empty, has duplicates, or uses COORDINATOR_ID
    """
    if isinstance(workers, bool):
        raise ConfigurationError("workers must be an int or a sequence of ids")
    if isinstance(workers, int):
        if workers < 1:
            raise ConfigurationError(f"At least one worker is required, got {workers}")
        return list(range(1, workers + 1))

    worker_ids = list(workers)
    if not worker_ids:
        raise ConfigurationError("At least one worker is required")

    seen = set()
    for worker_id in worker_ids:
        try:
            hash(worker_id)
        except TypeError:
            raise ConfigurationError(f"Worker id {worker_id!r} is not hashable")
        if worker_id in seen:
            raise ConfigurationError(f"Duplicate worker id {worker_id!r}")
        if worker_id == COORDINATOR_ID:
            raise ConfigurationError(
                f"Worker id {worker_id!r} is reserved for the coordinator"
            )
        seen.add(worker_id)

    return worker_ids


def build_shard(shard_factory: ShardFactory, worker_id: Hashable) -> Any:
    """
    Build one shard, turning any factory failure into a ConfigurationError.

    Args:
        shard_factory: Problem author's factory
        worker_id: Worker (or COORDINATOR_ID) to build the shard for

    Returns:
        The shard
    """
    try:
        shard = shard_factory(worker_id)
    except Exception as e:
        raise ConfigurationError(
            f"Shard factory failed: {type(e).__name__}: {e}",
            worker_id=worker_id
        ) from e

    logger.debug(f"Built shard for {worker_id}")
    return shard


__all__ = ["COORDINATOR_ID", "ShardFactory", "resolve_worker_ids", "build_shard"]
