"""
Run invocation.

    history = run(algorithm, shard_factory, {"iterations": 100}, workers=4)

`run` blocks the calling thread, which becomes the coordinator. `run_async`
runs the same coordinator in an executor thread so it can be awaited from
an event loop; cancelling the awaiting task drains the workers before the
cancellation propagates.
"""

import asyncio
import functools
import logging
import threading
from typing import Any, Dict, Hashable, Optional, Sequence, Union

from distiter.coordinator.loop import Coordinator
from distiter.core.config import RunConfig
from distiter.core.history import History
from distiter.core.problem import ShardFactory
from distiter.core.stopping import StoppingCriteria

logger = logging.getLogger(__name__)


def run(
    algorithm: Any,
    shard_factory: ShardFactory,
    stopping: Union[StoppingCriteria, Dict[str, Any], None] = None,
    workers: Union[int, Sequence[Hashable]] = 2,
    config: Optional[RunConfig] = None,
    cancel: Optional[threading.Event] = None
) -> History:
    """
    Run an asynchronous iterative algorithm to completion.

    Args:
        algorithm: Object implementing initialize/worker_step/coordinator_step
        shard_factory: Factory `worker_id -> shard`; also called with
            COORDINATOR_ID (0) for the coordinator's own shard
        stopping: StoppingCriteria or dict with any of iterations, time,
            stop_if, epochs, precision, distance. With no bound the run only
            ends through `cancel`.
        workers: Number of workers (ids 1..N) or explicit worker ids
        config: Engine configuration (backend, grace period, ...)
        cancel: Event that makes the run drain and return its History

    Returns:
        History of the run; `algorithm` holds the final state

    Raises:
        ConfigurationError: Invalid setup or shard factory failure
        CallbackError: A callback raised during the run (partial History attached)
        TransportError: A worker became unreachable (partial History attached)
    """
    coordinator = Coordinator(
        algorithm,
        shard_factory,
        stopping=stopping,
        workers=workers,
        config=config,
        cancel=cancel
    )
    return coordinator.run()


async def run_async(
    algorithm: Any,
    shard_factory: ShardFactory,
    stopping: Union[StoppingCriteria, Dict[str, Any], None] = None,
    workers: Union[int, Sequence[Hashable]] = 2,
    config: Optional[RunConfig] = None,
    cancel: Optional[threading.Event] = None
) -> History:
    """
    Awaitable version of run().

    If the awaiting task is cancelled, the cancel event is set, the
    coordinator drains its workers, and CancelledError is re-raised once
    shutdown completed.
    """
    cancel = cancel or threading.Event()
    loop = asyncio.get_running_loop()
    future = loop.run_in_executor(
        None,
        functools.partial(
            run, algorithm, shard_factory,
            stopping=stopping, workers=workers, config=config, cancel=cancel
        )
    )

    try:
        return await asyncio.shield(future)
    except asyncio.CancelledError:
        logger.info("Run cancelled by caller, draining workers")
        cancel.set()
        history = await future
        logger.info(f"Cancelled run stopped after {len(history)} iterations")
        raise


__all__ = ["run", "run_async"]
