"""
Worker launcher.

Starts one execution context per worker id, either a torch.multiprocessing
process or a daemon thread, connected to the coordinator by its own pipe.
"""

import logging
import threading
from typing import Dict, Hashable, Optional, Sequence, Union

import cloudpickle
import torch.multiprocessing as mp

from distiter.communication import messages
from distiter.communication.channels import Channel
from distiter.core.config import RunConfig
from distiter.core.errors import ConfigurationError, TransportError
from distiter.core.problem import ShardFactory
from distiter.worker.loop import worker_main

logger = logging.getLogger(__name__)


class WorkerHandle:
    """
    Coordinator-side handle on one worker context.

    Owns the coordinator end of the worker's pipe. Sending STOP is
    idempotent: stopping an already stopped (or already dead) worker
    does nothing.
    """

    def __init__(
        self,
        worker_id: Hashable,
        channel: Channel,
        context: Union[mp.Process, threading.Thread]
    ):
        self.worker_id = worker_id
        self.channel = channel
        self.context = context
        self._stop_sent = False

    @property
    def is_process(self) -> bool:
        return not isinstance(self.context, threading.Thread)

    @property
    def stop_sent(self) -> bool:
        return self._stop_sent

    def is_alive(self) -> bool:
        return self.context.is_alive()

    def stop(self) -> bool:
        """
        Send the stop signal once.

        Returns:
            True if a STOP message was delivered by this call
        """
        if self._stop_sent or self.channel.closed:
            return False

        self._stop_sent = True
        try:
            self.channel.send(messages.stop(self.worker_id))
        except TransportError as e:
            logger.debug(f"Stop not delivered to worker {self.worker_id}: {e}")
            return False
        return True

    def join(self, timeout: Optional[float] = None):
        self.context.join(timeout)

    def terminate(self):
        """Kill a worker that outlived the grace period (processes only)."""
        if self.is_process and self.context.is_alive():
            logger.warning(f"Terminating worker {self.worker_id} (pid {self.context.pid})")
            self.context.terminate()
            self.context.join(1.0)
        elif self.context.is_alive():
            logger.warning(f"Abandoning worker thread {self.worker_id}")

    def close(self):
        self.channel.close()

    def __repr__(self) -> str:
        kind = "process" if self.is_process else "thread"
        return f"WorkerHandle({self.worker_id!r}, {kind}, alive={self.is_alive()})"


def launch_workers(
    worker_ids: Sequence[Hashable],
    shard_factory: ShardFactory,
    config: RunConfig
) -> Dict[Hashable, WorkerHandle]:
    """
    Start one worker context per id.

    Args:
        worker_ids: Worker identifiers
        shard_factory: Problem author's factory, shipped to every worker
        config: Run configuration (backend and start method)

    Returns:
        Handles keyed by worker id, in launch order
    """
    try:
        factory_bytes = cloudpickle.dumps(shard_factory)
    except Exception as e:
        raise ConfigurationError(
            f"Shard factory cannot be shipped to workers: {type(e).__name__}: {e}"
        ) from e

    ctx = mp.get_context(config.start_method) if config.backend == "process" else None

    handles: Dict[Hashable, WorkerHandle] = {}
    try:
        for worker_id in worker_ids:
            handles[worker_id] = _launch_one(worker_id, factory_bytes, ctx)
    except Exception:
        for handle in handles.values():
            handle.close()
            handle.terminate()
        raise

    logger.info(f"Launched {len(handles)} {config.backend} workers")
    return handles


def _launch_one(worker_id: Hashable, factory_bytes: bytes, ctx) -> WorkerHandle:
    if ctx is None:
        coordinator_end, worker_end = mp.Pipe(duplex=True)
        context = threading.Thread(
            target=worker_main,
            args=(worker_id, worker_end, factory_bytes),
            name=f"distiter-worker-{worker_id}",
            daemon=True
        )
        context.start()
    else:
        coordinator_end, worker_end = ctx.Pipe(duplex=True)
        context = ctx.Process(
            target=worker_main,
            args=(worker_id, worker_end, factory_bytes),
            name=f"distiter-worker-{worker_id}",
            daemon=True
        )
        context.start()
        # The child owns its end now; closing ours lets the coordinator see EOF.
        worker_end.close()

    logger.debug(f"Started worker {worker_id}")
    return WorkerHandle(worker_id, Channel(worker_id, coordinator_end), context)


__all__ = ["WorkerHandle", "launch_workers"]
