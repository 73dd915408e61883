"""
Coordinator loop.

The coordinator owns the algorithm state and drives a run through four
phases:

    INITIALIZING -> RUNNING -> DRAINING -> TERMINATED

Answers arrive concurrently from many workers but are consumed one at a
time by this single loop, so coordinator_step is never applied
concurrently and needs no lock. Each accepted answer gets the next global
iteration number, one History entry, and (unless a stopping bound holds)
exactly one new query sent back to the same worker.
"""

from enum import Enum
from typing import Any, Dict, Hashable, List, Optional, Sequence, Union
import logging
import threading
import time

from distiter.communication import messages
from distiter.communication.channels import wait_any
from distiter.communication.messages import Message, MessageType
from distiter.coordinator.slots import SlotRegistry, SlotStatus
from distiter.core.algorithm import validate_algorithm, worker_view
from distiter.core.config import RunConfig
from distiter.core.errors import (
    CallbackError,
    ConfigurationError,
    EngineError,
    TransportError,
)
from distiter.core.history import History, HistoryRecorder
from distiter.core.problem import COORDINATOR_ID, ShardFactory, build_shard, resolve_worker_ids
from distiter.core.stopping import (
    StopReason,
    StoppingCriteria,
    evaluate_stop,
    time_exceeded,
    time_remaining,
)
from distiter.worker.launcher import WorkerHandle, launch_workers

logger = logging.getLogger(__name__)


class RunPhase(str, Enum):
    INITIALIZING = "initializing"
    RUNNING = "running"
    DRAINING = "draining"
    TERMINATED = "terminated"


class Coordinator:
    """
    Single-use coordinator for one run.

    The algorithm object passed in is the coordinator's state: it is
    mutated in place by coordinator_step, and holds the final state once
    run() returns.
    """

    def __init__(
        self,
        algorithm: Any,
        shard_factory: ShardFactory,
        stopping: Union[StoppingCriteria, Dict[str, Any], None] = None,
        workers: Union[int, Sequence[Hashable]] = 2,
        config: Optional[RunConfig] = None,
        cancel: Optional[threading.Event] = None
    ):
        """
        Args:
            algorithm: Object implementing initialize/worker_step/coordinator_step
            shard_factory: Factory `worker_id -> shard`
            stopping: Stopping criteria (or a dict of them); None means unbounded
            workers: Number of workers (ids 1..N) or explicit worker ids
            config: Run configuration
            cancel: Event that, once set, makes the run drain and return

        Raises:
            ConfigurationError: On an invalid algorithm, worker list or criteria
        """
        validate_algorithm(algorithm)
        if not callable(shard_factory):
            raise ConfigurationError("shard_factory must be callable")

        if stopping is None:
            stopping = StoppingCriteria()
        elif isinstance(stopping, dict):
            stopping = StoppingCriteria.from_dict(stopping)
        elif not isinstance(stopping, StoppingCriteria):
            raise ConfigurationError(
                f"stopping must be StoppingCriteria or dict, got {type(stopping).__name__}"
            )

        self.algorithm = algorithm
        self.shard_factory = shard_factory
        self.stopping = stopping
        self.worker_ids: List[Hashable] = resolve_worker_ids(workers)
        self.config = config or RunConfig()
        self.cancel = cancel or threading.Event()

        self.phase = RunPhase.INITIALIZING
        self.slots = SlotRegistry(self.worker_ids)
        self.recorder = HistoryRecorder(self.worker_ids, save_answers=self.config.save_answers)
        self.handles: Dict[Hashable, WorkerHandle] = {}
        self.shard: Any = None
        self.iteration = 0
        self.stop_reason: Optional[StopReason] = None

        self._start_time: Optional[float] = None
        self._last_query: Any = None
        self._started = False

    @property
    def elapsed(self) -> float:
        """Seconds since the run entered INITIALIZING."""
        if self._start_time is None:
            return 0.0
        return time.perf_counter() - self._start_time

    def run(self) -> History:
        """
        Execute the run.

        Returns:
            History of every accepted coordinator step

        Raises:
            ConfigurationError: Shard factory failure before any worker step
            CallbackError: A callback raised; `error.history` holds the partial History
            TransportError: A worker became unreachable; `error.history` as above
        """
        if self._started:
            raise RuntimeError("A Coordinator can only run once")
        self._started = True
        self._start_time = time.perf_counter()

        if not self.stopping.is_bounded:
            logger.warning(
                "No stopping criterion configured: the run only ends when cancelled"
            )

        error: Optional[EngineError] = None
        try:
            self.stop_reason = self._initialize() or self._run_loop()
        except EngineError as e:
            self.stop_reason = StopReason.FAILED
            error = e
        finally:
            self._drain()

        history = self.recorder.freeze(
            stop_reason=self.stop_reason,
            elapsed=self.elapsed,
            epochs=self.slots.epoch
        )

        if error is not None:
            logger.error(f"Run aborted after {len(history)} iterations: {error}")
            error.history = history
            raise error

        logger.info(
            f"Run finished: {len(history)} iterations, {history.epochs} epochs, "
            f"reason={self.stop_reason.value}, elapsed={history.elapsed:.2f}s"
        )
        return history

    # ------------------------------------------------------------------
    # INITIALIZING
    # ------------------------------------------------------------------

    def _initialize(self) -> Optional[StopReason]:
        """
        Start workers, build shards, compute and broadcast the first query.

        Returns:
            The stop reason if the run ends before RUNNING (cancelled, or a
            bound that already holds at iteration 0), else None
        """
        self.phase = RunPhase.INITIALIZING
        self.shard = build_shard(self.shard_factory, COORDINATOR_ID)
        self.handles = launch_workers(self.worker_ids, self.shard_factory, self.config)

        if not self._await_ready():
            return StopReason.CANCELLED

        query = self._callback("initialize", None, self.algorithm.initialize, self.shard)
        self.recorder.set_initial_query(query)
        self._last_query = query

        reason = self._callback(
            "stop_if", None, evaluate_stop,
            self.stopping, 0, self.elapsed, self.algorithm, 0, None
        )
        if reason is not None:
            logger.info(f"Stopping before the first query: {reason.value}")
            return reason

        view = self._callback("worker_view", None, worker_view, self.algorithm)
        for worker_id in self.worker_ids:
            self._dispatch(worker_id, query, view)

        self.phase = RunPhase.RUNNING
        logger.info(f"Running with {len(self.worker_ids)} workers")
        return None

    def _await_ready(self) -> bool:
        deadline = time.perf_counter() + self.config.startup_timeout

        while not self.slots.all_ready():
            if self.cancel.is_set():
                return False

            remaining = deadline - time.perf_counter()
            if remaining <= 0:
                starting = [s.worker_id for s in self.slots.with_status(SlotStatus.STARTING)]
                raise TransportError(
                    f"Workers {starting} did not report ready within "
                    f"{self.config.startup_timeout}s",
                    worker_id=starting[0]
                )

            channels = [
                self.handles[s.worker_id].channel
                for s in self.slots.with_status(SlotStatus.STARTING)
            ]
            for channel in wait_any(channels, min(remaining, self.config.poll_interval)):
                message = self._receive(channel.worker_id)
                if message.type is MessageType.READY:
                    self.slots[message.worker_id].mark_ready()
                elif message.type is MessageType.FAILURE:
                    error = ConfigurationError(
                        f"Shard factory failed: {type(message.error).__name__}: {message.error}",
                        worker_id=message.worker_id
                    )
                    error.__cause__ = message.error
                    self.slots[message.worker_id].mark_failed(error)
                    raise error
                else:
                    self._unexpected(message)

        logger.debug("All workers ready")
        return True

    # ------------------------------------------------------------------
    # RUNNING
    # ------------------------------------------------------------------

    def _run_loop(self) -> StopReason:
        while True:
            if self.cancel.is_set():
                logger.info("Run cancelled")
                return StopReason.CANCELLED

            timeout = self.config.poll_interval
            remaining = time_remaining(self.stopping, self.elapsed)
            if remaining is not None:
                timeout = min(timeout, remaining)

            channels = [
                self.handles[s.worker_id].channel
                for s in self.slots.with_status(SlotStatus.AWAITING_ANSWER)
            ]
            ready = wait_any(channels, timeout)

            if not ready and time_exceeded(self.stopping, self.elapsed):
                return StopReason.TIME

            for channel in ready:
                reason = self._handle(self._receive(channel.worker_id))
                if reason is not None:
                    return reason
                if self.cancel.is_set():
                    logger.info("Run cancelled")
                    return StopReason.CANCELLED

    def _handle(self, message: Message) -> Optional[StopReason]:
        if message.type is MessageType.FAILURE:
            error = CallbackError(
                message.callback or "worker_step",
                f"{type(message.error).__name__}: {message.error}",
                worker_id=message.worker_id,
                cause=message.error,
                remote_traceback=message.traceback
            )
            self.slots[message.worker_id].mark_failed(error)
            raise error

        if message.type is not MessageType.ANSWER:
            self._unexpected(message)

        return self._accept(message.worker_id, message.payload)

    def _accept(self, worker_id: Hashable, answer: Any) -> Optional[StopReason]:
        """Apply one coordinator step and decide what happens next."""
        self.slots.record_answer(worker_id)

        query = self._callback(
            "coordinator_step", worker_id,
            self.algorithm.coordinator_step, answer, worker_id, self.shard
        )
        if query is None:
            error = CallbackError(
                "coordinator_step",
                "returned None; a next query is required for the responding worker",
                worker_id=worker_id
            )
            self.slots[worker_id].mark_failed(error)
            raise error

        self.iteration += 1
        self.recorder.record(
            iteration=self.iteration,
            worker_id=worker_id,
            query=query,
            timestamp=self.elapsed,
            epoch=self.slots.epoch,
            answer=answer
        )

        distance = None
        if self.stopping.precision is not None:
            distance = self._callback(
                "distance", worker_id, self.stopping.distance, self._last_query, query
            )
        self._last_query = query

        self._log_progress()

        reason = self._callback(
            "stop_if", worker_id, evaluate_stop,
            self.stopping, self.iteration, self.elapsed, self.algorithm,
            self.slots.epoch, distance
        )
        if reason is None:
            view = self._callback("worker_view", worker_id, worker_view, self.algorithm)
            self._dispatch(worker_id, query, view)
        return reason

    def _callback(self, name: str, worker_id: Hashable, fn, *args):
        try:
            return fn(*args)
        except EngineError:
            raise
        except Exception as e:
            error = CallbackError(name, f"{type(e).__name__}: {e}", worker_id=worker_id, cause=e)
            if worker_id is not None:
                self.slots[worker_id].mark_failed(error)
            raise error from e

    def _dispatch(self, worker_id: Hashable, query: Any, view: Any):
        slot = self.slots[worker_id]
        slot.mark_sent(query)
        try:
            self.handles[worker_id].channel.send(messages.query(worker_id, query, view))
        except TransportError as e:
            slot.mark_failed(e)
            raise

    def _receive(self, worker_id: Hashable) -> Message:
        try:
            return self.handles[worker_id].channel.recv()
        except TransportError as e:
            self.slots[worker_id].mark_failed(e)
            raise

    def _unexpected(self, message: Message):
        error = TransportError(
            f"Unexpected {message.type.value} message in phase {self.phase.value}",
            worker_id=message.worker_id
        )
        self.slots[message.worker_id].mark_failed(error)
        raise error

    def _log_progress(self):
        log_every = self.config.log_every
        if not log_every or self.iteration % log_every != 0:
            return
        elapsed = self.elapsed
        rate = self.iteration / elapsed if elapsed > 0 else 0.0
        logger.info(
            f"Iteration {self.iteration} | Epoch {self.slots.epoch} | "
            f"Elapsed {elapsed:.2f}s | Speed {rate:.1f} it/s"
        )

    # ------------------------------------------------------------------
    # DRAINING
    # ------------------------------------------------------------------

    def _drain(self):
        """
        Stop every worker, bounded by the grace period.

        Late answers are discarded. Workers that do not acknowledge in time
        are abandoned (processes are terminated).
        """
        self.phase = RunPhase.DRAINING
        deadline = time.perf_counter() + self.config.grace_period

        pending = set()
        finished = set()  # acknowledged or exited
        for worker_id, handle in self.handles.items():
            slot = self.slots[worker_id]
            slot.mark_stopping()
            if handle.stop():
                pending.add(worker_id)
            elif not handle.is_alive():
                slot.mark_stopped()

        while pending:
            remaining = deadline - time.perf_counter()
            if remaining <= 0:
                break
            channels = [self.handles[w].channel for w in pending]
            for channel in wait_any(channels, remaining):
                worker_id = channel.worker_id
                try:
                    message = channel.recv()
                except TransportError:
                    # Worker exited without acknowledging.
                    self.slots[worker_id].mark_stopped()
                    pending.discard(worker_id)
                    finished.add(worker_id)
                    continue

                if message.type is MessageType.STOPPED:
                    self.slots[worker_id].mark_stopped()
                    pending.discard(worker_id)
                    finished.add(worker_id)
                elif message.type is MessageType.ANSWER:
                    logger.debug(f"Discarding late answer from worker {worker_id}")
                elif message.type is MessageType.FAILURE:
                    logger.warning(
                        f"Late failure from worker {worker_id} while draining: "
                        f"{type(message.error).__name__}: {message.error}"
                    )

        for worker_id in pending:
            logger.warning(
                f"Worker {worker_id} did not acknowledge stop within "
                f"{self.config.grace_period}s"
            )
            self.slots[worker_id].mark_abandoned()

        for worker_id, handle in self.handles.items():
            slot = self.slots[worker_id]
            if worker_id in finished:
                handle.join(max(deadline - time.perf_counter(), 0.5))
            else:
                handle.join(max(deadline - time.perf_counter(), 0.0))
            if handle.is_alive():
                slot.mark_abandoned()
                handle.terminate()
            handle.close()

        self.phase = RunPhase.TERMINATED
        for slot in self.slots.failures():
            logger.warning(f"Worker {slot.worker_id} failed: {slot.failure}")
        logger.debug(f"Workers after drain: {self.slots.get_counts()}")
        for slot in self.slots:
            logger.debug(f"  {slot.to_dict()}")


__all__ = ["RunPhase", "Coordinator"]
