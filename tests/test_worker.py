"""
Unit tests for the worker loop and worker handles.

Tests:
- Readiness and shard factory failures
- Answering queries with the shipped view
- Failure reporting
- Stop acknowledgement
"""

import threading

import cloudpickle
import pytest
import torch.multiprocessing as mp

from distiter.communication import messages
from distiter.communication.channels import Channel
from distiter.communication.messages import MessageType
from distiter.core.config import RunConfig
from distiter.core.errors import TransportError
from distiter.worker.launcher import WorkerHandle, launch_workers
from distiter.worker.loop import WorkerLoop, worker_main


class ShardTimes:
    """Answer = query * shard."""

    def worker_step(self, query, shard):
        return query * shard


class Failing:
    def worker_step(self, query, shard):
        raise ValueError(f"bad query {query}")


def start_worker(worker_id, shard_factory):
    """Run worker_main in a thread; return the coordinator channel and the thread."""
    coordinator_end, worker_end = mp.Pipe(duplex=True)
    thread = threading.Thread(
        target=worker_main,
        args=(worker_id, worker_end, cloudpickle.dumps(shard_factory)),
        daemon=True
    )
    thread.start()
    return Channel(worker_id, coordinator_end), thread


class TestWorkerLoop:
    """Worker side of the protocol."""

    def test_ready_then_answers(self):
        channel, thread = start_worker(3, lambda worker_id: worker_id * 10)

        try:
            assert channel.recv().type is MessageType.READY

            channel.send(messages.query(3, 2, view=ShardTimes()))
            reply = channel.recv()

            assert reply.type is MessageType.ANSWER
            assert reply.worker_id == 3
            assert reply.payload == 60
        finally:
            channel.send(messages.stop(3))
            assert channel.recv().type is MessageType.STOPPED
            thread.join(2.0)
            channel.close()

        assert not thread.is_alive()

    def test_worker_step_failure_reported(self):
        """Exceptions in worker_step come back as FAILURE with a traceback."""
        channel, thread = start_worker(1, lambda worker_id: None)

        try:
            channel.recv()
            channel.send(messages.query(1, 5, view=Failing()))
            reply = channel.recv()

            assert reply.type is MessageType.FAILURE
            assert reply.callback == "worker_step"
            assert isinstance(reply.error, ValueError)
            assert "bad query 5" in reply.traceback
        finally:
            channel.send(messages.stop(1))
            channel.recv()
            thread.join(2.0)
            channel.close()

    def test_shard_factory_failure_reported(self):
        """Without a shard the worker reports the failure and exits."""
        def factory(worker_id):
            raise RuntimeError("no shard")

        channel, thread = start_worker(2, factory)

        try:
            reply = channel.recv()

            assert reply.type is MessageType.FAILURE
            assert reply.callback == "shard_factory"
            assert "no shard" in str(reply.error)

            thread.join(2.0)
            assert not thread.is_alive()
            with pytest.raises(TransportError):
                channel.recv()
        finally:
            channel.close()

    def test_setup_failure_skips_serving(self):
        left, right = mp.Pipe(duplex=True)
        coordinator, worker = Channel(1, left), Channel(1, right)

        def factory(worker_id):
            raise KeyError(worker_id)

        loop = WorkerLoop(1, worker, factory)
        try:
            loop.run()

            assert worker.closed
            assert coordinator.recv().type is MessageType.FAILURE
            assert loop.stats['queries'] == 0
        finally:
            coordinator.close()

    def test_exits_when_coordinator_goes_away(self):
        channel, thread = start_worker(1, lambda worker_id: None)
        channel.recv()
        channel.close()

        thread.join(2.0)

        assert not thread.is_alive()

    def test_stats(self):
        """Each handled query is counted."""
        left, right = mp.Pipe(duplex=True)
        coordinator, worker = Channel(1, left), Channel(1, right)
        loop = WorkerLoop(1, worker, lambda worker_id: 2)

        try:
            assert loop.setup()
            coordinator.recv()
            assert loop._handle_query(messages.query(1, 4, view=ShardTimes()))
            assert coordinator.recv().payload == 8
        finally:
            coordinator.close()
            worker.close()

        assert loop.stats['queries'] == 1
        assert loop.stats['failures'] == 0


class TestWorkerHandle:
    """Coordinator-side handles."""

    def test_stop_is_idempotent(self):
        handles = launch_workers([1], lambda worker_id: None, RunConfig(backend="thread"))
        handle = handles[1]

        try:
            assert handle.channel.recv().type is MessageType.READY
            assert not handle.is_process
            assert handle.stop() is True
            assert handle.stop() is False
            assert handle.stop_sent

            assert handle.channel.recv().type is MessageType.STOPPED
            handle.join(2.0)
            assert not handle.is_alive()
        finally:
            handle.close()

    def test_stop_after_close(self):
        left, right = mp.Pipe(duplex=True)
        handle = WorkerHandle(1, Channel(1, left), threading.Thread(target=lambda: None))
        handle.close()
        right.close()

        assert handle.stop() is False
        assert not handle.stop_sent

    def test_launch_order(self):
        """Handles come back keyed by worker id in launch order."""
        handles = launch_workers(["a", "b", "c"], lambda worker_id: worker_id, RunConfig(backend="thread"))

        try:
            assert list(handles) == ["a", "b", "c"]
            for handle in handles.values():
                assert handle.channel.recv().type is MessageType.READY
                handle.stop()
        finally:
            for handle in handles.values():
                handle.join(2.0)
                handle.close()
