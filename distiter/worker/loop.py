"""
Worker execution loop.

Each worker:
1. Builds its problem shard once, from its own id
2. Reports READY, or reports the shard factory failure and exits
3. Answers every QUERY with worker_step(query, shard)
4. Acknowledges STOP and exits

A worker never holds more than one query: the coordinator only sends the
next one after it has consumed the previous answer, so no worker-side lock
is involved.
"""

import logging
import time
import traceback
from multiprocessing.connection import Connection
from typing import Any, Hashable

import cloudpickle

from distiter.communication import messages
from distiter.communication.channels import Channel
from distiter.communication.messages import Message, MessageType
from distiter.core.errors import SerializationError, TransportError

logger = logging.getLogger(__name__)


class WorkerLoop:
    """A worker's receive/compute/answer loop."""

    def __init__(self, worker_id: Hashable, channel: Channel, shard_factory):
        """
        Args:
            worker_id: This worker's identifier
            channel: Worker end of the coordinator pipe
            shard_factory: Problem author's factory `worker_id -> shard`
        """
        self.worker_id = worker_id
        self.channel = channel
        self.shard_factory = shard_factory
        self.shard: Any = None

        # Statistics
        self.stats = {
            'queries': 0,
            'failures': 0,
            'compute_time': 0.0,
        }

    def setup(self) -> bool:
        """
        Build the local shard and report readiness.

        Returns:
            True if the shard was built
        """
        try:
            self.shard = self.shard_factory(self.worker_id)
        except Exception as e:
            logger.error(f"Worker {self.worker_id}: shard factory failed: {e}")
            self._send(messages.failure(
                self.worker_id, "shard_factory", e, traceback.format_exc()
            ))
            return False

        return self._send(messages.ready(self.worker_id))

    def run(self):
        """Serve queries until STOP arrives or the coordinator goes away."""
        if not self.setup():
            self.channel.close()
            return

        while True:
            try:
                message = self.channel.recv()
            except TransportError:
                logger.debug(f"Worker {self.worker_id}: coordinator closed the channel")
                break

            if message.type is MessageType.STOP:
                self._send(messages.stopped(self.worker_id))
                logger.debug(f"Worker {self.worker_id} stopped after {self.stats['queries']} queries")
                break

            if message.type is MessageType.QUERY:
                if not self._handle_query(message):
                    break
            else:
                logger.warning(f"Worker {self.worker_id}: unexpected {message.type.value} message")

        self.channel.close()

    def _handle_query(self, message: Message) -> bool:
        start_time = time.time()
        self.stats['queries'] += 1

        try:
            result = message.view.worker_step(message.payload, self.shard)
        except Exception as e:
            self.stats['failures'] += 1
            logger.debug(f"Worker {self.worker_id}: worker_step raised {type(e).__name__}: {e}")
            return self._send(messages.failure(
                self.worker_id, "worker_step", e, traceback.format_exc()
            ))
        finally:
            self.stats['compute_time'] += time.time() - start_time

        return self._send(messages.answer(self.worker_id, result))

    def _send(self, message: Message) -> bool:
        try:
            self.channel.send(message)
            return True
        except SerializationError as e:
            if message.type is not MessageType.ANSWER:
                logger.error(f"Worker {self.worker_id}: {e}")
                return False
            # The answer itself is the problem: report it as a callback failure.
            return self._send(messages.failure(
                self.worker_id, "worker_step", e, traceback.format_exc()
            ))
        except TransportError as e:
            logger.debug(f"Worker {self.worker_id}: {e}")
            return False


def worker_main(worker_id: Hashable, connection: Connection, factory_bytes: bytes):
    """
    Entry point of a worker process or thread.

    Args:
        worker_id: This worker's identifier
        connection: Worker end of the coordinator pipe
        factory_bytes: cloudpickle-serialized shard factory
    """
    channel = Channel(worker_id, connection)

    try:
        shard_factory = cloudpickle.loads(factory_bytes)
    except Exception as e:
        try:
            channel.send(messages.failure(worker_id, "shard_factory", e, traceback.format_exc()))
        except TransportError as send_error:
            logger.debug(f"Worker {worker_id}: cannot report factory failure: {send_error}")
        channel.close()
        return

    try:
        WorkerLoop(worker_id, channel, shard_factory).run()
    except KeyboardInterrupt:
        # Interrupts reach the whole process group; the coordinator drains.
        logger.debug(f"Worker {worker_id} interrupted")
        channel.close()
