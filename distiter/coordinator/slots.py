"""
Per-worker bookkeeping for the coordinator.

Provides:
- WorkerSlot: status and outstanding query of one worker
- SlotRegistry: all slots of a run, plus epoch tracking

Invariant: a slot holds at most one outstanding query. Dispatching to a
slot that is still awaiting an answer raises DispatchError.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Hashable, List, Optional, Sequence, Set
import logging

from distiter.core.errors import DispatchError, EngineError

logger = logging.getLogger(__name__)


class SlotStatus(str, Enum):
    """Worker lifecycle as seen by the coordinator."""
    STARTING = "starting"  # context launched, shard not built yet
    IDLE = "idle"  # ready, no outstanding query
    AWAITING_ANSWER = "awaiting_answer"
    FAILED = "failed"
    STOPPING = "stopping"  # stop sent, acknowledgement pending
    STOPPED = "stopped"
    ABANDONED = "abandoned"  # did not acknowledge within the grace period


@dataclass
class WorkerSlot:
    """Coordinator-side state of a single worker."""
    worker_id: Hashable
    status: SlotStatus = SlotStatus.STARTING
    outstanding_query: Any = None
    queries_sent: int = 0
    answers_received: int = 0
    failure: Optional[EngineError] = None

    def mark_ready(self):
        if self.status is SlotStatus.STARTING:
            self.status = SlotStatus.IDLE

    def mark_sent(self, query: Any):
        """
        Record a dispatched query.

        Raises:
            DispatchError: If the previous query has not been answered
        """
        if self.status is SlotStatus.AWAITING_ANSWER:
            raise DispatchError(
                "A query is already outstanding for this worker",
                worker_id=self.worker_id
            )
        if self.status is not SlotStatus.IDLE:
            raise DispatchError(
                f"Cannot dispatch to a worker in state {self.status.value}",
                worker_id=self.worker_id
            )
        self.status = SlotStatus.AWAITING_ANSWER
        self.outstanding_query = query
        self.queries_sent += 1

    def mark_answered(self):
        """Record a consumed answer, releasing the outstanding query."""
        if self.status is not SlotStatus.AWAITING_ANSWER:
            raise DispatchError(
                f"Answer received from a worker in state {self.status.value}",
                worker_id=self.worker_id
            )
        self.status = SlotStatus.IDLE
        self.outstanding_query = None
        self.answers_received += 1

    def mark_failed(self, error: EngineError):
        self.status = SlotStatus.FAILED
        self.failure = error

    # A failed slot keeps its status through shutdown.

    def mark_stopping(self):
        if self.status not in (SlotStatus.FAILED, SlotStatus.STOPPED, SlotStatus.ABANDONED):
            self.status = SlotStatus.STOPPING

    def mark_stopped(self):
        if self.status is not SlotStatus.FAILED:
            self.status = SlotStatus.STOPPED
            self.outstanding_query = None

    def mark_abandoned(self):
        if self.status not in (SlotStatus.FAILED, SlotStatus.STOPPED):
            self.status = SlotStatus.ABANDONED

    def to_dict(self) -> Dict[str, Any]:
        return {
            'worker_id': self.worker_id,
            'status': self.status.value,
            'queries_sent': self.queries_sent,
            'answers_received': self.answers_received,
            'failure': str(self.failure) if self.failure else None,
        }


class SlotRegistry:
    """
    All worker slots of a run.

    Also counts epochs: an epoch completes once every worker has had at
    least one answer accepted since the previous epoch boundary.
    """

    def __init__(self, worker_ids: Sequence[Hashable]):
        self.slots: Dict[Hashable, WorkerSlot] = {
            worker_id: WorkerSlot(worker_id) for worker_id in worker_ids
        }
        self.epoch = 0
        self._answered_this_epoch: Set[Hashable] = set()

    def __getitem__(self, worker_id: Hashable) -> WorkerSlot:
        return self.slots[worker_id]

    def __iter__(self):
        return iter(self.slots.values())

    def __len__(self) -> int:
        return len(self.slots)

    def with_status(self, *statuses: SlotStatus) -> List[WorkerSlot]:
        return [slot for slot in self.slots.values() if slot.status in statuses]

    def all_ready(self) -> bool:
        return not self.with_status(SlotStatus.STARTING)

    def record_answer(self, worker_id: Hashable) -> bool:
        """
        Mark an accepted answer and update the epoch count.

        Returns:
            True if this answer completed an epoch
        """
        self.slots[worker_id].mark_answered()
        self._answered_this_epoch.add(worker_id)

        if len(self._answered_this_epoch) == len(self.slots):
            self.epoch += 1
            self._answered_this_epoch.clear()
            logger.debug(f"Epoch {self.epoch} completed")
            return True
        return False

    def failures(self) -> List[WorkerSlot]:
        return self.with_status(SlotStatus.FAILED)

    def get_counts(self) -> Dict[str, int]:
        """
        Get slot counts by status.

        Returns:
            Dictionary mapping status value to count (statuses with no slot omitted)
        """
        counts: Dict[str, int] = {}
        for slot in self.slots.values():
            counts[slot.status.value] = counts.get(slot.status.value, 0) + 1
        return counts


__all__ = ["SlotStatus", "WorkerSlot", "SlotRegistry"]
