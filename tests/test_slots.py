"""
Unit tests for worker slots.

Tests:
- One outstanding query per worker
- Lifecycle transitions
- Epoch counting
"""

import pytest

from distiter.coordinator.slots import SlotRegistry, SlotStatus, WorkerSlot
from distiter.core.errors import DispatchError


class TestWorkerSlot:
    """Single worker bookkeeping."""

    def test_lifecycle(self):
        slot = WorkerSlot(worker_id=1)
        assert slot.status is SlotStatus.STARTING

        slot.mark_ready()
        slot.mark_sent("q1")
        assert slot.status is SlotStatus.AWAITING_ANSWER
        assert slot.outstanding_query == "q1"

        slot.mark_answered()
        assert slot.status is SlotStatus.IDLE
        assert slot.outstanding_query is None
        assert (slot.queries_sent, slot.answers_received) == (1, 1)

    def test_second_outstanding_query_rejected(self):
        """A worker never holds two queries."""
        slot = WorkerSlot(worker_id=1)
        slot.mark_ready()
        slot.mark_sent("q1")

        with pytest.raises(DispatchError) as exc_info:
            slot.mark_sent("q2")

        assert exc_info.value.worker_id == 1
        assert slot.outstanding_query == "q1"
        assert slot.queries_sent == 1

    def test_dispatch_before_ready_rejected(self):
        slot = WorkerSlot(worker_id=1)

        with pytest.raises(DispatchError):
            slot.mark_sent("q")

    def test_answer_without_query_rejected(self):
        slot = WorkerSlot(worker_id=1)
        slot.mark_ready()

        with pytest.raises(DispatchError):
            slot.mark_answered()

    def test_stopped_slot_not_abandoned(self):
        """Abandoning only applies to workers that did not acknowledge."""
        slot = WorkerSlot(worker_id=1)
        slot.mark_stopping()
        slot.mark_stopped()
        slot.mark_abandoned()

        assert slot.status is SlotStatus.STOPPED

    def test_failed_status_survives_shutdown(self):
        """Stop transitions leave a failed slot failed."""
        slot = WorkerSlot(worker_id=1)
        slot.mark_ready()
        slot.mark_sent("q")
        slot.mark_failed(DispatchError("lost", worker_id=1))

        slot.mark_stopping()
        slot.mark_stopped()
        slot.mark_abandoned()

        assert slot.status is SlotStatus.FAILED
        assert slot.failure.message == "lost"

    def test_to_dict(self):
        slot = WorkerSlot(worker_id="w")

        assert slot.to_dict()['status'] == "starting"


class TestSlotRegistry:
    """All slots of a run."""

    def make_ready(self, worker_ids):
        registry = SlotRegistry(worker_ids)
        for slot in registry:
            slot.mark_ready()
        return registry

    def test_all_ready(self):
        registry = SlotRegistry([1, 2])
        assert not registry.all_ready()

        registry[1].mark_ready()
        registry[2].mark_ready()

        assert registry.all_ready()
        assert len(registry.with_status(SlotStatus.IDLE)) == 2

    def test_epoch_requires_every_worker(self):
        """Repeated answers from one worker do not complete an epoch."""
        registry = self.make_ready([1, 2, 3])

        for worker_id in [1, 1, 2, 1]:
            registry[worker_id].mark_sent(None)
            assert registry.record_answer(worker_id) is False

        registry[3].mark_sent(None)
        assert registry.record_answer(3) is True
        assert registry.epoch == 1

    def test_epochs_accumulate(self):
        registry = self.make_ready([1, 2])

        for _ in range(3):
            for worker_id in (1, 2):
                registry[worker_id].mark_sent(None)
                registry.record_answer(worker_id)

        assert registry.epoch == 3

    def test_get_counts(self):
        registry = self.make_ready([1, 2, 3])
        registry[1].mark_sent(None)
        registry[2].mark_failed(None)

        assert registry.get_counts() == {"awaiting_answer": 1, "failed": 1, "idle": 1}
        assert [s.worker_id for s in registry.failures()] == [2]
