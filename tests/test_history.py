"""
Unit tests for the History and its recorder.
"""

import json

import pytest
import torch

from distiter.core.history import History, HistoryRecorder
from distiter.core.stopping import StopReason


@pytest.fixture
def recorder():
    return HistoryRecorder(worker_ids=[1, 2, 3], save_answers=True)


class TestHistoryRecorder:
    """Append-only recording."""

    def test_record_in_order(self, recorder):
        recorder.record(1, worker_id=2, query=10, timestamp=0.1, answer=-1)
        recorder.record(2, worker_id=1, query=11, timestamp=0.2, answer=-2)

        assert len(recorder) == 2
        assert recorder.last_iteration == 2

    def test_gap_rejected(self, recorder):
        """Iteration indices must follow each other without gaps."""
        recorder.record(1, worker_id=1, query=0, timestamp=0.0)

        with pytest.raises(RuntimeError):
            recorder.record(3, worker_id=1, query=0, timestamp=0.0)

    def test_frozen_rejects_entries(self, recorder):
        recorder.record(1, worker_id=1, query=0, timestamp=0.0)
        recorder.freeze(StopReason.ITERATIONS)

        with pytest.raises(RuntimeError, match="frozen"):
            recorder.record(2, worker_id=1, query=0, timestamp=0.0)

    def test_queries_are_copied(self, recorder):
        """Later in-place updates of the state do not rewrite the History."""
        state = torch.zeros(3)
        recorder.set_initial_query(state)
        recorder.record(1, worker_id=1, query=state, timestamp=0.0)
        state += 5

        history = recorder.freeze()

        assert torch.equal(history.initial_query, torch.zeros(3))
        assert torch.equal(history[0].query, torch.zeros(3))

    def test_answers_dropped_unless_saved(self):
        recorder = HistoryRecorder(worker_ids=[1], save_answers=False)
        recorder.record(1, worker_id=1, query=0, timestamp=0.0, answer=42)

        history = recorder.freeze()

        assert history[0].answer is None
        assert history.answers == []


class TestHistory:
    """Read-only accessors."""

    def build(self, recorder):
        recorder.set_initial_query(0)
        for iteration, worker_id in enumerate([1, 2, 1, 1], start=1):
            recorder.record(
                iteration, worker_id=worker_id, query=iteration * 10,
                timestamp=iteration * 0.5, epoch=0, answer=float(iteration)
            )
        return recorder.freeze(StopReason.ITERATIONS, elapsed=2.5, epochs=0)

    def test_sequence_behaviour(self, recorder):
        history = self.build(recorder)

        assert isinstance(history, History)
        assert len(history) == 4
        assert history[-1].iteration == 4
        assert [e.worker_id for e in history] == [1, 2, 1, 1]

    def test_accessors(self, recorder):
        history = self.build(recorder)

        assert history.iterations == [1, 2, 3, 4]
        assert history.queries == [10, 20, 30, 40]
        assert history.answers == [1.0, 2.0, 3.0, 4.0]
        assert history.answer_origin == [1, 2, 1, 1]
        assert history.final_query == 40

    def test_answer_count_includes_silent_workers(self, recorder):
        """Workers that never answered are reported with zero."""
        history = self.build(recorder)

        assert history.answer_count == {1: 3, 2: 1, 3: 0}

    def test_empty_history_final_query(self, recorder):
        recorder.set_initial_query("start")

        history = recorder.freeze(StopReason.CANCELLED)

        assert len(history) == 0
        assert history.final_query == "start"

    def test_to_dict_is_json_serializable(self):
        recorder = HistoryRecorder(worker_ids=["a", "b"], save_answers=True)
        recorder.set_initial_query(torch.zeros(2))
        recorder.record(1, worker_id="a", query=torch.ones(2), timestamp=0.1, answer=torch.ones(2))

        data = recorder.freeze(StopReason.TIME, elapsed=0.2).to_dict()
        restored = json.loads(json.dumps(data))

        assert restored['stop_reason'] == "time"
        assert restored['initial_query'] == [0.0, 0.0]
        assert restored['entries'][0]['query'] == [1.0, 1.0]
        assert restored['answer_count'] == {"a": 1, "b": 0}
