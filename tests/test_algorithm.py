"""
Unit tests for the algorithm contract, the aggregation adapter and the
reference least-squares algorithms.
"""

import pytest
import torch

from distiter.algorithms.averaging import AveragingWorkerView, GradientAveraging
from distiter.algorithms.problems import (
    distributed_least_squares,
    ground_truth,
    least_squares_factory,
)
from distiter.algorithms.sgd import AsyncSGD, SGDWorkerView
from distiter.core.algorithm import (
    Algorithm,
    AggregationAlgorithm,
    validate_algorithm,
    worker_view,
)
from distiter.core.errors import ConfigurationError
from distiter.core.problem import COORDINATOR_ID


class Plain:
    def initialize(self, shard):
        return 0

    def worker_step(self, query, shard):
        return query

    def coordinator_step(self, answer, worker_id, shard):
        return answer


class Summing:
    """Aggregation: the next query is the sum of the latest answers."""

    def __init__(self):
        self.seen = []

    def initialize(self, shard):
        return 0

    def worker_step(self, query, shard):
        return 1

    def aggregate(self, answers, shard):
        self.seen.append(answers)
        return sum(answers.values())


class TestContract:
    """Algorithm validation and worker views."""

    def test_protocol(self):
        assert isinstance(Plain(), Algorithm)
        validate_algorithm(Plain())

    def test_missing_operation(self):
        class Incomplete:
            def initialize(self, shard):
                return 0

        with pytest.raises(ConfigurationError, match="worker_step, coordinator_step"):
            validate_algorithm(Incomplete())

    def test_view_defaults_to_algorithm(self):
        algorithm = Plain()

        assert worker_view(algorithm) is algorithm

    def test_custom_view(self):
        view = worker_view(AsyncSGD(stepsize=0.1, batch_size=8))

        assert view == SGDWorkerView(batch_size=8)

    def test_view_without_worker_step(self):
        class BadView(Plain):
            def worker_view(self):
                return object()

        with pytest.raises(ConfigurationError):
            worker_view(BadView())


class TestAggregationAlgorithm:
    """Latest-answer table kept on the coordinator."""

    def test_latest_answer_per_worker(self):
        inner = Summing()
        algorithm = AggregationAlgorithm(inner)
        validate_algorithm(algorithm)

        assert algorithm.initialize(None) == 0
        assert algorithm.coordinator_step(2, 1, None) == 2
        assert algorithm.coordinator_step(5, 2, None) == 7
        # Worker 1's newer answer replaces its older one
        assert algorithm.coordinator_step(1, 1, None) == 6

        assert algorithm.latest_answers == {1: 1, 2: 5}
        assert inner.seen[0] == {1: 2}

    def test_aggregate_receives_a_copy(self):
        inner = Summing()
        algorithm = AggregationAlgorithm(inner)
        algorithm.coordinator_step(1, "a", None)
        algorithm.coordinator_step(1, "b", None)

        assert inner.seen[0] == {"a": 1}

    def test_initialize_resets_table(self):
        algorithm = AggregationAlgorithm(Summing())
        algorithm.coordinator_step(3, 1, None)
        algorithm.initialize(None)

        assert algorithm.latest_answers == {}

    def test_requires_aggregate(self):
        with pytest.raises(ConfigurationError, match="aggregate"):
            AggregationAlgorithm(Plain())

    def test_delegates_attributes(self):
        algorithm = AggregationAlgorithm(GradientAveraging(stepsize=0.3))

        assert algorithm.stepsize == 0.3
        assert isinstance(worker_view(algorithm), AveragingWorkerView)


class TestLeastSquares:
    """Problem shards and the reference algorithms, without workers."""

    def test_shards_are_deterministic(self):
        first = distributed_least_squares(1, num_workers=2, num_samples=20, dim=4)
        second = distributed_least_squares(1, num_workers=2, num_samples=20, dim=4)

        assert torch.equal(first.A, second.A)
        assert first.A.shape == (20, 4)

    def test_coordinator_shard_is_union(self):
        factory = least_squares_factory(3, num_samples=10, dim=4)

        full = factory(COORDINATOR_ID)

        assert full.num_samples == 30
        assert torch.equal(full.A[10:20], factory(2).A)

    def test_gradient_vanishes_at_solution(self):
        shard = distributed_least_squares(1, num_samples=50, dim=3, noise=0.0)
        x = ground_truth(3)

        assert torch.allclose(shard.gradient(x), torch.zeros(3, dtype=torch.float64), atol=1e-10)
        assert shard.loss(x) == pytest.approx(0.0, abs=1e-12)

    def test_sgd_steps_locally(self):
        """Applying the worker and coordinator steps in sequence reduces the loss."""
        shard = distributed_least_squares(1, num_samples=50, dim=3)
        algorithm = AsyncSGD(stepsize=0.1)
        x = algorithm.initialize(shard)
        initial_loss = shard.loss(x)

        for _ in range(50):
            x = algorithm.coordinator_step(algorithm.worker_step(x, shard), 1, shard)

        assert shard.loss(x) < initial_loss
        # Returned queries are snapshots, not the coordinator's iterate
        x += 100
        assert not torch.equal(x, algorithm.x)

    def test_gradient_averaging(self):
        factory = least_squares_factory(2, num_samples=50, dim=3)
        algorithm = AggregationAlgorithm(GradientAveraging(stepsize=0.2))
        full = factory(COORDINATOR_ID)
        x = algorithm.initialize(full)
        initial_loss = full.loss(x)

        for step in range(60):
            worker_id = 1 + step % 2
            x = algorithm.coordinator_step(algorithm.worker_step(x, factory(worker_id)), worker_id, full)

        assert full.loss(x) < initial_loss
