"""
Asynchronous stochastic gradient descent.

Workers compute mini-batch gradients on their own shard at the iterate
they were sent; the coordinator applies every gradient as soon as it
arrives, regardless of how stale the iterate it was computed at is.
"""

from dataclasses import dataclass
from typing import Hashable, Optional
import logging

import torch

from distiter.algorithms.problems import LeastSquaresShard

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SGDWorkerView:
    """What workers need from AsyncSGD: the batch size."""
    batch_size: Optional[int] = None

    def worker_step(self, query: torch.Tensor, shard: LeastSquaresShard) -> torch.Tensor:
        return shard.gradient(query, self.batch_size)


class AsyncSGD:
    """
    Asynchronous SGD on a least-squares problem.

    State:
        x: Current iterate (coordinator only)
        stepsize, batch_size: Hyperparameters
    """

    def __init__(self, stepsize: float = 0.01, batch_size: Optional[int] = None):
        """
        Args:
            stepsize: Gradient step
            batch_size: Mini-batch size per worker step (None = full local gradient)
        """
        self.stepsize = stepsize
        self.batch_size = batch_size
        self.x: Optional[torch.Tensor] = None

    def initialize(self, shard: LeastSquaresShard) -> torch.Tensor:
        self.x = torch.zeros(shard.dim, dtype=shard.A.dtype)
        return self.x.clone()

    def worker_step(self, query: torch.Tensor, shard: LeastSquaresShard) -> torch.Tensor:
        return self.worker_view().worker_step(query, shard)

    def coordinator_step(
        self,
        answer: torch.Tensor,
        worker_id: Hashable,
        shard: LeastSquaresShard
    ) -> torch.Tensor:
        self.x -= self.stepsize * answer
        return self.x.clone()

    def worker_view(self) -> SGDWorkerView:
        return SGDWorkerView(batch_size=self.batch_size)


__all__ = ["AsyncSGD", "SGDWorkerView"]
