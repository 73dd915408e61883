"""
Asynchronous gradient averaging.

The coordinator keeps the most recent gradient of every worker and steps
along their average each time one of them is refreshed. Wrap it with
AggregationAlgorithm to obtain the three-operation contract:

    algorithm = AggregationAlgorithm(GradientAveraging(stepsize=0.1))
"""

from dataclasses import dataclass
from typing import Dict, Hashable, Optional
import logging

import torch

from distiter.algorithms.problems import LeastSquaresShard

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AveragingWorkerView:
    """Workers compute full local gradients; no hyperparameter is needed."""

    def worker_step(self, query: torch.Tensor, shard: LeastSquaresShard) -> torch.Tensor:
        return shard.gradient(query)


class GradientAveraging:
    """Average-of-latest-gradients descent."""

    def __init__(self, stepsize: float = 0.1):
        self.stepsize = stepsize
        self.x: Optional[torch.Tensor] = None

    def initialize(self, shard: LeastSquaresShard) -> torch.Tensor:
        self.x = torch.zeros(shard.dim, dtype=shard.A.dtype)
        return self.x.clone()

    def worker_step(self, query: torch.Tensor, shard: LeastSquaresShard) -> torch.Tensor:
        return shard.gradient(query)

    def aggregate(
        self,
        answers: Dict[Hashable, torch.Tensor],
        shard: LeastSquaresShard
    ) -> torch.Tensor:
        mean_gradient = torch.stack(list(answers.values())).mean(dim=0)
        self.x -= self.stepsize * mean_gradient
        return self.x.clone()

    def worker_view(self) -> AveragingWorkerView:
        return AveragingWorkerView()


__all__ = ["GradientAveraging", "AveragingWorkerView"]
