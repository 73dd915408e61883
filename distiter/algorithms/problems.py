"""
Least-squares problems sharded across workers.

Every worker gets its own rows of a global linear system A x ~= b, all
generated around the same ground-truth solution. Shards are generated
deterministically from a seed and the worker id, so any process can build
its own shard without receiving data from the coordinator.
"""

from dataclasses import dataclass
from typing import Hashable, Optional
import functools
import logging
import zlib

import torch

from distiter.core.problem import COORDINATOR_ID

logger = logging.getLogger(__name__)


@dataclass
class LeastSquaresShard:
    """
    Local rows of a least-squares problem.

    Attributes:
        worker_id: Owner of the shard (COORDINATOR_ID for the full problem)
        A: Design matrix, shape [num_samples, dim]
        b: Targets, shape [num_samples]
        generator: Sampling stream for mini-batches on this worker
    """
    worker_id: Hashable
    A: torch.Tensor
    b: torch.Tensor
    generator: Optional[torch.Generator] = None

    @property
    def num_samples(self) -> int:
        return self.A.shape[0]

    @property
    def dim(self) -> int:
        return self.A.shape[1]

    def loss(self, x: torch.Tensor) -> float:
        """Mean squared residual 0.5 * ||A x - b||^2 / n."""
        residual = self.A @ x - self.b
        return 0.5 * residual.pow(2).mean().item()

    def gradient(self, x: torch.Tensor, batch_size: Optional[int] = None) -> torch.Tensor:
        """
        Gradient of the loss at x.

        Args:
            x: Point to evaluate the gradient at
            batch_size: Rows sampled with replacement (None = full gradient)

        Returns:
            Gradient tensor with the shape of x
        """
        A, b = self.A, self.b
        if batch_size is not None and batch_size < self.num_samples:
            idx = torch.randint(0, self.num_samples, (batch_size,), generator=self.generator)
            A, b = A[idx], b[idx]
        return A.T @ (A @ x - b) / A.shape[0]


def _worker_seed(seed: int, worker_id: Hashable) -> int:
    if isinstance(worker_id, int):
        return seed + worker_id
    return seed + zlib.crc32(repr(worker_id).encode('utf-8'))


def ground_truth(dim: int, seed: int = 42) -> torch.Tensor:
    """The solution all shards are generated around."""
    generator = torch.Generator().manual_seed(seed)
    return torch.randn(dim, generator=generator, dtype=torch.float64)


def create_least_squares_shard(
    worker_id: Hashable,
    num_samples: int = 100,
    dim: int = 10,
    noise: float = 0.01,
    seed: int = 42
) -> LeastSquaresShard:
    """
    Create one worker's shard.

    Args:
        worker_id: Worker the shard is for
        num_samples: Rows in this shard
        dim: Number of unknowns
        noise: Standard deviation of the target noise
        seed: Global seed (shared by all workers)

    Returns:
        LeastSquaresShard for this worker
    """
    x_true = ground_truth(dim, seed)
    worker_seed = _worker_seed(seed, worker_id)

    data_generator = torch.Generator().manual_seed(worker_seed)
    A = torch.randn(num_samples, dim, generator=data_generator, dtype=torch.float64)
    b = A @ x_true + noise * torch.randn(num_samples, generator=data_generator, dtype=torch.float64)

    return LeastSquaresShard(
        worker_id=worker_id,
        A=A,
        b=b,
        generator=torch.Generator().manual_seed(worker_seed + 1)
    )


def distributed_least_squares(
    worker_id: Hashable,
    num_workers: int = 2,
    num_samples: int = 100,
    dim: int = 10,
    noise: float = 0.01,
    seed: int = 42
) -> LeastSquaresShard:
    """
    Shard factory for workers 1..num_workers.

    The coordinator (COORDINATOR_ID) receives the union of all worker
    shards, which lets it evaluate the global loss.
    """
    if worker_id != COORDINATOR_ID:
        return create_least_squares_shard(worker_id, num_samples, dim, noise, seed)

    shards = [
        create_least_squares_shard(w, num_samples, dim, noise, seed)
        for w in range(1, num_workers + 1)
    ]
    return LeastSquaresShard(
        worker_id=COORDINATOR_ID,
        A=torch.cat([s.A for s in shards]),
        b=torch.cat([s.b for s in shards])
    )


def least_squares_factory(
    num_workers: int,
    num_samples: int = 100,
    dim: int = 10,
    noise: float = 0.01,
    seed: int = 42
):
    """Picklable shard factory bound to a problem size."""
    return functools.partial(
        distributed_least_squares,
        num_workers=num_workers,
        num_samples=num_samples,
        dim=dim,
        noise=noise,
        seed=seed
    )


__all__ = [
    "LeastSquaresShard",
    "ground_truth",
    "create_least_squares_shard",
    "distributed_least_squares",
    "least_squares_factory",
]
