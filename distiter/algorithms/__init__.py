"""
Reference algorithms.

Asynchronous SGD and asynchronous gradient averaging on a least-squares
problem sharded by worker id, plus the distiter-train command.
"""

from distiter.algorithms.averaging import GradientAveraging
from distiter.algorithms.problems import LeastSquaresShard, least_squares_factory
from distiter.algorithms.sgd import AsyncSGD

__all__ = [
    "AsyncSGD",
    "GradientAveraging",
    "LeastSquaresShard",
    "least_squares_factory",
]
