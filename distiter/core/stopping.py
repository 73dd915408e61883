"""
Stopping criteria for a run.

A run stops as soon as ANY configured bound is reached. Supplying no bound
at all is legal, but then the run never terminates on its own: the caller
is responsible for cancelling it.
"""

from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Callable, Dict, Optional, Union
import logging
import math

import torch

from distiter.core.errors import ConfigurationError

logger = logging.getLogger(__name__)


class StopReason(str, Enum):
    """Why a run left the running phase."""
    ITERATIONS = "iterations"
    TIME = "time"
    PREDICATE = "predicate"
    EPOCHS = "epochs"
    PRECISION = "precision"
    CANCELLED = "cancelled"
    FAILED = "failed"


def default_distance(previous: Any, current: Any) -> float:
    """
    Distance between two consecutive queries.

    Numbers use the absolute difference, tensors the Euclidean norm of
    the difference.
    """
    if isinstance(previous, torch.Tensor) or isinstance(current, torch.Tensor):
        return torch.dist(
            torch.as_tensor(previous, dtype=torch.float64),
            torch.as_tensor(current, dtype=torch.float64)
        ).item()
    return abs(current - previous)


@dataclass(frozen=True)
class StoppingCriteria:
    """
    Bounds that terminate a run.

    Attributes:
        iterations: Stop once this many coordinator steps were accepted
        time: Stop once this many seconds elapsed since initialization began
        stop_if: Predicate over (algorithm state, iteration); stop when True
        epochs: Stop once every worker answered this many rounds
        precision: Stop once distance(previous query, new query) <= precision
        distance: Distance used by the precision bound
    """
    iterations: Optional[int] = None
    time: Optional[Union[float, timedelta]] = None
    stop_if: Optional[Callable[[Any, int], bool]] = None
    epochs: Optional[int] = None
    precision: Optional[float] = None
    distance: Callable[[Any, Any], float] = default_distance

    def __post_init__(self):
        if isinstance(self.time, timedelta):
            object.__setattr__(self, 'time', self.time.total_seconds())
        if self.iterations is not None and self.iterations < 0:
            raise ConfigurationError("iterations must be non-negative")
        if self.time is not None and (math.isnan(self.time) or self.time < 0):
            raise ConfigurationError("time must be non-negative")
        if self.epochs is not None and self.epochs < 0:
            raise ConfigurationError("epochs must be non-negative")
        if self.precision is not None and self.precision < 0:
            raise ConfigurationError("precision must be non-negative")
        if self.stop_if is not None and not callable(self.stop_if):
            raise ConfigurationError("stop_if must be callable")

    @property
    def is_bounded(self) -> bool:
        """True if at least one bound is configured."""
        return any(
            bound is not None
            for bound in (self.iterations, self.time, self.stop_if, self.epochs, self.precision)
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StoppingCriteria':
        """
        Create criteria from a dictionary.

        Recognized keys: iterations, time, stop_if (or stopIf), epochs,
        precision, distance.
        """
        data = dict(data)
        if 'stopIf' in data:
            data['stop_if'] = data.pop('stopIf')
        unknown = set(data) - {'iterations', 'time', 'stop_if', 'epochs', 'precision', 'distance'}
        if unknown:
            raise ConfigurationError(f"Unknown stopping options: {sorted(unknown)}")
        return cls(**data)


def time_exceeded(criteria: StoppingCriteria, elapsed: float) -> bool:
    """Wall-time bound alone; checked even while no answer arrives."""
    return criteria.time is not None and elapsed >= criteria.time


def time_remaining(criteria: StoppingCriteria, elapsed: float) -> Optional[float]:
    """Seconds left before the wall-time bound, None if unbounded."""
    if criteria.time is None:
        return None
    return max(0.0, criteria.time - elapsed)


def evaluate_stop(
    criteria: StoppingCriteria,
    iteration: int,
    elapsed: float,
    state: Any = None,
    epoch: int = 0,
    last_distance: Optional[float] = None
) -> Optional[StopReason]:
    """
    Decide whether the run must stop.

    Args:
        criteria: Configured bounds
        iteration: Number of accepted coordinator steps so far
        elapsed: Seconds since initialization began
        state: Algorithm state handed to the stop_if predicate
        epoch: Number of completed epochs
        last_distance: Distance between the last two queries produced (None if unknown)

    Returns:
        The first bound that holds, or None to continue
    """
    if criteria.iterations is not None and iteration >= criteria.iterations:
        return StopReason.ITERATIONS
    if time_exceeded(criteria, elapsed):
        return StopReason.TIME
    if criteria.stop_if is not None and criteria.stop_if(state, iteration):
        return StopReason.PREDICATE
    if criteria.epochs is not None and epoch >= criteria.epochs:
        return StopReason.EPOCHS
    if (criteria.precision is not None and last_distance is not None
            and last_distance <= criteria.precision):
        return StopReason.PRECISION
    return None


__all__ = [
    "StopReason",
    "StoppingCriteria",
    "evaluate_stop",
    "time_exceeded",
    "time_remaining",
    "default_distance",
]
