"""
Execution history of a run.

The coordinator appends one entry per accepted coordinator step through a
HistoryRecorder; the caller receives a frozen History that cannot change
afterwards.
"""

from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, Hashable, Iterator, List, Optional, Sequence, Tuple
import copy
import logging

import torch

from distiter.core.stopping import StopReason

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HistoryEntry:
    """One accepted coordinator step."""
    iteration: int
    worker_id: Hashable
    query: Any
    timestamp: float  # seconds since initialization began
    epoch: int = 0
    answer: Any = None  # only kept when answers are saved

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON friendly dictionary."""
        return {
            'iteration': self.iteration,
            'worker_id': _plain(self.worker_id),
            'query': _plain(self.query),
            'timestamp': self.timestamp,
            'epoch': self.epoch,
            'answer': _plain(self.answer),
        }


def _plain(value: Any) -> Any:
    """Best-effort conversion of tensors and containers to JSON types."""
    if isinstance(value, torch.Tensor):
        return value.tolist()
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    return repr(value)


class History(Sequence[HistoryEntry]):
    """
    Immutable, ordered record of a run.

    Entries are in acceptance order, which is also global iteration order.
    Indexing, iteration and len() behave like a tuple of HistoryEntry.
    """

    def __init__(
        self,
        entries: Tuple[HistoryEntry, ...],
        worker_ids: Tuple[Hashable, ...],
        initial_query: Any = None,
        stop_reason: Optional[StopReason] = None,
        elapsed: float = 0.0,
        epochs: int = 0,
        answers_saved: bool = False
    ):
        self._entries = tuple(entries)
        self.worker_ids = tuple(worker_ids)
        self.initial_query = initial_query
        self.stop_reason = stop_reason
        self.elapsed = elapsed
        self.epochs = epochs
        self.answers_saved = answers_saved

    def __getitem__(self, index):
        return self._entries[index]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[HistoryEntry]:
        return iter(self._entries)

    def __repr__(self) -> str:
        reason = self.stop_reason.value if self.stop_reason else None
        return (
            f"History(entries={len(self)}, workers={len(self.worker_ids)}, "
            f"stop_reason={reason}, elapsed={self.elapsed:.3f}s)"
        )

    @property
    def iterations(self) -> List[int]:
        return [e.iteration for e in self._entries]

    @property
    def queries(self) -> List[Any]:
        return [e.query for e in self._entries]

    @property
    def answers(self) -> List[Any]:
        """Raw answers in acceptance order (empty if answers were not saved)."""
        if not self.answers_saved:
            return []
        return [e.answer for e in self._entries]

    @property
    def timestamps(self) -> List[float]:
        return [e.timestamp for e in self._entries]

    @property
    def answer_origin(self) -> List[Hashable]:
        return [e.worker_id for e in self._entries]

    @property
    def answer_count(self) -> Dict[Hashable, int]:
        """Number of accepted answers per worker (zero for workers that never answered)."""
        counts = Counter(e.worker_id for e in self._entries)
        return {worker_id: counts.get(worker_id, 0) for worker_id in self.worker_ids}

    @property
    def final_query(self) -> Any:
        """Last query produced, or the initial query if no step was accepted."""
        if self._entries:
            return self._entries[-1].query
        return self.initial_query

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON friendly dictionary."""
        return {
            'worker_ids': [_plain(w) for w in self.worker_ids],
            'initial_query': _plain(self.initial_query),
            'stop_reason': self.stop_reason.value if self.stop_reason else None,
            'elapsed': self.elapsed,
            'epochs': self.epochs,
            'answer_count': {str(k): v for k, v in self.answer_count.items()},
            'entries': [e.to_dict() for e in self._entries],
        }


class HistoryRecorder:
    """
    Append-only log owned by the coordinator.

    Queries are deep-copied on record so later in-place updates of the
    algorithm state cannot rewrite past entries.
    """

    def __init__(self, worker_ids: Sequence[Hashable], save_answers: bool = False):
        self.worker_ids = tuple(worker_ids)
        self.save_answers = save_answers
        self.initial_query: Any = None
        self._entries: List[HistoryEntry] = []
        self._frozen = False

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def last_iteration(self) -> int:
        return self._entries[-1].iteration if self._entries else 0

    def set_initial_query(self, query: Any):
        self.initial_query = copy.deepcopy(query)

    def record(
        self,
        iteration: int,
        worker_id: Hashable,
        query: Any,
        timestamp: float,
        epoch: int = 0,
        answer: Any = None
    ) -> HistoryEntry:
        """
        Append one entry.

        Args:
            iteration: Global iteration index assigned at acceptance
            worker_id: Worker whose answer was accepted
            query: Query produced by the coordinator step
            timestamp: Seconds since initialization began
            epoch: Completed epochs at acceptance time
            answer: Raw answer (dropped unless answers are saved)

        Returns:
            The recorded entry
        """
        if self._frozen:
            raise RuntimeError("History is frozen; no entries can be appended")
        if iteration != self.last_iteration + 1:
            raise RuntimeError(
                f"Iteration {iteration} does not follow {self.last_iteration}"
            )

        entry = HistoryEntry(
            iteration=iteration,
            worker_id=worker_id,
            query=copy.deepcopy(query),
            timestamp=timestamp,
            epoch=epoch,
            answer=copy.deepcopy(answer) if self.save_answers else None
        )
        self._entries.append(entry)
        logger.debug(f"Recorded iteration {iteration} from worker {worker_id}")
        return entry

    def freeze(
        self,
        stop_reason: Optional[StopReason] = None,
        elapsed: float = 0.0,
        epochs: int = 0
    ) -> History:
        """Stop accepting entries and return the immutable History."""
        self._frozen = True
        return History(
            entries=tuple(self._entries),
            worker_ids=self.worker_ids,
            initial_query=self.initial_query,
            stop_reason=stop_reason,
            elapsed=elapsed,
            epochs=epochs,
            answers_saved=self.save_answers
        )


__all__ = ["HistoryEntry", "History", "HistoryRecorder"]
