"""
Run configuration for the execution engine.

Controls how worker contexts are started, how long shutdown may take,
and what the History retains. Stopping bounds live in core.stopping.
"""

from dataclasses import dataclass, asdict
from typing import Optional, Dict, Any
import json
import logging

from distiter.core.errors import ConfigurationError

logger = logging.getLogger(__name__)


BACKENDS = ("process", "thread")
START_METHODS = (None, "fork", "spawn", "forkserver")


@dataclass
class RunConfig:
    """
    Engine configuration for a single run.

    The defaults run each worker in its own process and give workers
    five seconds to acknowledge the stop signal.
    """

    # Execution contexts
    backend: str = "process"  # "process" or "thread"
    start_method: Optional[str] = None  # None = platform default

    # Timeouts (seconds)
    startup_timeout: float = 60.0  # workers must build their shard within this
    grace_period: float = 5.0  # bound on waiting for stop acknowledgements
    poll_interval: float = 0.1  # upper bound on a single multi-source wait

    # History
    save_answers: bool = False  # keep raw answers for full replay

    # Logging
    log_every: int = 0  # progress line every N iterations, 0 disables
    log_level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR

    def __post_init__(self):
        """Validate settings."""
        if self.backend not in BACKENDS:
            raise ConfigurationError(
                f"Unknown backend '{self.backend}' (expected one of {BACKENDS})"
            )
        if self.start_method not in START_METHODS:
            raise ConfigurationError(f"Unknown start method '{self.start_method}'")
        for name in ("startup_timeout", "grace_period"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must be non-negative")
        if self.poll_interval <= 0:
            raise ConfigurationError("poll_interval must be positive")
        if self.log_every < 0:
            raise ConfigurationError("log_every must be non-negative")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RunConfig':
        """Create from dictionary."""
        return cls(**data)

    @classmethod
    def from_json_file(cls, path: str) -> 'RunConfig':
        """Load from JSON file."""
        with open(path, 'r') as f:
            return cls.from_dict(json.load(f))

    def to_json_file(self, path: str):
        """
        Save config to JSON file.

        Args:
            path: Path to save JSON config
        """
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    def __repr__(self) -> str:
        return (
            f"RunConfig(backend='{self.backend}', "
            f"grace_period={self.grace_period}, "
            f"save_answers={self.save_answers})"
        )
