"""Configuration for the controllers of an operator process."""

from dataclasses import dataclass

__all__ = ["ControllerConfig"]

DEFAULT_RECONCILE_TIMEOUT = 300.0
DEFAULT_BASE_BACKOFF = 0.005
DEFAULT_MAX_BACKOFF = 1000.0


@dataclass(frozen=True)
class ControllerConfig:
    """Settings shared by every controller in the process."""

    reconcile_timeout: float = DEFAULT_RECONCILE_TIMEOUT
    """Seconds a single reconcile may run before it is cancelled."""

    base_backoff: float = DEFAULT_BASE_BACKOFF
    """Delay in seconds before the first retry of a failed reconcile."""

    max_backoff: float = DEFAULT_MAX_BACKOFF
    """Upper bound on the retry delay of a repeatedly failing reconcile."""

    def __post_init__(self) -> None:
        if self.reconcile_timeout <= 0:
            raise ValueError("reconcile_timeout must be positive")
        if self.base_backoff <= 0 or self.max_backoff < self.base_backoff:
            raise ValueError("Backoff must satisfy 0 < base_backoff <= max_backoff")
