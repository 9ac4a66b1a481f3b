"""Outcome of a single reconcile."""

from dataclasses import dataclass

__all__ = ["Result"]


@dataclass(frozen=True)
class Result:
    """The outcome of reconciling one managed object.

    The scheduler acts on the result: an error is retried with backoff, a
    requeue is scheduled after the delay and a plain success waits for the
    next watch event.
    """

    requeue_after: float | None = None
    """Seconds after which the object should be reconciled again."""

    err: Exception | None = None
    """The error that caused the reconcile to fail."""

    @classmethod
    def success(cls) -> "Result":
        return cls()

    @classmethod
    def requeue(cls, after: float) -> "Result":
        if after <= 0:
            raise ValueError(f"Requeue delay must be positive, got {after}")
        return cls(requeue_after=after)

    @classmethod
    def error(cls, err: Exception) -> "Result":
        return cls(err=err)

    @property
    def is_error(self) -> bool:
        return self.err is not None

    def __str__(self) -> str:
        if self.err is not None:
            return f"Error({self.err})"
        if self.requeue_after is not None:
            return f"RequeueAfter({self.requeue_after}s)"
        return "Success"
