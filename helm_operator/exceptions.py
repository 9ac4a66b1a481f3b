"""Exceptions related to helm-operator."""

__all__ = [
    "OperatorException",
    "InputException",
    "CommandException",
    "HelmException",
    "ReleaseNotFoundError",
    "ObjectNotFoundError",
    "ConflictError",
    "ReconcileException",
]


class OperatorException(Exception):
    """Generic base exception used for this library."""


class InputException(OperatorException):
    """Raised when the input files or values are not formatted as expected."""


class CommandException(OperatorException):
    """Raised when there is a failure running a subcommand."""


class HelmException(CommandException):
    """Raised when there is a failure running a helm or kubectl command."""


class ReleaseNotFoundError(OperatorException):
    """Raised when a release does not exist under the requested name."""

    def __init__(self, release_name: str) -> None:
        super().__init__(f"Release {release_name} not found")
        self.release_name = release_name


class ObjectNotFoundError(OperatorException):
    """Raised when an object is not found in the store."""


class ConflictError(OperatorException):
    """Raised when an object update is based on a stale resource version."""

    def __init__(self, resource_name: str, expected: str, actual: str) -> None:
        super().__init__(
            f"Conflict updating {resource_name}: resource version {expected} "
            f"is stale (current {actual})"
        )
        self.resource_name = resource_name
        self.expected = expected
        self.actual = actual


class ReconcileException(OperatorException):
    """Raised when a step of a reconcile has failed."""

    def __init__(self, resource_name: str, step: str, message: str | None) -> None:
        super().__init__(
            f"Reconcile of {resource_name} failed to {step}: {message or 'Unknown error'}"
        )
        self.resource_name = resource_name
        self.step = step
        self.message = message
