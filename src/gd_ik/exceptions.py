"""Exceptions raised by the gd_ik solver."""

from typing import Iterable


class GDIKError(Exception):
    """Base class for gd_ik exceptions."""


class ModelBuildError(GDIKError):
    """Raised when a kinematic description cannot be turned into a model."""


class InvalidModelError(ModelBuildError):
    """Raised when the kinematic topology is not a forest of open chains."""

    def __init__(self, message: str):
        super().__init__(f"Invalid kinematic topology: {message}")


class BindingError(GDIKError):
    """Raised when a joint group or tip link cannot be bound to the model."""

    def __init__(self, message: str, available: Iterable[str] = ()):
        available = list(available)
        if available:
            message = f"{message}. Available names: {available}"
        super().__init__(message)


class InvalidRequestError(GDIKError):
    """Raised when a solve request is malformed."""


class NoSolutionFound(GDIKError):
    """Raised when the search deadline passes without an accepted candidate."""

    def __init__(self, timeout: float, iterations: int):
        self.timeout = timeout
        self.iterations = iterations
        super().__init__(
            f"No IK solution found within {timeout:.4f}s ({iterations} iterations)."
        )
