"""Error taxonomy shared by the Coder client, the action and the CLI."""

from typing import Any


class CoderTaskError(Exception):
    """Base class for every failure that aborts a run."""


class InputValidationError(CoderTaskError):
    """Bad or missing configuration, raised before any network call."""


class CoderAPIError(CoderTaskError):
    """A remote-facing failure, carrying the status code and raw payload."""

    default_status: int | None = None

    def __init__(self, message: str, status_code: int | None = None, response: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code if status_code is not None else self.default_status
        self.response = response

    def __str__(self) -> str:
        if self.status_code is None:
            return self.message
        return f"{self.message} (status {self.status_code})"


class TransportError(CoderAPIError):
    """Non-2xx response, undecodable body or schema mismatch."""


class NotFoundError(CoderAPIError):
    default_status = 404


class ConflictError(CoderAPIError):
    default_status = 409


class RemoteTaskError(CoderAPIError):
    """The task reached its error state. Terminal, never retried."""

    default_status = 500


class TaskTimeoutError(CoderAPIError):
    default_status = 408

    def __init__(self, message: str, timeout: float, response: Any = None) -> None:
        super().__init__(message, response=response)
        self.timeout = timeout
