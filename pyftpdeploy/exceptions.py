"""Exceptions raised by pyftpdeploy.

Every remote fault carries a structured :class:`FaultKind` so the retry
policy never has to inspect error message wording.
"""

from enum import Enum
from typing import Optional


class FaultKind(str, Enum):
    """Classification of a remote fault."""

    TRANSIENT = "transient"
    """Connection dropped or reset; resolved by reconnecting"""

    NOT_FOUND = "not_found"
    """Target missing or not accessible"""

    FATAL = "fatal"
    """Anything else"""


class FtpDeployError(Exception):
    """Base exception for all pyftpdeploy errors."""


class TransportError(FtpDeployError):
    """A remote operation failed."""

    def __init__(self, message: str, kind: FaultKind = FaultKind.FATAL):
        super().__init__(message)
        self.kind = kind


class TransientConnectionFault(TransportError):
    """The connection to the server was dropped or reset."""

    def __init__(self, message: str):
        super().__init__(message, FaultKind.TRANSIENT)


class NotFoundFault(TransportError):
    """The remote file or folder does not exist or is not accessible."""

    def __init__(self, message: str):
        super().__init__(message, FaultKind.NOT_FOUND)


class RetryExhaustedFault(FtpDeployError):
    """A remote operation kept failing until the retry budget ran out."""

    def __init__(
        self,
        operation: str,
        attempts: int,
        last_error: Optional[BaseException] = None,
    ):
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        last_message = str(last_error) if last_error is not None else "unknown error"
        super().__init__(
            f"{operation} failed after {attempts} attempts: {last_message}"
        )


class ManifestUnreadableFault(FtpDeployError):
    """A persisted manifest is absent, corrupt or has an unknown version."""


class ManifestPersistFault(FtpDeployError):
    """The manifest checkpoint could not be written locally or remotely."""


class ConfigurationFault(FtpDeployError):
    """Invalid connection or run parameters."""


def classify_fault(error: BaseException) -> FaultKind:
    """Return the fault kind of an exception.

    Anything that is not a :class:`TransportError` is treated as fatal.
    """
    if isinstance(error, TransportError):
        return error.kind
    return FaultKind.FATAL
