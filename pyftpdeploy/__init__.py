"""PyFtpDeploy - incremental deploys of a local folder to an FTP server."""

from .config import DeployConfig, FtpProtocol, LogLevel, Security
from .exceptions import (
    ConfigurationFault,
    FaultKind,
    FtpDeployError,
    ManifestPersistFault,
    ManifestUnreadableFault,
    NotFoundFault,
    RetryExhaustedFault,
    TransientConnectionFault,
    TransportError,
)
from .transport import FTPTransport
from .utils import format_size

__all__ = [
    "DeployConfig",
    "FtpProtocol",
    "LogLevel",
    "Security",
    "FTPTransport",
    "ConfigurationFault",
    "FaultKind",
    "FtpDeployError",
    "ManifestPersistFault",
    "ManifestUnreadableFault",
    "NotFoundFault",
    "RetryExhaustedFault",
    "TransientConnectionFault",
    "TransportError",
    "format_size",
]
