"""Run configuration for pyftpdeploy.

Configuration comes from a JSON file, from CLI options, or both (CLI
options win). Keys in the JSON file use the dashed names of the CLI
options, e.g. ``"local-dir"`` or ``"dangerous-clean-slate"``.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Union

from .exceptions import ConfigurationFault
from .utils import DEFAULT_EXCLUDE, DEFAULT_PORT, DEFAULT_STATE_NAME, DEFAULT_TIMEOUT

logger = logging.getLogger(__name__)


class FtpProtocol(str, Enum):
    """Transport security of the FTP connection."""

    FTP = "ftp"
    """Plain FTP"""

    FTPS = "ftps"
    """Explicit TLS (AUTH TLS on the control connection)"""

    FTPS_LEGACY = "ftps-legacy"
    """Implicit TLS (TLS from the first byte, usually port 990)"""

    @classmethod
    def from_string(cls, value: Union[str, "FtpProtocol"]) -> "FtpProtocol":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            valid = ", ".join(p.value for p in cls)
            raise ConfigurationFault(
                f"Unknown protocol '{value}'. Valid values: {valid}"
            ) from None


class Security(str, Enum):
    """Certificate validation for secure connections."""

    STRICT = "strict"
    LOOSE = "loose"

    @classmethod
    def from_string(cls, value: Union[str, "Security"]) -> "Security":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            valid = ", ".join(s.value for s in cls)
            raise ConfigurationFault(
                f"Unknown security mode '{value}'. Valid values: {valid}"
            ) from None


class LogLevel(str, Enum):
    """How much the deploy reports."""

    MINIMAL = "minimal"
    STANDARD = "standard"
    VERBOSE = "verbose"

    @classmethod
    def from_string(cls, value: Union[str, "LogLevel"]) -> "LogLevel":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            valid = ", ".join(level.value for level in cls)
            raise ConfigurationFault(
                f"Unknown log level '{value}'. Valid values: {valid}"
            ) from None


# Maps JSON config keys to DeployConfig field names
_CONFIG_KEYS = {
    "server": "server",
    "username": "username",
    "password": "password",
    "port": "port",
    "protocol": "protocol",
    "security": "security",
    "local-dir": "local_dir",
    "server-dir": "server_dir",
    "state-name": "state_name",
    "dry-run": "dry_run",
    "dangerous-clean-slate": "dangerous_clean_slate",
    "exclude": "exclude",
    "log-level": "log_level",
    "timeout": "timeout",
}

_REQUIRED_KEYS = ("server", "username", "password")


@dataclass
class DeployConfig:
    """All parameters of a deploy run."""

    server: str
    """FTP server host name"""

    username: str
    password: str

    port: int = DEFAULT_PORT
    protocol: FtpProtocol = FtpProtocol.FTP
    security: Security = Security.LOOSE

    local_dir: Path = Path("./")
    """Local folder to publish"""

    server_dir: str = "./"
    """Remote folder to publish into, must end with a slash"""

    state_name: str = DEFAULT_STATE_NAME
    """Name of the manifest file in both local_dir and server_dir"""

    dry_run: bool = False
    dangerous_clean_slate: bool = False
    exclude: list[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDE))
    log_level: LogLevel = LogLevel.STANDARD
    timeout: float = DEFAULT_TIMEOUT
    """Socket timeout in seconds"""

    def __post_init__(self) -> None:
        if not isinstance(self.local_dir, Path):
            self.local_dir = Path(self.local_dir)
        self.protocol = FtpProtocol.from_string(self.protocol)
        self.security = Security.from_string(self.security)
        self.log_level = LogLevel.from_string(self.log_level)
        self.exclude = list(self.exclude)

    @property
    def state_path(self) -> Path:
        """Local checkpoint path of the manifest."""
        return self.local_dir / self.state_name

    def validate(self) -> None:
        """Check the configuration before connecting.

        Raises:
            ConfigurationFault: If any parameter is invalid
        """
        for name in _REQUIRED_KEYS:
            if not getattr(self, name):
                raise ConfigurationFault(f"Missing required setting: {name}")

        if not isinstance(self.port, int) or not 0 < self.port < 65536:
            raise ConfigurationFault(f"Invalid port: {self.port}")

        if not self.server_dir.endswith("/"):
            raise ConfigurationFault(
                f"server-dir should be a folder (must end with /): {self.server_dir}"
            )

        if not self.local_dir.exists():
            raise ConfigurationFault(f"local-dir does not exist: {self.local_dir}")
        if not self.local_dir.is_dir():
            raise ConfigurationFault(f"local-dir is not a directory: {self.local_dir}")

        if not self.state_name or "/" in self.state_name:
            raise ConfigurationFault(
                f"state-name must be a plain file name: {self.state_name!r}"
            )

        if self.timeout <= 0:
            raise ConfigurationFault(f"timeout must be positive: {self.timeout}")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DeployConfig":
        """Create a DeployConfig from a dictionary of config-file keys.

        Raises:
            ConfigurationFault: If required keys are missing or a key is unknown
        """
        unknown = sorted(set(data) - set(_CONFIG_KEYS))
        if unknown:
            raise ConfigurationFault(f"Unknown config keys: {', '.join(unknown)}")

        missing = [key for key in _REQUIRED_KEYS if not data.get(key)]
        if missing:
            raise ConfigurationFault(
                f"Missing required fields: {', '.join(missing)}"
            )

        kwargs = {_CONFIG_KEYS[key]: value for key, value in data.items()}
        if "port" in kwargs:
            try:
                kwargs["port"] = int(kwargs["port"])
            except (TypeError, ValueError):
                raise ConfigurationFault(f"Invalid port: {kwargs['port']}") from None
        if "timeout" in kwargs:
            try:
                kwargs["timeout"] = float(kwargs["timeout"])
            except (TypeError, ValueError):
                raise ConfigurationFault(
                    f"Invalid timeout: {kwargs['timeout']}"
                ) from None
        if isinstance(kwargs.get("exclude"), str):
            kwargs["exclude"] = [
                line.strip() for line in kwargs["exclude"].splitlines() if line.strip()
            ]
        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        """Convert to config-file keys, without the password."""
        return {
            "server": self.server,
            "username": self.username,
            "port": self.port,
            "protocol": self.protocol.value,
            "security": self.security.value,
            "local-dir": str(self.local_dir),
            "server-dir": self.server_dir,
            "state-name": self.state_name,
            "dry-run": self.dry_run,
            "dangerous-clean-slate": self.dangerous_clean_slate,
            "exclude": list(self.exclude),
            "log-level": self.log_level.value,
            "timeout": self.timeout,
        }


def load_config_file(path: Path) -> dict[str, Any]:
    """Read a JSON config file.

    Args:
        path: Path to the JSON file

    Returns:
        Dictionary of config-file keys (not yet validated)

    Raises:
        ConfigurationFault: If the file cannot be read or is not a JSON object
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except OSError as e:
        raise ConfigurationFault(f"Cannot read config file {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigurationFault(f"Invalid JSON in config file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationFault(f"Config file {path} must contain a JSON object")

    logger.debug(f"Loaded config file {path} with keys {sorted(data)}")
    return data
