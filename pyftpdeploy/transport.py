"""FTP transport built on ftplib.

Translates every ftplib and socket error into the structured fault
taxonomy from :mod:`pyftpdeploy.exceptions`, so callers decide on
retries by fault kind only.
"""

import ftplib
import logging
import posixpath
import socket
import ssl
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Protocol

from .config import DeployConfig, FtpProtocol, Security
from .exceptions import (
    ConfigurationFault,
    NotFoundFault,
    TransientConnectionFault,
    TransportError,
)

logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Operations the sync engine needs from a remote session.

    All paths are relative to the base directory entered on connect,
    unless they start with a slash.
    """

    def connect(self) -> None: ...

    def list_names(self, directory: str = "") -> list[str]: ...

    def ensure_dir(self, path: str) -> None: ...

    def cdup(self, count: int) -> None: ...

    def upload(self, local_path: Path, remote_path: str) -> None: ...

    def download(self, remote_path: str, local_path: Path) -> None: ...

    def remove_file(self, remote_path: str) -> None: ...

    def remove_dir_recursive(self, remote_path: str) -> None: ...

    def clear_working_dir(self) -> None: ...

    def send_keepalive(self) -> None: ...

    def close(self) -> None: ...


class ImplicitFTP_TLS(ftplib.FTP_TLS):
    """FTP_TLS variant that wraps the control socket in TLS right away."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._sock: Optional[socket.socket] = None

    @property
    def sock(self) -> Optional[socket.socket]:
        return self._sock

    @sock.setter
    def sock(self, value: Optional[socket.socket]) -> None:
        if value is not None and not isinstance(value, ssl.SSLSocket):
            value = self.context.wrap_socket(value, server_hostname=self.host)
        self._sock = value


def _reply_code(error: BaseException) -> str:
    return str(error)[:3]


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    """Re-raise ftplib and socket errors as TransportError subclasses."""
    try:
        yield
    except ftplib.error_perm as e:
        if _reply_code(e) == "550":
            raise NotFoundFault(f"{operation}: {e}") from e
        raise TransportError(f"{operation}: {e}") from e
    except ftplib.error_temp as e:
        if _reply_code(e) == "421":
            raise TransientConnectionFault(f"{operation}: {e}") from e
        raise TransportError(f"{operation}: {e}") from e
    except (EOFError, ConnectionError, socket.timeout) as e:
        raise TransientConnectionFault(
            f"{operation}: connection lost ({e or type(e).__name__})"
        ) from e
    except (ftplib.Error, OSError) as e:
        raise TransportError(f"{operation}: {e}") from e


class FTPTransport:
    """A single FTP/FTPS session rooted at a base directory."""

    def __init__(
        self,
        host: str,
        username: str,
        password: str,
        port: int = 21,
        protocol: FtpProtocol = FtpProtocol.FTP,
        security: Security = Security.LOOSE,
        timeout: float = 30.0,
        base_dir: str = "./",
    ):
        """Initialize FTP transport.

        Args:
            host: Server host name
            username: Login name
            password: Login password
            port: Control connection port
            protocol: Plain FTP, explicit TLS or implicit TLS
            security: Whether server certificates are validated
            timeout: Socket timeout in seconds
            base_dir: Remote directory entered (and created) after login
        """
        self.host = host
        self.username = username
        self.password = password
        self.port = port
        self.protocol = protocol
        self.security = security
        self.timeout = timeout
        self.base_dir = base_dir
        self._ftp: Optional[ftplib.FTP] = None

    @classmethod
    def from_config(cls, config: DeployConfig) -> "FTPTransport":
        return cls(
            host=config.server,
            username=config.username,
            password=config.password,
            port=config.port,
            protocol=config.protocol,
            security=config.security,
            timeout=config.timeout,
            base_dir=config.server_dir,
        )

    def _ssl_context(self) -> ssl.SSLContext:
        context = ssl.create_default_context()
        if self.security == Security.LOOSE:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context

    def _create_client(self) -> ftplib.FTP:
        if self.protocol == FtpProtocol.FTPS:
            return ftplib.FTP_TLS(context=self._ssl_context(), timeout=self.timeout)
        if self.protocol == FtpProtocol.FTPS_LEGACY:
            return ImplicitFTP_TLS(context=self._ssl_context(), timeout=self.timeout)
        return ftplib.FTP(timeout=self.timeout)

    def _client(self) -> ftplib.FTP:
        if self._ftp is None:
            raise TransientConnectionFault("Client is closed")
        return self._ftp

    @property
    def is_connected(self) -> bool:
        return self._ftp is not None

    def connect(self) -> None:
        """Connect, log in and enter the base directory.

        Raises:
            ConfigurationFault: Unknown host, rejected login or TLS failure
            TransportError: Any other connection failure
        """
        ftp = self._create_client()
        logger.debug(
            f"Attempting connection to {self.host}:{self.port} "
            f"via {self.protocol.value}"
        )
        try:
            with _translate_errors(f"connect to {self.host}:{self.port}"):
                try:
                    ftp.connect(self.host, self.port, timeout=self.timeout)
                    ftp.login(self.username, self.password)
                    if isinstance(ftp, ftplib.FTP_TLS):
                        ftp.prot_p()
                except socket.gaierror as e:
                    raise ConfigurationFault(
                        f"Cannot resolve host '{self.host}': {e}"
                    ) from e
                except ssl.SSLError as e:
                    raise ConfigurationFault(
                        f"TLS negotiation with {self.host} failed: {e}. "
                        "Ensure the server supports the chosen protocol (FTP/FTPS)."
                    ) from e
                except ftplib.error_perm as e:
                    raise ConfigurationFault(
                        f"Login to {self.host} as '{self.username}' rejected: {e}"
                    ) from e
        except Exception:
            ftp.close()
            raise

        self._ftp = ftp
        logger.debug("FTP connection successful")
        self.ensure_dir(self.base_dir)

    def list_names(self, directory: str = "") -> list[str]:
        """Return the entry names (not paths) inside a directory."""
        ftp = self._client()
        with _translate_errors(f"list {directory or '.'}"):
            try:
                names = ftp.nlst(directory) if directory else ftp.nlst()
            except ftplib.error_perm as e:
                # Some servers answer 550 for an empty directory
                if _reply_code(e) == "550":
                    return []
                raise
        basenames = (posixpath.basename(name.rstrip("/")) for name in names)
        return [name for name in basenames if name not in ("", ".", "..")]

    def ensure_dir(self, path: str) -> None:
        """Enter path, creating every missing component on the way."""
        ftp = self._client()
        logger.debug(f"  changing dir to {path}")
        with _translate_errors(f"ensure dir {path}"):
            if path.startswith("/"):
                ftp.cwd("/")
            for part in path.split("/"):
                if part in ("", "."):
                    continue
                try:
                    ftp.cwd(part)
                except ftplib.error_perm:
                    ftp.mkd(part)
                    ftp.cwd(part)
        logger.debug("  dir changed")

    def cdup(self, count: int) -> None:
        ftp = self._client()
        with _translate_errors(f"cdup {count}"):
            for _ in range(count):
                ftp.cwd("..")

    def upload(self, local_path: Path, remote_path: str) -> None:
        ftp = self._client()
        with _translate_errors(f"upload {remote_path}"):
            with open(local_path, "rb") as f:
                ftp.storbinary(f"STOR {remote_path}", f)

    def download(self, remote_path: str, local_path: Path) -> None:
        ftp = self._client()
        with _translate_errors(f"download {remote_path}"):
            with open(local_path, "wb") as f:
                ftp.retrbinary(f"RETR {remote_path}", f.write)

    def remove_file(self, remote_path: str) -> None:
        ftp = self._client()
        with _translate_errors(f"remove {remote_path}"):
            ftp.delete(remote_path)

    def remove_dir_recursive(self, remote_path: str) -> None:
        with _translate_errors(f"remove folder {remote_path}"):
            self._remove_tree(remote_path)

    def clear_working_dir(self) -> None:
        """Remove everything inside the current directory."""
        ftp = self._client()
        with _translate_errors("clear working dir"):
            for name in self.list_names():
                if self._is_directory(name):
                    self._remove_tree(name)
                else:
                    ftp.delete(name)

    def _is_directory(self, path: str) -> bool:
        ftp = self._client()
        current = ftp.pwd()
        try:
            ftp.cwd(path)
        except ftplib.error_perm:
            return False
        ftp.cwd(current)
        return True

    def _remove_tree(self, path: str) -> None:
        ftp = self._client()
        for name in self.list_names(path):
            child = f"{path.rstrip('/')}/{name}"
            if self._is_directory(child):
                self._remove_tree(child)
            else:
                ftp.delete(child)
        ftp.rmd(path)

    def send_keepalive(self) -> None:
        ftp = self._client()
        with _translate_errors("keep-alive"):
            ftp.voidcmd("NOOP")

    def close(self) -> None:
        """Close the session; safe to call more than once."""
        if self._ftp is None:
            return
        ftp, self._ftp = self._ftp, None
        try:
            ftp.quit()
        except ftplib.all_errors as e:
            logger.debug(f"Error while closing client (ignored): {e}")
            ftp.close()
