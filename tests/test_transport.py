"""Tests for the ftplib transport."""

import ftplib
import socket
import ssl
from unittest.mock import Mock, call, patch

import pytest

from pyftpdeploy.config import DeployConfig, FtpProtocol, Security
from pyftpdeploy.exceptions import (
    ConfigurationFault,
    FaultKind,
    NotFoundFault,
    TransientConnectionFault,
    TransportError,
)
from pyftpdeploy.transport import FTPTransport, ImplicitFTP_TLS, _translate_errors

TRANSIENT = FaultKind.TRANSIENT


@pytest.fixture
def ftp():
    """Patch ftplib.FTP and provide the client instance it returns."""
    with patch("pyftpdeploy.transport.ftplib.FTP") as ftp_class:
        yield ftp_class.return_value


@pytest.fixture
def transport(ftp):
    """Create a connected transport on the patched client."""
    transport = FTPTransport("ftp.example.com", "deploy", "secret")
    transport.connect()
    ftp.reset_mock()
    return transport


class TestTranslateErrors:
    """Tests for mapping ftplib errors onto fault kinds."""

    @pytest.mark.parametrize(
        "error,fault_class,kind",
        [
            (ftplib.error_perm("550 No such file"), NotFoundFault, FaultKind.NOT_FOUND),
            (ftplib.error_perm("553 Not allowed"), TransportError, FaultKind.FATAL),
            (ftplib.error_temp("421 Timeout"), TransientConnectionFault, TRANSIENT),
            (ftplib.error_temp("450 Busy"), TransportError, FaultKind.FATAL),
            (EOFError(), TransientConnectionFault, TRANSIENT),
            (ConnectionResetError("reset"), TransientConnectionFault, TRANSIENT),
            (socket.timeout("timed out"), TransientConnectionFault, TRANSIENT),
            (ftplib.error_reply("200 Unexpected"), TransportError, FaultKind.FATAL),
            (OSError("disk full"), TransportError, FaultKind.FATAL),
        ],
    )
    def test_translation(self, error, fault_class, kind):
        with pytest.raises(fault_class) as exc_info:
            with _translate_errors("upload a.txt"):
                raise error

        assert exc_info.value.kind == kind
        assert str(exc_info.value).startswith("upload a.txt")
        assert exc_info.value.__cause__ is error

    def test_other_exceptions_pass_through(self):
        """Test non-network errors are not translated."""
        with pytest.raises(ValueError):
            with _translate_errors("upload a.txt"):
                raise ValueError("bug")


class TestConnect:
    """Tests for FTPTransport.connect."""

    def test_connect_logs_in(self, ftp):
        """Test connect opens the control channel and logs in."""
        transport = FTPTransport("ftp.example.com", "deploy", "secret", timeout=12.0)

        transport.connect()

        ftp.connect.assert_called_once_with("ftp.example.com", 21, timeout=12.0)
        ftp.login.assert_called_once_with("deploy", "secret")
        assert transport.is_connected

    def test_connect_creates_base_dir(self, ftp):
        """Test the base directory is entered, creating missing parts."""
        ftp.cwd.side_effect = [ftplib.error_perm("550 No such directory"), None, None]
        transport = FTPTransport(
            "ftp.example.com", "deploy", "secret", base_dir="./public/site/"
        )

        transport.connect()

        ftp.mkd.assert_called_once_with("public")
        assert ftp.cwd.call_args_list == [call("public"), call("public"), call("site")]

    def test_login_rejected(self, ftp):
        """Test bad credentials are a configuration error."""
        ftp.login.side_effect = ftplib.error_perm("530 Login incorrect.")
        transport = FTPTransport("ftp.example.com", "deploy", "wrong")

        with pytest.raises(ConfigurationFault, match="rejected"):
            transport.connect()

        ftp.close.assert_called_once()
        assert not transport.is_connected

    def test_unknown_host(self, ftp):
        """Test an unresolvable host is a configuration error."""
        ftp.connect.side_effect = socket.gaierror("Name or service not known")

        with pytest.raises(ConfigurationFault, match="Cannot resolve host"):
            FTPTransport("nowhere.invalid", "deploy", "secret").connect()

    def test_tls_failure(self, ftp):
        """Test a TLS handshake failure hints at the protocol setting."""
        ftp.login.side_effect = ssl.SSLError("wrong version number")

        with pytest.raises(ConfigurationFault, match="TLS negotiation"):
            FTPTransport("ftp.example.com", "deploy", "secret").connect()

    def test_connection_refused_is_transient(self, ftp):
        """Test a refused connection can be retried."""
        ftp.connect.side_effect = ConnectionRefusedError("refused")

        with pytest.raises(TransientConnectionFault):
            FTPTransport("ftp.example.com", "deploy", "secret").connect()

    def test_explicit_tls_protects_data_channel(self):
        """Test FTPS switches the data channel to TLS after login."""
        client = Mock(spec=ftplib.FTP_TLS)
        transport = FTPTransport(
            "ftp.example.com", "deploy", "secret", protocol=FtpProtocol.FTPS
        )

        with patch.object(FTPTransport, "_create_client", return_value=client):
            transport.connect()

        client.prot_p.assert_called_once()

    def test_from_config(self, tmp_path):
        """Test every connection setting is taken from the config."""
        config = DeployConfig(
            server="ftp.example.com",
            username="deploy",
            password="secret",
            port=990,
            protocol="ftps-legacy",
            security="strict",
            server_dir="./public/",
            timeout=5,
            local_dir=tmp_path,
        )

        transport = FTPTransport.from_config(config)

        assert transport.port == 990
        assert transport.protocol == FtpProtocol.FTPS_LEGACY
        assert transport.security == Security.STRICT
        assert transport.base_dir == "./public/"
        assert transport.timeout == 5


class TestClients:
    """Tests for TLS client construction."""

    def test_loose_security_skips_verification(self):
        context = FTPTransport("h", "u", "p", security=Security.LOOSE)._ssl_context()
        assert context.verify_mode == ssl.CERT_NONE
        assert not context.check_hostname

    def test_strict_security_verifies(self):
        context = FTPTransport("h", "u", "p", security=Security.STRICT)._ssl_context()
        assert context.verify_mode == ssl.CERT_REQUIRED
        assert context.check_hostname

    @pytest.mark.parametrize(
        "protocol,client_class",
        [
            (FtpProtocol.FTP, ftplib.FTP),
            (FtpProtocol.FTPS, ftplib.FTP_TLS),
            (FtpProtocol.FTPS_LEGACY, ImplicitFTP_TLS),
        ],
    )
    def test_client_per_protocol(self, protocol, client_class):
        client = FTPTransport("h", "u", "p", protocol=protocol)._create_client()
        assert type(client) is client_class

    def test_implicit_tls_wraps_socket(self):
        """Test implicit TLS wraps the control socket as soon as it is set."""
        context = Mock()
        client = ImplicitFTP_TLS(context=context)
        client.host = "ftp.example.com"
        plain = Mock(spec=socket.socket)

        client.sock = plain

        context.wrap_socket.assert_called_once_with(
            plain, server_hostname="ftp.example.com"
        )
        assert client.sock is context.wrap_socket.return_value


class TestOperations:
    """Tests for remote operations on a connected transport."""

    def test_closed_client_is_transient(self):
        """Test operations without a session ask for a reconnect."""
        transport = FTPTransport("ftp.example.com", "deploy", "secret")

        with pytest.raises(TransientConnectionFault, match="Client is closed"):
            transport.remove_file("a.txt")

    def test_list_names(self, transport, ftp):
        """Test listings are reduced to entry names."""
        ftp.nlst.return_value = ["./a.txt", "sub/", ".", ".."]

        assert transport.list_names() == ["a.txt", "sub"]
        ftp.nlst.assert_called_once_with()

    def test_list_names_of_directory(self, transport, ftp):
        ftp.nlst.return_value = ["assets/app.js"]

        assert transport.list_names("assets") == ["app.js"]
        ftp.nlst.assert_called_once_with("assets")

    def test_list_names_empty_directory(self, transport, ftp):
        """Test a 550 answer to NLST means an empty directory."""
        ftp.nlst.side_effect = ftplib.error_perm("550 No files found")

        assert transport.list_names() == []

    def test_ensure_dir_absolute(self, transport, ftp):
        """Test absolute paths start from the server root."""
        transport.ensure_dir("/www/site")

        assert ftp.cwd.call_args_list == [call("/"), call("www"), call("site")]
        ftp.mkd.assert_not_called()

    def test_cdup(self, transport, ftp):
        transport.cdup(3)

        assert ftp.cwd.call_args_list == [call("..")] * 3

    def test_upload(self, transport, ftp, tmp_path):
        """Test uploads store the local file under the remote path."""
        local = tmp_path / "a.txt"
        local.write_bytes(b"hello")
        stored = {}
        ftp.storbinary.side_effect = lambda cmd, f: stored.update({cmd: f.read()})

        transport.upload(local, "dir/a.txt")

        assert stored == {"STOR dir/a.txt": b"hello"}

    def test_upload_missing_local_file(self, transport, tmp_path):
        """Test an unreadable local file is fatal."""
        with pytest.raises(TransportError) as exc_info:
            transport.upload(tmp_path / "missing.txt", "missing.txt")
        assert exc_info.value.kind == FaultKind.FATAL

    def test_download(self, transport, ftp, tmp_path):
        """Test downloads write the retrieved bytes."""
        ftp.retrbinary.side_effect = lambda command, callback: callback(b"state")
        target = tmp_path / "state.json"

        transport.download("state.json", target)

        assert target.read_bytes() == b"state"
        assert ftp.retrbinary.call_args[0][0] == "RETR state.json"

    def test_remove_missing_file(self, transport, ftp):
        """Test deleting a missing file raises NotFoundFault."""
        ftp.delete.side_effect = ftplib.error_perm("550 File not found")

        with pytest.raises(NotFoundFault):
            transport.remove_file("gone.txt")

    def test_remove_dir_recursive(self, transport, ftp):
        """Test folders are emptied depth first before removal."""
        listings = {"/old": ["a.txt", "sub"], "/old/sub": []}
        ftp.nlst.side_effect = lambda *args: listings[args[0]]
        ftp.pwd.return_value = "/"

        def cwd(path):
            if path == "/old/a.txt":
                raise ftplib.error_perm("550 Not a directory")

        ftp.cwd.side_effect = cwd

        transport.remove_dir_recursive("/old")

        ftp.delete.assert_called_once_with("/old/a.txt")
        assert ftp.rmd.call_args_list == [call("/old/sub"), call("/old")]

    def test_clear_working_dir(self, transport, ftp):
        """Test every file and folder in the current directory is removed."""
        listings = {(): ["index.html", "assets"], ("assets",): []}
        ftp.nlst.side_effect = lambda *args: listings[args]
        ftp.pwd.return_value = "/"

        def cwd(path):
            if path == "index.html":
                raise ftplib.error_perm("550 Not a directory")

        ftp.cwd.side_effect = cwd

        transport.clear_working_dir()

        ftp.delete.assert_called_once_with("index.html")
        ftp.rmd.assert_called_once_with("assets")

    def test_send_keepalive(self, transport, ftp):
        transport.send_keepalive()

        ftp.voidcmd.assert_called_once_with("NOOP")

    def test_keepalive_on_dropped_connection(self, transport, ftp):
        """Test a dead control channel surfaces as transient."""
        ftp.voidcmd.side_effect = EOFError()

        with pytest.raises(TransientConnectionFault):
            transport.send_keepalive()

    def test_close_is_idempotent(self, transport, ftp):
        """Test closing twice quits once."""
        transport.close()
        transport.close()

        ftp.quit.assert_called_once()
        assert not transport.is_connected

    def test_close_falls_back_when_quit_fails(self, transport, ftp):
        """Test a failing QUIT still closes the socket."""
        ftp.quit.side_effect = EOFError()

        transport.close()

        ftp.close.assert_called_once()
