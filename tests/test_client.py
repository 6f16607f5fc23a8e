"""Tests for the remote client: auth config, connect, exec, copy and close."""

import io
import os
import threading
from unittest.mock import MagicMock, call, patch

import paramiko
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from fleetrun.ssh import client as client_module
from fleetrun.ssh.client import (
    ClientConfig,
    RemoteClient,
    load_private_key,
    new_client,
    new_client_config,
)
from fleetrun.ssh.exceptions import (
    ConnectError,
    CopyError,
    ExecError,
    NoAuthMethod,
    SessionError,
)
from fleetrun.ssh.models import ConnInfo


@pytest.fixture(scope="module")
def rsa_pem() -> bytes:
    """Unencrypted RSA private key in traditional PEM format."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


def make_channel(output: bytes = b"", status: int = 0) -> MagicMock:
    """Fake paramiko channel returning fixed combined output and exit status."""
    channel = MagicMock()
    channel.makefile.return_value = io.BytesIO(output)
    channel.recv_exit_status.return_value = status
    return channel


def make_client(channel: MagicMock) -> RemoteClient:
    ssh_client = MagicMock()
    ssh_client.get_transport.return_value.open_session.return_value = channel
    return RemoteClient(ssh_client, addr="host:22")


class TestNewClientConfig:
    """Building the auth method set from a descriptor."""

    def test_password_and_key(self, rsa_pem):
        info = ConnInfo(addr="addr", user="user", password="pwd", private_key=rsa_pem)

        config = new_client_config(info)

        assert config.user == "user"
        assert config.auth_methods == ["password", "publickey"]
        assert isinstance(config.pkey, paramiko.RSAKey)
        assert config.timeout == 30

    def test_password_only(self):
        config = new_client_config(ConnInfo(addr="addr", user="user", password="pwd"))
        assert config.auth_methods == ["password"]
        assert config.pkey is None

    def test_key_only(self, rsa_pem):
        config = new_client_config(ConnInfo(addr="addr", user="user", private_key=rsa_pem))
        assert config.auth_methods == ["publickey"]
        assert config.password is None

    def test_no_auth_raises(self):
        with pytest.raises(NoAuthMethod) as exc_info:
            new_client_config(ConnInfo(addr="addr", user="user"))

        assert str(exc_info.value) == "no auth info provided"
        assert isinstance(exc_info.value, ConnectError)

    def test_unparseable_key_is_skipped(self):
        info = ConnInfo(addr="addr", user="user", password="pwd", private_key=b"not a key")

        config = new_client_config(info)

        assert config.auth_methods == ["password"]

    def test_unparseable_key_alone_is_no_auth(self):
        with pytest.raises(NoAuthMethod):
            new_client_config(ConnInfo(addr="addr", user="user", private_key=b"\xff\xfe garbage"))

    def test_custom_timeout(self):
        config = new_client_config(ConnInfo(addr="a", user="u", password="p"), timeout=5)
        assert config.timeout == 5

    def test_connect_params(self, rsa_pem):
        config = ClientConfig(user="u", password="p", pkey=load_private_key(rsa_pem), timeout=7)
        sock = object()

        params = config.connect_params("10.0.0.1", 2222, sock=sock)

        assert params["hostname"] == "10.0.0.1"
        assert params["port"] == 2222
        assert params["username"] == "u"
        assert params["password"] == "p"
        assert params["pkey"] is config.pkey
        assert params["sock"] is sock
        assert params["timeout"] == 7
        assert params["allow_agent"] is False
        assert params["look_for_keys"] is False

    def test_load_private_key_rejects_garbage(self):
        assert load_private_key(b"-----BEGIN NOTHING-----\n") is None


class TestConnect:
    """Direct and proxied connection establishment."""

    def test_direct(self):
        info = ConnInfo(addr="10.0.0.5:2200", user="user", password="pwd")
        with patch.object(client_module, "_dial") as dial:
            remote = new_client(info)

        dial.assert_called_once()
        host, port, config = dial.call_args.args
        assert (host, port) == ("10.0.0.5", 2200)
        assert config.password == "pwd"
        assert isinstance(remote, RemoteClient)
        assert remote.addr == "10.0.0.5:2200"

    def test_direct_default_port(self):
        info = ConnInfo(addr="example.com", user="user", password="pwd")
        with patch.object(client_module, "_dial") as dial:
            new_client(info)

        assert dial.call_args.args[:2] == ("example.com", 22)

    def test_direct_failure_wraps_cause(self):
        info = ConnInfo(addr="10.0.0.5:22", user="user", password="pwd")
        cause = paramiko.AuthenticationException("Authentication failed.")
        with patch.object(client_module, "_dial", side_effect=cause):
            with pytest.raises(ConnectError) as exc_info:
                new_client(info)

        assert exc_info.value.cause is cause
        assert exc_info.value.addr == "10.0.0.5:22"
        assert "Authentication failed." in str(exc_info.value)

    def test_no_auth_fails_before_dialing(self):
        with patch.object(client_module, "_dial") as dial:
            with pytest.raises(NoAuthMethod):
                new_client(ConnInfo(addr="addr:22", user="user"))
        dial.assert_not_called()

    def test_via_proxy_tunnels_target_handshake(self):
        proxy = ConnInfo(addr="bastion:22", user="jump", password="9453")
        info = ConnInfo(addr="10.0.0.5:22", user="user", password="pwd", proxy=proxy)
        proxy_client = MagicMock()
        target_client = MagicMock()
        tunnel = proxy_client.get_transport.return_value.open_channel.return_value

        with patch.object(client_module, "_dial", side_effect=[proxy_client, target_client]) as dial:
            remote = new_client(info)

        first, second = dial.call_args_list
        assert first.args[:2] == ("bastion", 22)
        assert first.args[2].password == "9453"
        assert second.args[:2] == ("10.0.0.5", 22)
        assert second.args[2].password == "pwd"
        assert second.kwargs["sock"] is tunnel

        open_channel = proxy_client.get_transport.return_value.open_channel
        assert open_channel.call_args.args == ("direct-tcpip",)
        assert open_channel.call_args.kwargs["dest_addr"] == ("10.0.0.5", 22)

        remote.close()
        target_client.close.assert_called_once()
        proxy_client.close.assert_called_once()

    def test_via_proxy_target_failure_closes_proxy(self):
        proxy = ConnInfo(addr="bastion:22", user="jump", password="9453")
        info = ConnInfo(addr="10.0.0.5:22", user="user", password="pwd", proxy=proxy)
        proxy_client = MagicMock()

        with patch.object(
            client_module, "_dial",
            side_effect=[proxy_client, paramiko.SSHException("handshake failed")],
        ):
            with pytest.raises(ConnectError) as exc_info:
                new_client(info)

        assert exc_info.value.addr == "10.0.0.5:22"
        proxy_client.close.assert_called_once()

    def test_via_proxy_proxy_failure(self):
        proxy = ConnInfo(addr="bastion:22", user="jump", password="9453")
        info = ConnInfo(addr="10.0.0.5:22", user="user", password="pwd", proxy=proxy)

        with patch.object(client_module, "_dial", side_effect=OSError("Connection refused")):
            with pytest.raises(ConnectError) as exc_info:
                new_client(info)

        assert exc_info.value.addr == "bastion:22"

    def test_proxy_without_credentials(self):
        proxy = ConnInfo(addr="bastion:22", user="jump")
        info = ConnInfo(addr="10.0.0.5:22", user="user", password="pwd", proxy=proxy)

        with patch.object(client_module, "_dial") as dial:
            with pytest.raises(NoAuthMethod):
                new_client(info)
        dial.assert_not_called()

    def test_nested_proxy_is_ignored(self, caplog):
        far = ConnInfo(addr="far:22", user="x", password="x")
        proxy = ConnInfo(addr="bastion:22", user="jump", password="9453", proxy=far)
        info = ConnInfo(addr="10.0.0.5:22", user="user", password="pwd", proxy=proxy)

        with patch.object(client_module, "_dial", side_effect=[MagicMock(), MagicMock()]) as dial:
            with caplog.at_level("WARNING", logger="fleetrun.ssh.client"):
                new_client(info)

        dialed = [c.args[0] for c in dial.call_args_list]
        assert dialed == ["bastion", "10.0.0.5"]
        assert "only one hop is supported" in caplog.text

    def test_bad_port(self):
        with pytest.raises(ConnectError):
            new_client(ConnInfo(addr="host:notaport", user="u", password="p"))


class TestExec:
    """Command execution on a session channel."""

    def test_returns_output_with_newline(self):
        channel = make_channel(b"cmd")
        remote = make_client(channel)

        assert remote.exec("cmd") == "cmd\n"
        channel.set_combine_stderr.assert_called_once_with(True)
        channel.exec_command.assert_called_once_with("cmd")
        channel.close.assert_called_once()

    def test_failed_command_appends_error(self):
        channel = make_channel(b"cmd", status=2)
        remote = make_client(channel)

        assert remote.exec("cmd") == "cmd\nProcess exited with status 2\n"
        channel.close.assert_called_once()

    def test_failed_command_without_output(self):
        remote = make_client(make_channel(b"", status=1))
        assert remote.exec("false") == "Process exited with status 1\n"

    def test_missing_exit_status(self):
        remote = make_client(make_channel(b"partial", status=-1))
        assert remote.exec("cmd") == "partial\nremote command exited without exit status\n"

    def test_no_output_no_error(self):
        remote = make_client(make_channel(b""))
        assert remote.exec("true") == ""

    def test_channel_error_is_folded_into_text(self):
        channel = make_channel()
        channel.exec_command.side_effect = paramiko.SSHException("Channel closed.")
        remote = make_client(channel)

        assert remote.exec("cmd") == "Channel closed.\n"
        channel.close.assert_called_once()

    def test_session_failure_raises(self):
        ssh_client = MagicMock()
        ssh_client.get_transport.return_value.open_session.side_effect = paramiko.SSHException("errString")
        remote = RemoteClient(ssh_client, addr="host:22")

        with pytest.raises(SessionError) as exc_info:
            remote.exec("cmd")

        assert "errString" in str(exc_info.value)

    def test_missing_transport_raises(self):
        ssh_client = MagicMock()
        ssh_client.get_transport.return_value = None
        remote = RemoteClient(ssh_client, addr="host:22")

        with pytest.raises(SessionError):
            remote.exec("cmd")

    def test_closed_client_raises(self):
        remote = make_client(make_channel(b"x"))
        remote.close()

        with pytest.raises(ExecError):
            remote.exec("cmd")

    def test_undecodable_output_is_replaced(self):
        remote = make_client(make_channel(b"ok\xff"))
        assert remote.exec("cmd") == "ok\ufffd\n"


class TestCopy:
    """scp sink upload over a session channel."""

    @staticmethod
    def sent_bytes(channel: MagicMock) -> bytes:
        return b"".join(c.args[0] for c in channel.sendall.call_args_list)

    def test_streams_files_to_sink(self, tmp_path):
        first = tmp_path / "f1"
        first.write_bytes(b"hello")
        os.chmod(first, 0o644)
        second = tmp_path / "run.sh"
        second.write_bytes(b"#!/bin/sh\n")
        os.chmod(second, 0o755)
        channel = make_channel()
        remote = make_client(channel)

        remote.copy([str(first), str(second)], "/tmp")

        channel.exec_command.assert_called_once_with("/usr/bin/scp -qtr /tmp")
        assert self.sent_bytes(channel) == (
            b"C0644 5 f1\nhello\x00"
            b"C0755 10 run.sh\n#!/bin/sh\n\x00"
        )
        channel.shutdown_write.assert_called_once()
        channel.close.assert_called_once()

    def test_empty_file(self, tmp_path):
        empty = tmp_path / "empty"
        empty.write_bytes(b"")
        os.chmod(empty, 0o600)
        channel = make_channel()

        make_client(channel).copy([str(empty)], "/srv")

        assert self.sent_bytes(channel) == b"C0600 0 empty\n\x00"

    def test_missing_local_file(self, tmp_path):
        present = tmp_path / "present"
        present.write_bytes(b"x")
        channel = make_channel()
        remote = make_client(channel)

        with pytest.raises(CopyError) as exc_info:
            remote.copy([str(present), str(tmp_path / "missing")], "/tmp")

        assert exc_info.value.path == str(tmp_path / "missing")
        channel.exec_command.assert_not_called()

    def test_sink_failure_raises(self, tmp_path):
        src = tmp_path / "f1"
        src.write_bytes(b"data")
        channel = make_channel(b"\x01scp: /nope: No such file or directory\n", status=1)

        with pytest.raises(CopyError) as exc_info:
            make_client(channel).copy([str(src)], "/nope")

        assert str(exc_info.value) == (
            "Process exited with status 1: scp: /nope: No such file or directory"
        )
        assert exc_info.value.path is None
        channel.close.assert_called_once()

    def test_writer_error_is_not_surfaced(self, tmp_path):
        src = tmp_path / "f1"
        src.write_bytes(b"data")
        channel = make_channel(status=0)
        channel.sendall.side_effect = OSError("Socket is closed")

        make_client(channel).copy([str(src)], "/tmp")

        channel.shutdown_write.assert_called_once()

    def test_start_failure_raises(self, tmp_path):
        src = tmp_path / "f1"
        src.write_bytes(b"data")
        channel = make_channel()
        channel.exec_command.side_effect = paramiko.SSHException("exec denied")

        with pytest.raises(CopyError):
            make_client(channel).copy([str(src)], "/tmp")

        channel.sendall.assert_not_called()
        channel.close.assert_called_once()

    def test_files_closed_after_copy(self, tmp_path):
        src = tmp_path / "f1"
        src.write_bytes(b"data")
        opened = []
        real_open = open

        def tracking_open(*args, **kwargs):
            fh = real_open(*args, **kwargs)
            opened.append(fh)
            return fh

        with patch("builtins.open", side_effect=tracking_open):
            with pytest.raises(CopyError):
                make_client(make_channel(status=1)).copy([str(src)], "/tmp")

        assert opened and all(fh.closed for fh in opened)

    def test_writer_runs_concurrently_with_drain(self, tmp_path):
        """The drain blocks until the writer has sent stdin EOF."""
        src = tmp_path / "f1"
        src.write_bytes(b"x" * 100000)
        eof_sent = threading.Event()
        channel = make_channel()
        channel.shutdown_write.side_effect = lambda: eof_sent.set()

        class BlockingStream:
            def read(self):
                assert eof_sent.wait(5), "writer never finished"
                return b""

        channel.makefile.return_value = BlockingStream()

        make_client(channel).copy([str(src)], "/tmp")

        assert self.sent_bytes(channel).startswith(b"C0")
        assert len(self.sent_bytes(channel)) > 100000

    def test_session_failure_raises(self, tmp_path):
        src = tmp_path / "f1"
        src.write_bytes(b"data")
        ssh_client = MagicMock()
        ssh_client.get_transport.return_value.open_session.side_effect = paramiko.SSHException("nope")

        with pytest.raises(SessionError):
            RemoteClient(ssh_client, addr="h").copy([str(src)], "/tmp")

    def test_closed_client_raises(self, tmp_path):
        remote = make_client(make_channel())
        remote.close()

        with pytest.raises(CopyError):
            remote.copy([], "/tmp")


class TestClose:
    """Closing releases the connection exactly once."""

    def test_close_calls_ssh_client_close(self):
        ssh_client = MagicMock()
        remote = RemoteClient(ssh_client)

        remote.close()

        ssh_client.close.assert_called_once()
        assert remote.closed

    def test_close_is_idempotent(self):
        ssh_client = MagicMock()
        proxy_client = MagicMock()
        remote = RemoteClient(ssh_client, proxy_client=proxy_client)

        remote.close()
        remote.close()

        ssh_client.close.assert_called_once()
        proxy_client.close.assert_called_once()
        assert ssh_client.method_calls[-1] == call.close()
