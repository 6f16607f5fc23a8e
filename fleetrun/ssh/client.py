"""
Remote client - SSH exec and scp upload for a single host.

Path: fleetrun/ssh/client.py

A RemoteClient wraps one live paramiko connection, opened either
directly or through a single jump host. Each exec/copy call runs on its
own short-lived session channel.

Host keys are never verified: any key the remote presents is accepted.
"""

import logging
import threading
from contextlib import ExitStack
from dataclasses import dataclass
from io import StringIO
from typing import List, Optional, Protocol, Sequence, Tuple

import paramiko

from fleetrun.ssh.exceptions import (
    ConnectError,
    CopyError,
    ExecError,
    NoAuthMethod,
    SessionError,
)
from fleetrun.ssh.models import ConnInfo, split_addr
from fleetrun.ssh import scp


# Module logger - configure at application level
logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30
NO_EXIT_STATUS = "remote command exited without exit status"

# Failures that can surface from a channel once it is open
_CHANNEL_ERRORS = (OSError, EOFError, paramiko.SSHException)


class CloseableClient(Protocol):
    """Surface shared by every remote client the task manager drives."""

    def exec(self, command: str) -> str: ...

    def copy(self, file_paths: Sequence[str], dest_dir: str) -> None: ...

    def close(self) -> None: ...


def load_private_key(key_content: bytes) -> Optional[paramiko.PKey]:
    """
    Parse PEM/OpenSSH private key bytes.

    Supports Ed25519, RSA, ECDSA (and DSA if the installed paramiko still
    ships it). Encrypted keys are not supported.

    Returns:
        The loaded key, or None if no key type could parse the content.
    """
    key_types = [
        ('Ed25519', paramiko.Ed25519Key),
        ('RSA', paramiko.RSAKey),
        ('ECDSA', paramiko.ECDSAKey),
    ]

    # DSA support only exists in older Paramiko versions
    if hasattr(paramiko, 'DSSKey'):
        key_types.append(('DSA', paramiko.DSSKey))

    key_text = key_content.decode('utf-8', errors='replace')

    for key_name, key_class in key_types:
        try:
            pkey = key_class.from_private_key(StringIO(key_text))
            logger.debug(f"Loaded {key_name} private key")
            return pkey
        except Exception as e:
            logger.debug(f"Not a {key_name} key: {e}")
            continue

    return None


@dataclass
class ClientConfig:
    """Authentication and timeout settings for one SSH handshake."""

    user: str
    password: Optional[str] = None
    pkey: Optional[paramiko.PKey] = None
    timeout: float = DEFAULT_TIMEOUT

    @property
    def auth_methods(self) -> List[str]:
        methods = []
        if self.password:
            methods.append("password")
        if self.pkey is not None:
            methods.append("publickey")
        return methods

    def connect_params(self, host: str, port: int, sock=None) -> dict:
        """Keyword arguments for paramiko.SSHClient.connect()."""
        params = {
            'hostname': host,
            'port': port,
            'username': self.user,
            'timeout': self.timeout,
            'banner_timeout': self.timeout,
            'auth_timeout': self.timeout,
            'allow_agent': False,
            'look_for_keys': False,
        }
        if self.password:
            params['password'] = self.password
        if self.pkey is not None:
            params['pkey'] = self.pkey
        if sock is not None:
            params['sock'] = sock
        return params


def new_client_config(info: ConnInfo, timeout: float = DEFAULT_TIMEOUT) -> ClientConfig:
    """
    Build the auth config for a descriptor.

    A private key that fails to parse is skipped rather than treated as
    fatal; the handshake then relies on the password alone.

    Raises:
        NoAuthMethod: If neither a password nor a parseable key is present.
    """
    pkey = None
    if info.has_key:
        pkey = load_private_key(info.private_key)
        if pkey is None:
            logger.debug(f"{info.addr}: private key could not be parsed, skipping key auth")

    config = ClientConfig(
        user=info.user,
        password=info.password or None,
        pkey=pkey,
        timeout=timeout,
    )
    if not config.auth_methods:
        raise NoAuthMethod(info.addr)
    return config


def _dial(host: str, port: int, config: ClientConfig, sock=None) -> paramiko.SSHClient:
    """Open an SSH connection, accepting whatever host key is presented."""
    client = paramiko.SSHClient()
    client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
    try:
        client.connect(**config.connect_params(host, port, sock=sock))
    except BaseException:
        client.close()
        raise
    return client


class RemoteClient:
    """
    SSH client that can run commands and upload files on one host.

    Build one with new_client(), or explicitly with RemoteClient.direct()
    or RemoteClient.via_proxy(). Close it exactly once when done.

    Usage:
        client = new_client(ConnInfo(addr="10.0.0.5:22", user="deploy", password="..."))
        try:
            client.copy(["build/app.tar.gz"], "/tmp")
            print(client.exec("tar -xzf /tmp/app.tar.gz -C /opt"))
        finally:
            client.close()
    """

    def __init__(
        self,
        ssh_client: paramiko.SSHClient,
        proxy_client: Optional[paramiko.SSHClient] = None,
        addr: str = "",
    ):
        self._ssh_client = ssh_client
        self._proxy_client = proxy_client
        self.addr = addr
        self._closed = False

    @classmethod
    def direct(cls, info: ConnInfo, timeout: float = DEFAULT_TIMEOUT) -> "RemoteClient":
        """Connect straight to info.addr."""
        config = new_client_config(info, timeout)
        host, port = _split(info)

        logger.debug(f"{info.addr}: Connecting directly...")
        try:
            ssh_client = _dial(host, port, config)
        except Exception as e:
            raise ConnectError(info.addr, e) from e

        return cls(ssh_client, addr=info.addr)

    @classmethod
    def via_proxy(cls, info: ConnInfo, timeout: float = DEFAULT_TIMEOUT) -> "RemoteClient":
        """
        Connect to info.addr through info.proxy.

        The target handshake runs over a direct-tcpip channel opened on the
        proxy's transport, so all target traffic flows through the proxy.
        """
        proxy = info.proxy
        if proxy is None:
            raise ValueError(f"{info.addr}: no proxy configured")
        if proxy.proxy is not None:
            logger.warning(
                f"{info.addr}: proxy {proxy.addr} has its own proxy {proxy.proxy.addr}; "
                f"only one hop is supported, ignoring it"
            )

        config = new_client_config(info, timeout)
        proxy_config = new_client_config(proxy, timeout)
        host, port = _split(info)
        proxy_host, proxy_port = _split(proxy)

        logger.debug(f"{info.addr}: Connecting via proxy {proxy.addr}...")
        try:
            proxy_client = _dial(proxy_host, proxy_port, proxy_config)
        except Exception as e:
            raise ConnectError(proxy.addr, e) from e

        try:
            tunnel = proxy_client.get_transport().open_channel(
                "direct-tcpip",
                dest_addr=(host, port),
                src_addr=("127.0.0.1", 0),
                timeout=timeout,
            )
            ssh_client = _dial(host, port, config, sock=tunnel)
        except Exception as e:
            proxy_client.close()
            raise ConnectError(info.addr, e) from e

        return cls(ssh_client, proxy_client=proxy_client, addr=info.addr)

    @property
    def closed(self) -> bool:
        return self._closed

    def _open_session(self) -> paramiko.Channel:
        """Open a fresh session channel on the live connection."""
        transport = self._ssh_client.get_transport()
        if transport is None:
            raise SessionError(f"{self.addr}: SSH transport is not available")
        try:
            return transport.open_session()
        except _CHANNEL_ERRORS as e:
            raise SessionError(f"{self.addr}: open session: {e}") from e

    @staticmethod
    def _combined_output(channel: paramiko.Channel, command: str) -> Tuple[str, Optional[str]]:
        """
        Run command on channel and collect stdout+stderr as one stream.

        Returns:
            (output, error) where error is None when the command exited 0.
        """
        raw = b""
        try:
            channel.set_combine_stderr(True)
            channel.exec_command(command)
            raw = channel.makefile('rb').read()
            status = channel.recv_exit_status()
        except _CHANNEL_ERRORS as e:
            return raw.decode('utf-8', errors='replace'), str(e)

        output = raw.decode('utf-8', errors='replace')
        if status == 0:
            return output, None
        if status < 0:
            return output, NO_EXIT_STATUS
        return output, f"Process exited with status {status}"

    def exec(self, command: str) -> str:
        """
        Run a shell command and return its combined output.

        A command that fails remotely is not an error: its output and the
        failure reason are both returned as text,
        ``output + "\\n"`` (if any) then ``error + "\\n"`` (if any).

        Raises:
            ExecError: If the client has already been closed.
            SessionError: If no session channel could be opened.
        """
        if self._closed:
            raise ExecError(f"{self.addr}: client is closed")

        channel = self._open_session()
        try:
            logger.debug(f"{self.addr}: $ {command}")
            output, error = self._combined_output(channel, command)
        finally:
            channel.close()

        result = ""
        if output:
            result += output + "\n"
        if error:
            logger.debug(f"{self.addr}: command {command!r} failed: {error}")
            result += error + "\n"
        return result

    def copy(self, file_paths: Sequence[str], dest_dir: str) -> None:
        """
        Upload local files into dest_dir on the remote host.

        Files are sent in order through a remote ``scp -qtr`` sink. The sink
        runs while a writer thread streams the files to its stdin and this
        thread drains its output, so neither side can stall the other.

        Raises:
            CopyError: If a local file cannot be opened, the client is
                closed, or the remote scp exits unsuccessfully.
            SessionError: If no session channel could be opened.
        """
        if self._closed:
            raise CopyError(f"{self.addr}: client is closed")

        with ExitStack() as stack:
            files = []
            for path in file_paths:
                try:
                    files.append(stack.enter_context(open(path, 'rb')))
                except OSError as e:
                    raise CopyError(str(e), path=path) from e

            channel = self._open_session()
            writer = threading.Thread(
                target=scp.send_files,
                args=(channel, list(file_paths), files),
                name=f"scp-writer-{self.addr}",
                daemon=True,
            )
            try:
                try:
                    channel.set_combine_stderr(True)
                    channel.exec_command(scp.sink_command(dest_dir))
                except _CHANNEL_ERRORS as e:
                    raise CopyError(f"{self.addr}: start scp sink: {e}") from e

                writer.start()
                output = channel.makefile('rb').read()
                status = channel.recv_exit_status()
            except _CHANNEL_ERRORS as e:
                raise CopyError(f"{self.addr}: scp: {e}") from e
            finally:
                channel.close()
                if writer.is_alive():
                    writer.join()

        if status != 0:
            message = NO_EXIT_STATUS if status < 0 else f"Process exited with status {status}"
            detail = _sink_message(output)
            if detail:
                message += f": {detail}"
            raise CopyError(message)

        logger.debug(f"{self.addr}: copied {len(file_paths)} file(s) to {dest_dir}")

    def close(self) -> None:
        """Close the connection, and the proxy connection if there is one."""
        if self._closed:
            return
        self._closed = True
        self._ssh_client.close()
        if self._proxy_client is not None:
            self._proxy_client.close()


def _split(info: ConnInfo) -> Tuple[str, int]:
    try:
        return split_addr(info.addr)
    except ValueError as e:
        raise ConnectError(info.addr, e) from e


def _sink_message(output: bytes) -> str:
    """Strip scp protocol status bytes (\\x00 ok, \\x01 warning, \\x02 error)."""
    text = output.decode('utf-8', errors='replace')
    return text.translate({0: None, 1: None, 2: None}).strip()


def new_client(info: ConnInfo, timeout: float = DEFAULT_TIMEOUT) -> RemoteClient:
    """
    Connect to a host, through its proxy when one is configured.

    Raises:
        ConnectError: On any dial, tunnel or handshake failure
            (NoAuthMethod when no credential is usable).
    """
    if info.proxy is not None:
        return RemoteClient.via_proxy(info, timeout)
    return RemoteClient.direct(info, timeout)
