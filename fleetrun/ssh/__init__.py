"""SSH execution - remote client, scp upload and connection models."""

from fleetrun.ssh.models import ConnInfo
from fleetrun.ssh.client import (
    CloseableClient,
    ClientConfig,
    RemoteClient,
    new_client,
    new_client_config,
)
from fleetrun.ssh.exceptions import (
    RemoteError,
    ConnectError,
    NoAuthMethod,
    SessionError,
    ExecError,
    CopyError,
    ErrorCategory,
    categorize_error,
)

__all__ = [
    "ConnInfo",
    "CloseableClient",
    "ClientConfig",
    "RemoteClient",
    "new_client",
    "new_client_config",
    "RemoteError",
    "ConnectError",
    "NoAuthMethod",
    "SessionError",
    "ExecError",
    "CopyError",
    "ErrorCategory",
    "categorize_error",
]
