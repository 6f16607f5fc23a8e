"""
Remote execution errors.

Path: fleetrun/ssh/exceptions.py

Every failure a RemoteClient can raise derives from RemoteError, so the
task manager can fold any of them into a host's log text. The category
helpers classify failures for log lines and run summaries.
"""

from enum import Enum
from typing import Optional


class RemoteError(Exception):
    """Base class for remote execution failures."""


class ConnectError(RemoteError):
    """Dial, tunnel or handshake failure while connecting to a host."""

    def __init__(self, addr: str, cause: Optional[BaseException] = None, message: Optional[str] = None):
        self.addr = addr
        self.cause = cause
        if message is None:
            message = f"connect {addr}: {cause}"
        super().__init__(message)


class NoAuthMethod(ConnectError):
    """Neither a password nor a usable private key was supplied."""

    def __init__(self, addr: str):
        super().__init__(addr, message="no auth info provided")


class SessionError(RemoteError):
    """A session channel could not be opened on a live connection."""


class ExecError(RemoteError):
    """Exec could not run at all (as opposed to a command that failed)."""


class CopyError(RemoteError):
    """A local file could not be opened, or the remote scp sink failed."""

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path  # set when the failure is a local file
        super().__init__(message)


class ErrorCategory(Enum):
    """Categorized failure types for better diagnostics."""
    CONNECTION_REFUSED = "connection_refused"
    CONNECTION_TIMEOUT = "connection_timeout"
    DNS_FAILURE = "dns_failure"
    AUTH_FAILURE = "auth_failure"
    CHANNEL_ERROR = "channel_error"
    SOCKET_ERROR = "socket_error"
    PROTOCOL_ERROR = "protocol_error"
    LOCAL_FILE_ERROR = "local_file_error"
    REMOTE_COMMAND_ERROR = "remote_command_error"
    UNKNOWN = "unknown"


def categorize_error(exception: BaseException) -> ErrorCategory:
    """
    Categorize a remote execution exception.

    Wrapped causes (ConnectError.cause, __cause__) are inspected as well
    as the outer message.

    Args:
        exception: The caught exception.

    Returns:
        ErrorCategory indicating the type of failure.
    """
    if isinstance(exception, NoAuthMethod):
        return ErrorCategory.AUTH_FAILURE

    cause = getattr(exception, "cause", None) or exception.__cause__
    error_msg = str(exception).lower()
    error_type = type(cause or exception).__name__.lower()

    if isinstance(exception, CopyError):
        if exception.path is not None:
            return ErrorCategory.LOCAL_FILE_ERROR
        if "exited with status" in error_msg:
            return ErrorCategory.REMOTE_COMMAND_ERROR

    if "connection refused" in error_msg or "errno 111" in error_msg:
        return ErrorCategory.CONNECTION_REFUSED

    if "timed out" in error_msg or "timeout" in error_type:
        return ErrorCategory.CONNECTION_TIMEOUT

    if "name or service not known" in error_msg or "getaddrinfo" in error_msg or "gaierror" in error_type:
        return ErrorCategory.DNS_FAILURE

    if any(x in error_msg for x in ["auth", "permission denied", "no supported authentication"]):
        return ErrorCategory.AUTH_FAILURE

    if isinstance(exception, SessionError) or "channel" in error_msg or "eof" in error_msg:
        return ErrorCategory.CHANNEL_ERROR

    if isinstance(cause or exception, OSError) or "socket" in error_msg:
        return ErrorCategory.SOCKET_ERROR

    if "ssh" in error_type or "paramiko" in error_type:
        return ErrorCategory.PROTOCOL_ERROR

    return ErrorCategory.UNKNOWN
