"""
fleetrun - Copy files and run commands on a fleet of hosts over SSH.

Usage:
    fleetrun -f deploy.yaml --workers 4
"""

__version__ = "0.1.0"

from fleetrun.ssh.models import ConnInfo
from fleetrun.ssh.client import RemoteClient, new_client
from fleetrun.ssh.exceptions import (
    RemoteError,
    ConnectError,
    NoAuthMethod,
    SessionError,
    ExecError,
    CopyError,
)
from fleetrun.jobs.models import CopyInfo, ExecLog, RunSummary
from fleetrun.jobs.manager import TaskManager, configure_logging
from fleetrun.core.config import Config

__all__ = [
    # Version
    "__version__",
    # Config
    "Config",
    # SSH
    "ConnInfo",
    "RemoteClient",
    "new_client",
    "RemoteError",
    "ConnectError",
    "NoAuthMethod",
    "SessionError",
    "ExecError",
    "CopyError",
    # Jobs
    "CopyInfo",
    "ExecLog",
    "RunSummary",
    "TaskManager",
    "configure_logging",
]
