"""Job management - copy jobs, the worker pool and its result records."""

from fleetrun.jobs.models import CopyInfo, ExecLog, RunSummary
from fleetrun.jobs.manager import TaskManager, configure_logging

__all__ = ["CopyInfo", "ExecLog", "RunSummary", "TaskManager", "configure_logging"]
