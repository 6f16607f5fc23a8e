"""
Job data models.

Copy jobs applied to every host, per-host result records and the
aggregate run summary.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from fleetrun.ssh.exceptions import ErrorCategory


@dataclass
class CopyInfo:
    """Local files to upload into one remote directory."""

    source: List[str]
    destination: str


@dataclass
class ExecLog:
    """
    Outcome of processing one host.

    ``log`` holds every command output and error for the host, in the
    order they happened. An empty log means everything succeeded.
    """

    device: str
    log: str = ""
    # Set when processing stopped on an error; not part of equality
    error_category: Optional[ErrorCategory] = field(default=None, compare=False)


@dataclass
class RunSummary:
    """Summary statistics for one TaskManager run."""
    total: int = 0
    failed: int = 0
    duration_ms: float = 0
    errors_by_category: Dict[ErrorCategory, int] = field(default_factory=dict)

    def add_result(self, record: ExecLog):
        """Add a host record to the summary."""
        self.total += 1
        if record.error_category is not None:
            self.failed += 1
            cat = record.error_category
            self.errors_by_category[cat] = self.errors_by_category.get(cat, 0) + 1

    def __repr__(self) -> str:
        parts = [f"RunSummary: {self.total - self.failed}/{self.total} completed"]
        if self.errors_by_category:
            error_parts = [f"{cat.value}={count}" for cat, count in self.errors_by_category.items()]
            parts.append(f"errors=[{', '.join(error_parts)}]")
        parts.append(f"duration={self.duration_ms:.0f}ms")
        return " | ".join(parts)
