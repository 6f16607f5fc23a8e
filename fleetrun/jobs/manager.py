"""
Task Manager - Bounded worker pool over a fleet of hosts.

Path: fleetrun/jobs/manager.py

A fixed number of worker threads pull hosts from one shared list. For
each host a worker connects, uploads every copy job, runs every command
and publishes one ExecLog on the result stream. Every failure for a
host ends up in that host's log text; no host can stop the pool.
"""

import logging
import queue
import threading
import time
from typing import Callable, Iterator, List, Optional, Sequence, Tuple

from fleetrun.jobs.models import CopyInfo, ExecLog, RunSummary
from fleetrun.ssh.client import CloseableClient, new_client
from fleetrun.ssh.exceptions import categorize_error
from fleetrun.ssh.models import ConnInfo


# Module logger - configure at application level
logger = logging.getLogger(__name__)

ClientFactory = Callable[[ConnInfo], CloseableClient]

# Marks the end of the result stream
_CLOSED = object()


class TaskManager:
    """
    Apply the same copy jobs and commands to every host, N hosts at a time.

    Usage:
        manager = TaskManager(conn_infos, copy_infos, ["uptime"])
        threading.Thread(target=manager.start, args=(4,), daemon=True).start()

        for record in manager.results():
            print(f"----{record.device}----")
            print(record.log)

    A manager runs once; results() finishes after every worker retires.
    """

    def __init__(
        self,
        conn_infos: Sequence[ConnInfo],
        copy_infos: Sequence[CopyInfo] = (),
        commands: Sequence[str] = (),
        client_factory: ClientFactory = new_client,
        buffer_size: int = 1,
    ):
        """
        Initialize task manager.

        Args:
            conn_infos: Hosts to process, in claim order.
            copy_infos: Uploads applied to every host before any command.
            commands: Shell commands applied to every host, in order.
            client_factory: Builds a connected client for one host.
            buffer_size: Records the result stream holds before workers
                block on publish. Must be at least 1.
        """
        if buffer_size < 1:
            raise ValueError("buffer_size must be at least 1")

        self._conn_infos: List[ConnInfo] = list(conn_infos)
        self._copy_infos: List[CopyInfo] = list(copy_infos)
        self._commands: List[str] = list(commands)
        self._new_client = client_factory

        self._info_lock = threading.Lock()
        self._claimed = 0

        self._results: "queue.Queue" = queue.Queue(maxsize=buffer_size)
        self._started = False
        self._closed = False
        self._start_time: Optional[float] = None
        self.summary = RunSummary()

    @property
    def claimed(self) -> int:
        """Number of hosts handed out to workers so far."""
        with self._info_lock:
            return self._claimed

    @property
    def closed(self) -> bool:
        """True once the consumer has seen the end of the result stream."""
        return self._closed

    def try_claim_next(self) -> Optional[Tuple[int, ConnInfo]]:
        """
        Claim the next unprocessed host.

        Thread-safe: each host is handed out exactly once across all
        workers.

        Returns:
            (index, conn_info), or None when every host has been claimed.
        """
        with self._info_lock:
            if self._claimed >= len(self._conn_infos):
                return None
            index = self._claimed
            self._claimed += 1
        return index, self._conn_infos[index]

    def start(self, worker_count: int) -> None:
        """
        Run the pool to completion.

        Launches exactly worker_count workers, blocks until all of them
        have retired, then closes the result stream. A consumer must be
        draining results() from another thread or workers will block.

        Raises:
            ValueError: If worker_count is negative.
            RuntimeError: If the manager has already been started.
        """
        if worker_count < 0:
            raise ValueError("worker_count must not be negative")
        if self._started:
            raise RuntimeError("TaskManager can only be started once")
        self._started = True
        self._start_time = time.time()

        logger.info(
            f"Starting run: {len(self._conn_infos)} hosts, {worker_count} workers, "
            f"{len(self._copy_infos)} copy job(s), {len(self._commands)} command(s)"
        )

        workers = [
            threading.Thread(target=self._run_worker, name=f"fleetrun-worker-{i}", daemon=True)
            for i in range(worker_count)
        ]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()

        self._results.put(_CLOSED)

    def results(self) -> Iterator[ExecLog]:
        """
        Yield host records as they complete, until the run is finished.

        Intended for a single consumer. Once the stream has closed,
        further calls yield nothing.
        """
        while not self._closed:
            record = self._results.get()
            if record is _CLOSED:
                self._closed = True
                self._finish_summary()
                return
            self.summary.add_result(record)
            yield record

    def _finish_summary(self):
        if self._start_time is not None:
            self.summary.duration_ms = (time.time() - self._start_time) * 1000

        logger.info(str(self.summary))

        if self.summary.errors_by_category:
            logger.info("Error breakdown:")
            for category, count in sorted(self.summary.errors_by_category.items(), key=lambda x: -x[1]):
                logger.info(f"  {category.value}: {count}")

    def _run_worker(self) -> None:
        """Claim and process hosts until none are left."""
        while True:
            claim = self.try_claim_next()
            if claim is None:
                logger.debug(f"{threading.current_thread().name}: no more hosts, retiring")
                return

            _, info = claim
            record = self._process(info)
            self._results.put(record)

    def _process(self, info: ConnInfo) -> ExecLog:
        """
        Connect to one host, copy, then execute.

        Stops at the first failure; the failure text is the last thing in
        the log.
        """
        host = info.addr
        record = ExecLog(device=host)
        start_time = time.time()

        logger.debug(f"{host}: Connecting...")
        try:
            client = self._new_client(info)
        except Exception as e:
            self._fail(record, "connect", e)
            return record
        logger.debug(f"{host}: Connected")

        try:
            for copy_info in self._copy_infos:
                try:
                    client.copy(copy_info.source, copy_info.destination)
                except Exception as e:
                    self._fail(record, "copy", e)
                    return record

            for command in self._commands:
                try:
                    output = client.exec(command)
                except Exception as e:
                    self._fail(record, "exec", e)
                    return record
                record.log += output

            duration_ms = (time.time() - start_time) * 1000
            logger.debug(f"{host}: Complete ({duration_ms:.0f}ms, {len(record.log)} chars)")
            return record

        finally:
            try:
                client.close()
            except Exception as close_err:
                logger.debug(f"{host}: Close error (ignored): {close_err}")

    @staticmethod
    def _fail(record: ExecLog, step: str, error: Exception) -> None:
        category = categorize_error(error)
        record.log += f"{error}\n"
        record.error_category = category
        logger.warning(f"{record.device}: {step} FAILED - {category.value}: {error}")


def configure_logging(
    level: int = logging.INFO,
    format_string: Optional[str] = None,
    handler: Optional[logging.Handler] = None,
    log_file: Optional[str] = None,
):
    """
    Configure logging for fleetrun.

    Call this at application startup to enable logging.

    Args:
        level: Logging level (default: INFO).
        format_string: Optional custom format string.
        handler: Optional custom handler (default: StreamHandler).
        log_file: Optional path; when set, records are also appended there.

    Example:
        from fleetrun.jobs.manager import configure_logging
        configure_logging(level=logging.DEBUG)
    """
    if format_string is None:
        format_string = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

    if handler is None:
        handler = logging.StreamHandler()

    handlers = [handler]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    package_logger = logging.getLogger("fleetrun")
    for h in handlers:
        h.setFormatter(logging.Formatter(format_string))
        package_logger.addHandler(h)
    package_logger.setLevel(level)
