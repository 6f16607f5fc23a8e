"""
Minimal SCP sink protocol.

Path: fleetrun/ssh/scp.py

Uploads are done by starting the remote scp binary in sink mode
(``scp -qtr <dir>``) and feeding it the source side of the protocol by
hand over the session's stdin:

    C0<perm-octal> <size> <basename>\\n
    <size raw bytes>
    \\x00

repeated per file, after which stdin is closed.
"""

import logging
import os
import stat
from pathlib import PurePath
from typing import BinaryIO, Sequence

import paramiko


logger = logging.getLogger(__name__)

SCP_SINK_COMMAND = "/usr/bin/scp -qtr "
CHUNK_SIZE = 32768


def sink_command(dest_dir: str) -> str:
    """Remote command line that receives files into dest_dir."""
    return SCP_SINK_COMMAND + dest_dir


def file_header(path: str, mode: int, size: int) -> bytes:
    """
    Build the single-file header line for one upload.

    Args:
        path: Local path; only its final component is sent.
        mode: st_mode of the local file; only permission bits are sent.
        size: Number of content bytes that will follow the header.

    Returns:
        Encoded header including the trailing newline.
    """
    perm = stat.S_IMODE(mode) & 0o777
    return f"C0{perm:o} {size} {PurePath(path).name}\n".encode("utf-8")


def send_files(channel: paramiko.Channel, paths: Sequence[str], files: Sequence[BinaryIO]) -> None:
    """
    Stream files to a running scp sink, then close the channel's stdin.

    Runs on its own thread alongside the reader draining the sink's
    output. Write failures are logged and never raised; the sink's exit
    status is what decides whether the copy succeeded.
    """
    try:
        for path, fh in zip(paths, files):
            st = os.fstat(fh.fileno())
            channel.sendall(file_header(path, st.st_mode, st.st_size))

            while True:
                chunk = fh.read(CHUNK_SIZE)
                if not chunk:
                    break
                channel.sendall(chunk)

            channel.sendall(b"\x00")
            logger.debug(f"scp: sent {path} ({st.st_size} bytes)")
    except (OSError, EOFError, paramiko.SSHException) as e:
        logger.warning(f"scp: stdin write failed: {e}")
    finally:
        try:
            channel.shutdown_write()
        except (OSError, EOFError, paramiko.SSHException) as e:
            logger.warning(f"scp: closing stdin failed: {e}")
