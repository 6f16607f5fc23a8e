"""
Connection data models.

Dataclasses describing how to reach a remote host.
"""

from dataclasses import dataclass
from typing import Optional, Tuple


DEFAULT_SSH_PORT = 22


def split_addr(addr: str) -> Tuple[str, int]:
    """
    Split a "host:port" address into its parts.

    Accepts bare hostnames (port defaults to 22) and bracketed IPv6
    literals such as "[::1]:2222".

    Raises:
        ValueError: If the port is not a number.
    """
    if addr.startswith("["):
        host, _, rest = addr[1:].partition("]")
        port = rest[1:] if rest.startswith(":") else ""
    elif addr.count(":") == 1:
        host, _, port = addr.partition(":")
    else:
        # bare hostname or unbracketed IPv6 literal
        host, port = addr, ""

    if not port:
        return host, DEFAULT_SSH_PORT

    try:
        return host, int(port)
    except ValueError:
        raise ValueError(f"Invalid port in address: {addr!r}")


@dataclass(frozen=True)
class ConnInfo:
    """
    Everything needed to open an SSH connection to one host.

    Only one proxy hop is honoured: if ``proxy`` itself carries a proxy,
    that second hop is ignored when connecting.
    """

    addr: str
    user: str = ""
    password: str = ""
    private_key: Optional[bytes] = None  # PEM bytes, shared by every host of a run
    proxy: Optional["ConnInfo"] = None

    @property
    def host(self) -> str:
        return split_addr(self.addr)[0]

    @property
    def port(self) -> int:
        return split_addr(self.addr)[1]

    @property
    def has_password(self) -> bool:
        """Check if a password is available."""
        return bool(self.password)

    @property
    def has_key(self) -> bool:
        """Check if private key material is available."""
        return bool(self.private_key)

    def __repr__(self) -> str:
        proxy = f", proxy={self.proxy.addr}" if self.proxy else ""
        return f"ConnInfo(addr={self.addr}, user={self.user}{proxy})"
