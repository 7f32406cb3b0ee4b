"""Port block allocator.

A workspace reserves ``block_size`` consecutive ports starting at its
``port``.  Candidate blocks start at ``base_port + i * block_size``; the first
block whose start is not already claimed by some workspace (in *any*
registered repository) and whose ports all look free is returned.

Allocation only predicts availability.  Nothing is bound or reserved at the OS
level, so another process may take a port between the probe and the moment
the workspace's own processes bind it.  A probe that times out (rather than
being refused) is also counted as free, which can misjudge a port owned by a
slow or firewalled listener.
"""

from __future__ import annotations

import socket
from collections.abc import Callable, Iterable

from berth.runtime.errors import ExhaustedPortSpaceError

MAX_PORT = 65535
DEFAULT_MAX_ATTEMPTS = 100
DEFAULT_PROBE_TIMEOUT = 0.2

PortProbe = Callable[[int], bool]


def is_free(port: int, timeout: float = DEFAULT_PROBE_TIMEOUT) -> bool:
    """Return ``True`` if nothing accepts connections on ``localhost:port``."""
    try:
        conn = socket.create_connection(("localhost", port), timeout=timeout)
    except OSError:
        # Refused (free) or timed out (assumed free, see module docstring).
        return True
    conn.close()
    return False


def allocate(
    excluded: Iterable[int],
    base_port: int,
    block_size: int,
    *,
    probe: PortProbe = is_free,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> int:
    """Return the first port of a free block.

    *excluded* must be the starting ports of every allocated workspace across
    all registered repositories, not just the target one.

    Raises ``ExhaustedPortSpaceError`` after *max_attempts* candidates, or as
    soon as a candidate block would run past ``MAX_PORT``.
    """
    if block_size < 1:
        msg = f"block_size must be positive, got {block_size}"
        raise ValueError(msg)

    claimed = set(excluded)
    for i in range(max_attempts):
        candidate = base_port + i * block_size
        if candidate + block_size - 1 > MAX_PORT:
            break  # every later candidate is higher still
        if candidate in claimed:
            continue
        if all(probe(port) for port in range(candidate, candidate + block_size)):
            return candidate
    raise ExhaustedPortSpaceError(base_port, block_size, max_attempts)
