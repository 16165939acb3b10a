"""Host list parsing and the FIFO host queue."""

from __future__ import annotations

import re
from collections import deque
from pathlib import Path
from typing import Iterable

_SEPARATORS = re.compile(r"[,\s]+")


def parse_hosts(text: str) -> list[str]:
    """Split a literal host list on commas and whitespace, keeping order."""
    return [host for host in _SEPARATORS.split(text) if host]


def read_hosts_file(path: str | Path) -> list[str]:
    """Read hosts from a file, one or more per line.

    Blank lines and anything after a ``#`` are ignored.
    """
    path = Path(path).expanduser()
    if not path.exists():
        raise FileNotFoundError(f"Hosts file not found: {path}")

    hosts: list[str] = []
    with open(path) as f:
        for line in f:
            line = line.split("#", 1)[0]
            hosts.extend(parse_hosts(line))
    return hosts


class HostQueue:
    """Ordered queue of hosts still waiting to be dispatched."""

    def __init__(self, hosts: Iterable[str] = ()):
        self._hosts: deque[str] = deque(hosts)

    def pop_next(self) -> str | None:
        if not self._hosts:
            return None
        return self._hosts.popleft()

    def is_empty(self) -> bool:
        return not self._hosts

    def __len__(self) -> int:
        return len(self._hosts)
