"""Port allocation for spawned nodes."""

import threading


class PortAllocator:
    """Wrap-around counter over ``[floor, ceiling]``.

    No uniqueness guarantee beyond the range size: with more ports in use
    than the range holds, values repeat.
    """

    def __init__(self, floor: int, ceiling: int) -> None:
        if floor > ceiling:
            raise ValueError(f"Empty port range {floor}..{ceiling}")
        self.floor = floor
        self.ceiling = ceiling
        self._next = floor
        self._lock = threading.Lock()

    def next(self) -> int:
        """Return the current port and advance the counter."""
        with self._lock:
            return self._advance()

    def pair(self) -> tuple[int, int]:
        """Return a ``(metrics_port, p2p_port)`` pair."""
        with self._lock:
            return self._advance(), self._advance()

    def _advance(self) -> int:
        current = self._next
        self._next = self.floor if current >= self.ceiling else current + 1
        return current
