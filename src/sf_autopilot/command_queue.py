from __future__ import annotations

from collections import deque
from typing import Any

from .commands import Command, Update


class AutomationQueue:
    """Commands decided while the handle was checked out, sent front first once it returns."""

    def __init__(self) -> None:
        self._items: deque[Command] = deque()

    def __len__(self) -> int:
        return len(self._items)

    def primary_queued(self) -> bool:
        return any(item.is_primary() for item in self._items)

    def offer(self, command: Command) -> bool:
        if isinstance(command, Update):
            return False
        if command.is_primary() and self.primary_queued():
            return False
        self._items.append(command)
        return True

    def peek(self) -> Command | None:
        return self._items[0] if self._items else None

    def pop(self) -> Command | None:
        return self._items.popleft() if self._items else None

    def clear(self) -> None:
        self._items.clear()

    def to_list(self) -> list[dict[str, Any]]:
        return [item.to_dict() for item in self._items]
