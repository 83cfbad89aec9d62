"""Minimal LIFO stack used as the call stack of the translator."""

from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class Stack(Generic[T]):
    def __init__(self) -> None:
        self._items: list[T] = []

    def __len__(self) -> int:
        return len(self._items)

    def is_empty(self) -> bool:
        return not self._items

    def push(self, item: T) -> None:
        self._items.append(item)

    def peek(self) -> T:
        """Top of the stack. The stack must not be empty."""
        return self._items[-1]

    def pop(self) -> Optional[T]:
        if not self._items:
            return None
        return self._items.pop()
