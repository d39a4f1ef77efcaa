# aftercommit/transactions/registry.py
from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List

PendingHandler = Callable[[], Any]


class PendingHandlerRegistry:
    """
    Deferred handlers bucketed by the transaction depth they were issued at.

    Buckets keep insertion order; a bucket is emptied exactly once, by drain,
    when the transaction at that depth ends.
    """

    def __init__(self) -> None:
        self._buckets: Dict[int, List[PendingHandler]] = {}

    def __len__(self) -> int:
        return sum(len(bucket) for bucket in self._buckets.values())

    def enqueue(self, depth: int, handler: PendingHandler) -> None:
        if depth < 1:
            raise ValueError(f"Cannot defer a handler outside a transaction (depth={depth})")
        self._buckets.setdefault(depth, []).append(handler)

    def drain(self, depth: int) -> List[PendingHandler]:
        return self._buckets.pop(depth, [])

    def merge_into(self, depth: int, handlers: Iterable[PendingHandler]) -> None:
        handlers = list(handlers)
        if not handlers:
            return
        if depth < 1:
            raise ValueError(f"Cannot merge handlers outside a transaction (depth={depth})")
        # the outer level's own handlers were submitted first
        self._buckets.setdefault(depth, []).extend(handlers)

    def peek(self, depth: int) -> tuple[PendingHandler, ...]:
        return tuple(self._buckets.get(depth, ()))
