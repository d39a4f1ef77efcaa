# aftercommit/transactions/stack.py
from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Iterator, Optional


class EmptyStackError(RuntimeError):
    """A commit/rollback notification arrived with no open transaction."""


@dataclass(frozen=True, slots=True)
class TransactionRecord:
    connection: str


class TransactionStack:
    """
    Open transactions, most-recently-begun first.

    Depth is the number of records: 0 means no transaction is open.
    """

    def __init__(self) -> None:
        self._records: deque[TransactionRecord] = deque()

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[TransactionRecord]:
        return iter(self._records)

    @property
    def depth(self) -> int:
        return len(self._records)

    def begin(self, connection: str) -> TransactionRecord:
        record = TransactionRecord(connection=connection)
        self._records.appendleft(record)
        return record

    def end(self) -> TransactionRecord:
        if not self._records:
            raise EmptyStackError("No open transaction to end")
        return self._records.popleft()

    def find_by_connection(self, connection: str) -> Optional[int]:
        # position 0 is a real match, callers must test against None
        for index, record in enumerate(self._records):
            if record.connection == connection:
                return index
        return None
