from .transactions import (
    DispatchCoordinator,
    EmptyStackError,
    PendingHandlerRegistry,
    TransactionAware,
    TransactionRecord,
    TransactionStack,
)
from .database import Database, SessionEventBinder, transactional

__all__ = [
    "DispatchCoordinator",
    "EmptyStackError",
    "PendingHandlerRegistry",
    "TransactionAware",
    "TransactionRecord",
    "TransactionStack",
    "Database",
    "SessionEventBinder",
    "transactional",
]
