from .stack import EmptyStackError, TransactionRecord, TransactionStack
from .registry import PendingHandler, PendingHandlerRegistry
from .coordinator import (
    DispatchCoordinator,
    TransactionAware,
    is_transaction_aware,
    subject_identifiers,
)

__all__ = [
    "EmptyStackError",
    "TransactionRecord",
    "TransactionStack",
    "PendingHandler",
    "PendingHandlerRegistry",
    "DispatchCoordinator",
    "TransactionAware",
    "is_transaction_aware",
    "subject_identifiers",
]
