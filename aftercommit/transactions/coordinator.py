# aftercommit/transactions/coordinator.py
from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Optional

from aftercommit.transactions.registry import PendingHandler, PendingHandlerRegistry
from aftercommit.transactions.stack import TransactionStack

log = logging.getLogger(__name__)


class TransactionAware:
    """
    Marker mixin: commands, events or notifications that are safe to run
    inside an open transaction and are never deferred.
    """


def is_transaction_aware(subject: Any) -> bool:
    if isinstance(subject, type):
        return issubclass(subject, TransactionAware)
    return isinstance(subject, TransactionAware)


_default_aware_check = is_transaction_aware


def subject_identifiers(subject: Any) -> tuple[str, ...]:
    """
    Names a subject can be whitelisted under.

    - plain strings: the literal value ("SendWelcomeEmail")
    - objects: their class name and dotted path ("app.mail.SendWelcomeEmail")
    """
    if isinstance(subject, str):
        return (subject,)

    cls = subject if isinstance(subject, type) else type(subject)
    return (cls.__name__, f"{cls.__module__}.{cls.__qualname__}")


class DispatchCoordinator:
    """
    Runs handlers now, or holds them until the surrounding transaction commits.

    One instance per isolated transactional context (e.g. one per DB session).
    Lifecycle hooks must arrive well nested and from a single flow of control.
    """

    def __init__(
        self,
        whitelist: Iterable[str] = (),
        *,
        is_transaction_aware: Optional[Callable[[Any], bool]] = None,
    ) -> None:
        self.whitelist = frozenset(whitelist)
        self._is_transaction_aware = is_transaction_aware or _default_aware_check
        self.stack = TransactionStack()
        self.registry = PendingHandlerRegistry()

    @property
    def depth(self) -> int:
        return self.stack.depth

    @property
    def in_transaction(self) -> bool:
        return self.stack.depth > 0

    # --- submission ---

    def is_whitelisted(self, subject: Any) -> bool:
        return any(name in self.whitelist for name in subject_identifiers(subject))

    def should_run_synchronously(self, subject: Any) -> bool:
        if not self.in_transaction:
            return True
        return self._is_transaction_aware(subject) or self.is_whitelisted(subject)

    def submit(self, subject: Any, handler: PendingHandler) -> Any:
        if self.should_run_synchronously(subject):
            return handler()

        self.registry.enqueue(self.stack.depth, handler)
        log.debug("Deferred handler for %r at depth=%s", subject, self.stack.depth)
        return None

    def defer(self, handler: PendingHandler) -> None:
        """Hold `handler` until commit regardless of subject; run it now if no transaction is open."""
        if not self.in_transaction:
            handler()
            return
        self.registry.enqueue(self.stack.depth, handler)

    # --- lifecycle hooks ---

    def on_begin(self, connection: str) -> None:
        self.stack.begin(connection)
        log.debug("Transaction begin connection=%s depth=%s", connection, self.stack.depth)

    def on_commit(self, connection: str) -> None:
        # 1) Take this level's handlers, then close the level
        committed_depth = self.stack.depth
        handlers = self.registry.drain(committed_depth)
        self.stack.end()

        # 2) Same connection still open further out: this was only a savepoint
        position = self.stack.find_by_connection(connection)
        if position is not None:
            target_depth = self.stack.depth - position
            self.registry.merge_into(target_depth, handlers)
            if handlers:
                log.debug(
                    "Merged %s handler(s) from depth=%s into depth=%s connection=%s",
                    len(handlers),
                    committed_depth,
                    target_depth,
                    connection,
                )
            return

        # 3) Outermost transaction for this connection: release
        if handlers:
            log.debug("Releasing %s handler(s) connection=%s", len(handlers), connection)
        for handler in handlers:
            try:
                handler()
            except Exception:
                log.exception("Deferred handler failed after commit connection=%s", connection)
                raise

    def on_rollback(self, connection: str) -> None:
        discarded = self.registry.drain(self.stack.depth)
        self.stack.end()
        if discarded:
            log.debug(
                "Discarded %s handler(s) on rollback connection=%s depth=%s",
                len(discarded),
                connection,
                self.stack.depth + 1,
            )
