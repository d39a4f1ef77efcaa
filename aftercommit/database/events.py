# aftercommit/database/events.py
from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import Session, SessionTransaction

from aftercommit.transactions import DispatchCoordinator, PendingHandler

log = logging.getLogger(__name__)

COORDINATOR_KEY = "aftercommit.coordinator"
_OUTCOME_KEY = "aftercommit.outcome"

_COMMITTED = "commit"
_ROLLED_BACK = "rollback"


def _sync_session(session: Session | AsyncSession) -> Session:
    if isinstance(session, AsyncSession):
        return session.sync_session
    return session


def _is_boundary(transaction: SessionTransaction) -> bool:
    # flush() opens subtransactions that share their parent's DB transaction
    return transaction.parent is None or transaction.nested


class SessionEventBinder:
    """
    Feeds SQLAlchemy session transaction events into a per-session
    DispatchCoordinator.

    - the outermost transaction and every SAVEPOINT count as one level
    - handlers are released after the real COMMIT, from inside
      Session.commit(), so handler errors surface there
    - a SAVEPOINT closed while its parent goes away is folded into the parent
    """

    def __init__(
        self,
        whitelist: Iterable[str] = (),
        *,
        connection_name: Optional[str] = None,
        is_transaction_aware: Optional[Callable[[Any], bool]] = None,
    ) -> None:
        self.whitelist = frozenset(whitelist)
        self.connection_name = connection_name
        self.is_transaction_aware = is_transaction_aware

    # --- registration ---

    def _listener_target(self, target: Any) -> Any:
        if isinstance(target, AsyncSession):
            return target.sync_session
        if isinstance(target, async_sessionmaker):
            sync_class = target.kw.get("sync_session_class")
            if sync_class is None:
                raise ValueError(
                    "async_sessionmaker needs an explicit sync_session_class to attach deferral listeners"
                )
            return sync_class
        if isinstance(target, type) and issubclass(target, AsyncSession):
            raise ValueError("Listen on the sync_session_class of an AsyncSession, not AsyncSession itself")
        return target

    def _listeners(self) -> tuple[tuple[str, Callable[..., None]], ...]:
        return (
            ("after_transaction_create", self._after_transaction_create),
            ("after_commit", self._after_commit),
            ("after_rollback", self._after_rollback),
            ("after_transaction_end", self._after_transaction_end),
        )

    def listen(self, target: Any) -> None:
        target = self._listener_target(target)
        for name, fn in self._listeners():
            event.listen(target, name, fn)
        log.debug("Deferral listeners attached to %r", target)

    def remove(self, target: Any) -> None:
        target = self._listener_target(target)
        for name, fn in self._listeners():
            event.remove(target, name, fn)

    # --- per-session state ---

    def coordinator_for(self, session: Session | AsyncSession) -> DispatchCoordinator:
        info = _sync_session(session).info
        coordinator = info.get(COORDINATOR_KEY)
        if coordinator is None:
            coordinator = DispatchCoordinator(
                self.whitelist,
                is_transaction_aware=self.is_transaction_aware,
            )
            info[COORDINATOR_KEY] = coordinator
        return coordinator

    def connection_name_for(self, session: Session | AsyncSession) -> str:
        if self.connection_name:
            return self.connection_name

        bind = _sync_session(session).bind
        url = getattr(bind, "url", None)
        if url is None:
            return "default"
        return url.render_as_string(hide_password=True)

    def submit(self, session: Session | AsyncSession, subject: Any, handler: PendingHandler) -> Any:
        return self.coordinator_for(session).submit(subject, handler)

    def defer(self, session: Session | AsyncSession, handler: PendingHandler) -> None:
        self.coordinator_for(session).defer(handler)

    # --- listeners ---

    def _after_transaction_create(self, session: Session, transaction: SessionTransaction) -> None:
        if not _is_boundary(transaction):
            return
        self.coordinator_for(session).on_begin(self.connection_name_for(session))

    def _after_commit(self, session: Session) -> None:
        session.info[_OUTCOME_KEY] = _COMMITTED

    def _after_rollback(self, session: Session) -> None:
        session.info[_OUTCOME_KEY] = _ROLLED_BACK

    def _after_transaction_end(self, session: Session, transaction: SessionTransaction) -> None:
        if not _is_boundary(transaction):
            return

        outcome = session.info.pop(_OUTCOME_KEY, None)
        if transaction.nested:
            committed = outcome != _ROLLED_BACK
        else:
            # root closed without after_commit (close(), failed commit) rolled back
            committed = outcome == _COMMITTED

        coordinator = self.coordinator_for(session)
        name = self.connection_name_for(session)
        if committed:
            coordinator.on_commit(name)
        else:
            coordinator.on_rollback(name)
