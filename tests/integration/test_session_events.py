"""
Integration tests: deferral driven by real SQLAlchemy Session transactions
on in-memory SQLite.
"""

import pytest
from unittest.mock import Mock

from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from aftercommit.database import COORDINATOR_KEY, SessionEventBinder
from tests.models import Account, AuditLogged, RefreshCache, SendWelcomeEmail


def _count_accounts(session_factory) -> int:
    with session_factory() as s:
        return s.scalar(select(func.count()).select_from(Account))


class TestOutermostTransaction:

    def test_no_transaction_runs_now(self, session_factory, binder):
        handler = Mock(return_value="ok")
        with session_factory() as session:
            assert binder.submit(session, SendWelcomeEmail("a@x.io"), handler) == "ok"
        handler.assert_called_once_with()

    def test_released_after_commit(self, session_factory, binder):
        seen = {}

        with session_factory() as session:

            def handler():
                seen["in_transaction"] = session.in_transaction()

            with session.begin():
                session.add(Account(email="a@x.io"))
                binder.submit(session, SendWelcomeEmail("a@x.io"), handler)
                assert seen == {}

        assert seen == {"in_transaction": False}
        assert _count_accounts(session_factory) == 1

    def test_rollback_discards(self, session_factory, binder):
        handler = Mock()

        with session_factory() as session:
            session.begin()
            session.add(Account(email="a@x.io"))
            binder.submit(session, SendWelcomeEmail("a@x.io"), handler)
            session.rollback()

            assert binder.coordinator_for(session).depth == 0

        handler.assert_not_called()
        assert _count_accounts(session_factory) == 0

    def test_close_without_commit_discards(self, session_factory, binder):
        handler = Mock()

        session = session_factory()
        session.begin()
        binder.submit(session, SendWelcomeEmail("a@x.io"), handler)
        session.close()

        handler.assert_not_called()
        assert binder.coordinator_for(session).depth == 0

    def test_error_inside_block_discards(self, session_factory, binder):
        handler = Mock()

        with session_factory() as session:
            with pytest.raises(ValueError):
                with session.begin():
                    binder.submit(session, SendWelcomeEmail("a@x.io"), handler)
                    raise ValueError("bad input")

        handler.assert_not_called()

    def test_failing_handler_surfaces_from_commit(self, session_factory, binder):
        with session_factory() as session:
            session.begin()
            session.add(Account(email="a@x.io"))
            binder.submit(session, "cmd", Mock(side_effect=RuntimeError("mailer down")))

            with pytest.raises(RuntimeError, match="mailer down"):
                session.commit()

        assert _count_accounts(session_factory) == 1

    def test_flush_does_not_open_a_level(self, session_factory, binder):
        with session_factory() as session:
            session.begin()
            session.add(Account(email="a@x.io"))
            session.flush()
            assert binder.coordinator_for(session).depth == 1
            session.commit()
            assert binder.coordinator_for(session).depth == 0


class TestBypass:

    def test_whitelisted_runs_inside_transaction(self, session_factory, binder):
        handler = Mock()
        with session_factory() as session:
            with session.begin():
                binder.submit(session, AuditLogged(), handler)
                handler.assert_called_once_with()

    def test_transaction_aware_runs_inside_transaction(self, session_factory, binder):
        handler = Mock()
        with session_factory() as session:
            with session.begin():
                binder.submit(session, RefreshCache(), handler)
                handler.assert_called_once_with()


class TestSavepoints:

    def test_released_savepoint_waits_for_outer_commit(self, session_factory, binder):
        handler = Mock()

        with session_factory() as session:
            with session.begin():
                with session.begin_nested():
                    binder.submit(session, SendWelcomeEmail("a@x.io"), handler)
                handler.assert_not_called()
                assert binder.coordinator_for(session).registry.peek(1) == (handler,)

        handler.assert_called_once_with()

    def test_rolled_back_savepoint_discards_only_its_handlers(self, session_factory, binder):
        outer, inner = Mock(), Mock()

        with session_factory() as session:
            with session.begin():
                binder.submit(session, "outer", outer)
                savepoint = session.begin_nested()
                binder.submit(session, "inner", inner)
                savepoint.rollback()

        outer.assert_called_once_with()
        inner.assert_not_called()

    def test_outer_rollback_discards_released_savepoint(self, session_factory, binder):
        handler = Mock()

        with session_factory() as session:
            session.begin()
            with session.begin_nested():
                binder.submit(session, "cmd", handler)
            session.rollback()

        handler.assert_not_called()

    def test_session_commit_with_open_savepoint_releases_everything(self, session_factory, binder):
        calls = []

        with session_factory() as session:
            session.begin()
            binder.submit(session, "x", lambda: calls.append("x"))
            session.begin_nested()
            binder.submit(session, "a", lambda: calls.append("a"))
            session.commit()

        assert calls == ["x", "a"]

    def test_session_rollback_with_open_savepoint_discards_everything(self, session_factory, binder):
        handler = Mock()

        with session_factory() as session:
            session.begin()
            session.begin_nested()
            binder.submit(session, "cmd", handler)
            session.rollback()

            assert binder.coordinator_for(session).depth == 0

        handler.assert_not_called()


class TestBinding:

    def test_coordinator_per_session(self, session_factory, binder):
        with session_factory() as one, session_factory() as two:
            assert binder.coordinator_for(one) is not binder.coordinator_for(two)
            assert one.info[COORDINATOR_KEY] is binder.coordinator_for(one)

    def test_connection_name_from_url(self, engine):
        binder = SessionEventBinder()
        with sessionmaker(bind=engine)() as session:
            assert binder.connection_name_for(session) == "sqlite://"

    def test_explicit_connection_name(self, session_factory, binder):
        with session_factory() as session:
            session.begin()
            record = next(iter(binder.coordinator_for(session).stack))
            assert record.connection == "main"
            session.rollback()

    def test_other_sessionmakers_unaffected(self, engine, session_factory, binder):
        plain = sessionmaker(bind=engine)
        with plain() as session:
            session.begin()
            assert COORDINATOR_KEY not in session.info
            session.rollback()

    def test_remove_detaches_listeners(self, engine, binder):
        factory = sessionmaker(bind=engine)
        binder.listen(factory)
        binder.remove(factory)

        handler = Mock()
        with factory() as session:
            session.begin()
            binder.submit(session, "cmd", handler)
            handler.assert_called_once_with()
            session.rollback()

    def test_unbound_async_sessionmaker_rejected(self, binder):
        from sqlalchemy.ext.asyncio import async_sessionmaker

        with pytest.raises(ValueError):
            binder.listen(async_sessionmaker())
