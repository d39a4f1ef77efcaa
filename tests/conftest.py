"""
Shared fixtures: SQLAlchemy engines and sessions with deferral listeners
attached.
"""

import pytest
import pytest_asyncio
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from aftercommit.database import Database, SessionEventBinder, configure_sqlite
from tests.models import Base


@pytest.fixture
def engine():
    engine = create_engine("sqlite://")
    configure_sqlite(engine)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def binder():
    return SessionEventBinder({"AuditLogged"}, connection_name="main")


@pytest.fixture
def session_factory(engine, binder):
    factory = sessionmaker(bind=engine)
    binder.listen(factory)
    return factory


@pytest_asyncio.fixture
async def db():
    database = Database("sqlite+aiosqlite://", whitelist={"AuditLogged"}, connection_name="main")
    await database.init_models(Base.metadata)
    yield database
    await database.close()
