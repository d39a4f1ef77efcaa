from .events import COORDINATOR_KEY, SessionEventBinder
from .session import Database, DeferringSession, configure_sqlite
from .tx import transactional

__all__ = [
    "COORDINATOR_KEY",
    "SessionEventBinder",
    "Database",
    "DeferringSession",
    "configure_sqlite",
    "transactional",
]
