# aftercommit/utils/logs.py
from __future__ import annotations

import logging

QUIET_LOGGERS = (
    "sqlalchemy",
    "sqlalchemy.engine",
    "sqlalchemy.pool",
    "sqlalchemy.orm",
    "aiosqlite",
    "asyncpg",
    "psycopg",
    "psycopg2",
)


def setup_logging(is_dev: bool) -> None:
    """
    - app logs: INFO (or DEBUG in dev, which shows every deferral/merge/release)
    - SQLAlchemy and driver logs: WARNING+
    """
    app_level = logging.DEBUG if is_dev else logging.INFO

    logging.basicConfig(
        level=app_level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
