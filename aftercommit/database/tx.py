# aftercommit/database/tx.py
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, AsyncSessionTransaction


@asynccontextmanager
async def transactional(session: AsyncSession) -> AsyncIterator[AsyncSessionTransaction]:
    """
    One deferral level: a new transaction, or a SAVEPOINT inside the open one.

    Handlers deferred inside a SAVEPOINT follow it: dropped if it rolls back,
    folded into the enclosing transaction if it is released.
    """
    if session.in_transaction():
        async with session.begin_nested() as tx:
            yield tx
    else:
        async with session.begin() as tx:
            yield tx
