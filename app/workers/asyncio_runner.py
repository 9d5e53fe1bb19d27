from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any, TypeVar

from app.db.session import dispose_engine

T = TypeVar("T")


async def _with_loop_local_pool(job: Coroutine[Any, Any, T]) -> T:
    # Pooled asyncpg connections are bound to the loop that opened them and
    # every task invocation runs on a new loop.
    await dispose_engine()
    try:
        return await job
    finally:
        await dispose_engine()


def run_async_job(job: Coroutine[Any, Any, T]) -> T:
    return asyncio.run(_with_loop_local_pool(job))
