"""
Utilities for running async code in Celery tasks.

Celery workers use the prefork pool. asyncio.run() would close the loop after
each task and break pooled async database connections, so each worker process
keeps one loop and reuses it.
"""

import asyncio
from typing import Any, Coroutine


def _worker_loop() -> asyncio.AbstractEventLoop:
    try:
        loop = asyncio.get_event_loop()
    except RuntimeError:
        loop = None

    if loop is None or loop.is_closed():
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
    return loop


def run_async_task(coro: Coroutine[Any, Any, Any]) -> Any:
    """
    Run an async coroutine from a Celery task without closing the event loop.

    Usage:
        @celery_app.task
        def my_task(user_id):
            return run_async_task(_do_work(user_id))
    """
    return _worker_loop().run_until_complete(coro)
