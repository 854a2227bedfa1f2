"""Detached post-response work.

Work submitted here runs after the response has been sent. A failing task is
logged with its context and swallowed: the original caller already has its
answer and must never see the failure.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Optional

from fastapi import BackgroundTasks
from starlette.concurrency import run_in_threadpool

logger = logging.getLogger("api.background")


async def run_detached(
    func: Callable[..., Any],
    *args: Any,
    task_name: str,
    context: Optional[Dict[str, Any]] = None,
    **kwargs: Any,
) -> None:
    context = context or {}
    try:
        if asyncio.iscoroutinefunction(func):
            await func(*args, **kwargs)
        else:
            await run_in_threadpool(func, *args, **kwargs)
        logger.debug("Background task %s finished context=%s", task_name, context)
    except Exception:
        logger.exception("Background task %s failed context=%s", task_name, context)


class TaskQueue:
    """Request-scoped queue backed by FastAPI BackgroundTasks."""

    def __init__(self, background_tasks: BackgroundTasks) -> None:
        self._background_tasks = background_tasks

    def submit(
        self,
        func: Callable[..., Any],
        *args: Any,
        task_name: str,
        context: Optional[Dict[str, Any]] = None,
        **kwargs: Any,
    ) -> None:
        logger.debug("Queueing background task %s context=%s", task_name, context)
        self._background_tasks.add_task(
            run_detached, func, *args, task_name=task_name, context=context, **kwargs
        )
