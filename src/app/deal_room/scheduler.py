"""Background draft retention sweep.

Defines the async task function for removing expired drafts. The task is
decoupled from the loop that schedules it so tests can run it directly.
"""

from __future__ import annotations

import asyncio

import structlog

logger = structlog.get_logger(__name__)

DEFAULT_CLEANUP_INTERVAL = 60 * 60  # 1 hour


def setup_draft_cleanup(service) -> dict:
    """Configure background tasks for draft retention.

    Task definitions:
    1. cleanup_expired_drafts: Every hour, delete drafts past retention

    Each task logs its result and never raises, so one failing run does not
    stop the loop.

    Args:
        service: DealRoomService instance.

    Returns:
        Dict mapping task name to async callable.
    """

    async def cleanup_expired_drafts_task() -> int:
        """Delete drafts not updated within the retention window."""
        try:
            removed = await service.cleanup_expired_drafts()
            logger.info("scheduler.drafts_cleaned", removed=removed)
            return removed
        except Exception:
            logger.warning("scheduler.draft_cleanup_failed", exc_info=True)
            return 0

    return {"cleanup_expired_drafts": cleanup_expired_drafts_task}


async def start_cleanup_background(
    tasks: dict,
    app_state,
    interval: float = DEFAULT_CLEANUP_INTERVAL,
) -> list[asyncio.Task]:
    """Start the retention tasks as background asyncio loops.

    Args:
        tasks: Dict mapping task name to async callable (from setup_draft_cleanup).
        app_state: FastAPI app.state object for storing task references.
        interval: Seconds between runs.

    Returns:
        The created asyncio tasks (also stored on app_state).
    """
    background_tasks: list[asyncio.Task] = []

    for task_name, task_fn in tasks.items():

        async def _loop(fn=task_fn, name=task_name, sleep=interval):
            """Background loop that runs the task at the configured interval."""
            while True:
                try:
                    await asyncio.sleep(sleep)
                    await fn()
                except asyncio.CancelledError:
                    logger.info("scheduler.task_cancelled", task=name)
                    break
                except Exception:
                    logger.warning("scheduler.task_loop_error", task=name, exc_info=True)

        bg_task = asyncio.create_task(_loop(), name=f"deal_room_{task_name}")
        background_tasks.append(bg_task)

    # Stored for cancellation during shutdown
    app_state.draft_cleanup_tasks = background_tasks

    logger.info(
        "scheduler.background_tasks_started",
        task_count=len(background_tasks),
        tasks=list(tasks.keys()),
        interval_seconds=interval,
    )
    return background_tasks
