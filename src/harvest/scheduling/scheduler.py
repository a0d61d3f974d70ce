"""
Scheduling subsystem for Program.

Runs the periodic jobs (search ticks, progress ticks and housekeeping) as
trio tasks and cancels them all when a stop is requested.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, TypedDict

import trio
import trio_util

from harvest.settings import settings_manager
from harvest.utils.logging import log_cleaner, logger

if TYPE_CHECKING:
    from harvest.program import Program


class ScheduledFunctionConfig(TypedDict):
    interval: float


class ProgramScheduler:
    """
    Owns every periodic job of the Program.

    Each job runs immediately and then every `interval` seconds; a job never
    overlaps with itself.
    """

    def __init__(self, program: "Program") -> None:
        self.program = program
        self.stop_requested = trio_util.AsyncBool(False)

    async def start(
        self,
        *,
        task_status: trio.TaskStatus = trio.TASK_STATUS_IGNORED,
    ) -> None:
        """Start every job and run until `stop` is called."""

        async with trio.open_nursery() as nursery:
            self._schedule_functions(nursery)

            task_status.started()

            await self.stop_requested.wait_value(True)

            logger.debug("Shutting down ProgramScheduler")

            nursery.cancel_scope.cancel()

    async def stop(self) -> None:
        self.stop_requested.value = True

    def _add_job(
        self,
        func: Callable[..., Awaitable[object] | object],
        config: ScheduledFunctionConfig,
        nursery: trio.Nursery,
    ) -> None:
        """Add a job to the scheduler."""

        async def job_wrapper():
            async for _ in trio_util.periodic(config["interval"]):
                try:
                    result = func()

                    if isinstance(result, Awaitable):
                        await result
                except Exception as e:
                    logger.exception(f"Scheduled job {func.__name__} failed: {e}")
                    continue

                logger.trace(f"Scheduled job {func.__name__} completed, sleeping")

        nursery.start_soon(job_wrapper)

    def _schedule_functions(self, nursery: trio.Nursery) -> None:
        """Register the lifecycle ticks and maintenance tasks."""

        assert self.program.services
        services = self.program.services
        scheduler_settings = settings_manager.settings.scheduler

        scheduled_functions = dict[
            Callable[..., Awaitable[object] | object], ScheduledFunctionConfig
        ](
            {
                services.search_scheduler.run_tick: {
                    "interval": scheduler_settings.search_interval
                },
                services.progress_tracker.run_tick: {
                    "interval": scheduler_settings.tracker_interval
                },
            }
        )

        # Disabled when the interval is 0
        if scheduler_settings.expiry_interval > 0:
            scheduled_functions[services.search_scheduler.cleanup_expired_requests] = {
                "interval": scheduler_settings.expiry_interval
            }

        if scheduler_settings.search_log_cleanup_interval > 0:
            scheduled_functions[services.search_scheduler.cleanup_search_logs] = {
                "interval": scheduler_settings.search_log_cleanup_interval
            }

        clean_interval = settings_manager.settings.logging.clean_interval

        if clean_interval > 0:
            scheduled_functions[log_cleaner] = {"interval": clean_interval}

        for func, config in scheduled_functions.items():
            self._add_job(func, config, nursery)

            logger.debug(
                f"Scheduled {func.__name__} to run every {config['interval']} seconds."
            )
