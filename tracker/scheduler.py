"""
Task Tracking Scheduler

Runs the tracking cycle on a fixed interval:
    load tasks -> fetch messages -> aggregate -> evaluate -> log -> notify

Two states, Stopped (initial) and Running. start() runs one cycle right
away and then arms the interval timer; stop() only disarms the timer,
a cycle that is already running finishes on its own.

Every timer tick starts its cycle as a separate asyncio task, so a
cycle that takes longer than the interval overlaps with the next one.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional, Set

from common.config import MONITORED_TOOL, TRACK_INTERVAL_SECONDS
from common.models import Requirement, Task, TrackerStatus, UserMetrics, utcnow
from .metrics import aggregate_and_store

logger = logging.getLogger(__name__)

ERROR_SOURCE = "task_tracker"


class TaskTracker:
    def __init__(self, task_source, message_source, store, evaluator, log_manager, dispatcher,
                 monitored_tool: str = MONITORED_TOOL,
                 interval: float = TRACK_INTERVAL_SECONDS,
                 clock: Callable[[], datetime] = utcnow):
        self.task_source = task_source
        self.message_source = message_source
        self.store = store
        self.evaluator = evaluator
        self.log_manager = log_manager
        self.dispatcher = dispatcher
        self.monitored_tool = monitored_tool
        self.interval = interval
        self.clock = clock

        self.is_tracking = False
        self.last_run: Optional[datetime] = None
        self.active_task_count = 0

        self._timer: Optional[asyncio.Task] = None
        self._cycles: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------------

    async def start(self):
        if self.is_tracking:
            return

        self.is_tracking = True
        logger.info(f"Task tracking started (every {self.interval:g}s)")
        await self.track()

        # stop() may have been called while the first cycle ran
        if self.is_tracking and self._timer is None:
            self._timer = asyncio.create_task(self._run_timer())

    def stop(self):
        if not self.is_tracking:
            return

        self.is_tracking = False
        if self._timer:
            self._timer.cancel()
            self._timer = None
        logger.info("Task tracking stopped")

    async def _run_timer(self):
        while True:
            await asyncio.sleep(self.interval)
            cycle = asyncio.create_task(self.track())
            self._cycles.add(cycle)
            cycle.add_done_callback(self._cycles.discard)

    async def drain(self):
        """Wait for cycles started by the timer to finish."""
        if self._cycles:
            await asyncio.gather(*list(self._cycles), return_exceptions=True)

    def get_status(self) -> TrackerStatus:
        return TrackerStatus(
            is_tracking=self.is_tracking,
            last_run=self.last_run,
            active_task_count=self.active_task_count,
        )

    # ------------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------------

    async def track(self):
        """One cycle. Any failure ends the cycle and goes to the error log."""
        try:
            await self._run_cycle()
        except Exception as e:
            logger.error(f"Error in task tracking: {e}", exc_info=True)
            try:
                self.log_manager.log_error(ERROR_SOURCE, str(e))
            except Exception as log_error:
                logger.error(f"Could not record tracker error: {log_error}")

    async def _run_cycle(self):
        tasks = [task for task in self.task_source.load_tasks() if task.is_trackable(self.monitored_tool)]

        self.active_task_count = len(tasks)
        self.last_run = self.clock()
        logger.info(f"Processing {self.active_task_count} tasks")

        if not tasks:
            return

        messages = await self.message_source.fetch_messages()
        metrics = aggregate_and_store(messages, self.store)
        requirements = self.task_source.requirements()

        for task in tasks:
            await self.process_task(task, metrics, requirements)

    async def process_task(self, task: Task, metrics: List[UserMetrics], requirements: Dict[str, Requirement]):
        for requirement_id in task.requirements_active:
            requirement = requirements.get(requirement_id)
            if requirement is None:
                logger.debug(f"Task {task.id}: requirement {requirement_id} not found, skipping")
                continue

            result = await self.evaluator.evaluate(metrics, requirement, task.id)
            self.log_manager.log(result)

            if result.should_notify:
                logger.info(f"Notification: {task.title} - {requirement.title} ({result.level.value})")
                await self.dispatcher.notify(result, task, requirement)
