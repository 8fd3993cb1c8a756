# ================================
# BACKGROUND SCHEDULER (core/scheduler.py)
# ================================

import asyncio
import inspect
import logging
import traceback
from datetime import datetime, timezone, timedelta
from typing import Dict, Any, Optional, Callable

from app.config import settings

logger = logging.getLogger(__name__)

class BackgroundScheduler:
    """Periodic task runner on the application's event loop"""

    def __init__(self):
        self.tasks: Dict[str, Dict[str, Any]] = {}
        self.running = False
        self._task_handles: Dict[str, asyncio.Task] = {}

    def add_task(
        self,
        name: str,
        func: Callable,
        interval_seconds: int,
        initial_delay: int = 0,
        enabled: bool = True
    ):
        """
        Register a periodic task. Coroutine functions are awaited, plain
        functions run in a worker thread so blocking database work does not
        stall the event loop.
        """
        self.tasks[name] = {
            "func": func,
            "interval": interval_seconds,
            "initial_delay": initial_delay,
            "enabled": enabled,
            "last_run": None,
            "next_run": None,
            "last_result": None,
            "run_count": 0,
            "error_count": 0,
            "last_error": None
        }
        logger.info(f"Scheduled task '{name}' every {interval_seconds}s (enabled={enabled})")

    async def start(self):
        """Start all enabled tasks"""
        if self.running:
            logger.warning("Scheduler already running")
            return

        self.running = True
        logger.info("Starting background scheduler")

        for task_name, task_config in self.tasks.items():
            if task_config["enabled"]:
                self._task_handles[task_name] = asyncio.create_task(
                    self._run_task_loop(task_name)
                )

    async def stop(self):
        """Cancel running task loops"""
        self.running = False
        logger.info("Stopping background scheduler")

        for task_handle in self._task_handles.values():
            task_handle.cancel()
            try:
                await task_handle
            except asyncio.CancelledError:
                pass

        self._task_handles.clear()
        logger.info("Background scheduler stopped")

    async def run_task(self, task_name: str) -> Any:
        """Run a task once and record its stats; errors propagate to the caller"""
        if task_name not in self.tasks:
            raise ValueError(f"Task '{task_name}' not found")

        task_config = self.tasks[task_name]
        func = task_config["func"]
        start_time = datetime.now(timezone.utc)

        try:
            if inspect.iscoroutinefunction(func):
                result = await func()
            else:
                result = await asyncio.to_thread(func)
        except Exception as e:
            task_config["error_count"] += 1
            task_config["last_error"] = {
                "time": datetime.now(timezone.utc),
                "error": str(e),
                "traceback": traceback.format_exc()
            }
            raise

        task_config["last_run"] = start_time
        task_config["last_result"] = result
        task_config["run_count"] += 1

        duration = (datetime.now(timezone.utc) - start_time).total_seconds()
        logger.info(f"Task '{task_name}' completed in {duration:.2f}s")
        return result

    async def _run_task_loop(self, task_name: str):
        task_config = self.tasks[task_name]

        if task_config["initial_delay"] > 0:
            task_config["next_run"] = datetime.now(timezone.utc) + timedelta(seconds=task_config["initial_delay"])
            logger.info(f"Task '{task_name}' waiting {task_config['initial_delay']}s before first run")
            await asyncio.sleep(task_config["initial_delay"])

        while self.running and task_config["enabled"]:
            task_config["next_run"] = datetime.now(timezone.utc) + timedelta(
                seconds=task_config["interval"]
            )

            try:
                logger.info(f"Running scheduled task '{task_name}'")
                await self.run_task(task_name)
            except Exception as e:
                logger.error(f"Error in scheduled task '{task_name}': {e}")
                logger.debug(traceback.format_exc())

            await asyncio.sleep(task_config["interval"])

    def get_task_status(self, task_name: Optional[str] = None) -> Dict[str, Any]:
        """Stats of one task, or of all tasks keyed by name"""
        if task_name:
            if task_name not in self.tasks:
                raise ValueError(f"Task '{task_name}' not found")

            task = self.tasks[task_name]
            last_result = task["last_result"]
            if hasattr(last_result, "model_dump"):
                last_result = last_result.model_dump(mode="json")

            last_error = task["last_error"]
            if last_error:
                last_error = {"time": last_error["time"].isoformat(), "error": last_error["error"]}

            return {
                "name": task_name,
                "enabled": task["enabled"],
                "running": task_name in self._task_handles,
                "interval": task["interval"],
                "last_run": task["last_run"].isoformat() if task["last_run"] else None,
                "next_run": task["next_run"].isoformat() if task["next_run"] else None,
                "run_count": task["run_count"],
                "error_count": task["error_count"],
                "last_result": last_result,
                "last_error": last_error
            }

        return {
            name: self.get_task_status(name)
            for name in self.tasks
        }

    def enable_task(self, task_name: str):
        if task_name not in self.tasks:
            raise ValueError(f"Task '{task_name}' not found")

        self.tasks[task_name]["enabled"] = True
        logger.info(f"Enabled task '{task_name}'")

    def disable_task(self, task_name: str):
        if task_name not in self.tasks:
            raise ValueError(f"Task '{task_name}' not found")

        self.tasks[task_name]["enabled"] = False
        logger.info(f"Disabled task '{task_name}'")

# Global scheduler instance
scheduler = BackgroundScheduler()

# ================================
# SCHEDULED TASKS
# ================================

EXPIRY_SWEEP_TASK = "reservation_expiry_sweep"

def sweep_expired_reservations():
    """Expire reservations past their visit or booking window"""
    from app.services.expiry_sweeper import expiry_sweeper

    return expiry_sweeper.run()

# ================================
# SCHEDULER INITIALIZATION
# ================================

def initialize_scheduler():
    """Register default tasks"""
    if EXPIRY_SWEEP_TASK in scheduler.tasks:
        return

    scheduler.add_task(
        name=EXPIRY_SWEEP_TASK,
        func=sweep_expired_reservations,
        interval_seconds=settings.EXPIRY_SWEEP_INTERVAL_SECONDS,
        initial_delay=settings.EXPIRY_SWEEP_INITIAL_DELAY,
        enabled=settings.ENABLE_EXPIRY_SWEEPER
    )

    logger.info("Scheduler initialized with default tasks")
