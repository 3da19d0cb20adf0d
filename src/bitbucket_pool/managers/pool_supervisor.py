"""Supervisor for the pool's long-lived background tasks."""

import asyncio
from typing import Dict, Optional

from bitbucket_pool.config import Settings, get_settings
from bitbucket_pool.managers.pool_manager import PoolManager
from bitbucket_pool.utils import get_logger

logger = get_logger(__name__)

RECLAIM_TASK = "reclaim"
BOOTSTRAP_TASK = "bootstrap"


class PoolSupervisor:
    """Owns the reclaim loop and the bootstrap task.

    Task failures are logged and recorded instead of ending the process;
    ``status()`` reports them.
    """

    def __init__(self, pool: PoolManager, settings: Settings | None = None) -> None:
        """
        Initialize pool supervisor.

        Args:
            pool: Pool facade the tasks operate on
            settings: Settings (defaults to the cached settings)
        """
        self.settings = settings or get_settings()
        self.pool = pool
        self._running = False
        self._tasks: Dict[str, asyncio.Task] = {}
        self._last_errors: Dict[str, Optional[str]] = {RECLAIM_TASK: None, BOOTSTRAP_TASK: None}
        self._bootstrap_attempts = 0

    @property
    def is_running(self) -> bool:
        """Whether the background tasks have been started and not stopped."""
        return self._running

    async def start(self) -> None:
        """
        Prepare the pool and start background tasks.

        Raises:
            DockerAPIError: If the shared network cannot be created
        """
        if self._running:
            logger.warning("Pool supervisor already running")
            return

        await self.pool.create_network()

        try:
            stats = await self.pool.reclaim_expired()
            logger.info("Initial reclaim completed", extra=stats)
        except Exception as e:
            logger.warning("Initial reclaim failed", extra={"error": str(e)})
            self._last_errors[RECLAIM_TASK] = str(e)

        self._running = True
        self._tasks[RECLAIM_TASK] = asyncio.create_task(
            self._run_reclaim_loop(), name=RECLAIM_TASK
        )
        self._tasks[BOOTSTRAP_TASK] = asyncio.create_task(
            self._run_bootstrap(), name=BOOTSTRAP_TASK
        )

        logger.info(
            "Pool supervisor started",
            extra={
                "reclaim_interval_s": self.settings.reclaim_interval_s,
                "initial_pool_size": self.settings.initial_pool_size,
                "max_pool_size": self.settings.max_pool_size,
            },
        )

    async def stop(self) -> None:
        """Cancel background tasks and wait for them to finish."""
        if not self._running:
            return

        self._running = False
        for task in self._tasks.values():
            task.cancel()

        for task in self._tasks.values():
            try:
                await task
            except asyncio.CancelledError:
                # Task cancellation is expected during shutdown
                pass

        logger.info("Pool supervisor stopped")

    async def _run_reclaim_loop(self) -> None:
        """Run reclaim passes on a fixed interval."""
        while self._running:
            try:
                await asyncio.sleep(self.settings.reclaim_interval_s)
                await self.pool.reclaim_expired()
                self._last_errors[RECLAIM_TASK] = None
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Reclaim pass failed", extra={"error": str(e)})
                self._last_errors[RECLAIM_TASK] = str(e)

    async def _run_bootstrap(self) -> None:
        """Ensure the initial pool size, retrying a bounded number of times."""
        max_attempts = self.settings.bootstrap_max_attempts

        for attempt in range(1, max_attempts + 1):
            self._bootstrap_attempts = attempt
            try:
                created = await self.pool.ensure_initial(self.settings.initial_pool_size)
                self._last_errors[BOOTSTRAP_TASK] = None
                logger.info("Bootstrap completed", extra={"members_created": created})
                return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    "Bootstrap attempt failed",
                    extra={"attempt": attempt, "max_attempts": max_attempts, "error": str(e)},
                )
                self._last_errors[BOOTSTRAP_TASK] = str(e)

            if attempt < max_attempts:
                await asyncio.sleep(self.settings.bootstrap_retry_s)

        logger.error("Bootstrap gave up", extra={"attempts": max_attempts})

    def _task_state(self, name: str) -> str:
        task = self._tasks.get(name)
        if task is None:
            return "pending"
        if not task.done():
            return "running"
        if task.cancelled():
            return "cancelled"
        if task.exception() is not None or self._last_errors[name]:
            return "failed"
        return "done"

    def status(self) -> dict:
        """
        Report the state of the background tasks.

        Returns:
            Dictionary with the running flag and per-task state and last error
        """
        return {
            "running": self._running,
            "tasks": {
                name: {"state": self._task_state(name), "last_error": self._last_errors[name]}
                for name in (RECLAIM_TASK, BOOTSTRAP_TASK)
            },
            "bootstrap_attempts": self._bootstrap_attempts,
        }
