"""GPU driver controller background processing."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import timedelta

from aiojobs import Scheduler
from safir.datetime import current_datetime
from structlog.stdlib import BoundLogger

from .config import Config
from .services.queue import ReconcileQueue
from .storage.kubernetes.custom import NVIDIADriverStorage
from .timeout import Timeout

__all__ = ["BackgroundTaskManager"]


class BackgroundTaskManager:
    """Manage GPU driver controller background tasks.

    Reconcile triggers normally come from outside the controller, but every
    driver resource is also reconciled periodically so that changes nobody
    reported, such as new nodes, are eventually noticed. This class runs that
    periodic resync and shuts down the reconcile queue on exit.

    This class is created during startup and tracked as part of the
    `~gpudriver.factory.ProcessContext`.

    Parameters
    ----------
    config
        Controller configuration.
    queue
        Queue of reconcile triggers.
    driver_storage
        Storage for driver resources.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        config: Config,
        queue: ReconcileQueue,
        driver_storage: NVIDIADriverStorage,
        logger: BoundLogger,
    ) -> None:
        self._config = config
        self._queue = queue
        self._drivers = driver_storage
        self._logger = logger

        self._scheduler: Scheduler | None = None

    async def start(self) -> None:
        """Start all background tasks."""
        if self._scheduler:
            msg = "Background tasks already running, cannot start"
            self._logger.warning(msg)
            return
        self._scheduler = Scheduler()
        self._logger.info("Starting background tasks")
        coro = self._loop(
            self.resync,
            self._config.resync_interval,
            "resyncing driver resources",
        )
        await self._scheduler.spawn(coro)

    async def stop(self) -> None:
        """Stop the background tasks and any running reconcile passes."""
        if not self._scheduler:
            msg = "Background tasks were already stopped"
            self._logger.warning(msg)
            return
        self._logger.info("Stopping background tasks")
        await self._scheduler.close()
        self._scheduler = None
        await self._queue.stop()

    async def resync(self) -> None:
        """Trigger a reconcile pass for every driver resource."""
        timeout = Timeout(self._config.reconcile_timeout, "Resync")
        drivers = await self._drivers.list_drivers(timeout)
        self._logger.debug("Resyncing driver resources", count=len(drivers))
        for driver in drivers:
            await self._queue.trigger(driver.name)

    async def _loop(
        self,
        call: Callable[[], Awaitable[None]],
        interval: timedelta,
        description: str,
    ) -> None:
        """Wrap a coroutine in a periodic scheduling loop.

        The provided coroutine is run immediately and then on every interval.

        Parameters
        ----------
        call
            Async function to run repeatedly.
        interval
            Scheduling interval to use.
        description
            Description of the background task for error reporting.
        """
        while True:
            start = current_datetime(microseconds=True)
            try:
                await call()
            except Exception:
                # On failure, log the exception but otherwise continue as
                # normal, including the delay. This will provide some time for
                # whatever the problem was to be resolved.
                elapsed = current_datetime(microseconds=True) - start
                msg = f"Uncaught exception {description}"
                self._logger.exception(msg, delay=elapsed.total_seconds())
            delay = interval - (current_datetime(microseconds=True) - start)
            if delay.total_seconds() < 1:
                msg = f"{description.capitalize()} is running continuously"
                self._logger.warning(msg)
            else:
                await asyncio.sleep(delay.total_seconds())
