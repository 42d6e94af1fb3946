"""Serialized delivery of reconcile triggers."""

from __future__ import annotations

import asyncio
from datetime import timedelta

from aiojobs import Job, Scheduler
from structlog.stdlib import BoundLogger

from .reconciler import DriverReconciler, ReconcileResult

__all__ = ["ReconcileQueue"]


class ReconcileQueue:
    """Runs reconcile passes in response to triggers.

    Passes for different driver resources run concurrently, but at most one
    pass runs for a given resource at a time. Triggers that arrive while a
    pass is running are coalesced into a single follow-up pass, which starts
    as soon as the current one finishes. A pass that is not ready schedules
    another trigger after its requeue delay.

    Passes and delayed triggers run as jobs of an `aiojobs.Scheduler`.
    Running passes are never cancelled, except by `stop` at shutdown. Every
    pass starts from scratch, so an interrupted pass is repaired by the next
    one.

    Parameters
    ----------
    reconciler
        Reconciler for driver resources.
    logger
        Logger to use.
    """

    def __init__(
        self, reconciler: DriverReconciler, logger: BoundLogger
    ) -> None:
        self._reconciler = reconciler
        self._logger = logger
        self._scheduler: Scheduler | None = None
        self._running: dict[str, Job[None]] = {}
        self._pending: set[str] = set()
        self._delayed: dict[str, Job[None]] = {}
        self._results: dict[str, ReconcileResult] = {}
        self._stopped = False

    def get_result(self, name: str) -> ReconcileResult | None:
        """Get the outcome of the last pass for a driver resource.

        Parameters
        ----------
        name
            Name of the driver resource.

        Returns
        -------
        ReconcileResult or None
            Last outcome, or `None` if the resource has never been reconciled
            or no longer exists.
        """
        return self._results.get(name)

    def list_results(self) -> list[ReconcileResult]:
        """Get the outcome of the last pass for every driver resource."""
        return [self._results[n] for n in sorted(self._results)]

    def is_running(self, name: str) -> bool:
        """Whether a pass is currently running for a driver resource."""
        return name in self._running

    async def trigger(self, name: str) -> None:
        """Request a reconcile pass for a driver resource.

        Parameters
        ----------
        name
            Name of the driver resource.
        """
        if self._stopped:
            self._logger.debug("Ignoring trigger during shutdown", driver=name)
            return
        delayed = self._delayed.pop(name, None)
        if name in self._running:
            self._pending.add(name)
        else:
            if not self._scheduler:
                self._scheduler = Scheduler(limit=None)
            job = await self._scheduler.spawn(self._run(name))
            self._running[name] = job
        if delayed:
            await delayed.close()

    async def wait(self, name: str) -> None:
        """Wait until no pass is running or pending for a driver resource.

        Only used by the test suite.
        """
        while name in self._running:
            await self._running[name].wait()

    async def stop(self) -> None:
        """Cancel all running and scheduled passes."""
        self._stopped = True
        if self._scheduler:
            await self._scheduler.close()
            self._scheduler = None
        self._running.clear()
        self._delayed.clear()
        self._pending.clear()

    async def _run(self, name: str) -> None:
        """Run passes for a resource until no trigger is pending."""
        result = None
        try:
            while True:
                self._pending.discard(name)
                result = await self._reconcile(name)
                if name not in self._pending:
                    break
        finally:
            self._running.pop(name, None)
        if result and result.requeue_after and not self._stopped:
            await self._schedule(name, result.requeue_after)

    async def _reconcile(self, name: str) -> ReconcileResult | None:
        try:
            result = await self._reconciler.reconcile(name)
        except Exception:
            # Keep the queue alive. The periodic resync retries the pass.
            msg = "Uncaught exception reconciling"
            self._logger.exception(msg, driver=name)
            return None
        if result is None:
            self._results.pop(name, None)
        else:
            self._results[name] = result
        return result

    async def _schedule(self, name: str, delay: timedelta) -> None:
        """Trigger a pass for a resource after a delay."""
        if not self._scheduler:
            return
        previous = self._delayed.pop(name, None)
        job = await self._scheduler.spawn(self._trigger_after(name, delay))
        self._delayed[name] = job
        if previous:
            await previous.close()

    async def _trigger_after(self, name: str, delay: timedelta) -> None:
        await asyncio.sleep(delay.total_seconds())
        self._delayed.pop(name, None)
        await self.trigger(name)
