"""Cumulative timeout on the Kubernetes calls of a reconcile pass."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta

from safir.datetime import current_datetime

from .exceptions import ControllerTimeoutError

__all__ = ["Timeout"]


class Timeout:
    """Track a cumulative timeout on a series of operations.

    A reconcile pass issues many Kubernetes API calls that each take their
    own request timeout, but the pass as a whole must finish within the
    configured reconcile timeout. Each call asks this object how much time
    is left.

    Parameters
    ----------
    timeout
        Duration of the timeout.
    operation
        Human-readable name of the operation, for error reporting.
    driver
        Name of the driver resource being reconciled, if any.
    """

    def __init__(
        self,
        timeout: timedelta,
        operation: str = "Reconcile",
        driver: str | None = None,
    ) -> None:
        self._timeout = timeout
        self._operation = operation
        self._driver = driver
        self._start = current_datetime(microseconds=True)

    @asynccontextmanager
    async def enforce(self) -> AsyncIterator[None]:
        """Enforce the timeout on a block of code.

        Wraps the block in `asyncio.timeout` and translates `TimeoutError`
        into `~gpudriver.exceptions.ControllerTimeoutError`.

        Raises
        ------
        ControllerTimeoutError
            Raised if the timeout expired inside the block.
        """
        try:
            async with asyncio.timeout(self.left()):
                yield
        except TimeoutError as e:
            raise self._error() from e

    def left(self) -> float:
        """Return the amount of time remaining in seconds.

        Raises
        ------
        ControllerTimeoutError
            Raised if the timeout has expired.
        """
        now = current_datetime(microseconds=True)
        left = (self._timeout - (now - self._start)).total_seconds()
        if left <= 0.0:
            raise self._error(now)
        return left

    def _error(self, now: datetime | None = None) -> ControllerTimeoutError:
        return ControllerTimeoutError(
            self._operation,
            self._driver,
            started_at=self._start,
            failed_at=now or current_datetime(microseconds=True),
        )
