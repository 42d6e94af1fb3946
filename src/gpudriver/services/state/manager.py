"""Ordered pipeline of state units."""

from __future__ import annotations

from structlog.stdlib import BoundLogger

from ...exceptions import (
    ControllerError,
    ControllerTimeoutError,
    KubernetesError,
)
from ...models.domain.nvidiadriver import NVIDIADriver
from ...models.domain.syncstate import StateResult, SyncResults, SyncState
from ...timeout import Timeout
from .base import StateUnit

__all__ = ["StateManager"]


class StateManager:
    """Runs the state units for a driver resource in order.

    Each unit must be ready before the next one runs. Units that report
    ``ignore`` do not stop the pipeline and do not affect the aggregate
    status.

    This is the only place where exceptions raised by state units are turned
    into a status. Failures to talk to Kubernetes, including conflicts and
    timeouts, mean the pass should simply be retried, so they make the unit
    not ready. Any other error means the resource or the manifests need to
    be fixed, so the unit is in error.

    Parameters
    ----------
    states
        State units in the order they should run.
    logger
        Logger to use.
    """

    def __init__(self, states: list[StateUnit], logger: BoundLogger) -> None:
        self._states = states
        self._logger = logger

    @property
    def state_names(self) -> list[str]:
        """Names of the state units in pipeline order."""
        return [s.name for s in self._states]

    async def sync(
        self, driver: NVIDIADriver, timeout: Timeout
    ) -> SyncResults:
        """Run the pipeline for a driver resource.

        Parameters
        ----------
        driver
            Driver resource being reconciled.
        timeout
            Timeout on the whole pass.

        Returns
        -------
        SyncResults
            Aggregate status and the results of the units that ran.
        """
        results = SyncResults(status=SyncState.READY)
        for state in self._states:
            result = await self._sync_state(state, driver, timeout)
            results.states.append(result)
            if result.status == SyncState.IGNORE:
                continue
            if result.status != SyncState.READY:
                results.status = result.status
                break
        return results

    async def _sync_state(
        self, state: StateUnit, driver: NVIDIADriver, timeout: Timeout
    ) -> StateResult:
        logger = self._logger.bind(driver=driver.name, state=state.name)
        try:
            async with timeout.enforce():
                result = await state.sync(driver, timeout)
        except (KubernetesError, ControllerTimeoutError) as e:
            logger.warning("State not synchronized", error=str(e))
            return StateResult(
                state_name=state.name,
                status=SyncState.NOT_READY,
                error=e,
                details=[str(e)],
            )
        except ControllerError as e:
            logger.error("Failed to synchronize state", error=str(e))
            return StateResult(
                state_name=state.name,
                status=SyncState.ERROR,
                error=e,
                details=[str(e)],
            )
        logger.debug("State synchronized", status=result.status.value)
        return result
