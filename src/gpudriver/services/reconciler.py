"""Reconciliation of one driver resource."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from safir.datetime import current_datetime
from structlog.stdlib import BoundLogger

from ..config import Config
from ..constants import STATUS_UPDATE_ATTEMPTS
from ..exceptions import (
    ControllerError,
    ControllerTimeoutError,
    KubernetesError,
    NodeSelectorConflictError,
)
from ..models.domain.nvidiadriver import DriverState, NVIDIADriver
from ..models.domain.syncstate import StateResult, SyncState
from ..storage.kubernetes.custom import NVIDIADriverStorage
from ..timeout import Timeout
from .conditions import ConditionReason, set_error, set_not_ready, set_ready
from .state.manager import StateManager
from .validator import DriverValidator

__all__ = [
    "DriverReconciler",
    "ReconcileResult",
]


@dataclass
class ReconcileResult:
    """Outcome of one reconcile pass for a driver resource."""

    name: str
    """Name of the driver resource."""

    status: SyncState
    """Aggregate status of the pass."""

    message: str | None = None
    """Explanation of a status other than ready."""

    reason: ConditionReason | None = None
    """Reason recorded in the status conditions of an error."""

    requeue_after: timedelta | None = None
    """Delay after which another pass should run, if any."""

    states: list[StateResult] = field(default_factory=list)
    """Results of the state units that ran."""

    reconciled_at: datetime = field(default_factory=current_datetime)
    """When the pass finished."""


class DriverReconciler:
    """Runs a complete reconcile pass for one driver resource.

    A pass validates the resource, runs the state pipeline, and records the
    outcome in the status of the resource. Every pass starts from scratch,
    so it is always safe to run another one.

    Parameters
    ----------
    config
        Controller configuration.
    driver_storage
        Storage for driver resources.
    validator
        Validator for driver resources.
    state_manager
        Pipeline of state units.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        config: Config,
        driver_storage: NVIDIADriverStorage,
        validator: DriverValidator,
        state_manager: StateManager,
        logger: BoundLogger,
    ) -> None:
        self._config = config
        self._drivers = driver_storage
        self._validator = validator
        self._state_manager = state_manager
        self._logger = logger

    async def reconcile(self, name: str) -> ReconcileResult | None:
        """Reconcile a driver resource.

        Parameters
        ----------
        name
            Name of the driver resource.

        Returns
        -------
        ReconcileResult or None
            Outcome of the pass, or `None` if the resource does not exist,
            in which case nothing is done.
        """
        logger = self._logger.bind(driver=name)
        timeout = Timeout(self._config.reconcile_timeout, "Reconcile", name)
        try:
            driver = await self._drivers.get(name, timeout)
        except (KubernetesError, ControllerTimeoutError) as e:
            logger.warning("Unable to read NVIDIADriver", error=str(e))
            return self._retry(name, str(e))
        if driver is None:
            logger.info("NVIDIADriver not found, nothing to do")
            return None

        logger.info("Reconciling NVIDIADriver")
        result = await self._reconcile_driver(driver, timeout)
        try:
            await self._update_status(driver, result, timeout)
        except (KubernetesError, ControllerTimeoutError) as e:
            msg = "Unable to update NVIDIADriver status"
            logger.warning(msg, error=str(e))
            if result.requeue_after is None:
                result.requeue_after = self._config.requeue_delay
        logger.info(
            "Reconciled NVIDIADriver",
            status=result.status.value,
            requeue_after=(
                result.requeue_after.total_seconds()
                if result.requeue_after
                else None
            ),
        )
        return result

    async def _reconcile_driver(
        self, driver: NVIDIADriver, timeout: Timeout
    ) -> ReconcileResult:
        """Validate a driver resource and run the state pipeline."""
        name = driver.name
        try:
            drivers = await self._drivers.list_drivers(timeout)
            await self._validator.validate(driver, drivers, timeout)
        except NodeSelectorConflictError as e:
            reason = ConditionReason.CONFLICTING_NODE_SELECTOR
            return self._error(name, str(e), reason)
        except (KubernetesError, ControllerTimeoutError) as e:
            return self._retry(name, str(e))
        except ControllerError as e:
            reason = ConditionReason.RECONCILE_FAILED
            return self._error(name, str(e), reason)

        results = await self._state_manager.sync(driver, timeout)
        if results.status == SyncState.READY:
            return ReconcileResult(
                name=name, status=SyncState.READY, states=results.states
            )
        details = [d for s in results.states for d in s.details]
        message = "; ".join(details) or "Driver is not ready"
        if results.status == SyncState.ERROR:
            reason = ConditionReason.RECONCILE_FAILED
            result = self._error(name, message, reason)
        else:
            result = self._retry(name, message)
        result.states = results.states
        return result

    async def _update_status(
        self, driver: NVIDIADriver, result: ReconcileResult, timeout: Timeout
    ) -> None:
        """Record the outcome of a pass in the status of the resource.

        A conflict means the resource changed since it was read, so it is
        read again and the status reapplied, a bounded number of times.
        """
        for attempt in range(STATUS_UPDATE_ATTEMPTS):
            self._apply_status(driver, result)
            try:
                await self._drivers.replace_status(driver, timeout)
            except KubernetesError as e:
                if not e.is_conflict or attempt == STATUS_UPDATE_ATTEMPTS - 1:
                    raise
            else:
                return
            self._logger.debug(
                "Conflict updating status, retrying",
                driver=driver.name,
                attempt=attempt + 1,
            )
            fresh = await self._drivers.get(driver.name, timeout)
            if fresh is None:
                return
            driver = fresh

    def _apply_status(
        self, driver: NVIDIADriver, result: ReconcileResult
    ) -> None:
        status = driver.status
        status.namespace = self._config.operator_namespace
        if result.status == SyncState.READY:
            status.state = DriverState.READY
            set_ready(driver, now=result.reconciled_at)
            return
        status.state = DriverState.NOT_READY
        message = result.message or ""
        if result.status == SyncState.ERROR and result.reason:
            set_error(driver, result.reason, message, now=result.reconciled_at)
        else:
            set_not_ready(driver, message, now=result.reconciled_at)

    def _error(
        self, name: str, message: str, reason: ConditionReason
    ) -> ReconcileResult:
        self._logger.error(
            "NVIDIADriver cannot be reconciled", driver=name, error=message
        )
        return ReconcileResult(
            name=name, status=SyncState.ERROR, message=message, reason=reason
        )

    def _retry(self, name: str, message: str) -> ReconcileResult:
        return ReconcileResult(
            name=name,
            status=SyncState.NOT_READY,
            message=message,
            requeue_after=self._config.requeue_delay,
        )
