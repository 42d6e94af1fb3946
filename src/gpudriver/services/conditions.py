"""Status conditions of driver resources."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from safir.datetime import current_datetime

from ..models.domain.nvidiadriver import Condition, NVIDIADriver

__all__ = [
    "ConditionReason",
    "ConditionType",
    "set_condition",
    "set_error",
    "set_not_ready",
    "set_ready",
]


class ConditionType(str, Enum):
    """Condition types reported on a driver resource."""

    READY = "Ready"
    ERROR = "Error"


class ConditionReason(str, Enum):
    """Machine-readable reasons for a condition."""

    RECONCILED = "Reconciled"
    RECONCILE_FAILED = "ReconcileFailed"
    DRIVER_NOT_READY = "DriverNotReady"
    CONFLICTING_NODE_SELECTOR = "ConflictingNodeSelector"


def set_condition(
    driver: NVIDIADriver,
    condition_type: ConditionType,
    *,
    status: bool,
    reason: ConditionReason,
    message: str = "",
    now: datetime | None = None,
) -> None:
    """Set a condition in the status of a driver resource.

    The transition time is only updated if the status of the condition
    changed.

    Parameters
    ----------
    driver
        Driver resource to modify.
    condition_type
        Type of the condition.
    status
        Whether the condition holds.
    reason
        Machine-readable reason.
    message
        Human-readable message.
    now
        Current time, defaulting to the actual current time.
    """
    now = now or current_datetime()
    new_status = "True" if status else "False"
    conditions = driver.status.conditions
    existing = None
    for condition in conditions:
        if condition.type == condition_type.value:
            existing = condition
            break
    transition_time = now
    if existing and existing.status == new_status:
        transition_time = existing.last_transition_time or now
    condition = Condition(
        type=condition_type.value,
        status=new_status,
        reason=reason.value,
        message=message,
        last_transition_time=transition_time.replace(microsecond=0),
        observed_generation=driver.metadata.generation,
    )
    driver.status.conditions = [
        c for c in conditions if c.type != condition_type.value
    ]
    driver.status.conditions.append(condition)
    driver.status.conditions.sort(key=lambda c: c.type)


def set_ready(driver: NVIDIADriver, now: datetime | None = None) -> None:
    """Mark a driver resource as successfully reconciled."""
    reason = ConditionReason.RECONCILED
    set_condition(
        driver,
        ConditionType.READY,
        status=True,
        reason=reason,
        message="All driver DaemonSets are ready",
        now=now,
    )
    set_condition(
        driver, ConditionType.ERROR, status=False, reason=reason, now=now
    )


def set_not_ready(
    driver: NVIDIADriver, message: str, now: datetime | None = None
) -> None:
    """Mark a driver resource as still converging."""
    set_condition(
        driver,
        ConditionType.READY,
        status=False,
        reason=ConditionReason.DRIVER_NOT_READY,
        message=message,
        now=now,
    )
    set_condition(
        driver,
        ConditionType.ERROR,
        status=False,
        reason=ConditionReason.DRIVER_NOT_READY,
        now=now,
    )


def set_error(
    driver: NVIDIADriver,
    reason: ConditionReason,
    message: str,
    now: datetime | None = None,
) -> None:
    """Mark a driver resource as failed."""
    for condition_type, status in (
        (ConditionType.READY, False),
        (ConditionType.ERROR, True),
    ):
        set_condition(
            driver,
            condition_type,
            status=status,
            reason=reason,
            message=message,
            now=now,
        )
