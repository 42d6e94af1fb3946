"""API models for reconcile results of driver resources."""

from __future__ import annotations

from datetime import datetime
from typing import Self

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ...services.reconciler import ReconcileResult
from ..domain.syncstate import StateResult, SyncState

__all__ = [
    "DriverStatus",
    "StateStatus",
]


class StateStatus(BaseModel):
    """Result of one state unit in the last reconcile pass."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str = Field(..., title="Name of state unit")

    status: SyncState = Field(..., title="Status of state unit")

    details: list[str] = Field([], title="Explanations of the status")

    @classmethod
    def from_result(cls, result: StateResult) -> Self:
        """Convert from the internal result of a state unit."""
        return cls(
            name=result.state_name,
            status=result.status,
            details=result.details,
        )


class DriverStatus(BaseModel):
    """Result of the last reconcile pass for a driver resource."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str = Field(..., title="Name of NVIDIADriver")

    status: SyncState = Field(..., title="Aggregate status")

    message: str | None = Field(
        None, title="Explanation of a status other than ready"
    )

    requeue_after: float | None = Field(
        None,
        title="Retry delay",
        description="Seconds until the next pass, if one is scheduled",
    )

    reconciled_at: datetime = Field(..., title="When the pass finished")

    states: list[StateStatus] = Field([], title="Results of state units")

    @classmethod
    def from_result(cls, result: ReconcileResult) -> Self:
        """Convert from the internal result of a reconcile pass."""
        requeue_after = None
        if result.requeue_after:
            requeue_after = result.requeue_after.total_seconds()
        return cls(
            name=result.name,
            status=result.status,
            message=result.message,
            requeue_after=requeue_after,
            reconciled_at=result.reconciled_at,
            states=[StateStatus.from_result(s) for s in result.states],
        )
