"""Results of running state units."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

__all__ = [
    "StateResult",
    "SyncResults",
    "SyncState",
]


class SyncState(str, Enum):
    """Convergence status of a group of managed objects."""

    READY = "ready"
    NOT_READY = "notReady"
    IGNORE = "ignore"
    RESET = "reset"
    ERROR = "error"


@dataclass
class StateResult:
    """Result of synchronizing one state unit."""

    state_name: str
    """Name of the state unit."""

    status: SyncState
    """Convergence status of the unit."""

    error: Exception | None = None
    """Error that stopped the unit, if its status is ``error``."""

    details: list[str] = field(default_factory=list)
    """Human-readable explanations of a not-ready status."""


@dataclass
class SyncResults:
    """Results of running the pipeline of state units."""

    status: SyncState
    """Aggregate status of all units that ran."""

    states: list[StateResult] = field(default_factory=list)
    """Results of the individual units, in pipeline order."""

    @property
    def error(self) -> Exception | None:
        """First error reported by any unit, if any."""
        for state in self.states:
            if state.error:
                return state.error
        return None
