"""
Models for reconciliation plans and the outcome of executing them.
"""
from typing import Dict, List, Optional
from pydantic import BaseModel
from enum import Enum

from .service_descriptor import ResolvedDescriptor


class ActionKind(str, Enum):
    """
    What the reconciler wants done with one service.
    """
    CREATE = "create"
    RECREATE = "recreate"
    STOP = "stop"
    NOOP = "no-op"


class ActionStatus(str, Enum):
    """
    Result of a planned action after execution.
    """
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    BLOCKED = "blocked"


class PlannedAction(BaseModel):
    """
    A single action for one service.

    ``requires`` lists the services whose actions must succeed before this one
    may run. ``changes`` lists the descriptor fields that differ from the
    running instance (only set for ``recreate``).
    """
    service: str
    kind: ActionKind
    descriptor: Optional[ResolvedDescriptor] = None
    requires: List[str] = []
    changes: List[str] = []


class ReconciliationPlan(BaseModel):
    """
    Ordered actions for one cycle. Orphan stops come first, in reverse
    dependency order, followed by catalog services in dependency order.
    """
    actions: List[PlannedAction] = []
    unresolved: Dict[str, str] = {}

    def get(self, service: str) -> Optional[PlannedAction]:
        for action in self.actions:
            if action.service == service:
                return action
        return None

    def is_noop(self) -> bool:
        return not self.unresolved and all(a.kind == ActionKind.NOOP for a in self.actions)

    def summary(self) -> Dict[str, int]:
        counts = {kind.value: 0 for kind in ActionKind}
        for action in self.actions:
            counts[action.kind.value] += 1
        return counts


class ActionOutcome(BaseModel):
    service: str
    kind: Optional[ActionKind] = None
    status: ActionStatus
    error: Optional[str] = None


class CycleReport(BaseModel):
    """
    Per-service outcomes of one reconciliation cycle.
    """
    outcomes: Dict[str, ActionOutcome] = {}

    def record(self, outcome: ActionOutcome) -> None:
        self.outcomes[outcome.service] = outcome

    def status_of(self, service: str) -> Optional[ActionStatus]:
        outcome = self.outcomes.get(service)
        return outcome.status if outcome else None

    def with_status(self, status: ActionStatus) -> List[str]:
        return [name for name, o in self.outcomes.items() if o.status == status]

    @property
    def failed(self) -> List[str]:
        return self.with_status(ActionStatus.FAILED)

    @property
    def blocked(self) -> List[str]:
        return self.with_status(ActionStatus.BLOCKED)

    @property
    def ok(self) -> bool:
        return not self.failed and not self.blocked

    def merge(self, other: "CycleReport") -> "CycleReport":
        """
        Returns a report holding both sets of outcomes. Failures recorded in
        either report are kept over a later success for the same service.
        """
        merged = CycleReport(outcomes=dict(self.outcomes))
        for name, outcome in other.outcomes.items():
            existing = merged.outcomes.get(name)
            if existing is not None and existing.status != ActionStatus.SUCCEEDED:
                continue
            merged.outcomes[name] = outcome
        return merged
