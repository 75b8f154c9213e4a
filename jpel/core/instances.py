# Process Instances for JPEL Runner
# Mutable execution state: instance record plus per-activity run state arena

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from pydantic import Field

from .definitions import ActivityKind, JpelModel
from .exceptions import EngineInvariantError


class InstanceStatus(str, Enum):
    """Overall status of a process instance"""

    PENDING = "pending"
    RUNNING = "running"
    WAITING = "waiting"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


FINISHED_INSTANCE_STATES = frozenset(
    [InstanceStatus.COMPLETED, InstanceStatus.FAILED, InstanceStatus.CANCELLED]
)


class RunStatus(str, Enum):
    """Status of a single activity within an instance"""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    TIMED_OUT = "timedOut"


TERMINAL_RUN_STATES = frozenset(
    [RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED, RunStatus.TIMED_OUT]
)

# Terminal states that count as failure when propagating upward
FAILED_RUN_STATES = frozenset([RunStatus.FAILED, RunStatus.TIMED_OUT])


class PassFail(str, Enum):
    PASS = "pass"
    FAIL = "fail"


class AggregatePassFail(str, Enum):
    ALL_PASS = "all_pass"
    ANY_FAIL = "any_fail"


class ActivityRunState(JpelModel):
    """Execution record for one activity id within one instance.

    Compound activities keep their cursor here: ``index`` for a Sequence,
    ``active`` for the children a Flow has dispatched, ``branch`` for the
    child an If/Case selected (or the catch activity once entered) and
    ``iterations`` for a While.
    """

    type: ActivityKind
    status: RunStatus = RunStatus.PENDING
    pass_fail: Optional[PassFail] = Field(None, alias="passFail")
    variables: Dict[str, Any] = Field(default_factory=dict)
    started_at: Optional[datetime] = Field(None, alias="startedAt")
    completed_at: Optional[datetime] = Field(None, alias="completedAt")
    error: Optional[str] = None

    index: int = 0
    active: List[str] = Field(default_factory=list)
    branch: Optional[str] = None
    condition_result: Optional[bool] = Field(None, alias="conditionResult")
    matched_case: Optional[str] = Field(None, alias="matchedCase")
    iterations: int = 0
    in_catch: bool = Field(False, alias="inCatch")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RUN_STATES

    @property
    def is_failed(self) -> bool:
        return self.status in FAILED_RUN_STATES

    @property
    def has_run(self) -> bool:
        return self.started_at is not None

    def start(self, now: datetime) -> None:
        self.status = RunStatus.RUNNING
        if self.started_at is None:
            self.started_at = now

    def finish(self, status: RunStatus, now: datetime, error: Optional[str] = None) -> None:
        self.status = status
        self.completed_at = now
        if error is not None:
            self.error = error

    def reset(self) -> None:
        """Return to pending for another loop iteration; outputs are kept."""
        self.status = RunStatus.PENDING
        self.started_at = None
        self.completed_at = None
        self.error = None
        self.index = 0
        self.active = []
        self.branch = None
        self.condition_result = None
        self.matched_case = None
        self.iterations = 0
        self.in_catch = False

    def snapshot(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "type": self.type.value,
            "status": self.status.value,
            "variables": dict(self.variables),
        }
        if self.pass_fail is not None:
            data["passFail"] = self.pass_fail.value
        if self.started_at is not None:
            data["startedAt"] = self.started_at.isoformat()
        if self.completed_at is not None:
            data["completedAt"] = self.completed_at.isoformat()
        if self.error is not None:
            data["error"] = self.error
        return data


class ProcessInstance(JpelModel):
    """One execution of a process definition."""

    instance_id: str = Field(..., alias="instanceId")
    process_id: str = Field(..., alias="processId")
    process_version: str = Field("1.0.0", alias="processVersion")
    title: Optional[str] = None
    status: InstanceStatus = InstanceStatus.PENDING
    root: str
    current_activity: Optional[str] = Field(None, alias="currentActivity")
    activities: Dict[str, ActivityRunState] = Field(default_factory=dict)
    variables: Dict[str, Any] = Field(default_factory=dict)
    started_at: datetime = Field(..., alias="startedAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")
    completed_at: Optional[datetime] = Field(None, alias="completedAt")
    aggregate_pass_fail: Optional[AggregatePassFail] = Field(None, alias="aggregatePassFail")
    message: Optional[str] = None
    rerun_of: Optional[str] = Field(None, alias="rerunOf")

    @property
    def is_finished(self) -> bool:
        return self.status in FINISHED_INSTANCE_STATES

    def run_state(self, activity_id: str) -> ActivityRunState:
        state = self.activities.get(activity_id)
        if state is None:
            raise EngineInvariantError(
                f"Instance {self.instance_id} has no run state for '{activity_id}'"
            )
        return state

    def snapshot(self) -> Dict[str, Any]:
        """Outward representation of the instance."""
        data: Dict[str, Any] = {
            "instanceId": self.instance_id,
            "processId": self.process_id,
            "processVersion": self.process_version,
            "status": self.status.value,
            "startedAt": self.started_at.isoformat(),
            "variables": dict(self.variables),
            "activities": {
                activity_id: state.snapshot()
                for activity_id, state in self.activities.items()
            },
        }
        if self.current_activity:
            data["currentActivity"] = self.current_activity
        if self.completed_at is not None:
            data["completedAt"] = self.completed_at.isoformat()
        if self.aggregate_pass_fail is not None:
            data["aggregatePassFail"] = self.aggregate_pass_fail.value
        if self.message:
            data["message"] = self.message
        if self.rerun_of:
            data["rerunOf"] = self.rerun_of
        return data

    def to_record(self) -> Dict[str, Any]:
        """Full JSON-compatible state, cursors included, for repositories."""
        return self.model_dump(by_alias=True, mode="json")

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "ProcessInstance":
        return cls.model_validate(record)


def aggregate_pass_fail(states: Iterable[ActivityRunState]) -> Optional[AggregatePassFail]:
    """Roll up passFail marks of activities that actually ran.

    Returns ``any_fail`` if any ran activity failed, ``all_pass`` if at
    least one passed and none failed, and None when nothing was marked.
    """
    marks = [state.pass_fail for state in states if state.has_run and state.pass_fail]
    if PassFail.FAIL in marks:
        return AggregatePassFail.ANY_FAIL
    if PassFail.PASS in marks:
        return AggregatePassFail.ALL_PASS
    return None
