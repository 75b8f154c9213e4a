# Execution Events for JPEL Runner
# Event classes published by the engine as instances advance

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class ExecutionEvent:
    """Base class for all execution events.

    The engine publishes events after an operation has been persisted,
    so subscribers always observe committed instance state.
    """

    instance_id: str

    @property
    def event_type(self) -> str:
        return type(self).__name__.replace("Event", "")


@dataclass
class InstanceCreatedEvent(ExecutionEvent):
    """Fired when a new instance is created (including reruns)."""

    process_id: str = ""
    process_version: str = ""
    rerun_of: Optional[str] = None


@dataclass
class ActivityStartedEvent(ExecutionEvent):
    """Fired when an activity moves from pending to running."""

    activity_id: str = ""
    activity_type: str = ""


@dataclass
class ActivityCompletedEvent(ExecutionEvent):
    activity_id: str = ""
    activity_type: str = ""
    pass_fail: Optional[str] = None


@dataclass
class ActivityFailedEvent(ExecutionEvent):
    """Fired when an activity ends failed, timed out or cancelled."""

    activity_id: str = ""
    activity_type: str = ""
    status: str = "failed"
    error: Optional[str] = None


@dataclass
class HumanTaskCreatedEvent(ExecutionEvent):
    """Fired when a human task starts waiting for a submission."""

    activity_id: str = ""
    prompt: Optional[str] = None
    fields: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class HumanTaskSubmittedEvent(ExecutionEvent):
    activity_id: str = ""
    values: Dict[str, Any] = field(default_factory=dict)


@dataclass
class VariableSetEvent(ExecutionEvent):
    """Fired for each variable written by an activity.

    ``activity_id`` is None for process-scoped variables.
    """

    name: str = ""
    value: Any = None
    activity_id: Optional[str] = None


@dataclass
class TerminateTriggeredEvent(ExecutionEvent):
    """Fired when a Terminate activity ends the whole instance."""

    activity_id: str = ""
    reason: Optional[str] = None
    result: str = "success"


@dataclass
class InstanceStateChangedEvent(ExecutionEvent):
    """Fired when an instance's overall status changes."""

    old_state: Optional[str] = None
    new_state: str = ""
    reason: Optional[str] = None
