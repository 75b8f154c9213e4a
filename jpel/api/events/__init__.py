# Events Package for JPEL Runner
# Event-driven notification of execution progress

from .execution_events import (
    ExecutionEvent,
    InstanceCreatedEvent,
    ActivityStartedEvent,
    ActivityCompletedEvent,
    ActivityFailedEvent,
    HumanTaskCreatedEvent,
    HumanTaskSubmittedEvent,
    VariableSetEvent,
    TerminateTriggeredEvent,
    InstanceStateChangedEvent,
)

from .event_bus import (
    ExecutionEventBus,
    get_event_bus,
    reset_event_bus,
)

__all__ = [
    # Base event
    "ExecutionEvent",
    # Instance events
    "InstanceCreatedEvent",
    "InstanceStateChangedEvent",
    "TerminateTriggeredEvent",
    # Activity events
    "ActivityStartedEvent",
    "ActivityCompletedEvent",
    "ActivityFailedEvent",
    # Human task events
    "HumanTaskCreatedEvent",
    "HumanTaskSubmittedEvent",
    # Variable events
    "VariableSetEvent",
    # Event bus
    "ExecutionEventBus",
    "get_event_bus",
    "reset_event_bus",
]
