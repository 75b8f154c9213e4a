# JPEL Runner - process orchestration engine for JSON process definitions
# Core package initialization

from .core import (
    ActivityKind,
    ProcessDefinition,
    ProcessInstance,
    InstanceStatus,
    RunStatus,
)

__all__ = [
    "ActivityKind",
    "ProcessDefinition",
    "ProcessInstance",
    "InstanceStatus",
    "RunStatus",
]

__version__ = "1.0.0"
