# Core Package for JPEL Runner
# Definition and instance models, references and field validation

from .definitions import (
    Activity,
    ActivityKind,
    ActivityNode,
    CaseActivity,
    ComputeActivity,
    FieldSpec,
    FieldType,
    FlowActivity,
    HumanTaskActivity,
    IfActivity,
    ProcessDefinition,
    RestApiActivity,
    SequenceActivity,
    TerminateActivity,
    WhileActivity,
    parse_definition,
    strip_ref,
)
from .instances import (
    ActivityRunState,
    AggregatePassFail,
    InstanceStatus,
    PassFail,
    ProcessInstance,
    RunStatus,
    aggregate_pass_fail,
)
from .field_validator import ValidationResult, validate_field, validate_fields

__all__ = [
    # Definitions
    "Activity",
    "ActivityKind",
    "ActivityNode",
    "CaseActivity",
    "ComputeActivity",
    "FieldSpec",
    "FieldType",
    "FlowActivity",
    "HumanTaskActivity",
    "IfActivity",
    "ProcessDefinition",
    "RestApiActivity",
    "SequenceActivity",
    "TerminateActivity",
    "WhileActivity",
    "parse_definition",
    "strip_ref",
    # Instances
    "ActivityRunState",
    "AggregatePassFail",
    "InstanceStatus",
    "PassFail",
    "ProcessInstance",
    "RunStatus",
    "aggregate_pass_fail",
    # Validation
    "ValidationResult",
    "validate_field",
    "validate_fields",
]
