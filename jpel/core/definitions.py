# Process Definitions for JPEL Runner
# Immutable, pydantic-validated model of a JPEL process document

import logging
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .exceptions import DefinitionInvalidError, EngineInvariantError

logger = logging.getLogger(__name__)


class ActivityKind(str, Enum):
    """Closed set of activity kinds understood by the engine."""

    SEQUENCE = "Sequence"
    FLOW = "Flow"
    IF = "If"
    CASE = "Case"
    WHILE = "While"
    HUMAN_TASK = "HumanTask"
    COMPUTE = "Compute"
    REST_API = "RestAPI"
    TERMINATE = "Terminate"


COMPOUND_KINDS = frozenset(
    [
        ActivityKind.SEQUENCE,
        ActivityKind.FLOW,
        ActivityKind.IF,
        ActivityKind.CASE,
        ActivityKind.WHILE,
    ]
)

# Lower-cased type names accepted in documents, including the short names
# used by earlier JPEL runners.
KIND_ALIASES: Dict[str, ActivityKind] = {
    "sequence": ActivityKind.SEQUENCE,
    "flow": ActivityKind.FLOW,
    "parallel": ActivityKind.FLOW,
    "if": ActivityKind.IF,
    "branch": ActivityKind.IF,
    "case": ActivityKind.CASE,
    "switch": ActivityKind.CASE,
    "while": ActivityKind.WHILE,
    "humantask": ActivityKind.HUMAN_TASK,
    "human": ActivityKind.HUMAN_TASK,
    "compute": ActivityKind.COMPUTE,
    "restapi": ActivityKind.REST_API,
    "api": ActivityKind.REST_API,
    "terminate": ActivityKind.TERMINATE,
}


class FieldType(str, Enum):
    TEXT = "text"
    NUMBER = "number"
    BOOLEAN = "boolean"
    SELECT = "select"
    DATE = "date"


def strip_ref(ref: Optional[str]) -> Optional[str]:
    """Turn an activity reference (``a:review`` or ``review``) into its id."""
    if ref is None:
        return None
    ref = str(ref).strip()
    return ref[2:] if ref.startswith("a:") else ref


def normalize_kind(type_name: Any) -> ActivityKind:
    if isinstance(type_name, ActivityKind):
        return type_name
    kind = KIND_ALIASES.get(str(type_name).strip().lower())
    if kind is None:
        raise ValueError(f"Unknown activity type: {type_name}")
    return kind


class JpelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_document(self) -> Dict[str, Any]:
        """Dump using the camelCase names of the JSON document."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# ==================== Fields and Variables ====================


class FieldOption(JpelModel):
    value: Union[str, int, float, bool]
    label: Optional[str] = None


class FieldSpec(JpelModel):
    """Human task input field as exchanged with the presentation layer."""

    name: str
    type: str = FieldType.TEXT.value
    label: Optional[str] = None
    hint: Optional[str] = None
    placeholder: Optional[str] = None
    description: Optional[str] = None
    required: bool = False
    pattern: Optional[str] = None
    pattern_description: Optional[str] = Field(None, alias="patternDescription")
    min: Optional[float] = None
    max: Optional[float] = None
    units: Optional[str] = None
    options: Optional[List[FieldOption]] = None
    value: Any = None
    default_value: Any = Field(None, alias="defaultValue")

    @field_validator("type", mode="before")
    @classmethod
    def _lower_type(cls, value: Any) -> str:
        return str(value).strip().lower() if value is not None else FieldType.TEXT.value

    @field_validator("options", mode="before")
    @classmethod
    def _wrap_plain_options(cls, value: Any) -> Any:
        if value is None:
            return None
        wrapped = []
        for option in value:
            if isinstance(option, dict) or isinstance(option, FieldOption):
                wrapped.append(option)
            else:
                wrapped.append({"value": option, "label": str(option)})
        return wrapped

    def initial_value(self) -> Any:
        return self.value if self.value is not None else self.default_value


class VariableSpec(JpelModel):
    """Declared process or activity variable with an optional default."""

    name: str
    type: Optional[str] = None
    description: Optional[str] = None
    value: Any = None
    default_value: Any = Field(None, alias="defaultValue")

    def initial_value(self) -> Any:
        return self.value if self.value is not None else self.default_value


def _variables_from_mapping(value: Any) -> Any:
    """Accept ``{"name": default}`` as shorthand for a variable list."""
    if isinstance(value, dict):
        return [{"name": name, "defaultValue": default} for name, default in value.items()]
    return value if value is not None else []


# ==================== Activity Nodes ====================


class ActivityNode(JpelModel):
    """Fields common to every activity kind."""

    id: str = ""
    name: Optional[str] = None
    description: Optional[str] = None
    timeout: Optional[float] = None
    required: bool = True
    variables: List[VariableSpec] = Field(default_factory=list)

    @field_validator("variables", mode="before")
    @classmethod
    def _normalize_variables(cls, value: Any) -> Any:
        return _variables_from_mapping(value)

    @property
    def kind(self) -> ActivityKind:
        return ActivityKind(self.type)

    def child_ids(self) -> List[str]:
        """Activity ids this node can activate, in canonical order."""
        return []

    @property
    def label(self) -> str:
        return self.name or self.id


class SequenceActivity(ActivityNode):
    type: Literal["Sequence"] = "Sequence"
    activities: List[str]
    catch: Optional[str] = None

    @field_validator("activities", mode="before")
    @classmethod
    def _strip_children(cls, value: Any) -> Any:
        return [strip_ref(ref) for ref in value] if isinstance(value, list) else value

    @field_validator("catch", mode="before")
    @classmethod
    def _strip_catch(cls, value: Any) -> Any:
        return strip_ref(value)

    def child_ids(self) -> List[str]:
        return list(self.activities) + ([self.catch] if self.catch else [])


class FlowActivity(SequenceActivity):
    type: Literal["Flow"] = "Flow"


class IfActivity(ActivityNode):
    type: Literal["If"] = "If"
    condition: str
    then: str
    else_: Optional[str] = Field(None, alias="else")

    @field_validator("then", "else_", mode="before")
    @classmethod
    def _strip_branches(cls, value: Any) -> Any:
        return strip_ref(value)

    def child_ids(self) -> List[str]:
        return [self.then] + ([self.else_] if self.else_ else [])


class CaseBranch(JpelModel):
    condition: str
    activity: str

    @field_validator("activity", mode="before")
    @classmethod
    def _strip_activity(cls, value: Any) -> Any:
        return strip_ref(value)


class CaseActivity(ActivityNode):
    """Ordered conditional cases, or a switch on ``expression`` value."""

    type: Literal["Case"] = "Case"
    cases: List[CaseBranch] = Field(default_factory=list)
    expression: Optional[str] = None
    value_cases: Dict[str, str] = Field(default_factory=dict, alias="valueCases")
    default: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _split_switch_form(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("cases"), dict):
            data = dict(data)
            data["valueCases"] = {
                str(key): strip_ref(ref) for key, ref in data.pop("cases").items()
            }
        return data

    @field_validator("default", mode="before")
    @classmethod
    def _strip_default(cls, value: Any) -> Any:
        return strip_ref(value)

    @model_validator(mode="after")
    def _require_expression_for_switch(self) -> "CaseActivity":
        if self.value_cases and not self.expression:
            raise ValueError(f"Case {self.id or '?'} maps values but has no expression")
        return self

    def child_ids(self) -> List[str]:
        ids = [branch.activity for branch in self.cases]
        ids.extend(self.value_cases.values())
        if self.default:
            ids.append(self.default)
        return ids


class WhileActivity(ActivityNode):
    type: Literal["While"] = "While"
    condition: str
    activity: str
    max_iterations: Optional[int] = Field(None, alias="maxIterations")

    @field_validator("activity", mode="before")
    @classmethod
    def _strip_body(cls, value: Any) -> Any:
        return strip_ref(value)

    def child_ids(self) -> List[str]:
        return [self.activity]


class HumanTaskActivity(ActivityNode):
    type: Literal["HumanTask"] = "HumanTask"
    prompt: Optional[str] = None
    inputs: List[FieldSpec] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _accept_fields_key(cls, data: Any) -> Any:
        if isinstance(data, dict) and "inputs" not in data and "fields" in data:
            data = dict(data)
            data["inputs"] = data.pop("fields")
        return data


def _code_lines(value: Any) -> Any:
    if isinstance(value, str):
        return value.splitlines()
    return value if value is not None else []


class ComputeActivity(ActivityNode):
    type: Literal["Compute"] = "Compute"
    code: List[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _accept_script_key(cls, data: Any) -> Any:
        if isinstance(data, dict) and "code" not in data and "script" in data:
            data = dict(data)
            data["code"] = data.pop("script")
        return data

    @field_validator("code", mode="before")
    @classmethod
    def _split_code(cls, value: Any) -> Any:
        return _code_lines(value)


class RestApiActivity(ActivityNode):
    type: Literal["RestAPI"] = "RestAPI"
    method: str = "GET"
    url: str
    headers: Dict[str, Any] = Field(default_factory=dict)
    query_params: Dict[str, Any] = Field(default_factory=dict, alias="queryParams")
    body: Any = None
    timeout_seconds: Optional[float] = Field(None, alias="timeoutSeconds")
    code: List[str] = Field(default_factory=list)

    @field_validator("code", mode="before")
    @classmethod
    def _split_code(cls, value: Any) -> Any:
        return _code_lines(value)

    @field_validator("method", mode="before")
    @classmethod
    def _upper_method(cls, value: Any) -> str:
        return str(value or "GET").upper()


class TerminateActivity(ActivityNode):
    type: Literal["Terminate"] = "Terminate"
    reason: Optional[str] = None
    result: Literal["success", "failure"] = "success"


Activity = Annotated[
    Union[
        SequenceActivity,
        FlowActivity,
        IfActivity,
        CaseActivity,
        WhileActivity,
        HumanTaskActivity,
        ComputeActivity,
        RestApiActivity,
        TerminateActivity,
    ],
    Field(discriminator="type"),
]


# ==================== Process Definition ====================


class ProcessDefinition(JpelModel):
    """Immutable process template shared by all of its instances."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    id: str
    version: str = "1.0.0"
    name: str = ""
    description: Optional[str] = None
    variables: List[VariableSpec] = Field(default_factory=list)
    start: str
    activities: Dict[str, Activity]

    @field_validator("variables", mode="before")
    @classmethod
    def _normalize_variables(cls, value: Any) -> Any:
        return _variables_from_mapping(value)

    @field_validator("version", mode="before")
    @classmethod
    def _version_as_string(cls, value: Any) -> str:
        return "1.0.0" if value is None else str(value)

    @field_validator("start", mode="before")
    @classmethod
    def _strip_start(cls, value: Any) -> Any:
        return strip_ref(value)

    @field_validator("activities", mode="before")
    @classmethod
    def _normalize_activities(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        normalized = {}
        for key, node in value.items():
            if isinstance(node, dict):
                node = dict(node)
                node.setdefault("id", key)
                if not node.get("id"):
                    node["id"] = key
                node["type"] = normalize_kind(node.get("type")).value
            normalized[key] = node
        return normalized

    @model_validator(mode="after")
    def _check_references(self) -> "ProcessDefinition":
        if self.start not in self.activities:
            raise ValueError(f"Start activity '{self.start}' is not defined")

        for key, node in self.activities.items():
            if node.id != key:
                raise ValueError(f"Activity key '{key}' does not match its id '{node.id}'")
            if isinstance(node, SequenceActivity) and not node.activities:
                raise ValueError(f"{node.type} '{key}' must contain at least one activity")
            for child_id in node.child_ids():
                if child_id not in self.activities:
                    raise ValueError(f"Activity '{key}' references unknown activity '{child_id}'")

        self._check_acyclic()
        return self

    def _check_acyclic(self) -> None:
        """Reject definitions where an activity (indirectly) contains itself."""
        done = set()

        def visit(activity_id: str, path: List[str]) -> None:
            if activity_id in path:
                cycle = " -> ".join(path + [activity_id])
                raise ValueError(f"Activity nesting contains a cycle: {cycle}")
            if activity_id in done:
                return
            for child_id in self.activities[activity_id].child_ids():
                visit(child_id, path + [activity_id])
            done.add(activity_id)

        for activity_id in self.activities:
            visit(activity_id, [])

    def get_activity(self, activity_id: str) -> ActivityNode:
        """Look up an activity; a miss here is an engine invariant violation."""
        node = self.activities.get(activity_id)
        if node is None:
            raise EngineInvariantError(
                f"Activity '{activity_id}' does not exist in process {self.id}"
            )
        return node

    def parents(self) -> Dict[str, str]:
        """Map each child activity id to the compound activity containing it."""
        parents = {}
        for node in self.activities.values():
            for child_id in node.child_ids():
                parents.setdefault(child_id, node.id)
        return parents


def parse_definition(data: Any) -> ProcessDefinition:
    """Validate a raw document and return the definition model.

    Args:
        data: Parsed JSON document or an existing ProcessDefinition

    Returns:
        The validated ProcessDefinition

    Raises:
        DefinitionInvalidError: If the document is malformed or refers to
            activities it does not define
    """
    if isinstance(data, ProcessDefinition):
        return data
    try:
        return ProcessDefinition.model_validate(data)
    except ValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'definition'}: {err['msg']}"
            for err in e.errors()
        )
        logger.warning(f"Rejected process definition: {details}")
        raise DefinitionInvalidError(f"Invalid process definition: {details}")
