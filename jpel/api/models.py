# Pydantic models for JPEL Runner API
# Request and response schemas for REST API

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Dict, Any, List


class ApiModel(BaseModel):
    """Responses use the camelCase names of the JSON documents."""

    model_config = ConfigDict(populate_by_name=True)


# ==================== Process Definition Models ====================


class ProcessDefinitionSummary(ApiModel):
    """Response model for a loaded process definition"""
    id: str
    version: str
    name: str
    description: Optional[str] = None
    start: str
    activity_count: int = Field(..., alias="activityCount")


class ProcessDefinitionResponse(ProcessDefinitionSummary):
    """Summary plus the normalized definition document"""
    document: Dict[str, Any]


class ProcessDefinitionListResponse(ApiModel):
    """Response for list of process definitions"""
    processes: List[ProcessDefinitionSummary]
    total: int


# ==================== Process Instance Models ====================


class InstanceCreate(ApiModel):
    """Request model for creating a process instance"""
    title: Optional[str] = Field(None, description="Display title for the instance")
    variables: Optional[Dict[str, Any]] = Field(None, description="Initial process variables")


class RunRequest(ApiModel):
    """Request model for running an instance until it suspends"""
    max_steps: Optional[int] = Field(None, alias="maxSteps", ge=1, description="Step limit")


class CancelRequest(ApiModel):
    reason: Optional[str] = Field(None, description="Reason for cancellation")


class InstanceSummary(ApiModel):
    """Response model for one instance in a listing"""
    instance_id: str = Field(..., alias="instanceId")
    process_id: str = Field(..., alias="processId")
    process_version: str = Field(..., alias="processVersion")
    title: Optional[str] = None
    status: str
    current_activity: Optional[str] = Field(None, alias="currentActivity")
    started_at: str = Field(..., alias="startedAt")
    completed_at: Optional[str] = Field(None, alias="completedAt")
    aggregate_pass_fail: Optional[str] = Field(None, alias="aggregatePassFail")
    rerun_of: Optional[str] = Field(None, alias="rerunOf")


class InstanceListResponse(ApiModel):
    """Response for list of process instances"""
    instances: List[InstanceSummary]
    total: int


class ExecutionResponse(ApiModel):
    """Response model for every engine operation on an instance"""
    success: bool
    instance_id: Optional[str] = Field(None, alias="instanceId")
    process_id: Optional[str] = Field(None, alias="processId")
    status: Optional[str] = None
    message: Optional[str] = None
    current_activity: Optional[str] = Field(None, alias="currentActivity")
    human_task: Optional[Dict[str, Any]] = Field(None, alias="humanTask")
    error_code: Optional[str] = Field(None, alias="errorCode")
    errors: List[str] = Field(default_factory=list)
    executed_activities: List[str] = Field(default_factory=list, alias="executedActivities")
    instance: Optional[Dict[str, Any]] = None


# ==================== Human Task Models ====================


class TaskSubmitRequest(ApiModel):
    """Request model for submitting human task values"""
    values: Dict[str, Any] = Field(default_factory=dict, description="Field values by name")


# ==================== Audit Models ====================


class AuditEvent(ApiModel):
    id: str
    type: str
    sequence: int
    timestamp: str
    details: str
    activity_id: Optional[str] = Field(None, alias="activityId")


class AuditLogResponse(ApiModel):
    """Response model for an instance's audit log"""
    instance_id: str = Field(..., alias="instanceId")
    events: List[AuditEvent]
    total: int


# ==================== System Models ====================


class HealthResponse(ApiModel):
    """Response model for health check"""
    status: str
    version: str
    storage_backend: str = Field(..., alias="storageBackend")
    definitions: int
    instances: int


class ErrorResponse(ApiModel):
    """Response model for errors"""
    detail: str
    error_code: Optional[str] = Field(None, alias="errorCode")
    errors: List[str] = Field(default_factory=list)
