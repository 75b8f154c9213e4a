# Process Instance API Endpoints
# REST API for stepping, navigating and cancelling process instances

from typing import Optional

from fastapi import APIRouter, Depends, Query

from jpel.api.errors import raise_for_failure
from jpel.api.execution import ProcessEngine
from jpel.api.models import (
    AuditLogResponse,
    CancelRequest,
    ErrorResponse,
    ExecutionResponse,
    InstanceListResponse,
    RunRequest,
)
from jpel.api.service import get_audit, get_engine

router = APIRouter(prefix="/instances", tags=["Process Instances"])

NOT_FOUND = {404: {"model": ErrorResponse, "description": "Instance not found"}}
TRANSITION = {
    404: {"model": ErrorResponse, "description": "Instance not found"},
    409: {"model": ErrorResponse, "description": "Instance already finished"},
}


def _respond(result) -> ExecutionResponse:
    return ExecutionResponse(**raise_for_failure(result).to_dict())


@router.get("", response_model=InstanceListResponse)
def list_instances(
    process_id: Optional[str] = Query(None, alias="processId", description="Filter by process"),
    status: Optional[str] = Query(None, description="Filter by status"),
    engine: ProcessEngine = Depends(get_engine),
):
    """
    List process instances, oldest first.
    """
    instances = [instance.to_record() for instance in engine.list_instances(process_id)]
    if status:
        instances = [record for record in instances if record["status"] == status]
    return InstanceListResponse(instances=instances, total=len(instances))


@router.get("/{instance_id}", response_model=ExecutionResponse, responses=NOT_FOUND)
def get_instance(instance_id: str, engine: ProcessEngine = Depends(get_engine)):
    """
    Get the snapshot of a process instance.
    """
    return _respond(engine.get_instance(instance_id))


@router.post("/{instance_id}/step", response_model=ExecutionResponse, responses=TRANSITION)
def step_instance(instance_id: str, engine: ProcessEngine = Depends(get_engine)):
    """
    Advance the instance by one unit of work.

    Activity failures are reported through the instance status, not as
    HTTP errors.
    """
    return _respond(engine.step(instance_id))


@router.post("/{instance_id}/run", response_model=ExecutionResponse, responses=TRANSITION)
def run_instance(
    instance_id: str,
    request: Optional[RunRequest] = None,
    engine: ProcessEngine = Depends(get_engine),
):
    """
    Step the instance until it finishes or waits for human input.
    """
    max_steps = request.max_steps if request else None
    return _respond(engine.run(instance_id, max_steps=max_steps))


@router.post("/{instance_id}/navigate/start", response_model=ExecutionResponse, responses=NOT_FOUND)
def navigate_to_start(instance_id: str, engine: ProcessEngine = Depends(get_engine)):
    """
    Move the focus back to the start; run states and variables are kept.
    """
    return _respond(engine.navigate_to_start(instance_id))


@router.post(
    "/{instance_id}/navigate/next-pending", response_model=ExecutionResponse, responses=NOT_FOUND
)
def navigate_to_next_pending(instance_id: str, engine: ProcessEngine = Depends(get_engine)):
    """
    Move the focus to the first activity that has not finished.
    """
    return _respond(engine.navigate_to_next_pending(instance_id))


@router.post(
    "/{instance_id}/rerun", response_model=ExecutionResponse, status_code=201, responses=NOT_FOUND
)
def rerun_instance(instance_id: str, engine: ProcessEngine = Depends(get_engine)):
    """
    Start a new instance of the same process; the original is left as is.
    """
    return _respond(engine.rerun(instance_id))


@router.post("/{instance_id}/cancel", response_model=ExecutionResponse, responses=TRANSITION)
def cancel_instance(
    instance_id: str,
    request: Optional[CancelRequest] = None,
    engine: ProcessEngine = Depends(get_engine),
):
    """
    Cancel a process instance; unfinished activities end as cancelled.
    """
    return _respond(engine.cancel(instance_id, reason=request.reason if request else None))


@router.get("/{instance_id}/audit", response_model=AuditLogResponse, responses=NOT_FOUND)
def get_audit_log(
    instance_id: str,
    event_type: Optional[str] = Query(None, alias="eventType", description="Filter by event type"),
    limit: Optional[int] = Query(None, ge=1, description="Maximum number of events"),
    engine: ProcessEngine = Depends(get_engine),
):
    """
    Get the execution history of an instance.
    """
    raise_for_failure(engine.get_instance(instance_id))
    events = get_audit().get_instance_audit_log(instance_id, event_type=event_type, limit=limit)
    return AuditLogResponse(instance_id=instance_id, events=events, total=len(events))
