# Human Task API Endpoints
# REST API for presenting and submitting human tasks

from fastapi import APIRouter, Depends

from jpel.api.errors import raise_for_failure
from jpel.api.execution import ProcessEngine
from jpel.api.models import ErrorResponse, ExecutionResponse, TaskSubmitRequest
from jpel.api.service import get_engine

router = APIRouter(prefix="/instances", tags=["Human Tasks"])


@router.get(
    "/{instance_id}/current-task",
    response_model=ExecutionResponse,
    responses={404: {"model": ErrorResponse, "description": "Instance not found"}},
)
def get_current_task(instance_id: str, engine: ProcessEngine = Depends(get_engine)):
    """
    Get the human task awaiting input, with its fields and current values.

    ``humanTask`` is null when nothing is waiting for input.
    """
    return ExecutionResponse(**raise_for_failure(engine.get_current_task(instance_id)).to_dict())


@router.post(
    "/{instance_id}/activities/{activity_id}/submit",
    response_model=ExecutionResponse,
    responses={
        404: {"model": ErrorResponse, "description": "Instance not found"},
        409: {"model": ErrorResponse, "description": "Task is not awaiting input"},
        422: {"model": ErrorResponse, "description": "Submitted values are invalid"},
    },
)
def submit_task(
    instance_id: str,
    activity_id: str,
    request: TaskSubmitRequest,
    engine: ProcessEngine = Depends(get_engine),
):
    """
    Submit values for a human task.

    Invalid values leave the task waiting and return 422 with one message
    per problem.
    """
    result = engine.submit_task(instance_id, activity_id, request.values)
    return ExecutionResponse(**raise_for_failure(result).to_dict())
