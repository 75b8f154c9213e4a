# Process Definition API Endpoints
# REST API for loading JPEL process definitions and starting instances

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends

from jpel.api.errors import ApiError, raise_for_failure
from jpel.api.execution import ProcessEngine
from jpel.api.models import (
    ErrorResponse,
    ExecutionResponse,
    InstanceCreate,
    InstanceListResponse,
    ProcessDefinitionListResponse,
    ProcessDefinitionResponse,
    ProcessDefinitionSummary,
)
from jpel.api.service import get_engine
from jpel.core.definitions import ProcessDefinition

router = APIRouter(prefix="/processes", tags=["Process Definitions"])


def summarize(definition: ProcessDefinition) -> Dict[str, Any]:
    return {
        "id": definition.id,
        "version": definition.version,
        "name": definition.name,
        "description": definition.description,
        "start": definition.start,
        "activityCount": len(definition.activities),
    }


def _require_process(engine: ProcessEngine, process_id: str) -> ProcessDefinition:
    definition = engine.get_process(process_id)
    if definition is None:
        raise ApiError(404, f"Process definition {process_id} not found", "DEFINITION_NOT_FOUND")
    return definition


@router.get("", response_model=ProcessDefinitionListResponse)
def list_processes(engine: ProcessEngine = Depends(get_engine)):
    """
    List all process definitions.
    """
    processes = [summarize(definition) for definition in engine.list_processes()]
    return ProcessDefinitionListResponse(processes=processes, total=len(processes))


@router.post(
    "",
    response_model=ProcessDefinitionResponse,
    status_code=201,
    responses={400: {"model": ErrorResponse, "description": "Invalid definition"}},
)
def create_process(
    document: Dict[str, Any] = Body(..., description="JPEL process definition document"),
    engine: ProcessEngine = Depends(get_engine),
):
    """
    Load a process definition.

    The document is validated (references, kinds, cycles) before it is
    stored; loading the same id again replaces the stored definition.
    """
    result = raise_for_failure(engine.load_process(document))
    definition = _require_process(engine, result.process_id)
    return ProcessDefinitionResponse(**summarize(definition), document=definition.to_document())


@router.get(
    "/{process_id}",
    response_model=ProcessDefinitionResponse,
    responses={404: {"model": ErrorResponse, "description": "Process not found"}},
)
def get_process(process_id: str, engine: ProcessEngine = Depends(get_engine)):
    """
    Get a process definition with its normalized document.
    """
    definition = _require_process(engine, process_id)
    return ProcessDefinitionResponse(**summarize(definition), document=definition.to_document())


@router.post(
    "/{process_id}/instances",
    response_model=ExecutionResponse,
    status_code=201,
    responses={404: {"model": ErrorResponse, "description": "Process not found"}},
)
def create_instance(
    process_id: str,
    request: Optional[InstanceCreate] = None,
    engine: ProcessEngine = Depends(get_engine),
):
    """
    Create a pending instance of a process definition.
    """
    request = request or InstanceCreate()
    result = engine.create_instance(process_id, title=request.title, variables=request.variables)
    return ExecutionResponse(**raise_for_failure(result).to_dict())


@router.get(
    "/{process_id}/instances",
    response_model=InstanceListResponse,
    responses={404: {"model": ErrorResponse, "description": "Process not found"}},
)
def list_process_instances(process_id: str, engine: ProcessEngine = Depends(get_engine)):
    """
    List the instances of one process definition, oldest first.
    """
    _require_process(engine, process_id)
    instances = [instance.to_record() for instance in engine.list_instances(process_id)]
    return InstanceListResponse(instances=instances, total=len(instances))
