# API Errors for JPEL Runner
# Maps engine error codes onto HTTP status codes

from typing import Dict, List, Optional

from jpel.api.execution import ExecutionResult

STATUS_BY_ERROR_CODE: Dict[str, int] = {
    "DEFINITION_NOT_FOUND": 404,
    "INSTANCE_NOT_FOUND": 404,
    "INVALID_TRANSITION": 409,
    "VALIDATION_FAILED": 422,
    "DEFINITION_INVALID": 400,
}


def status_for(error_code: Optional[str]) -> int:
    return STATUS_BY_ERROR_CODE.get(error_code or "", 400)


class ApiError(Exception):
    """Raised by routers; rendered as an ErrorResponse by the app."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        errors: Optional[List[str]] = None,
    ):
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail
        self.error_code = error_code
        self.errors = errors or []


def raise_for_failure(result: ExecutionResult) -> ExecutionResult:
    """Turn an unsuccessful engine result into an ApiError."""
    if result.success:
        return result
    raise ApiError(
        status_for(result.error_code),
        result.message or "Operation failed",
        error_code=result.error_code,
        errors=result.errors,
    )
