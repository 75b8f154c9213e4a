# Exceptions for JPEL Runner
# Domain error taxonomy shared by the engine, executors and API layer

from typing import List, Optional


class JpelError(Exception):
    """Base class for all expected domain errors.

    Each subclass carries a stable ``error_code`` which the engine copies
    into its ``ExecutionResult`` and the HTTP layer maps to a status code.
    """

    error_code = "JPEL_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class DefinitionNotFoundError(JpelError):
    error_code = "DEFINITION_NOT_FOUND"

    def __init__(self, definition_id: str):
        super().__init__(f"Process definition {definition_id} not found")
        self.definition_id = definition_id


class DefinitionInvalidError(JpelError):
    error_code = "DEFINITION_INVALID"


class InstanceNotFoundError(JpelError):
    error_code = "INSTANCE_NOT_FOUND"

    def __init__(self, instance_id: str):
        super().__init__(f"Process instance {instance_id} not found")
        self.instance_id = instance_id


# ==================== Reference Resolution ====================


class UnresolvedReferenceError(JpelError):
    """A scoped reference could not be resolved against an instance."""

    error_code = "UNRESOLVED_REFERENCE"

    def __init__(self, reference: str, message: Optional[str] = None):
        super().__init__(message or f"Unresolved reference: {reference}")
        self.reference = reference


class UnknownScopeError(UnresolvedReferenceError):
    error_code = "UNKNOWN_SCOPE"

    def __init__(self, reference: str, scope: str):
        super().__init__(reference, f"Unknown scope '{scope}' in reference {reference}")
        self.scope = scope


class UnknownActivityError(UnresolvedReferenceError):
    error_code = "UNKNOWN_ACTIVITY"

    def __init__(self, reference: str, activity_id: str):
        super().__init__(
            reference, f"Unknown activity '{activity_id}' in reference {reference}"
        )
        self.activity_id = activity_id


class UnknownVariableError(UnresolvedReferenceError):
    error_code = "UNKNOWN_VARIABLE"

    def __init__(self, reference: str, name: str):
        super().__init__(reference, f"Unknown variable '{name}' in reference {reference}")
        self.name = name


class ExpressionError(JpelError):
    """An expression or script was rejected or raised while evaluating."""

    error_code = "EXPRESSION_ERROR"


# ==================== Execution ====================


class ValidationFailedError(JpelError):
    """Human task submission did not pass field validation."""

    error_code = "VALIDATION_FAILED"

    def __init__(self, activity_id: str, errors: List[str]):
        super().__init__(f"Validation failed for activity {activity_id}")
        self.activity_id = activity_id
        self.errors = list(errors)


class ActivityExecutionError(JpelError):
    """A leaf activity failed: script error, network error or bad template."""

    error_code = "ACTIVITY_EXECUTION_FAILED"

    def __init__(self, activity_id: str, message: str):
        super().__init__(message)
        self.activity_id = activity_id


class InvalidTransitionError(JpelError):
    error_code = "INVALID_TRANSITION"


class EngineInvariantError(RuntimeError):
    """Programming invariant violated; never converted into a result."""
