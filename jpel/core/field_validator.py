# Field Validator for JPEL Runner
# Validates human task submissions against declared field constraints

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Mapping

from .definitions import FieldSpec, FieldType


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)


def _is_empty(value: Any) -> bool:
    return value is None or value == ""


def _fmt(number: float) -> str:
    """Render a bound without a trailing .0 for whole numbers."""
    return str(int(number)) if float(number).is_integer() else str(number)


def validate_field(spec: FieldSpec, value: Any) -> ValidationResult:
    """
    Validate a single submitted value.

    Args:
        spec: Field specification from the human task definition
        value: Submitted value (None when absent)

    Returns:
        ValidationResult with errors prefixed by the field name
    """
    if _is_empty(value):
        if spec.required:
            return ValidationResult(False, [f"{spec.name} is required"])
        return ValidationResult(True, [])

    errors: List[str] = []
    checker = _CHECKS.get(spec.type)
    if checker is not None:
        checker(spec, value, errors)
    return ValidationResult(not errors, errors)


def validate_fields(specs: Iterable[FieldSpec], values: Mapping[str, Any]) -> ValidationResult:
    """Validate a whole submission; invalid if any field is invalid."""
    errors: List[str] = []
    for spec in specs:
        result = validate_field(spec, values.get(spec.name))
        errors.extend(result.errors)
    return ValidationResult(not errors, errors)


# ==================== Type Checks ====================


def _check_text(spec: FieldSpec, value: Any, errors: List[str]) -> None:
    text = str(value)

    if spec.pattern:
        try:
            matched = re.search(spec.pattern, text) is not None
        except re.error:
            errors.append(f"{spec.name}: Invalid pattern configuration")
        else:
            if not matched:
                description = spec.pattern_description or f"Value must match pattern: {spec.pattern}"
                errors.append(f"{spec.name}: {description}")

    if spec.min is not None and len(text) < spec.min:
        errors.append(f"{spec.name} must be at least {_fmt(spec.min)} characters long")
    if spec.max is not None and len(text) > spec.max:
        errors.append(f"{spec.name} must be no more than {_fmt(spec.max)} characters long")


def _check_number(spec: FieldSpec, value: Any, errors: List[str]) -> None:
    if isinstance(value, bool):
        errors.append(f"{spec.name} must be a valid number")
        return
    try:
        number = float(value)
    except (TypeError, ValueError):
        errors.append(f"{spec.name} must be a valid number")
        return
    if number != number:
        errors.append(f"{spec.name} must be a valid number")
        return

    if spec.min is not None and number < spec.min:
        errors.append(f"{spec.name} must be at least {_fmt(spec.min)}")
    if spec.max is not None and number > spec.max:
        errors.append(f"{spec.name} must be no more than {_fmt(spec.max)}")


def _check_boolean(spec: FieldSpec, value: Any, errors: List[str]) -> None:
    if not isinstance(value, bool) and value not in ("true", "false"):
        errors.append(f"{spec.name} must be true or false")


def _check_select(spec: FieldSpec, value: Any, errors: List[str]) -> None:
    if not spec.options:
        return
    allowed = [str(option.value) for option in spec.options]
    if str(value) not in allowed:
        errors.append(f"{spec.name} must be one of: {', '.join(allowed)}")


def _check_date(spec: FieldSpec, value: Any, errors: List[str]) -> None:
    if isinstance(value, (date, datetime)):
        return
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        datetime.fromisoformat(text)
    except ValueError:
        errors.append(f"{spec.name} must be a valid date")


_CHECKS: Dict[str, Any] = {
    FieldType.TEXT.value: _check_text,
    FieldType.NUMBER.value: _check_number,
    FieldType.BOOLEAN.value: _check_boolean,
    FieldType.SELECT.value: _check_select,
    FieldType.DATE.value: _check_date,
}
