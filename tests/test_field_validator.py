# Tests for the Field Validator
# Human task field constraints and error messages

import pytest

from jpel.core.definitions import FieldSpec
from jpel.core.field_validator import validate_field, validate_fields


def spec(**kwargs):
    kwargs.setdefault("name", "field")
    return FieldSpec(**kwargs)


class TestRequired:
    def test_missing_required_value(self):
        result = validate_field(spec(name="email", required=True), None)
        assert not result.is_valid
        assert result.errors == ["email is required"]

    def test_empty_string_counts_as_missing(self):
        assert validate_field(spec(required=True), "").errors == ["field is required"]

    def test_optional_empty_value_is_valid(self):
        assert validate_field(spec(type="number", min=1), None).is_valid

    def test_false_is_a_value(self):
        assert validate_field(spec(type="boolean", required=True), False).is_valid


class TestText:
    def test_pattern_with_description(self):
        field = spec(name="code", pattern=r"^[A-Z]{3}$", patternDescription="Three capitals")
        assert validate_field(field, "ABC").is_valid
        assert validate_field(field, "abc").errors == ["code: Three capitals"]

    def test_pattern_without_description(self):
        result = validate_field(spec(name="code", pattern=r"^\d+$"), "x1")
        assert result.errors == ["code: Value must match pattern: ^\\d+$"]

    def test_invalid_pattern(self):
        result = validate_field(spec(name="code", pattern="(unclosed"), "x")
        assert result.errors == ["code: Invalid pattern configuration"]

    def test_length_bounds(self):
        field = spec(name="note", min=3, max=5)
        assert validate_field(field, "ab").errors == ["note must be at least 3 characters long"]
        assert validate_field(field, "abcdef").errors == [
            "note must be no more than 5 characters long"
        ]


class TestNumber:
    def test_accepts_numeric_strings(self):
        assert validate_field(spec(type="number"), "4.5").is_valid

    @pytest.mark.parametrize("value", ["abc", True, "nan"])
    def test_rejects_non_numbers(self, value):
        result = validate_field(spec(name="qty", type="number"), value)
        assert result.errors == ["qty must be a valid number"]

    def test_bounds(self):
        field = spec(name="qty", type="number", min=1, max=10.5)
        assert validate_field(field, 0).errors == ["qty must be at least 1"]
        assert validate_field(field, 11).errors == ["qty must be no more than 10.5"]


class TestOtherTypes:
    def test_boolean(self):
        field = spec(name="ok", type="boolean")
        assert validate_field(field, True).is_valid
        assert validate_field(field, "false").is_valid
        assert validate_field(field, "yes").errors == ["ok must be true or false"]

    def test_select(self):
        field = spec(
            name="color",
            type="select",
            options=["red", {"value": "blue", "label": "Blue"}],
        )
        assert validate_field(field, "blue").is_valid
        assert validate_field(field, "green").errors == ["color must be one of: red, blue"]

    def test_date(self):
        field = spec(name="due", type="date")
        assert validate_field(field, "2024-02-29").is_valid
        assert validate_field(field, "2024-02-29T10:00:00Z").is_valid
        assert validate_field(field, "tomorrow").errors == ["due must be a valid date"]


class TestValidateFields:
    def test_collects_errors_across_fields(self):
        fields = [
            spec(name="name", required=True),
            spec(name="age", type="number", min=18),
            spec(name="notes"),
        ]
        result = validate_fields(fields, {"age": 12})
        assert not result.is_valid
        assert result.errors == ["name is required", "age must be at least 18"]

    def test_values_are_not_mutated(self):
        values = {"age": "20"}
        validate_fields([spec(name="age", type="number")], values)
        assert values == {"age": "20"}
