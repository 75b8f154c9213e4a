# Tests for Process Definitions
# Parsing, kind aliases and structural validation of JPEL documents

import pytest

from jpel.core.definitions import (
    ActivityKind,
    CaseActivity,
    ComputeActivity,
    FlowActivity,
    HumanTaskActivity,
    ProcessDefinition,
    parse_definition,
)
from jpel.core.exceptions import DefinitionInvalidError, EngineInvariantError


def _document(**activities):
    return {
        "id": "proc",
        "version": 2,
        "name": "Proc",
        "start": "root",
        "activities": activities,
    }


class TestParseDefinition:
    """Tests for parse_definition."""

    def test_ids_are_taken_from_map_keys(self):
        definition = parse_definition(
            _document(
                root={"type": "Sequence", "activities": ["a:first"]},
                first={"type": "Compute", "code": ["x = 1"]},
            )
        )
        assert definition.get_activity("first").id == "first"
        assert definition.activities["root"].activities == ["first"]
        assert definition.version == "2"

    def test_kind_aliases_are_normalized(self):
        definition = parse_definition(
            _document(
                root={"type": "parallel", "activities": ["ask", "calc"]},
                ask={"type": "human", "fields": [{"name": "ok", "type": "Boolean"}]},
                calc={"type": "compute", "script": "x = 1\ny = 2"},
            )
        )
        assert isinstance(definition.activities["root"], FlowActivity)
        assert definition.activities["root"].kind == ActivityKind.FLOW

        ask = definition.activities["ask"]
        assert isinstance(ask, HumanTaskActivity)
        assert ask.inputs[0].type == "boolean"

        calc = definition.activities["calc"]
        assert isinstance(calc, ComputeActivity)
        assert calc.code == ["x = 1", "y = 2"]

    def test_switch_form_case(self):
        definition = parse_definition(
            _document(
                root={
                    "type": "switch",
                    "expression": "level",
                    "cases": {"1": "a:low", "2": "high"},
                    "default": "a:low",
                },
                low={"type": "Compute", "code": []},
                high={"type": "Compute", "code": []},
            )
        )
        case = definition.activities["root"]
        assert isinstance(case, CaseActivity)
        assert case.value_cases == {"1": "low", "2": "high"}
        assert case.child_ids() == ["low", "high", "low"]

    def test_plain_select_options_are_wrapped(self):
        definition = parse_definition(
            _document(
                root={
                    "type": "HumanTask",
                    "inputs": [{"name": "color", "type": "select", "options": ["red", "blue"]}],
                }
            )
        )
        options = definition.activities["root"].inputs[0].options
        assert [option.value for option in options] == ["red", "blue"]

    def test_file_uploads_are_not_kept(self):
        definition = parse_definition(
            _document(
                root={
                    "type": "HumanTask",
                    "inputs": [{"name": "note", "type": "text"}],
                    "fileUploads": [{"name": "receipt", "allowedTypes": ["application/pdf"]}],
                }
            )
        )
        document = definition.to_document()["activities"]["root"]
        assert "fileUploads" not in document
        assert [field["name"] for field in document["inputs"]] == ["note"]

    def test_to_document_uses_json_names(self):
        definition = parse_definition(
            _document(
                root={"type": "If", "condition": "true", "then": "a", "else": "b"},
                a={"type": "Terminate"},
                b={"type": "RestAPI", "url": "http://x", "timeoutSeconds": 3},
            )
        )
        document = definition.to_document()
        assert document["activities"]["root"]["else"] == "b"
        assert document["activities"]["b"]["timeoutSeconds"] == 3
        assert document["activities"]["b"]["method"] == "GET"


class TestDefinitionValidation:
    """Structural checks reject broken documents."""

    def test_missing_start_activity(self):
        with pytest.raises(DefinitionInvalidError) as exc:
            parse_definition(_document(other={"type": "Terminate"}))
        assert "Start activity 'root'" in exc.value.message

    def test_unknown_child_reference(self):
        with pytest.raises(DefinitionInvalidError) as exc:
            parse_definition(_document(root={"type": "Sequence", "activities": ["ghost"]}))
        assert "unknown activity 'ghost'" in exc.value.message

    def test_empty_sequence(self):
        with pytest.raises(DefinitionInvalidError):
            parse_definition(_document(root={"type": "Sequence", "activities": []}))

    def test_unknown_kind(self):
        with pytest.raises(DefinitionInvalidError) as exc:
            parse_definition(_document(root={"type": "Teleport"}))
        assert "Unknown activity type" in exc.value.message

    def test_cycle_is_rejected(self):
        with pytest.raises(DefinitionInvalidError) as exc:
            parse_definition(
                _document(
                    root={"type": "Sequence", "activities": ["loop"]},
                    loop={"type": "While", "condition": "true", "activity": "root"},
                )
            )
        assert "cycle" in exc.value.message

    def test_switch_without_expression(self):
        with pytest.raises(DefinitionInvalidError):
            parse_definition(
                _document(
                    root={"type": "Case", "cases": {"1": "a"}},
                    a={"type": "Terminate"},
                )
            )

    def test_missing_activity_lookup_is_invariant_error(self):
        definition = parse_definition(_document(root={"type": "Terminate"}))
        with pytest.raises(EngineInvariantError):
            definition.get_activity("nope")

    def test_definition_is_frozen(self):
        definition = parse_definition(_document(root={"type": "Terminate"}))
        assert isinstance(definition, ProcessDefinition)
        with pytest.raises(Exception):
            definition.name = "changed"
