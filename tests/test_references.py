# Tests for the Reference Resolver
# Scoped references, condition evaluation and template rendering

from datetime import datetime, timezone

import pytest

from jpel.core.exceptions import (
    ExpressionError,
    UnknownActivityError,
    UnknownScopeError,
    UnknownVariableError,
    UnresolvedReferenceError,
)
from jpel.core.definitions import ActivityKind
from jpel.core.instances import ActivityRunState, PassFail, ProcessInstance, RunStatus
from jpel.core.references import evaluate, evaluate_condition, render_template, resolve


@pytest.fixture
def instance():
    review = ActivityRunState(
        type=ActivityKind.HUMAN_TASK,
        status=RunStatus.COMPLETED,
        pass_fail=PassFail.PASS,
        variables={"score": 7, "comment": "fine", "approved": True},
    )
    fetch = ActivityRunState(
        type=ActivityKind.REST_API,
        variables={"response": {"status": 200, "data": {"items": [{"id": "a1"}]}}},
    )
    return ProcessInstance(
        instance_id="inst-1",
        process_id="proc",
        root="root",
        started_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        variables={"count": 3, "customer": {"name": "Ada"}, "flag": False},
        activities={"review": review, "fetch": fetch},
    )


class TestResolve:
    """Tests for resolve()."""

    def test_process_reference(self, instance):
        assert resolve("$Process.count", instance) == 3
        assert resolve("process.count", instance) == 3
        assert resolve("count", instance) == 3

    def test_nested_path(self, instance):
        assert resolve("$Process.customer.name", instance) == "Ada"
        assert resolve("customer.name", instance) == "Ada"
        assert resolve("a:fetch.response.data.items.0.id", instance) == "a1"

    def test_activity_reference_forms(self, instance):
        assert resolve("$Activity['review'].score", instance) == 7
        assert resolve('$Activity["review"].comment', instance) == "fine"
        assert resolve("a:review.v:score", instance) == 7
        assert resolve("a:review.f:comment", instance) == "fine"

    def test_activity_properties(self, instance):
        assert resolve("a:review.status", instance) == "completed"
        assert resolve("a:review.passFail", instance) == "pass"
        assert resolve("a:fetch.status", instance) == "pending"

    def test_unknown_scope(self, instance):
        with pytest.raises(UnknownScopeError) as exc:
            resolve("$Tenant.name", instance)
        assert exc.value.scope == "Tenant"

    def test_unknown_activity(self, instance):
        with pytest.raises(UnknownActivityError) as exc:
            resolve("$Activity['ghost'].x", instance)
        assert exc.value.activity_id == "ghost"

    def test_unknown_variable(self, instance):
        with pytest.raises(UnknownVariableError) as exc:
            resolve("$Process.missing", instance)
        assert exc.value.name == "missing"
        assert isinstance(exc.value, UnresolvedReferenceError)


class TestEvaluate:
    """Tests for evaluate() and evaluate_condition()."""

    def test_simple_comparisons(self, instance):
        assert evaluate_condition("$Process.count > 2", instance) is True
        assert evaluate_condition("count === 3 && !flag", instance) is True
        assert evaluate_condition("a:review.v:score >= 8 || false", instance) is False

    def test_activity_status_in_condition(self, instance):
        assert evaluate_condition("a:review.passFail == 'pass'", instance) is True

    def test_builtins_available(self, instance):
        assert evaluate("len(customer.name) + max(1, count)", instance) == 6

    def test_unset_variable_raises(self, instance):
        with pytest.raises(UnknownVariableError):
            evaluate_condition("missing > 1", instance)

    def test_unset_process_reference_raises(self, instance):
        with pytest.raises(UnknownVariableError):
            evaluate_condition("$Process.missing == 1", instance)

    def test_unknown_scope_in_condition(self, instance):
        with pytest.raises(UnknownScopeError):
            evaluate_condition("$Nope.x == 1", instance)

    def test_imports_rejected(self, instance):
        with pytest.raises(ExpressionError):
            evaluate("__import__('os')", instance)

    def test_forbidden_calls_rejected(self, instance):
        with pytest.raises(ExpressionError):
            evaluate("open('/etc/passwd')", instance)

    def test_runtime_error_is_expression_error(self, instance):
        with pytest.raises(ExpressionError):
            evaluate("count / 0", instance)

    def test_evaluation_does_not_mutate(self, instance):
        before = instance.to_record()
        evaluate("customer.name.upper()", instance)
        assert instance.to_record() == before

    def test_string_literals_are_not_rewritten(self, instance):
        assert evaluate("'ok!' + \" && \" + 'a:review.v:score'", instance) == "ok! && a:review.v:score"
        assert evaluate("'$USD price'", instance) == "$USD price"
        assert evaluate_condition("a:review.v:comment != 'fine!' && !flag", instance) is True

    def test_activity_selector_beside_string_literal(self, instance):
        assert evaluate("$Activity['review'].comment + '!'", instance) == "fine!"


class TestRenderTemplate:
    """Tests for render_template()."""

    def test_whole_token_keeps_type(self, instance):
        assert render_template("${$Process.count}", instance) == 3
        assert render_template({"body": "${customer}"}, instance) == {"body": {"name": "Ada"}}

    def test_inline_tokens(self, instance):
        text = render_template("https://api/${count}/items?who=${$Process.customer.name}", instance)
        assert text == "https://api/3/items?who=Ada"

    def test_compact_and_explicit_inline(self, instance):
        assert render_template("score=a:review.v:score", instance) == "score=7"
        assert render_template("n=$Process.count", instance) == "n=3"

    def test_unresolved_template_token_raises(self, instance):
        with pytest.raises(UnresolvedReferenceError):
            render_template("x=${missing}", instance)

    def test_unresolved_compact_token_is_kept(self, instance):
        assert render_template("v=a:ghost.v:x", instance) == "v=a:ghost.v:x"

    def test_env_substitution(self, instance, monkeypatch):
        monkeypatch.setenv("JPEL_TEST_TOKEN", "secret")
        monkeypatch.delenv("JPEL_UNSET_TOKEN", raising=False)
        headers = render_template(
            {"Authorization": "Bearer env:JPEL_TEST_TOKEN", "X-Other": "env:JPEL_UNSET_TOKEN"},
            instance,
        )
        assert headers == {"Authorization": "Bearer secret", "X-Other": "env:JPEL_UNSET_TOKEN"}

    def test_non_strings_pass_through(self, instance):
        assert render_template([1, None, True], instance) == [1, None, True]
