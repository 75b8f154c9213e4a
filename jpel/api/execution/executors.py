# Activity Executors for JPEL Runner
# One execution strategy per activity kind, dispatched by ActivityKind

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Tuple

import requests

from jpel.api.events import HumanTaskCreatedEvent, HumanTaskSubmittedEvent, TerminateTriggeredEvent
from jpel.core.definitions import (
    ActivityKind,
    ActivityNode,
    CaseActivity,
    ComputeActivity,
    FieldSpec,
    FieldType,
    FlowActivity,
    HumanTaskActivity,
    IfActivity,
    RestApiActivity,
    SequenceActivity,
    TerminateActivity,
    WhileActivity,
)
from jpel.core.exceptions import JpelError, ValidationFailedError
from jpel.core.field_validator import validate_fields
from jpel.core.instances import ActivityRunState, PassFail, ProcessInstance, RunStatus
from jpel.core.references import evaluate, evaluate_condition, render_template

if TYPE_CHECKING:
    from .context import ExecutionContext
    from .script_runner import ScriptResult

logger = logging.getLogger(__name__)


@dataclass
class Termination:
    """Set when a Terminate activity ends the whole instance."""

    activity_id: str
    reason: Optional[str]
    result: str


def _child_outcome(ctx: "ExecutionContext", child_id: str) -> Optional[ActivityRunState]:
    """Advance a child if the leaf budget allows; return it once terminal.

    Returns None while the child is still pending or running.
    """
    child = ctx.instance.run_state(child_id)
    if not child.is_terminal and not ctx.executed:
        ctx.advance(child_id)
    if ctx.halted or not child.is_terminal:
        return None
    return child


def _is_contained(ctx: "ExecutionContext", child_id: str, child: ActivityRunState) -> bool:
    """A finished child does not fail its parent if it completed or is optional."""
    if child.status == RunStatus.COMPLETED:
        return True
    if not ctx.definition.get_activity(child_id).required:
        logger.warning(f"Optional activity {child_id} ended {child.status.value}; continuing")
        return True
    return False


def _child_error(child_id: str, child: ActivityRunState) -> str:
    return f"Activity '{child_id}' {child.status.value}: {child.error or 'no details'}"


def _apply_script_result(
    ctx: "ExecutionContext", node: ActivityNode, state: ActivityRunState, result: "ScriptResult"
) -> Optional[str]:
    """Write script output into the instance; returns an error message if invalid."""
    if result.pass_fail is not None:
        try:
            state.pass_fail = PassFail(str(result.pass_fail).lower())
        except ValueError:
            return f"passFail must be 'pass' or 'fail', got {result.pass_fail!r}"

    for name, value in result.process_updates.items():
        ctx.set_process_variable(name, value)
    for activity_id, updates in result.activity_updates.items():
        for name, value in updates.items():
            ctx.set_activity_variable(activity_id, name, value)
    return None


# ==================== Compound Activities ====================


def _advance_catch(node: SequenceActivity, state: ActivityRunState, ctx: "ExecutionContext") -> None:
    """Run the catch path of a failed Sequence or Flow."""
    handler = _child_outcome(ctx, node.catch)
    if handler is None:
        return
    if handler.status == RunStatus.COMPLETED:
        ctx.complete(node, state)
    else:
        ctx.fail(node, state, f"{state.error}; catch failed: {_child_error(node.catch, handler)}")


class SequenceExecutor:
    """Runs children strictly in declared order, with an optional catch path."""

    def advance(self, node: SequenceActivity, state: ActivityRunState, ctx: "ExecutionContext") -> None:
        ctx.start(node, state)

        while not ctx.halted:
            if state.in_catch:
                _advance_catch(node, state, ctx)
                return

            if state.index >= len(node.activities):
                ctx.complete(node, state)
                return

            child_id = node.activities[state.index]
            child = _child_outcome(ctx, child_id)
            if child is None:
                return

            if _is_contained(ctx, child_id, child):
                state.index += 1
                continue

            error = _child_error(child_id, child)
            if node.catch:
                logger.info(f"Sequence {node.id} handling failure in catch {node.catch}: {error}")
                state.error = error
                state.in_catch = True
                state.branch = node.catch
                continue

            ctx.fail(node, state, error)
            return


class FlowExecutor:
    """
    Runs all children as concurrent branches.

    Each step advances every unfinished branch by one unit, in declared
    order. A failed required branch fails the Flow only once all sibling
    branches have reached a terminal state.
    """

    def advance(self, node: FlowActivity, state: ActivityRunState, ctx: "ExecutionContext") -> None:
        ctx.start(node, state)

        if state.in_catch:
            _advance_catch(node, state, ctx)
            return

        if not state.active:
            state.active = list(node.activities)
            logger.debug(f"Flow {node.id} dispatched branches {state.active}")

        if not ctx.executed:
            ran_any = False
            for child_id in node.activities:
                if ctx.halted:
                    return
                if ctx.instance.run_state(child_id).is_terminal:
                    continue
                ctx.executed = False
                ctx.advance(child_id)
                ran_any = ran_any or ctx.executed
            ctx.executed = ran_any

        if ctx.halted:
            return

        children = {child_id: ctx.instance.run_state(child_id) for child_id in node.activities}
        if not all(child.is_terminal for child in children.values()):
            return

        failures = [
            _child_error(child_id, child)
            for child_id, child in children.items()
            if not _is_contained(ctx, child_id, child)
        ]
        if not failures:
            ctx.complete(node, state)
            return

        error = "; ".join(failures)
        if node.catch:
            state.error = error
            state.in_catch = True
            state.branch = node.catch
            _advance_catch(node, state, ctx)
            return
        ctx.fail(node, state, error)


class _BranchingExecutor:
    """Shared tail of If and Case: run the selected child, adopt its outcome."""

    def _follow(self, node: ActivityNode, state: ActivityRunState, ctx: "ExecutionContext") -> None:
        if state.branch is None:
            ctx.complete(node, state)
            return
        child = _child_outcome(ctx, state.branch)
        if child is None:
            return
        if _is_contained(ctx, state.branch, child):
            ctx.complete(node, state)
        else:
            ctx.fail(node, state, _child_error(state.branch, child))


class IfExecutor(_BranchingExecutor):
    def advance(self, node: IfActivity, state: ActivityRunState, ctx: "ExecutionContext") -> None:
        ctx.start(node, state)

        if state.condition_result is None:
            try:
                result = evaluate_condition(node.condition, ctx.instance)
            except JpelError as e:
                ctx.fail(node, state, e.message, error_code=e.error_code)
                return
            state.condition_result = result
            state.branch = node.then if result else node.else_
            logger.info(f"If {node.id}: '{node.condition}' -> {result}, branch {state.branch}")

        self._follow(node, state, ctx)


def _case_key(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def select_case(node: CaseActivity, instance: ProcessInstance) -> Tuple[Optional[str], str]:
    """Pick the Case branch to run and a label for what matched.

    Returns:
        (activity id or None, matched case label)
    """
    for position, case in enumerate(node.cases):
        if evaluate_condition(case.condition, instance):
            return case.activity, str(position)

    if node.expression:
        key = _case_key(evaluate(node.expression, instance))
        if key in node.value_cases:
            return node.value_cases[key], key

    if node.default:
        return node.default, "default"
    return None, "none"


class CaseExecutor(_BranchingExecutor):
    """First truthy case wins; a switch expression matches by value."""

    def advance(self, node: CaseActivity, state: ActivityRunState, ctx: "ExecutionContext") -> None:
        ctx.start(node, state)

        if state.matched_case is None:
            try:
                state.branch, state.matched_case = select_case(node, ctx.instance)
            except JpelError as e:
                ctx.fail(node, state, e.message, error_code=e.error_code)
                return
            logger.info(f"Case {node.id} matched {state.matched_case}, branch {state.branch}")

        self._follow(node, state, ctx)


class WhileExecutor:
    """Re-tests its condition before every iteration of the body."""

    def advance(self, node: WhileActivity, state: ActivityRunState, ctx: "ExecutionContext") -> None:
        ctx.start(node, state)
        limit = node.max_iterations or ctx.max_loop_iterations

        while not ctx.halted:
            if state.branch is None:
                try:
                    proceed = evaluate_condition(node.condition, ctx.instance)
                except JpelError as e:
                    ctx.fail(node, state, e.message, error_code=e.error_code)
                    return
                state.condition_result = proceed
                if not proceed:
                    ctx.complete(node, state)
                    return
                if state.iterations >= limit:
                    ctx.fail(node, state, f"Exceeded maximum of {limit} iterations")
                    return
                if state.iterations > 0:
                    self._reset_body(node.activity, ctx)
                state.iterations += 1
                state.branch = node.activity
                logger.debug(f"While {node.id} iteration {state.iterations}")

            body = _child_outcome(ctx, node.activity)
            if body is None:
                return
            if not _is_contained(ctx, node.activity, body):
                ctx.fail(node, state, _child_error(node.activity, body))
                return
            state.branch = None

    def _reset_body(self, activity_id: str, ctx: "ExecutionContext") -> None:
        pending = [activity_id]
        while pending:
            current = pending.pop()
            ctx.instance.run_state(current).reset()
            pending.extend(ctx.definition.get_activity(current).child_ids())


# ==================== Leaf Activities ====================


def _coerce(spec: FieldSpec, value: Any) -> Any:
    """Convert form strings for number and boolean fields."""
    if not isinstance(value, str) or value == "":
        return value
    if spec.type == FieldType.NUMBER.value:
        number = float(value)
        return int(number) if number.is_integer() else number
    if spec.type == FieldType.BOOLEAN.value:
        return value == "true"
    return value


class HumanTaskExecutor:
    """Suspends its branch until an external submission arrives."""

    def advance(self, node: HumanTaskActivity, state: ActivityRunState, ctx: "ExecutionContext") -> None:
        if state.status == RunStatus.PENDING:
            if ctx.executed:
                return
            ctx.start(node, state)
            ctx.mark_executed(node)
            ctx.message = f"Waiting for human task '{node.id}'"
            ctx.emit(
                HumanTaskCreatedEvent(
                    ctx.instance.instance_id,
                    activity_id=node.id,
                    prompt=node.prompt,
                    fields=self.view(node, state)["fields"],
                )
            )
            return

        self.expire(node, state, ctx)

    def expire(self, node: HumanTaskActivity, state: ActivityRunState, ctx: "ExecutionContext") -> bool:
        """Time out a running task whose deadline has passed; True when it did."""
        if not node.timeout or state.status != RunStatus.RUNNING or state.started_at is None:
            return False
        if ctx.now - state.started_at <= timedelta(seconds=node.timeout):
            return False
        ctx.mark_executed(node)
        ctx.fail(
            node,
            state,
            f"Human task timed out after {node.timeout:g} seconds",
            status=RunStatus.TIMED_OUT,
        )
        return True

    def view(self, node: HumanTaskActivity, state: ActivityRunState) -> Dict[str, Any]:
        """Field specifications merged with the current values."""
        fields: List[Dict[str, Any]] = []
        for spec in node.inputs:
            document = spec.to_document()
            document.pop("defaultValue", None)
            if spec.name in state.variables:
                document["value"] = state.variables[spec.name]
            elif spec.initial_value() is not None:
                document["value"] = spec.initial_value()
            fields.append(document)

        view: Dict[str, Any] = {"activityId": node.id, "fields": fields}
        if node.name:
            view["name"] = node.name
        if node.prompt:
            view["prompt"] = node.prompt
        if node.description:
            view["description"] = node.description
        return view

    def submit(
        self,
        node: HumanTaskActivity,
        state: ActivityRunState,
        values: Mapping[str, Any],
        ctx: "ExecutionContext",
    ) -> None:
        """
        Validate and apply a submission.

        Raises:
            ValidationFailedError: Values do not satisfy the field specs; the
                run state is left untouched
        """
        result = validate_fields(node.inputs, values)
        if not result.is_valid:
            raise ValidationFailedError(node.id, result.errors)

        specs = {spec.name: spec for spec in node.inputs}
        ctx.start(node, state)
        for name, value in values.items():
            value = _coerce(specs[name], value) if name in specs else value
            ctx.set_activity_variable(node.id, name, value)

        mark = values.get("passFail")
        if mark in (PassFail.PASS.value, PassFail.FAIL.value):
            state.pass_fail = PassFail(mark)

        ctx.emit(
            HumanTaskSubmittedEvent(ctx.instance.instance_id, activity_id=node.id, values=dict(values))
        )
        ctx.complete(node, state)
        ctx.message = f"Human task '{node.id}' submitted"


class ComputeExecutor:
    def advance(self, node: ComputeActivity, state: ActivityRunState, ctx: "ExecutionContext") -> None:
        if ctx.executed:
            return
        ctx.start(node, state)
        ctx.mark_executed(node)

        try:
            result = ctx.script_runner.run(node.code, ctx.instance, node.id)
        except JpelError as e:
            ctx.fail(node, state, e.message, error_code=e.error_code)
            return

        error = _apply_script_result(ctx, node, state, result)
        if error:
            ctx.fail(node, state, error)
            return
        ctx.complete(node, state)
        ctx.message = f"Compute activity '{node.id}' completed"


class RestApiExecutor:
    """
    Performs a single outbound call.

    The response is stored under the activity as ``response`` (with
    ``statusCode`` and ``data`` shortcuts). Non-2xx statuses are data;
    only network errors, timeouts and template errors fail the activity.
    """

    def advance(self, node: RestApiActivity, state: ActivityRunState, ctx: "ExecutionContext") -> None:
        if ctx.executed:
            return
        ctx.start(node, state)
        ctx.mark_executed(node)

        try:
            url = render_template(node.url, ctx.instance)
            headers = render_template(node.headers, ctx.instance)
            params = render_template(node.query_params, ctx.instance)
            body = render_template(node.body, ctx.instance)
        except JpelError as e:
            ctx.fail(node, state, f"Template error: {e.message}", error_code=e.error_code)
            return

        timeout = node.timeout_seconds or node.timeout
        try:
            response = ctx.http.execute(
                method=node.method,
                url=str(url),
                headers=headers,
                params=params,
                body=body,
                timeout=timeout,
            )
        except requests.exceptions.RequestException as e:
            ctx.fail(node, state, f"{type(e).__name__}: {e}")
            return

        ctx.set_activity_variable(node.id, "response", response)
        ctx.set_activity_variable(node.id, "statusCode", response["status"])
        ctx.set_activity_variable(node.id, "data", response["data"])

        if ctx.cancel_requested:
            ctx.fail(
                node,
                state,
                "Instance cancelled while the request was in flight",
                status=RunStatus.CANCELLED,
            )
            return

        if node.code:
            try:
                result = ctx.script_runner.run(
                    node.code, ctx.instance, node.id, extra_bindings={"response": response}
                )
            except JpelError as e:
                ctx.fail(node, state, f"Response code failed: {e.message}", error_code=e.error_code)
                return
            error = _apply_script_result(ctx, node, state, result)
            if error:
                ctx.fail(node, state, error)
                return

        ctx.complete(node, state)
        ctx.message = f"API activity '{node.id}' completed with status {response['status']}"


class TerminateExecutor:
    def advance(self, node: TerminateActivity, state: ActivityRunState, ctx: "ExecutionContext") -> None:
        if ctx.executed:
            return
        ctx.start(node, state)
        ctx.mark_executed(node)
        ctx.complete(node, state)
        ctx.termination = Termination(node.id, node.reason, node.result)
        ctx.emit(
            TerminateTriggeredEvent(
                ctx.instance.instance_id,
                activity_id=node.id,
                reason=node.reason,
                result=node.result,
            )
        )


EXECUTORS: Dict[ActivityKind, Any] = {
    ActivityKind.SEQUENCE: SequenceExecutor(),
    ActivityKind.FLOW: FlowExecutor(),
    ActivityKind.IF: IfExecutor(),
    ActivityKind.CASE: CaseExecutor(),
    ActivityKind.WHILE: WhileExecutor(),
    ActivityKind.HUMAN_TASK: HumanTaskExecutor(),
    ActivityKind.COMPUTE: ComputeExecutor(),
    ActivityKind.REST_API: RestApiExecutor(),
    ActivityKind.TERMINATE: TerminateExecutor(),
}
