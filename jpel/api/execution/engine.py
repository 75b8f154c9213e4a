# Process Engine for JPEL Runner
# Checkpointable interpreter driving process instances step by step

import uuid
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Union

from jpel import config
from jpel.api.events import (
    ActivityFailedEvent,
    ExecutionEventBus,
    InstanceCreatedEvent,
    InstanceStateChangedEvent,
    get_event_bus,
)
from jpel.api.handlers.http_handlers import HTTPHandlers
from jpel.api.storage.definition_repository import ProcessDefinitionRepository
from jpel.api.storage.instance_repository import ProcessInstanceRepository
from jpel.core.definitions import (
    COMPOUND_KINDS,
    ActivityKind,
    ProcessDefinition,
    parse_definition,
)
from jpel.core.exceptions import (
    DefinitionNotFoundError,
    InstanceNotFoundError,
    InvalidTransitionError,
    JpelError,
    ValidationFailedError,
)
from jpel.core.instances import (
    FINISHED_INSTANCE_STATES,
    ActivityRunState,
    InstanceStatus,
    ProcessInstance,
    RunStatus,
    aggregate_pass_fail,
)
from jpel.core.references import evaluate_condition

from .context import ExecutionContext
from .executors import EXECUTORS, select_case
from .script_runner import ScriptRunner

logger = logging.getLogger(__name__)

# Safety net for run(); each step that makes progress counts once
DEFAULT_MAX_RUN_STEPS = 10000

AWAITING_INPUT = (RunStatus.PENDING, RunStatus.RUNNING)


class _InstanceSlot:
    """Lock and cancel flag shared by the operations running on one instance."""

    def __init__(self):
        self.lock = threading.RLock()
        self.cancel_requested = threading.Event()
        self.holders = 0


@dataclass
class ExecutionResult:
    """Outcome of an engine operation.

    Expected domain errors (not found, validation, invalid transition)
    come back as ``success=False`` with an ``error_code``; activity
    failures come back as a successful operation on a failed instance.
    """

    success: bool
    instance_id: Optional[str] = None
    process_id: Optional[str] = None
    status: Optional[str] = None
    message: Optional[str] = None
    current_activity: Optional[str] = None
    human_task: Optional[Dict[str, Any]] = None
    errors: List[str] = field(default_factory=list)
    error_code: Optional[str] = None
    executed_activities: List[str] = field(default_factory=list)
    instance: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "success": self.success,
            "instanceId": self.instance_id,
            "status": self.status,
            "message": self.message,
            "currentActivity": self.current_activity,
            "humanTask": self.human_task,
            "errors": list(self.errors),
            "executedActivities": list(self.executed_activities),
        }
        if self.process_id:
            data["processId"] = self.process_id
        if self.error_code:
            data["errorCode"] = self.error_code
        if self.instance is not None:
            data["instance"] = self.instance
        return data


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ==================== Cursor Helpers ====================


def _active_children(node, state: ActivityRunState) -> List[str]:
    if node.kind in (ActivityKind.SEQUENCE, ActivityKind.FLOW):
        if state.in_catch:
            return [node.catch]
        if node.kind == ActivityKind.FLOW:
            return list(node.activities)
        if state.index < len(node.activities):
            return [node.activities[state.index]]
        return []
    return [state.branch] if state.branch else []


def active_leaves(definition: ProcessDefinition, instance: ProcessInstance) -> List[str]:
    """
    Leaf activities currently addressed by the instance's cursors.

    Follows the compound cursors from the root: the current child of a
    Sequence, every unfinished child of a Flow, and the selected branch of
    an If/Case/While. Terminal activities are never returned.
    """
    leaves: List[str] = []
    pending = [instance.root]
    while pending:
        activity_id = pending.pop(0)
        node = definition.get_activity(activity_id)
        state = instance.run_state(activity_id)
        if state.is_terminal:
            continue
        if node.kind not in COMPOUND_KINDS:
            leaves.append(activity_id)
            continue
        pending[0:0] = _active_children(node, state)
    return leaves


def _canonical_order(
    definition: ProcessDefinition, instance: ProcessInstance, activity_id: str
) -> Iterator[str]:
    """Non-terminal activities in traversal order.

    Unselected If/Case branches are skipped; a decision point that has not
    been evaluated yet is yielded itself.
    """
    node = definition.get_activity(activity_id)
    state = instance.run_state(activity_id)
    if state.is_terminal:
        return
    if node.kind not in COMPOUND_KINDS:
        yield activity_id
        return

    if node.kind in (ActivityKind.SEQUENCE, ActivityKind.FLOW):
        children = [node.catch] if state.in_catch else list(node.activities)
    elif state.branch:
        children = [state.branch]
    else:
        yield activity_id
        return
    for child_id in children:
        yield from _canonical_order(definition, instance, child_id)


def _first_leaf(definition: ProcessDefinition, instance: ProcessInstance, activity_id: str) -> str:
    """First leaf under an activity, following decisions that can be evaluated.

    Sequence cursors and catch paths are ignored: the walk always starts
    from the first declared child, as a fresh run would.
    """
    node = definition.get_activity(activity_id)
    state = instance.run_state(activity_id)
    if node.kind in (ActivityKind.SEQUENCE, ActivityKind.FLOW):
        return _first_leaf(definition, instance, node.activities[0])
    if node.kind == ActivityKind.WHILE:
        return _first_leaf(definition, instance, node.activity)

    if node.kind in (ActivityKind.IF, ActivityKind.CASE):
        branch = state.branch
        if branch is None and not state.is_terminal:
            try:
                if node.kind == ActivityKind.IF:
                    result = evaluate_condition(node.condition, instance)
                    branch = node.then if result else node.else_
                else:
                    branch, _ = select_case(node, instance)
            except JpelError as e:
                logger.debug(f"Cannot resolve branch of {activity_id} yet: {e.message}")
                return activity_id
        return _first_leaf(definition, instance, branch) if branch else activity_id

    return activity_id


# ==================== Engine ====================


class ProcessEngine:
    """
    Drives process instances through their definitions.

    Every mutating operation follows load -> mutate -> save under a
    per-instance lock, so concurrent calls on one instance are serialized
    while different instances proceed independently. Events collected
    during an operation are published only after the instance is saved.
    """

    def __init__(
        self,
        definitions: ProcessDefinitionRepository,
        instances: ProcessInstanceRepository,
        event_bus: Optional[ExecutionEventBus] = None,
        http: Optional[HTTPHandlers] = None,
        script_runner: Optional[ScriptRunner] = None,
        clock: Optional[Callable[[], datetime]] = None,
        max_loop_iterations: Optional[int] = None,
    ):
        """
        Initialize the engine.

        Args:
            definitions: Repository of process definitions
            instances: Repository of process instances
            event_bus: Bus receiving execution events; defaults to the shared bus
            http: Client used by RestAPI activities
            script_runner: Runner used by Compute activities
            clock: Returns the current time; injectable for tests
            max_loop_iterations: Default While guard; defaults to configuration
        """
        self.definitions = definitions
        self.instances = instances
        self.event_bus = event_bus or get_event_bus()
        self.http = http or HTTPHandlers()
        self.script_runner = script_runner or ScriptRunner()
        self.clock = clock or utcnow
        self.max_loop_iterations = max_loop_iterations or config.max_loop_iterations()

        self._slots: Dict[str, _InstanceSlot] = {}
        self._registry_lock = threading.Lock()

    # ==================== Infrastructure ====================

    @contextmanager
    def _hold(self, instance_id: str, cancel: bool = False) -> Iterator[_InstanceSlot]:
        """
        Hold the instance lock for the duration of an operation.

        The slot is dropped again once its last holder leaves, so ids that
        were only looked up (or do not exist) leave nothing behind. With
        ``cancel`` set, the cancel flag is raised before waiting for the
        lock so an operation already holding it can observe the request.
        """
        with self._registry_lock:
            slot = self._slots.get(instance_id)
            if slot is None:
                slot = self._slots[instance_id] = _InstanceSlot()
            slot.holders += 1
        try:
            if cancel:
                slot.cancel_requested.set()
            with slot.lock:
                try:
                    yield slot
                finally:
                    if cancel:
                        slot.cancel_requested.clear()
        finally:
            with self._registry_lock:
                slot.holders -= 1
                if slot.holders == 0:
                    self._slots.pop(instance_id, None)

    def _cancel_event(self, instance_id: str) -> threading.Event:
        with self._registry_lock:
            slot = self._slots.get(instance_id)
        return slot.cancel_requested if slot is not None else threading.Event()

    def _load_definition(self, definition_id: str) -> ProcessDefinition:
        definition = self.definitions.get_by_id(definition_id)
        if definition is None:
            raise DefinitionNotFoundError(definition_id)
        return definition

    def _load_instance(self, instance_id: str) -> ProcessInstance:
        instance = self.instances.get_by_id(instance_id)
        if instance is None:
            raise InstanceNotFoundError(instance_id)
        return instance

    def _open(self, instance_id: str) -> ExecutionContext:
        instance = self._load_instance(instance_id)
        definition = self._load_definition(instance.process_id)
        return ExecutionContext(
            definition,
            instance,
            now=self.clock(),
            script_runner=self.script_runner,
            http=self.http,
            max_loop_iterations=self.max_loop_iterations,
            cancel_event=self._cancel_event(instance_id),
        )

    def _publish_all(self, events) -> None:
        for event in events:
            self.event_bus.publish(event)

    def _commit(self, ctx: ExecutionContext, previous: InstanceStatus, reason: Optional[str] = None) -> None:
        """Save the instance, then publish what the operation produced."""
        instance = ctx.instance
        instance.updated_at = ctx.now
        if ctx.message:
            instance.message = ctx.message
        self.instances.save(instance)

        self._publish_all(ctx.events)
        if instance.status != previous:
            logger.info(
                f"Instance {instance.instance_id}: {previous.value} -> {instance.status.value}"
            )
            self.event_bus.publish(
                InstanceStateChangedEvent(
                    instance.instance_id,
                    old_state=previous.value,
                    new_state=instance.status.value,
                    reason=reason or ctx.message,
                )
            )

    def _result(self, ctx: ExecutionContext, message: Optional[str] = None) -> ExecutionResult:
        instance = ctx.instance
        task = None
        if not instance.is_finished:
            task = self._awaiting_task(ctx.definition, instance)
        return ExecutionResult(
            success=True,
            instance_id=instance.instance_id,
            process_id=instance.process_id,
            status=instance.status.value,
            message=message or ctx.message or instance.message,
            current_activity=instance.current_activity,
            human_task=task,
            error_code=ctx.error_code if instance.status == InstanceStatus.FAILED else None,
            executed_activities=list(ctx.executed_activities),
            instance=instance.snapshot(),
        )

    def _failure(self, error: JpelError, instance_id: Optional[str] = None) -> ExecutionResult:
        logger.warning(f"Operation failed ({error.error_code}): {error.message}")
        errors = error.errors if isinstance(error, ValidationFailedError) else [error.message]
        return ExecutionResult(
            success=False,
            instance_id=instance_id,
            message=error.message,
            errors=list(errors),
            error_code=error.error_code,
        )

    # ==================== Status Derivation ====================

    def _refresh_status(self, ctx: ExecutionContext) -> None:
        """Recompute the instance status from the run-state arena."""
        instance = ctx.instance
        if instance.is_finished:
            return

        if ctx.termination is not None:
            self._apply_termination(ctx)
        else:
            root = instance.run_state(instance.root)
            if root.status == RunStatus.COMPLETED:
                instance.status = InstanceStatus.COMPLETED
            elif root.is_terminal:
                instance.status = InstanceStatus.FAILED
                instance.message = root.error
            elif not root.has_run:
                instance.status = InstanceStatus.PENDING
            elif self._awaiting_task_ids(ctx.definition, instance):
                instance.status = InstanceStatus.WAITING
            else:
                instance.status = InstanceStatus.RUNNING

        if instance.is_finished:
            instance.completed_at = ctx.now
            instance.aggregate_pass_fail = aggregate_pass_fail(instance.activities.values())
            instance.current_activity = None
        else:
            self._refresh_focus(ctx.definition, instance)

    def _apply_termination(self, ctx: ExecutionContext) -> None:
        termination = ctx.termination
        reason = termination.reason or f"Terminated by activity '{termination.activity_id}'"
        self._cancel_open_activities(ctx, reason)
        ctx.instance.status = (
            InstanceStatus.COMPLETED if termination.result == "success" else InstanceStatus.FAILED
        )
        ctx.instance.message = reason
        ctx.message = reason
        logger.info(
            f"Instance {ctx.instance.instance_id} terminated ({termination.result}): {reason}"
        )

    def _cancel_open_activities(self, ctx: ExecutionContext, reason: str) -> None:
        for activity_id, state in ctx.instance.activities.items():
            if state.is_terminal:
                continue
            state.finish(RunStatus.CANCELLED, ctx.now, error=reason)
            ctx.emit(
                ActivityFailedEvent(
                    ctx.instance.instance_id,
                    activity_id=activity_id,
                    activity_type=state.type.value,
                    status=RunStatus.CANCELLED.value,
                    error=reason,
                )
            )

    def _awaiting_task_ids(self, definition: ProcessDefinition, instance: ProcessInstance) -> List[str]:
        return [
            activity_id
            for activity_id in active_leaves(definition, instance)
            if definition.get_activity(activity_id).kind == ActivityKind.HUMAN_TASK
            and instance.run_state(activity_id).status in AWAITING_INPUT
        ]

    def _refresh_focus(self, definition: ProcessDefinition, instance: ProcessInstance) -> None:
        waiting = self._awaiting_task_ids(definition, instance)
        if instance.current_activity in waiting:
            return
        if waiting:
            instance.current_activity = waiting[0]
            return
        leaves = active_leaves(definition, instance)
        instance.current_activity = leaves[0] if leaves else instance.current_activity

    def _task_view(
        self, definition: ProcessDefinition, instance: ProcessInstance, activity_id: str
    ) -> Dict[str, Any]:
        node = definition.get_activity(activity_id)
        state = instance.run_state(activity_id)
        view = EXECUTORS[ActivityKind.HUMAN_TASK].view(node, state)
        view["status"] = state.status.value
        return view

    def _awaiting_task(
        self, definition: ProcessDefinition, instance: ProcessInstance
    ) -> Optional[Dict[str, Any]]:
        """The human task the focus (or, failing that, any cursor) is waiting on."""
        focus = instance.current_activity
        if focus and focus in instance.activities:
            node = definition.get_activity(focus)
            if (
                node.kind == ActivityKind.HUMAN_TASK
                and instance.run_state(focus).status in AWAITING_INPUT
            ):
                return self._task_view(definition, instance, focus)

        waiting = self._awaiting_task_ids(definition, instance)
        if waiting:
            return self._task_view(definition, instance, waiting[0])
        return None

    # ==================== Definitions ====================

    def load_process(self, document: Union[ProcessDefinition, Mapping[str, Any]]) -> ExecutionResult:
        """
        Validate and store a process definition.

        Args:
            document: A ProcessDefinition or its JSON document

        Returns:
            ExecutionResult; on an invalid document ``error_code`` is
            DEFINITION_INVALID and ``errors`` lists the problems
        """
        try:
            definition = (
                document if isinstance(document, ProcessDefinition) else parse_definition(document)
            )
        except JpelError as e:
            return self._failure(e)

        self.definitions.save(definition)
        logger.info(f"Loaded process {definition.id} v{definition.version}")
        return ExecutionResult(
            success=True,
            process_id=definition.id,
            message=f"Process {definition.id} loaded",
        )

    def get_process(self, definition_id: str) -> Optional[ProcessDefinition]:
        return self.definitions.get_by_id(definition_id)

    def list_processes(self) -> List[ProcessDefinition]:
        return self.definitions.list()

    # ==================== Instance Lifecycle ====================

    def _new_instance(
        self,
        definition: ProcessDefinition,
        title: Optional[str] = None,
        variables: Optional[Mapping[str, Any]] = None,
        rerun_of: Optional[str] = None,
    ) -> ProcessInstance:
        process_variables = {
            spec.name: spec.initial_value()
            for spec in definition.variables
            if spec.initial_value() is not None
        }
        process_variables.update(variables or {})

        activities = {}
        for activity_id, node in definition.activities.items():
            activities[activity_id] = ActivityRunState(
                type=node.kind,
                variables={
                    spec.name: spec.initial_value()
                    for spec in node.variables
                    if spec.initial_value() is not None
                },
            )

        return ProcessInstance(
            instance_id=str(uuid.uuid4()),
            process_id=definition.id,
            process_version=definition.version,
            title=title or definition.name or definition.id,
            status=InstanceStatus.PENDING,
            root=definition.start,
            current_activity=definition.start,
            activities=activities,
            variables=process_variables,
            started_at=self.clock(),
            rerun_of=rerun_of,
        )

    def _register(self, instance: ProcessInstance) -> ExecutionResult:
        self.instances.save(instance)
        logger.info(f"Created instance {instance.instance_id} of {instance.process_id}")
        self.event_bus.publish(
            InstanceCreatedEvent(
                instance.instance_id,
                process_id=instance.process_id,
                process_version=instance.process_version,
                rerun_of=instance.rerun_of,
            )
        )
        return ExecutionResult(
            success=True,
            instance_id=instance.instance_id,
            process_id=instance.process_id,
            status=instance.status.value,
            message=f"Instance created for process {instance.process_id}",
            current_activity=instance.current_activity,
            instance=instance.snapshot(),
        )

    def create_instance(
        self,
        definition_id: str,
        title: Optional[str] = None,
        variables: Optional[Mapping[str, Any]] = None,
    ) -> ExecutionResult:
        """
        Create a pending instance rooted at the definition's start activity.

        Args:
            definition_id: ID of a loaded process definition
            title: Optional display title
            variables: Initial process variables, overriding declared defaults
        """
        try:
            definition = self._load_definition(definition_id)
        except JpelError as e:
            return self._failure(e)
        return self._register(self._new_instance(definition, title=title, variables=variables))

    def rerun(self, instance_id: str) -> ExecutionResult:
        """Start a brand-new instance of the same definition; the original is untouched."""
        try:
            original = self._load_instance(instance_id)
            definition = self._load_definition(original.process_id)
        except JpelError as e:
            return self._failure(e, instance_id)
        instance = self._new_instance(definition, title=original.title, rerun_of=instance_id)
        return self._register(instance)

    def get_instance(self, instance_id: str) -> ExecutionResult:
        instance = self.instances.get_by_id(instance_id)
        if instance is None:
            return self._failure(InstanceNotFoundError(instance_id), instance_id)
        return ExecutionResult(
            success=True,
            instance_id=instance_id,
            process_id=instance.process_id,
            status=instance.status.value,
            message=instance.message,
            current_activity=instance.current_activity,
            instance=instance.snapshot(),
        )

    def list_instances(self, definition_id: Optional[str] = None) -> List[ProcessInstance]:
        if definition_id is None:
            return self.instances.list_all()
        return self.instances.list_by_definition(definition_id)

    # ==================== Execution ====================

    def step(self, instance_id: str) -> ExecutionResult:
        """
        Advance an instance by one unit of work and persist it.

        One unit is a single leaf activity, or one batch across the branches
        of a Flow. Compound bookkeeping (moving a Sequence on, settling a
        Flow, completing parents) happens in the same step for free.
        """
        try:
            with self._hold(instance_id):
                ctx = self._open(instance_id)
                instance = ctx.instance
                if instance.is_finished:
                    raise InvalidTransitionError(
                        f"Instance {instance_id} is already {instance.status.value}"
                    )
                previous = instance.status

                ctx.advance(instance.root)
                self._refresh_status(ctx)
                self._commit(ctx, previous)
                return self._result(ctx, self._step_message(ctx))
        except JpelError as e:
            return self._failure(e, instance_id)

    def _step_message(self, ctx: ExecutionContext) -> str:
        instance = ctx.instance
        if instance.status == InstanceStatus.COMPLETED and ctx.termination is None:
            return "Process completed"
        if ctx.message:
            return ctx.message
        if instance.status == InstanceStatus.WAITING:
            return f"Waiting for human task '{instance.current_activity}'"
        if not ctx.executed_activities:
            return "No activity was ready to run"
        return f"Executed {', '.join(ctx.executed_activities)}"

    def run(self, instance_id: str, max_steps: Optional[int] = None) -> ExecutionResult:
        """
        Step until the instance finishes or stops making progress.

        A waiting human task stops the run once nothing else can advance.
        """
        limit = max_steps or DEFAULT_MAX_RUN_STEPS
        executed: List[str] = []
        result = None
        with self._hold(instance_id):
            for _ in range(limit):
                result = self.step(instance_id)
                if not result.success:
                    return result
                executed.extend(result.executed_activities)
                if InstanceStatus(result.status) in FINISHED_INSTANCE_STATES:
                    break
                if not result.executed_activities:
                    break
        result.executed_activities = executed
        return result

    # ==================== Human Tasks ====================

    def get_current_task(self, instance_id: str) -> ExecutionResult:
        """Human task awaiting input, merged with current values; read-only."""
        try:
            instance = self._load_instance(instance_id)
            definition = self._load_definition(instance.process_id)
        except JpelError as e:
            return self._failure(e, instance_id)

        task = None if instance.is_finished else self._awaiting_task(definition, instance)
        return ExecutionResult(
            success=True,
            instance_id=instance_id,
            process_id=instance.process_id,
            status=instance.status.value,
            message=(
                f"Human task '{task['activityId']}' awaiting input"
                if task
                else "No human task awaiting input"
            ),
            current_activity=task["activityId"] if task else instance.current_activity,
            human_task=task,
        )

    def submit_task(
        self, instance_id: str, activity_id: str, values: Mapping[str, Any]
    ) -> ExecutionResult:
        """
        Submit values for a human task addressed by an active cursor.

        Invalid values leave the instance untouched and come back as
        VALIDATION_FAILED with one message per problem.
        """
        try:
            with self._hold(instance_id):
                ctx = self._open(instance_id)
                instance, definition = ctx.instance, ctx.definition
                if instance.is_finished:
                    raise InvalidTransitionError(
                        f"Instance {instance_id} is already {instance.status.value}"
                    )
                if activity_id not in definition.activities:
                    raise InvalidTransitionError(f"Unknown activity '{activity_id}'")
                node = definition.get_activity(activity_id)
                state = instance.run_state(activity_id)
                if node.kind != ActivityKind.HUMAN_TASK:
                    raise InvalidTransitionError(f"Activity '{activity_id}' is not a human task")
                if activity_id not in self._awaiting_task_ids(definition, instance):
                    raise InvalidTransitionError(
                        f"Human task '{activity_id}' is not awaiting input ({state.status.value})"
                    )

                previous = instance.status
                executor = EXECUTORS[ActivityKind.HUMAN_TASK]
                if executor.expire(node, state, ctx):
                    # The late submission is refused, but the timeout itself is recorded
                    ctx.advance(instance.root)
                    self._refresh_status(ctx)
                    self._commit(ctx, previous)
                    raise InvalidTransitionError(
                        f"Human task '{activity_id}' timed out before it was submitted"
                    )
                executor.submit(node, state, values, ctx)

                # Let parents settle without activating new work
                ctx.executed = True
                ctx.advance(instance.root)
                self._refresh_status(ctx)
                self._commit(ctx, previous)
                return self._result(ctx, f"Human task '{activity_id}' submitted")
        except JpelError as e:
            return self._failure(e, instance_id)

    # ==================== Navigation ====================

    def navigate_to_start(self, instance_id: str) -> ExecutionResult:
        """Move the focus back to the first leaf under the start activity.

        Run states and variables are preserved.
        """
        try:
            with self._hold(instance_id):
                ctx = self._open(instance_id)
                instance = ctx.instance
                previous = instance.status
                instance.current_activity = _first_leaf(ctx.definition, instance, instance.root)
                self._commit(ctx, previous)
                return self._result(ctx, f"Navigated to start: {instance.current_activity}")
        except JpelError as e:
            return self._failure(e, instance_id)

    def navigate_to_next_pending(self, instance_id: str) -> ExecutionResult:
        """Move the focus to the first non-terminal activity in traversal order."""
        try:
            with self._hold(instance_id):
                ctx = self._open(instance_id)
                instance = ctx.instance
                previous = instance.status

                if not instance.is_finished:
                    candidate = next(_canonical_order(ctx.definition, instance, instance.root), None)
                    if candidate is not None:
                        instance.current_activity = candidate
                        self._commit(ctx, previous)
                        return self._result(ctx, f"Navigated to pending activity: {candidate}")

                    # Everything below the root is terminal; settle the compounds
                    ctx.executed = True
                    ctx.advance(instance.root)
                    self._refresh_status(ctx)
                    self._commit(ctx, previous)

                return self._result(ctx, f"No pending activities remain; instance is {instance.status.value}")
        except JpelError as e:
            return self._failure(e, instance_id)

    # ==================== Cancellation ====================

    def cancel(self, instance_id: str, reason: Optional[str] = None) -> ExecutionResult:
        """
        Cancel an instance.

        The cancel flag is raised before taking the instance lock so that a
        RestAPI call in flight in another thread observes it and marks its
        activity cancelled.
        """
        try:
            with self._hold(instance_id, cancel=True):
                ctx = self._open(instance_id)
                instance = ctx.instance
                if instance.is_finished:
                    raise InvalidTransitionError(
                        f"Instance {instance_id} is already {instance.status.value}"
                    )
                previous = instance.status
                reason = reason or "Cancelled by request"
                self._cancel_open_activities(ctx, reason)
                instance.status = InstanceStatus.CANCELLED
                instance.completed_at = ctx.now
                instance.aggregate_pass_fail = aggregate_pass_fail(instance.activities.values())
                ctx.message = reason
                self._commit(ctx, previous, reason)
                return self._result(ctx, f"Instance cancelled: {reason}")
        except JpelError as e:
            return self._failure(e, instance_id)
