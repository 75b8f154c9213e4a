# Execution Context for JPEL Runner
# Per-operation state shared by the engine and the activity executors

import logging
import threading
from datetime import datetime
from typing import List, Optional

from jpel.api.events import (
    ActivityCompletedEvent,
    ActivityFailedEvent,
    ActivityStartedEvent,
    ExecutionEvent,
    VariableSetEvent,
)
from jpel.api.handlers.http_handlers import HTTPHandlers
from jpel.core.definitions import ActivityNode, ProcessDefinition
from jpel.core.exceptions import ActivityExecutionError
from jpel.core.instances import ActivityRunState, ProcessInstance, RunStatus

from .executors import EXECUTORS, Termination
from .script_runner import ScriptRunner

logger = logging.getLogger(__name__)


class ExecutionContext:
    """
    Working state for one engine operation on one instance.

    The context owns the leaf budget of the current step: once a leaf has
    executed (``executed``), compound activities still reconcile finished
    children but stop activating new work. Events are buffered and only
    published by the engine after the instance has been saved.
    """

    def __init__(
        self,
        definition: ProcessDefinition,
        instance: ProcessInstance,
        now: datetime,
        script_runner: ScriptRunner,
        http: HTTPHandlers,
        max_loop_iterations: int,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.definition = definition
        self.instance = instance
        self.now = now
        self.script_runner = script_runner
        self.http = http
        self.max_loop_iterations = max_loop_iterations
        self.cancel_event = cancel_event or threading.Event()

        self.executed = False
        self.executed_activities: List[str] = []
        self.termination: Optional[Termination] = None
        self.message: Optional[str] = None
        self.error_code: Optional[str] = None
        self.events: List[ExecutionEvent] = []

    # ==================== Dispatch ====================

    def advance(self, activity_id: str) -> None:
        """Advance one activity through its kind's executor."""
        if self.halted:
            return
        node = self.definition.get_activity(activity_id)
        state = self.instance.run_state(activity_id)
        if state.is_terminal:
            return
        EXECUTORS[node.kind].advance(node, state, self)

    @property
    def cancel_requested(self) -> bool:
        return self.cancel_event.is_set()

    @property
    def halted(self) -> bool:
        """True once the instance was terminated or cancelled mid-step."""
        return self.termination is not None or self.cancel_requested

    # ==================== Run State Transitions ====================

    def start(self, node: ActivityNode, state: ActivityRunState) -> None:
        if state.status != RunStatus.PENDING:
            return
        state.start(self.now)
        logger.debug(f"Activity {node.id} ({node.type}) started")
        self.emit(
            ActivityStartedEvent(
                self.instance.instance_id, activity_id=node.id, activity_type=node.type
            )
        )

    def mark_executed(self, node: ActivityNode) -> None:
        self.executed = True
        self.executed_activities.append(node.id)

    def complete(self, node: ActivityNode, state: ActivityRunState) -> None:
        state.finish(RunStatus.COMPLETED, self.now)
        logger.info(f"Activity {node.id} ({node.type}) completed")
        self.emit(
            ActivityCompletedEvent(
                self.instance.instance_id,
                activity_id=node.id,
                activity_type=node.type,
                pass_fail=state.pass_fail.value if state.pass_fail else None,
            )
        )

    def fail(
        self,
        node: ActivityNode,
        state: ActivityRunState,
        error: str,
        status: RunStatus = RunStatus.FAILED,
        error_code: Optional[str] = None,
    ) -> None:
        """Finish an activity unsuccessfully; the first error code of a step wins."""
        state.finish(status, self.now, error=error)
        if error_code:
            self.error_code = self.error_code or error_code
        elif self.error_code is None and status != RunStatus.CANCELLED:
            self.error_code = ActivityExecutionError.error_code
        self.message = f"Activity '{node.id}' {status.value}: {error}"
        logger.error(f"Activity {node.id} ({node.type}) {status.value}: {error}")
        self.emit(
            ActivityFailedEvent(
                self.instance.instance_id,
                activity_id=node.id,
                activity_type=node.type,
                status=status.value,
                error=error,
            )
        )

    def set_process_variable(self, name: str, value) -> None:
        self.instance.variables[name] = value
        self.emit(VariableSetEvent(self.instance.instance_id, name=name, value=value))

    def set_activity_variable(self, activity_id: str, name: str, value) -> None:
        self.instance.run_state(activity_id).variables[name] = value
        self.emit(
            VariableSetEvent(
                self.instance.instance_id, name=name, value=value, activity_id=activity_id
            )
        )

    def emit(self, event: ExecutionEvent) -> None:
        self.events.append(event)
