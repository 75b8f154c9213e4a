# Script Runner for JPEL Runner
# Sandboxed execution of Compute scripts and RestAPI response code

import math
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from jpel import config
from jpel.core.exceptions import ExpressionError, UnresolvedReferenceError
from jpel.core.instances import ProcessInstance
from jpel.core.references import (
    LITERAL_BINDINGS,
    SAFE_BUILTINS,
    unknown_name_error,
    build_scopes,
    to_attr,
    to_plain,
    to_python,
    validate_code,
)

logger = logging.getLogger(__name__)

RESERVED_NAMES = ("__builtins__", "datetime", "math", "process", "activities", "this")


@dataclass
class ScriptResult:
    """Variables a script changed, split by the scope they belong to."""

    process_updates: Dict[str, Any] = field(default_factory=dict)
    activity_updates: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    pass_fail: Optional[str] = None


class ScriptRunner:
    """
    Executes Compute scripts with access to process and activity scope.

    Scripts see every process variable as a local name, plus ``process``,
    ``this`` (the running activity) and ``activities``. Top-level
    assignments become process variables, ``this.name = ...`` writes to
    the running activity and ``this.passFail`` marks it pass or fail.
    Everything runs on copies: nothing reaches the instance unless the
    script finishes, and the caller applies the returned ScriptResult.
    """

    def __init__(self, enabled: Optional[bool] = None):
        self.enabled = config.scripts_enabled() if enabled is None else enabled

    def run(
        self,
        code: Union[str, List[str]],
        instance: ProcessInstance,
        activity_id: str,
        extra_bindings: Optional[Dict[str, Any]] = None,
    ) -> ScriptResult:
        """
        Run a script against the instance.

        Args:
            code: Script body, as a string or list of lines
            instance: Instance providing the bindings (not mutated)
            activity_id: Activity bound as ``this``
            extra_bindings: Additional read-only names, e.g. ``response``

        Returns:
            ScriptResult describing the changes to apply

        Raises:
            UnresolvedReferenceError: The script read an unknown reference
            ExpressionError: The script is unsafe or raised an exception
        """
        if not self.enabled:
            raise ExpressionError("Compute scripts are disabled")

        source = code if isinstance(code, str) else "\n".join(code)
        source = to_python(source, script=True)
        validate_code(source, mode="exec")

        bindings = build_scopes(instance, current_activity=activity_id, writable=True)
        extras = {name: to_attr(value) for name, value in (extra_bindings or {}).items()}

        namespace: Dict[str, Any] = {
            "__builtins__": dict(SAFE_BUILTINS, print=self._printer(instance)),
            "datetime": datetime,
            "math": math,
        }
        namespace.update(bindings)
        namespace.update(extras)
        reserved = set(RESERVED_NAMES) | set(LITERAL_BINDINGS) | set(extras)

        try:
            exec(compile(source, f"<activity {activity_id}>", "exec"), namespace)
        except UnresolvedReferenceError:
            raise
        except NameError as e:
            raise unknown_name_error(e, source)
        except Exception as e:
            raise ExpressionError(f"{type(e).__name__}: {e}")

        return self._collect(instance, activity_id, bindings, namespace, reserved)

    def _collect(
        self,
        instance: ProcessInstance,
        activity_id: str,
        bindings: Dict[str, Any],
        namespace: Dict[str, Any],
        reserved: set,
    ) -> ScriptResult:
        result = ScriptResult()

        process_vars = bindings["process"]._variables
        for name, value in process_vars.items():
            self._record(result.process_updates, instance.variables, name, value)

        for name, value in namespace.items():
            if name in reserved or name.startswith("_"):
                continue
            if callable(value) or type(value).__name__ == "module":
                continue
            self._record(result.process_updates, instance.variables, name, value)

        for scope_id, scope in bindings["activities"]._scopes.items():
            original = instance.activities[scope_id].variables
            changes: Dict[str, Any] = {}
            for name, value in scope._variables.items():
                self._record(changes, original, name, value)
            if changes:
                result.activity_updates[scope_id] = changes

        this = bindings["this"]
        mark = this._properties.get("passFail")
        state = instance.activities.get(activity_id)
        original_mark = state.pass_fail.value if state and state.pass_fail else None
        if mark != original_mark:
            result.pass_fail = mark

        return result

    @staticmethod
    def _record(target: Dict[str, Any], original: Dict[str, Any], name: str, value: Any) -> None:
        plain = to_plain(value)
        if name not in original or original[name] != plain:
            target[name] = plain

    @staticmethod
    def _printer(instance: ProcessInstance):
        def _print(*args: Any) -> None:
            logger.info(f"[Process {instance.instance_id}] {' '.join(str(a) for a in args)}")

        return _print
