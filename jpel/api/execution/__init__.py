# Execution Package for JPEL Runner
# Engine, per-kind activity executors and the script sandbox

from .context import ExecutionContext
from .engine import ExecutionResult, ProcessEngine, active_leaves
from .executors import EXECUTORS, Termination, select_case
from .script_runner import ScriptResult, ScriptRunner

__all__ = [
    "EXECUTORS",
    "ExecutionContext",
    "ExecutionResult",
    "ProcessEngine",
    "ScriptResult",
    "ScriptRunner",
    "Termination",
    "active_leaves",
    "select_case",
]
