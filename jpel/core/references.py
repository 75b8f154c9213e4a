# Reference Resolver for JPEL Runner
# Resolves process/activity scoped references and evaluates conditions

import ast
import copy
import json
import logging
import os
import re
from typing import Any, Dict, List, Optional, Tuple

from .exceptions import (
    ExpressionError,
    UnknownActivityError,
    UnknownScopeError,
    UnknownVariableError,
    UnresolvedReferenceError,
)
from .instances import ProcessInstance

logger = logging.getLogger(__name__)

# Run-state properties readable through an activity reference
ACTIVITY_PROPERTIES = ("status", "passFail", "error")

PROCESS_SELECTOR = re.compile(r"\$Process\.")
SCOPE_TOKEN = re.compile(r"\$([A-Za-z_]\w*)")
COMPACT_FIELD_REF = re.compile(r"(?<![\w:])a:([A-Za-z0-9_-]+)\.[vf]:([A-Za-z_]\w*)")
COMPACT_PROP_REF = re.compile(r"(?<![\w:])a:([A-Za-z0-9_-]+)\.([A-Za-z_]\w*)")
PROCESS_INLINE_REF = re.compile(r"\bprocess\.([A-Za-z_]\w*)")
ENV_REF = re.compile(r"env:([A-Za-z_][A-Za-z0-9_]*)")
TEMPLATE_TOKEN = re.compile(r"\$\{([^}]+)\}")
EXPLICIT_INLINE_REF = re.compile(
    r"""\$Process(?:\.\w+)+|\$Activity\[\s*['"][^'"]+['"]\s*\](?:\.\w+)+"""
)
# Activity selectors and Python string literals, which expression rewriting must not touch
LITERAL_OR_SELECTOR = re.compile(
    r"""\$Activity\[\s*['"](?P<selector>[^'"]+)['"]\s*\]"""
    r"""|[rRbBuUfF]{0,2}(?:'''(?:\\[\s\S]|[^\\])*?'''|\"\"\"(?:\\[\s\S]|[^\\])*?\"\"\")"""
    r"""|[rRbBuUfF]{0,2}(?:'(?:\\.|[^'\\\n])*'|"(?:\\.|[^"\\\n])*")"""
)
PLACEHOLDER = re.compile("\x00(\\d+)\x00")
DECLARATION = re.compile(r"^(\s*)(?:let|const|var)\s+", re.MULTILINE)

SAFE_BUILTINS = {
    "len": len,
    "min": min,
    "max": max,
    "sum": sum,
    "abs": abs,
    "round": round,
    "int": int,
    "float": float,
    "str": str,
    "bool": bool,
    "dict": dict,
    "list": list,
    "set": set,
    "tuple": tuple,
    "range": range,
    "enumerate": enumerate,
    "sorted": sorted,
    "any": any,
    "all": all,
    "zip": zip,
    "isinstance": isinstance,
}

FORBIDDEN_CALLS = {"eval", "exec", "compile", "open", "input", "getattr", "setattr", "globals", "locals", "vars"}

# Literal spellings carried over from JSON-style expressions
LITERAL_BINDINGS = {"true": True, "false": False, "null": None}


# ==================== Scopes ====================


class AttrDict(dict):
    """Dict whose keys can also be read as attributes: response.data.id"""

    def __getattr__(self, name: str) -> Any:
        if name.startswith("__"):
            raise AttributeError(name)
        try:
            return self[name]
        except KeyError:
            raise AttributeError(name)

    def __setattr__(self, name: str, value: Any) -> None:
        self[name] = value


def to_attr(value: Any) -> Any:
    """Recursively copy a JSON-like value, turning dicts into AttrDicts."""
    if isinstance(value, dict):
        return AttrDict((key, to_attr(item)) for key, item in value.items())
    if isinstance(value, list):
        return [to_attr(item) for item in value]
    return copy.deepcopy(value)


def to_plain(value: Any) -> Any:
    """Inverse of to_attr, used before values are written back to state."""
    if isinstance(value, dict):
        return {key: to_plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(item) for item in value]
    return value


class ProcessScope:
    """Attribute view over process variables.

    Reads of missing names raise UnknownVariableError. Writes are only
    allowed on scopes built for scripts, which operate on copies.
    """

    def __init__(self, variables: Dict[str, Any], writable: bool = False):
        object.__setattr__(self, "_variables", variables)
        object.__setattr__(self, "_writable", writable)

    def __getattr__(self, name: str) -> Any:
        try:
            return self._variables[name]
        except KeyError:
            raise UnknownVariableError(f"$Process.{name}", name)

    def __getitem__(self, name: str) -> Any:
        return self.__getattr__(name)

    def __setattr__(self, name: str, value: Any) -> None:
        if not self._writable:
            raise ExpressionError(f"Cannot assign process variable '{name}' here")
        self._variables[name] = value

    __setitem__ = __setattr__

    def __contains__(self, name: str) -> bool:
        return name in self._variables


class ActivityScope:
    """Attribute view over one activity's variables and run-state properties."""

    def __init__(
        self,
        activity_id: str,
        variables: Dict[str, Any],
        properties: Dict[str, Any],
        writable: bool = False,
    ):
        object.__setattr__(self, "_activity_id", activity_id)
        object.__setattr__(self, "_variables", variables)
        object.__setattr__(self, "_properties", properties)
        object.__setattr__(self, "_writable", writable)

    def __getattr__(self, name: str) -> Any:
        if name in self._variables:
            return self._variables[name]
        if name in self._properties:
            return self._properties[name]
        raise UnknownVariableError(f"$Activity['{self._activity_id}'].{name}", name)

    def __getitem__(self, name: str) -> Any:
        return self.__getattr__(name)

    def __setattr__(self, name: str, value: Any) -> None:
        if not self._writable:
            raise ExpressionError(
                f"Cannot assign '{name}' on activity '{self._activity_id}' here"
            )
        if name == "passFail":
            self._properties["passFail"] = value
        else:
            self._variables[name] = value

    __setitem__ = __setattr__

    def __contains__(self, name: str) -> bool:
        return name in self._variables or name in self._properties


class ActivityTable:
    """Lookup of activity scopes by id: ``activities['review']``."""

    def __init__(self, scopes: Dict[str, ActivityScope]):
        object.__setattr__(self, "_scopes", scopes)

    def __getitem__(self, activity_id: str) -> ActivityScope:
        scope = self._scopes.get(activity_id)
        if scope is None:
            raise UnknownActivityError(f"$Activity['{activity_id}']", activity_id)
        return scope

    def __getattr__(self, activity_id: str) -> ActivityScope:
        return self.__getitem__(activity_id)

    def __contains__(self, activity_id: str) -> bool:
        return activity_id in self._scopes


def _activity_properties(instance: ProcessInstance, activity_id: str) -> Dict[str, Any]:
    state = instance.activities[activity_id]
    return {
        "status": state.status.value,
        "passFail": state.pass_fail.value if state.pass_fail else None,
        "error": state.error,
    }


def build_scopes(
    instance: ProcessInstance,
    current_activity: Optional[str] = None,
    writable: bool = False,
) -> Dict[str, Any]:
    """Build evaluation bindings over deep copies of the instance state.

    Args:
        instance: Instance whose variables and run states are exposed
        current_activity: Activity bound as ``this`` (scripts only)
        writable: Whether scripts may assign through the scopes

    Returns:
        Dictionary of names for use as evaluation locals
    """
    variables = to_attr(instance.variables)
    scopes = {
        activity_id: ActivityScope(
            activity_id,
            to_attr(state.variables),
            _activity_properties(instance, activity_id),
            writable=writable,
        )
        for activity_id, state in instance.activities.items()
    }

    bindings: Dict[str, Any] = dict(LITERAL_BINDINGS)
    bindings.update(variables)
    bindings["process"] = ProcessScope(variables, writable=writable)
    bindings["activities"] = ActivityTable(scopes)
    if current_activity is not None:
        bindings["this"] = scopes.get(current_activity) or ActivityScope(
            current_activity, {}, {}, writable=writable
        )
    return bindings


# ==================== Direct Resolution ====================


def _walk(value: Any, path: List[str], reference: str) -> Any:
    for part in path:
        if isinstance(value, dict) and part in value:
            value = value[part]
        elif isinstance(value, list) and part.isdigit() and int(part) < len(value):
            value = value[int(part)]
        else:
            raise UnknownVariableError(reference, part)
    return value


def _split_path(rest: str, reference: str) -> List[str]:
    if not rest:
        return []
    if not rest.startswith("."):
        raise UnresolvedReferenceError(reference, f"Malformed reference: {reference}")
    parts = rest[1:].split(".")
    if any(not part for part in parts):
        raise UnresolvedReferenceError(reference, f"Malformed reference: {reference}")
    return parts


def _resolve_process(instance: ProcessInstance, path: List[str], reference: str) -> Any:
    if not path:
        raise UnresolvedReferenceError(reference, f"Reference {reference} names no variable")
    name = path[0]
    if name not in instance.variables:
        raise UnknownVariableError(reference, name)
    return _walk(instance.variables[name], path[1:], reference)


def _resolve_activity(
    instance: ProcessInstance, activity_id: str, path: List[str], reference: str
) -> Any:
    state = instance.activities.get(activity_id)
    if state is None:
        raise UnknownActivityError(reference, activity_id)
    if not path:
        raise UnresolvedReferenceError(reference, f"Reference {reference} names no variable")
    name = path[0]
    if name in state.variables:
        value = state.variables[name]
    elif name in ACTIVITY_PROPERTIES:
        value = _activity_properties(instance, activity_id)[name]
    else:
        raise UnknownVariableError(reference, name)
    return _walk(value, path[1:], reference)


def resolve(reference: str, instance: ProcessInstance) -> Any:
    """Resolve a single scoped reference against an instance.

    Supported forms are ``$Process.name``, ``$Activity['id'].name``,
    ``a:id.name``, ``a:id.v:name``, ``a:id.f:name``, ``process.name``
    and a bare process variable name. A trailing dotted path walks into
    dict or list values.

    Raises:
        UnknownScopeError: The ``$Scope`` or ``scope.`` prefix is not known
        UnknownActivityError: No run state exists for the activity id
        UnknownVariableError: The variable (or path segment) is not set
    """
    ref = reference.strip()

    scoped = re.fullmatch(r"\$([A-Za-z_]\w*)(.*)", ref, re.DOTALL)
    if scoped:
        scope, rest = scoped.groups()
        if scope == "Process":
            return _resolve_process(instance, _split_path(rest, ref), ref)
        if scope == "Activity":
            selector = re.fullmatch(r"""\[\s*['"]([^'"]+)['"]\s*\](.*)""", rest)
            if not selector:
                raise UnresolvedReferenceError(ref, f"Malformed reference: {ref}")
            activity_id, tail = selector.groups()
            return _resolve_activity(instance, activity_id, _split_path(tail, ref), ref)
        raise UnknownScopeError(ref, scope)

    compact = re.fullmatch(r"a:([A-Za-z0-9_-]+)\.(?:[vf]:)?([A-Za-z_]\w*)(.*)", ref)
    if compact:
        activity_id, name, tail = compact.groups()
        return _resolve_activity(instance, activity_id, [name] + _split_path(tail, ref), ref)

    dotted = re.fullmatch(r"([A-Za-z_]\w*)((?:\.\w+)+)", ref)
    if dotted:
        scope, rest = dotted.groups()
        if scope == "process":
            return _resolve_process(instance, _split_path(rest, ref), ref)
        if scope in instance.variables:
            return _resolve_process(instance, [scope] + _split_path(rest, ref), ref)
        raise UnknownScopeError(ref, scope)

    if re.fullmatch(r"[A-Za-z_]\w*", ref):
        return _resolve_process(instance, [ref], ref)

    raise UnresolvedReferenceError(ref, f"Malformed reference: {ref}")


# ==================== Expressions ====================


def _mask_literals(code: str) -> Tuple[str, List[str]]:
    """Swap string literals and activity selectors for numbered placeholders."""
    kept: List[str] = []

    def keep(match: re.Match) -> str:
        selector = match.group("selector")
        kept.append(f"activities[{selector!r}]" if selector is not None else match.group(0))
        return f"\x00{len(kept) - 1}\x00"

    return LITERAL_OR_SELECTOR.sub(keep, code), kept


def _unmask_literals(code: str, kept: List[str]) -> str:
    return PLACEHOLDER.sub(lambda m: kept[int(m.group(1))], code)


def to_python(expression: str, script: bool = False) -> str:
    """Rewrite JPEL reference syntax into plain Python over scope bindings.

    String literals are left exactly as written. With ``script`` set,
    JS-style ``let``/``const``/``var`` declarations are dropped as well.
    """
    code, kept = _mask_literals(expression)
    if script:
        code = DECLARATION.sub(r"\1", code)
    code = PROCESS_SELECTOR.sub("process.", code)

    unknown = SCOPE_TOKEN.search(code)
    if unknown:
        raise UnknownScopeError(expression, unknown.group(1))

    code = COMPACT_FIELD_REF.sub(lambda m: f"activities[{m.group(1)!r}].{m.group(2)}", code)
    code = COMPACT_PROP_REF.sub(lambda m: f"activities[{m.group(1)!r}].{m.group(2)}", code)

    # JSON/JS style operators
    code = code.replace("===", "==").replace("!==", "!=")
    code = code.replace("&&", " and ").replace("||", " or ")
    code = re.sub(r"!(?!=)", " not ", code)
    return _unmask_literals(code, kept)


def validate_code(code: str, mode: str) -> ast.AST:
    """Reject unsafe syntax before evaluating an expression or script."""
    try:
        tree = ast.parse(code, mode=mode)
    except SyntaxError as e:
        raise ExpressionError(f"Invalid syntax: {e.msg}")
    for node in ast.walk(tree):
        if isinstance(node, (ast.Import, ast.ImportFrom)):
            raise ExpressionError("Imports are not allowed")
        if isinstance(node, (ast.Global, ast.Nonlocal)):
            raise ExpressionError("Global/nonlocal statements are not allowed")
        if isinstance(node, ast.Attribute) and node.attr.startswith("_"):
            raise ExpressionError("Private attribute access is not allowed")
        if isinstance(node, ast.Name) and node.id.startswith("__"):
            raise ExpressionError("Dunder names are not allowed")
        if isinstance(node, ast.Call) and isinstance(node.func, ast.Name):
            if node.func.id in FORBIDDEN_CALLS:
                raise ExpressionError(f"Call to {node.func.id} is not allowed")
    return tree


def unknown_name_error(error: NameError, source: str) -> UnknownVariableError:
    name = getattr(error, "name", None)
    if not name:
        match = re.search(r"name '([^']+)'", str(error))
        name = match.group(1) if match else str(error)
    return UnknownVariableError(source, name)


def evaluate(expression: str, instance: ProcessInstance) -> Any:
    """Evaluate a JPEL expression read-only against the instance.

    Raises:
        UnresolvedReferenceError: A reference (or bare name) is not resolvable
        ExpressionError: The expression is unsafe or raised while evaluating
    """
    code = to_python(expression.strip())
    validate_code(code, mode="eval")
    bindings = build_scopes(instance)
    try:
        namespace = {"__builtins__": SAFE_BUILTINS}
        namespace.update(bindings)
        return eval(code, namespace)
    except UnresolvedReferenceError:
        raise
    except NameError as e:
        raise unknown_name_error(e, expression)
    except Exception as e:
        raise ExpressionError(f"Expression '{expression}' failed: {e}")


def evaluate_condition(condition: str, instance: ProcessInstance) -> bool:
    result = bool(evaluate(condition, instance))
    logger.debug(f"Condition '{condition}' evaluated to {result}")
    return result


# ==================== Templates ====================


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def _lenient(pattern: re.Pattern, build_ref, text: str, instance: ProcessInstance) -> str:
    def replace(match: re.Match) -> str:
        try:
            return _as_text(resolve(build_ref(match), instance))
        except UnresolvedReferenceError:
            logger.debug(f"Leaving unresolved inline token {match.group(0)}")
            return match.group(0)

    return pattern.sub(replace, text)


def _substitute_env(match: re.Match) -> str:
    value = os.environ.get(match.group(1))
    if value is None:
        logger.warning(
            f"Environment variable '{match.group(1)}' not found, keeping placeholder: {match.group(0)}"
        )
        return match.group(0)
    return value


def render_string(text: str, instance: ProcessInstance) -> Any:
    """Substitute references inside a string.

    ``${ref}`` tokens and explicit ``$Process``/``$Activity`` references
    must resolve. A string consisting of a single ``${ref}`` returns the
    raw value so JSON bodies keep their types. Compact inline tokens
    (``a:id.v:name``, ``process.name``) and ``env:NAME`` are substituted
    when available and otherwise left in place.
    """
    whole = TEMPLATE_TOKEN.fullmatch(text.strip())
    if whole:
        return resolve(whole.group(1), instance)

    result = TEMPLATE_TOKEN.sub(lambda m: _as_text(resolve(m.group(1), instance)), text)
    result = EXPLICIT_INLINE_REF.sub(lambda m: _as_text(resolve(m.group(0), instance)), result)
    result = _lenient(COMPACT_FIELD_REF, lambda m: m.group(0), result, instance)
    result = _lenient(PROCESS_INLINE_REF, lambda m: m.group(0), result, instance)
    return ENV_REF.sub(_substitute_env, result)


def render_template(value: Any, instance: ProcessInstance) -> Any:
    """Recursively render strings inside dicts and lists."""
    if isinstance(value, str):
        return render_string(value, instance)
    if isinstance(value, dict):
        return {key: render_template(item, instance) for key, item in value.items()}
    if isinstance(value, list):
        return [render_template(item, instance) for item in value]
    return value
