"""
Variable Resolution — substitute ``{{nodeId[...]}}`` placeholders.

A placeholder names an upstream node and a path into its recorded
output, e.g. ``{{webhook_0[0].data.body.amount}}`` reads
``items[0].data["body"]["amount"]`` of node ``webhook_0``.
Placeholders may nest inside the path of another placeholder.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Mapping, Sequence

from flowcore.workflow.execution_model import NodeExecutionRecord
from flowcore.workflow.workflow_model import WorkflowNode

_SEGMENT_RE = re.compile(r"\[\s*(\d+)\s*\]|\[\s*['\"]([^'\"]*)['\"]\s*\]|([^.\[\]]+)")

_MISSING = object()


def find_placeholders(text: str) -> List[str]:
    """Return the inner text of every ``{{...}}``, innermost first."""
    found: List[str] = []
    stack: List[int] = []
    for i in range(len(text) - 1):
        pair = text[i:i + 2]
        if pair == "{{":
            stack.append(i + 2)
        elif pair == "}}" and stack:
            start = stack.pop()
            found.append(text[start:i])
    return found


def get_path(obj: Any, path: str, default: Any = None) -> Any:
    """Follow a dotted / bracketed path through dicts and lists."""
    current = obj
    for match in _SEGMENT_RE.finditer(path):
        index, quoted, name = match.groups()
        key: Any = int(index) if index is not None else (quoted if quoted is not None else name)
        current = _step(current, key)
        if current is _MISSING:
            return default
    return current


def _step(current: Any, key: Any) -> Any:
    if isinstance(current, Mapping):
        if key in current:
            return current[key]
        return current.get(str(key), _MISSING)
    if isinstance(current, (list, tuple)):
        try:
            return current[int(key)]
        except (ValueError, IndexError):
            return _MISSING
    return _MISSING


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def resolve_value(text: str, records: Mapping[str, Dict[str, Any]], key: str = "") -> Any:
    """Resolve every placeholder in ``text`` against executed records.

    A text that is exactly one placeholder returns the raw value.
    Unknown node ids leave the placeholder untouched.
    """
    resolved: Dict[str, Any] = {}
    for inner in find_placeholders(text):
        node_id, sep, rest = inner.partition("[")
        record = records.get(node_id.strip())
        if record is None:
            continue
        path = "data" + (f"[{rest}" if sep else "")
        if "{{" in path:
            path = _stringify(resolve_value(path, records, key))
        value = get_path(record, path, "")
        if key == "code" and isinstance(value, str):
            value = f'"{value}"'
        resolved[f"{{{{{inner}}}}}"] = value

    if not resolved:
        return text
    if text.strip() in resolved:
        return resolved[text.strip()]

    # Outer placeholders contain their nested ones; replace them first.
    for token in sorted(resolved, key=len, reverse=True):
        text = text.replace(token, _stringify(resolved[token]))
    return text


def _resolve_params(params: Dict[str, Any], records: Mapping[str, Dict[str, Any]]) -> None:
    for key, value in params.items():
        if isinstance(value, str):
            params[key] = resolve_value(value, records, key)
        elif isinstance(value, dict):
            _resolve_params(value, records)
        elif isinstance(value, list):
            for element in value:
                if isinstance(element, dict):
                    _resolve_params(element, records)


def resolve_variables(
    node: WorkflowNode,
    executed: Sequence[NodeExecutionRecord],
) -> WorkflowNode:
    """Return a copy of ``node`` with placeholders resolved.

    Only the ``actions``, ``networks`` and ``inputParameters`` sets
    are touched; credentials are never templated.
    """
    records = {r.node_id: r.to_trace() for r in executed}
    resolved = node.model_copy(deep=True)
    for _name, params in resolved.parameter_sets():
        _resolve_params(params, records)
    return resolved
