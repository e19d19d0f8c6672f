"""Node-graph parameters for ComfyStack-style workflows.

A node workflow is stored as ``node id -> {"class_type": ..., "inputs": {...}}``.
Jobs never add nodes or inputs: default params and axis values only
overwrite inputs the stored graph already declares, so an axis aimed at an
unknown node/input is a configuration error rather than a silent no-op.
"""
from __future__ import annotations

import copy
import logging
import re
from typing import Any, Iterable, Mapping

logger = logging.getLogger(__name__)

NodeGraph = dict[str, dict[str, Any]]

IMAGE_INPUTS = ("image", "image_url", "input_image", "source_image")

# Object-storage keys the remote side can no longer resolve
_STALE_IMAGE_RE = re.compile(r"te-[a-z0-9]+/ac-[a-z0-9]+/sui-[a-z0-9]+\.(webp|jpg|jpeg|png|gif)")

_TRUE = {"true", "1", "yes", "on"}
_FALSE = {"false", "0", "no", "off"}


class NodeGraphError(ValueError):
    """A node id or input name does not exist in the stored graph."""


def node_inputs(graph: Mapping[str, Any], node_id: str) -> dict[str, Any] | None:
    node = graph.get(node_id)
    if not isinstance(node, Mapping):
        return None
    inputs = node.get("inputs")
    return inputs if isinstance(inputs, dict) else None


def has_input(graph: Mapping[str, Any], node_id: str, input_name: str) -> bool:
    inputs = node_inputs(graph, node_id)
    return inputs is not None and input_name in inputs


def require_input(graph: Mapping[str, Any], node_id: str, input_name: str, label: str) -> None:
    if node_id not in graph:
        raise NodeGraphError(f"{label} axis: node {node_id} does not exist in the workflow")
    if node_inputs(graph, node_id) is None:
        raise NodeGraphError(f"{label} axis: node {node_id} has no inputs")
    if not has_input(graph, node_id, input_name):
        raise NodeGraphError(f"{label} axis: node {node_id} has no input '{input_name}'")


def coerce_like(current: Any, value: str) -> Any:
    """Convert an axis string to the type of the input it replaces.

    Values that do not parse are passed through as strings; the remote
    workflow reports the mismatch.
    """
    text = value.strip()
    if isinstance(current, bool):
        lowered = text.lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
        return value
    if isinstance(current, int):
        try:
            return int(text)
        except ValueError:
            try:
                as_float = float(text)
            except ValueError:
                return value
            return int(as_float) if as_float.is_integer() else as_float
    if isinstance(current, float):
        try:
            return float(text)
        except ValueError:
            return value
    return value


def apply_defaults(graph: NodeGraph, default_params: Mapping[str, Mapping[str, Any]] | None) -> None:
    """Overwrite existing inputs in place; unknown nodes/inputs are ignored."""
    for node_id, values in (default_params or {}).items():
        inputs = node_inputs(graph, node_id)
        if inputs is None or not isinstance(values, Mapping):
            continue
        for name, value in values.items():
            if name in inputs:
                inputs[name] = value


def build_node_params(
    node_data: Mapping[str, Any],
    default_params: Mapping[str, Mapping[str, Any]] | None = None,
    axes: Iterable[tuple[str, str, str]] = (),
) -> NodeGraph:
    """Copy *node_data*, layer the defaults, then write each ``(node, input, value)`` axis."""
    graph: NodeGraph = copy.deepcopy(dict(node_data))
    apply_defaults(graph, default_params)
    for node_id, input_name, value in axes:
        inputs = node_inputs(graph, node_id)
        if inputs is None or input_name not in inputs:
            raise NodeGraphError(f"Node {node_id} has no input '{input_name}'")
        inputs[input_name] = coerce_like(inputs[input_name], value)
    return graph


def clear_stale_images(graph: NodeGraph) -> NodeGraph:
    """Return a copy with unresolvable image references set to None."""
    cleaned = copy.deepcopy(graph)
    for node_id in cleaned:
        inputs = node_inputs(cleaned, node_id)
        if inputs is None:
            continue
        for name in IMAGE_INPUTS:
            ref = inputs.get(name)
            if isinstance(ref, str) and _STALE_IMAGE_RE.search(ref):
                logger.warning("Dropping stale image reference in node %s (%s): %s", node_id, name, ref)
                inputs[name] = None
    return cleaned
