"""
Error taxonomy for the workflow engine.

Graph errors are raised once, when a graph is compiled. Schema errors are
raised before a run starts. Execution and merge-conflict errors abort a run
in progress. Soft failures of external dependencies are not errors: nodes
absorb them and return a fallback partial state.
"""

from typing import Any, Dict, Mapping, Optional, Sequence, Tuple


class DagFlowError(Exception):
    """Base exception for all engine errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class SchemaError(DagFlowError):
    """A state (or a node's output) does not conform to the state schema."""

    def __init__(self, field: str, reason: str):
        super().__init__(
            message=f"Invalid state field '{field}': {reason}",
            details={"field": field, "reason": reason},
        )
        self.field = field
        self.reason = reason


class GraphError(DagFlowError):
    """The declared graph structure is invalid."""


class UnknownNodeError(GraphError):
    """An edge references a node that was never registered."""

    def __init__(self, node: str):
        super().__init__(
            message=f"Edge references unknown node '{node}'",
            details={"node": node},
        )
        self.node = node


class CycleError(GraphError):
    """The edge table contains a cycle."""

    def __init__(self, path: Sequence[str]):
        self.path = tuple(path)
        super().__init__(
            message=f"Graph contains a cycle: {' -> '.join(self.path)}",
            details={"path": list(self.path)},
        )


class OrphanNodeError(GraphError):
    """A node is missing incoming or outgoing edges."""

    def __init__(self, node: str, direction: str):
        super().__init__(
            message=f"Node '{node}' has no {direction} edges",
            details={"node": node, "direction": direction},
        )
        self.node = node
        self.direction = direction


class DuplicateNodeError(GraphError):
    """A node name was registered twice."""

    def __init__(self, name: str):
        super().__init__(
            message=f"Node '{name}' already exists in the graph",
            details={"node": name},
        )
        self.name = name


class NodeNotFoundError(DagFlowError, LookupError):
    """Lookup of a node name that is not registered."""

    def __init__(self, name: str):
        super().__init__(
            message=f"Node '{name}' not found",
            details={"node": name},
        )
        self.name = name


class ExecutionError(DagFlowError):
    """
    A node raised an unrecovered failure.

    ``partial_state`` holds the state merged from every node that completed
    before the failing one.
    """

    def __init__(
        self,
        node: str,
        cause: BaseException,
        partial_state: Optional[Mapping[str, Any]] = None,
    ):
        super().__init__(
            message=f"Error in node '{node}': {cause}",
            details={"node": node, "cause": repr(cause)},
        )
        self.node = node
        self.cause = cause
        self.partial_state = dict(partial_state or {})


class MergeConflictError(DagFlowError):
    """Two concurrent nodes wrote different values to the same field."""

    def __init__(
        self,
        field: str,
        value_a: Any,
        value_b: Any,
        nodes: Tuple[Optional[str], Optional[str]] = (None, None),
    ):
        super().__init__(
            message=(
                f"Conflicting writes to '{field}': {value_a!r} "
                f"({nodes[0]}) vs {value_b!r} ({nodes[1]})"
            ),
            details={
                "field": field,
                "value_a": value_a,
                "value_b": value_b,
                "nodes": list(nodes),
            },
        )
        self.field = field
        self.value_a = value_a
        self.value_b = value_b
        self.nodes = nodes
