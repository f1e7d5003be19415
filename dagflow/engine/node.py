"""
Node Definition for Workflow Engine.

Nodes are the building blocks of a workflow. A node reads a read-only
snapshot of the shared state and returns a partial state: only the fields
it produces. The engine merges that partial into the run's state.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, FrozenSet, Iterable, Iterator, Mapping, Optional, Union
from dataclasses import dataclass, field
import asyncio
import copy
import functools

from dagflow.engine.errors import DuplicateNodeError, NodeNotFoundError


# Reserved markers for the graph's entry and exit
START = "__START__"
END = "__END__"

RESERVED_NAMES = frozenset({START, END})


class Node(ABC):
    """
    A unit of work in the workflow graph.

    Subclasses implement ``execute``. Recoverable failures of external
    dependencies should be caught inside ``execute`` and answered with a
    fallback partial state; anything that escapes is treated as a defect
    and aborts the run.

    Attributes:
        name: Unique identifier, assigned on registration when not set
        output_fields: Fields this node may write (None means undeclared)
        description: Human-readable description
    """

    name: str = ""
    output_fields: Optional[FrozenSet[str]] = None
    description: str = ""

    @abstractmethod
    async def execute(self, state: Mapping[str, Any]) -> Mapping[str, Any]:
        """Return the partial state produced from ``state``."""

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the node to a dictionary."""
        return {
            "name": self.name,
            "kind": type(self).__name__,
            "description": self.description,
            "output_fields": sorted(self.output_fields) if self.output_fields is not None else None,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name='{self.name}')"


@dataclass(repr=False, kw_only=True)
class FunctionNode(Node):
    """
    Adapts a plain function into a Node.

    Handles both sync and async handlers transparently. Sync handlers run in
    the default thread-pool executor so they do not block sibling nodes.
    """

    name: str
    handler: Callable[[Mapping[str, Any]], Any]
    output_fields: Optional[FrozenSet[str]] = None
    description: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.name:
            raise ValueError("Node name cannot be empty")
        if not callable(self.handler):
            raise ValueError(f"Handler for node '{self.name}' must be callable")
        if self.output_fields is not None:
            self.output_fields = frozenset(self.output_fields)

    @property
    def is_async(self) -> bool:
        """Check if the handler is an async function."""
        return asyncio.iscoroutinefunction(self.handler)

    async def execute(self, state: Mapping[str, Any]) -> Mapping[str, Any]:
        if self.is_async:
            result = await self.handler(state)
        else:
            loop = asyncio.get_running_loop()
            result = await loop.run_in_executor(
                None,
                functools.partial(self.handler, state),
            )

        # A handler returning None produced nothing
        if result is None:
            return {}
        return result

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["handler"] = getattr(self.handler, "__name__", str(self.handler))
        return data


def node(
    name: Optional[str] = None,
    outputs: Optional[Iterable[str]] = None,
    description: str = ""
) -> Callable:
    """
    Decorator attaching node metadata to a function.

    Usage:
        @node(name="convert_amount", outputs=["total_inr"])
        def convert(state):
            return {"total_inr": state["amount_usd"] * state["rate"]}

        graph.add_node(convert)

    Args:
        name: Node name (defaults to function name)
        outputs: Fields the node writes
        description: Human-readable description

    Returns:
        The same function, carrying ``_node_metadata``
    """
    def decorator(func: Callable) -> Callable:
        func._node_metadata = {
            "name": name or func.__name__,
            "outputs": frozenset(outputs) if outputs is not None else None,
            "description": description or (func.__doc__ or "").strip(),
        }
        return func

    return decorator


def create_node(
    capability: Union[Node, Callable],
    name: Optional[str] = None,
    outputs: Optional[Iterable[str]] = None,
    description: str = ""
) -> Node:
    """
    Turn a Node instance or a (possibly decorated) function into a named Node.

    Explicit arguments win over decorator metadata, which wins over
    attributes already set on a Node instance.
    """
    if isinstance(capability, Node):
        node_name = name or capability.name
        if not node_name:
            raise ValueError("Node name cannot be empty")
        # The caller keeps its instance; one instance may back several names
        capability = copy.copy(capability)
        capability.name = node_name
        if outputs is not None:
            capability.output_fields = frozenset(outputs)
        elif capability.output_fields is not None:
            capability.output_fields = frozenset(capability.output_fields)
        if description:
            capability.description = description
        return capability

    if not callable(capability):
        raise ValueError(f"Capability for node '{name}' must be a Node or callable")

    metadata = getattr(capability, "_node_metadata", {})
    return FunctionNode(
        name=name or metadata.get("name") or getattr(capability, "__name__", ""),
        handler=capability,
        output_fields=frozenset(outputs) if outputs is not None else metadata.get("outputs"),
        description=description or metadata.get("description", ""),
    )


class NodeRegistry:
    """
    Maps unique node names to their capabilities.

    The registry is filled before any execution. ``freeze`` makes it
    read-only; compiled graphs only ever hold frozen registries.
    """

    def __init__(self):
        self._nodes: Dict[str, Node] = {}
        self._frozen = False

    def register(
        self,
        name: str,
        capability: Union[Node, Callable],
        output_fields: Optional[Iterable[str]] = None,
        description: str = ""
    ) -> Node:
        if self._frozen:
            raise RuntimeError("Node registry is frozen; nodes cannot be added after compile")
        if name in RESERVED_NAMES:
            raise ValueError(f"'{name}' is a reserved node name")
        if name in self._nodes:
            raise DuplicateNodeError(name)

        registered = create_node(capability, name, output_fields, description)
        self._nodes[name] = registered
        return registered

    def lookup(self, name: str) -> Node:
        try:
            return self._nodes[name]
        except KeyError:
            raise NodeNotFoundError(name) from None

    def freeze(self) -> "NodeRegistry":
        """Return a read-only copy of this registry."""
        frozen = NodeRegistry()
        frozen._nodes = dict(self._nodes)
        frozen._frozen = True
        return frozen

    @property
    def frozen(self) -> bool:
        return self._frozen

    def names(self) -> Iterator[str]:
        return iter(self._nodes)

    def __contains__(self, name: object) -> bool:
        return name in self._nodes

    def __iter__(self) -> Iterator[str]:
        return iter(self._nodes)

    def __len__(self) -> int:
        return len(self._nodes)
