"""
Graph Definition for Workflow Engine.

A ``StateGraph`` collects nodes and static edges. ``compile`` validates the
structure once and produces an immutable ``CompiledGraph`` that any number of
concurrent runs can share.
"""

from typing import IO, Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Set, Tuple, Union
from dataclasses import dataclass, field
from types import MappingProxyType
import logging
import uuid

from dagflow.engine.diagram import render, write_diagram
from dagflow.engine.errors import (
    CycleError,
    GraphError,
    OrphanNodeError,
    SchemaError,
    UnknownNodeError,
)
from dagflow.engine.node import END, START, Node, NodeRegistry
from dagflow.engine.schema import StateSchema


logger = logging.getLogger(__name__)

MARKERS = (START, END)


@dataclass(frozen=True)
class Edge:
    """A directed edge between two nodes (or a marker)."""
    source: str
    target: str

    def to_dict(self) -> Dict[str, str]:
        return {"source": self.source, "target": self.target}


class StateGraph:
    """
    Builder for a workflow graph.

    Usage:
        graph = StateGraph(schema, name="Currency")
        graph.add_node("fetch_rate", FetchRateNode())
        graph.add_edge(START, "fetch_rate")
        graph.add_edge("fetch_rate", END)
        workflow = graph.compile()
        final_state = await workflow.invoke({"amount_usd": 100})

    Edges are only checked at compile time, so they may be declared in any
    order relative to the nodes they reference.
    """

    def __init__(
        self,
        schema: StateSchema,
        name: str = "Unnamed Workflow",
        description: str = "",
        graph_id: Optional[str] = None,
    ):
        self.schema = schema
        self.name = name
        self.description = description
        self.graph_id = graph_id or str(uuid.uuid4())
        self.registry = NodeRegistry()
        # Insertion-ordered set of edges
        self._edges: Dict[Tuple[str, str], Edge] = {}

    def add_node(
        self,
        name: Union[str, Node, Callable],
        capability: Optional[Union[Node, Callable]] = None,
        outputs: Optional[Iterable[str]] = None,
        description: str = ""
    ) -> "StateGraph":
        """
        Register a node.

        ``name`` may be omitted by passing the capability directly, in which
        case the Node's own name (or the decorated/plain function name) is
        used.

        Raises:
            DuplicateNodeError: if the name is already registered

        Returns:
            Self for chaining
        """
        if not isinstance(name, str):
            capability, name = name, ""
        if capability is None:
            raise ValueError(f"No capability provided for node '{name}'")
        if not name:
            metadata = getattr(capability, "_node_metadata", {})
            name = (
                capability.name if isinstance(capability, Node)
                else metadata.get("name") or getattr(capability, "__name__", "")
            )
        if not name:
            raise ValueError("Node name cannot be empty")

        self.registry.register(name, capability, outputs, description)
        return self

    def add_edge(self, source: str, target: str) -> "StateGraph":
        """
        Add a direct edge from source to target.

        Re-adding an existing edge is a no-op.

        Returns:
            Self for chaining
        """
        self._edges.setdefault((source, target), Edge(source, target))
        return self

    @property
    def edges(self) -> List[Edge]:
        return list(self._edges.values())

    def compile(self) -> "CompiledGraph":
        """Validate the graph and freeze it for execution."""
        compiled = build_graph(
            self.schema,
            self.edges,
            self.registry.freeze(),
            graph_id=self.graph_id,
            name=self.name,
            description=self.description,
        )
        logger.info(
            f"Compiled graph '{self.name}' with {len(compiled.order)} nodes "
            f"and {len(compiled.edges)} edges"
        )
        return compiled

    def to_mermaid(self) -> str:
        return render((e.source, e.target) for e in self._edges.values())

    def __repr__(self) -> str:
        return f"StateGraph(name='{self.name}', nodes={list(self.registry)})"


@dataclass(frozen=True, eq=False)
class CompiledGraph:
    """
    A validated, immutable workflow graph.

    Attributes:
        order: Nodes in a deterministic topological order
        successors: node or START -> ordered direct successors
        predecessors: node or END -> direct predecessors
        ancestors: node -> every node with a path to it
        join_points: fan-out source -> nearest node all its branches reach
    """

    graph_id: str
    name: str
    description: str
    schema: StateSchema
    registry: NodeRegistry
    edges: Tuple[Edge, ...]
    order: Tuple[str, ...]
    successors: Mapping[str, Tuple[str, ...]]
    predecessors: Mapping[str, Tuple[str, ...]]
    ancestors: Mapping[str, FrozenSet[str]]
    join_points: Mapping[str, str]
    metadata: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def node(self, name: str) -> Node:
        return self.registry.lookup(name)

    @property
    def nodes(self) -> Dict[str, Node]:
        return {name: self.registry.lookup(name) for name in self.order}

    def is_ancestor(self, candidate: Optional[str], node_name: str) -> bool:
        """True when ``candidate`` must have completed before ``node_name`` runs."""
        if candidate is None or node_name == END:
            return True
        return candidate in self.ancestors.get(node_name, frozenset())

    async def invoke(self, initial_state: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Run the graph and return the final state.

        Raises:
            SchemaError: the initial state is invalid; no node runs
            ExecutionError: a node failed with an unrecovered error
            MergeConflictError: concurrent nodes wrote conflicting values
        """
        from dagflow.engine.executor import Executor

        result = await Executor(self).run(initial_state)
        if result.exception is not None:
            raise result.exception
        return result.final_state

    def to_mermaid(self) -> str:
        return render((e.source, e.target) for e in self.edges)

    def write_diagram(self, sink: IO[str]) -> None:
        write_diagram(((e.source, e.target) for e in self.edges), sink)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the graph structure to a dictionary."""
        return {
            "graph_id": self.graph_id,
            "name": self.name,
            "description": self.description,
            "schema": self.schema.to_dict(),
            "nodes": {name: node.to_dict() for name, node in self.nodes.items()},
            "edges": [e.to_dict() for e in self.edges],
            "order": list(self.order),
            "join_points": dict(self.join_points),
        }

    def __repr__(self) -> str:
        return f"CompiledGraph(name='{self.name}', nodes={list(self.order)})"


def build_graph(
    schema: StateSchema,
    edges: Iterable[Edge],
    registry: NodeRegistry,
    graph_id: Optional[str] = None,
    name: str = "Unnamed Workflow",
    description: str = "",
) -> CompiledGraph:
    """
    Validate an edge table against a registry and compile it.

    Raises:
        GraphError: misuse of START/END, or END unreachable
        UnknownNodeError: an endpoint is not registered
        CycleError: the edges contain a cycle
        OrphanNodeError: a node lacks incoming or outgoing edges
        SchemaError: a node declares an output field the schema lacks
    """
    edges = tuple(dict.fromkeys(edges))
    node_names = list(registry)

    for edge in edges:
        if edge.target == START:
            raise GraphError("START cannot be the target of an edge")
        if edge.source == END:
            raise GraphError("END cannot be the source of an edge")
        for endpoint in (edge.source, edge.target):
            if endpoint not in MARKERS and endpoint not in registry:
                raise UnknownNodeError(endpoint)

    successors: Dict[str, List[str]] = {n: [] for n in [START, *node_names]}
    predecessors: Dict[str, List[str]] = {n: [] for n in [*node_names, END]}
    for edge in edges:
        successors[edge.source].append(edge.target)
        predecessors[edge.target].append(edge.source)

    if not successors[START]:
        raise GraphError("Graph has no edge leaving START")

    _check_cycles(successors)

    for node_name in node_names:
        if not predecessors[node_name]:
            raise OrphanNodeError(node_name, "incoming")
        if not successors[node_name]:
            raise OrphanNodeError(node_name, "outgoing")

    if END not in _reachable(START, successors):
        raise GraphError("END is not reachable from START")

    for node_name in node_names:
        declared = registry.lookup(node_name).output_fields
        for field_name in sorted(declared or ()):
            if field_name not in schema:
                raise SchemaError(
                    field_name,
                    f"declared as an output of node '{node_name}' but not in the schema",
                )

    order = _topological_order(node_names, successors, predecessors)
    ancestors = _ancestors(order, predecessors)
    join_points = _join_points(order, successors)

    return CompiledGraph(
        graph_id=graph_id or str(uuid.uuid4()),
        name=name,
        description=description,
        schema=schema,
        registry=registry if registry.frozen else registry.freeze(),
        edges=edges,
        order=order,
        successors=MappingProxyType({k: tuple(v) for k, v in successors.items()}),
        predecessors=MappingProxyType({k: tuple(v) for k, v in predecessors.items()}),
        ancestors=MappingProxyType(ancestors),
        join_points=MappingProxyType(join_points),
    )


_WHITE, _GREY, _BLACK = 0, 1, 2


def _check_cycles(successors: Mapping[str, List[str]]) -> None:
    color: Dict[str, int] = {n: _WHITE for n in successors}
    path: List[str] = []

    def visit(current: str) -> None:
        color[current] = _GREY
        path.append(current)
        for nxt in successors.get(current, ()):
            state = color.get(nxt, _BLACK)  # END has no successors
            if state == _GREY:
                raise CycleError(path[path.index(nxt):] + [nxt])
            if state == _WHITE:
                visit(nxt)
        path.pop()
        color[current] = _BLACK

    for start in successors:
        if color[start] == _WHITE:
            visit(start)


def _reachable(origin: str, successors: Mapping[str, List[str]]) -> Set[str]:
    seen: Set[str] = set()
    to_visit = [origin]
    while to_visit:
        current = to_visit.pop()
        if current in seen:
            continue
        seen.add(current)
        to_visit.extend(successors.get(current, ()))
    return seen


def _topological_order(
    node_names: List[str],
    successors: Mapping[str, List[str]],
    predecessors: Mapping[str, List[str]],
) -> Tuple[str, ...]:
    # Kahn's algorithm; ties broken by registration order
    rank = {n: i for i, n in enumerate(node_names)}
    remaining = {
        n: sum(1 for p in predecessors[n] if p != START) for n in node_names
    }
    ready = sorted((n for n, count in remaining.items() if count == 0), key=rank.get)
    order: List[str] = []
    while ready:
        current = ready.pop(0)
        order.append(current)
        for nxt in successors[current]:
            if nxt == END:
                continue
            remaining[nxt] -= 1
            if remaining[nxt] == 0:
                ready.append(nxt)
                ready.sort(key=rank.get)
    return tuple(order)


def _ancestors(
    order: Tuple[str, ...],
    predecessors: Mapping[str, List[str]],
) -> Dict[str, FrozenSet[str]]:
    result: Dict[str, FrozenSet[str]] = {}
    for node_name in order:
        found: Set[str] = set()
        for pred in predecessors[node_name]:
            if pred == START:
                continue
            found.add(pred)
            found |= result[pred]
        result[node_name] = frozenset(found)
    return result


def _join_points(
    order: Tuple[str, ...],
    successors: Mapping[str, List[str]],
) -> Dict[str, str]:
    descendants: Dict[str, Set[str]] = {}
    for node_name in reversed(order):
        found: Set[str] = set()
        for nxt in successors[node_name]:
            if nxt == END:
                continue
            found.add(nxt)
            found |= descendants[nxt]
        descendants[node_name] = found

    rank = {n: i for i, n in enumerate(order)}
    joins: Dict[str, str] = {}
    for source in (START, *order):
        branches = successors[source]
        if len(branches) < 2:
            continue
        common: Optional[Set[str]] = None
        for branch in branches:
            reach = set() if branch == END else {branch} | descendants[branch]
            common = reach if common is None else common & reach
        joins[source] = min(common, key=rank.get) if common else END
    return joins
