"""
In-Memory Storage for DagFlow.

Holds compiled graphs and execution runs for the lifetime of the process.
Nothing is persisted; a restart starts from an empty store.
"""

from typing import Any, Dict, List, Optional
from datetime import datetime
import asyncio
from dataclasses import dataclass, field

from dagflow.engine.graph import CompiledGraph


@dataclass
class StoredGraph:
    """A stored compiled graph."""
    graph_id: str
    name: str
    graph: CompiledGraph
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "graph_id": self.graph_id,
            "name": self.name,
            "definition": self.graph.to_dict(),
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class StoredRun:
    """A stored execution run."""
    run_id: str
    graph_id: str
    status: str
    initial_state: Dict[str, Any]
    current_state: Dict[str, Any] = field(default_factory=dict)
    final_state: Optional[Dict[str, Any]] = None
    execution_log: List[Dict[str, Any]] = field(default_factory=list)
    completed_nodes: List[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    failed_node: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "graph_id": self.graph_id,
            "status": self.status,
            "initial_state": self.initial_state,
            "current_state": self.current_state,
            "final_state": self.final_state,
            "execution_log": self.execution_log,
            "completed_nodes": self.completed_nodes,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "error": self.error,
            "failed_node": self.failed_node,
        }


class GraphStorage:
    """
    In-memory storage for compiled workflow graphs.

    Compiled graphs are immutable, so one stored instance serves any
    number of concurrent runs.
    """

    def __init__(self):
        self._graphs: Dict[str, StoredGraph] = {}
        self._lock = asyncio.Lock()

    async def save(self, graph_id: str, name: str, graph: CompiledGraph) -> StoredGraph:
        """
        Save a compiled graph, replacing any graph with the same ID.

        Args:
            graph_id: Unique graph identifier
            name: Graph name
            graph: The compiled graph

        Returns:
            The stored graph
        """
        async with self._lock:
            stored = StoredGraph(graph_id=graph_id, name=name, graph=graph)
            self._graphs[graph_id] = stored
            return stored

    async def get(self, graph_id: str) -> Optional[StoredGraph]:
        """Get a graph by ID."""
        async with self._lock:
            return self._graphs.get(graph_id)

    async def delete(self, graph_id: str) -> bool:
        """Delete a graph."""
        async with self._lock:
            if graph_id in self._graphs:
                del self._graphs[graph_id]
                return True
            return False

    async def list_all(self) -> List[StoredGraph]:
        """List all stored graphs."""
        async with self._lock:
            return list(self._graphs.values())

    def __len__(self) -> int:
        return len(self._graphs)


class RunStorage:
    """
    In-memory storage for execution runs.

    Stores run state, allowing updates while a run progresses and queries
    for ongoing and completed runs.
    """

    def __init__(self):
        self._runs: Dict[str, StoredRun] = {}
        self._lock = asyncio.Lock()

    async def create(
        self,
        run_id: str,
        graph_id: str,
        initial_state: Dict[str, Any]
    ) -> StoredRun:
        """
        Create a new run.

        Args:
            run_id: Unique run identifier
            graph_id: Associated graph ID
            initial_state: Initial state data

        Returns:
            The stored run
        """
        async with self._lock:
            stored = StoredRun(
                run_id=run_id,
                graph_id=graph_id,
                status="pending",
                initial_state=initial_state,
                current_state=initial_state.copy(),
            )
            self._runs[run_id] = stored
            return stored

    async def get(self, run_id: str) -> Optional[StoredRun]:
        """Get a run by ID."""
        async with self._lock:
            return self._runs.get(run_id)

    async def update_state(
        self,
        run_id: str,
        current_state: Dict[str, Any],
        completed_node: Optional[str] = None,
        log_entry: Optional[Dict[str, Any]] = None
    ) -> Optional[StoredRun]:
        """Record progress of a running run."""
        async with self._lock:
            if run_id not in self._runs:
                return None
            stored = self._runs[run_id]
            if stored.status in ("completed", "failed"):
                return stored
            stored.current_state = current_state
            stored.status = "running"
            if completed_node is not None:
                stored.completed_nodes.append(completed_node)
            if log_entry is not None:
                stored.execution_log.append(log_entry)
            return stored

    async def complete(
        self,
        run_id: str,
        final_state: Dict[str, Any],
        execution_log: List[Dict[str, Any]],
        completed_nodes: Optional[List[str]] = None
    ) -> Optional[StoredRun]:
        """Mark a run as completed."""
        async with self._lock:
            if run_id not in self._runs:
                return None
            stored = self._runs[run_id]
            stored.status = "completed"
            stored.final_state = final_state
            stored.current_state = final_state
            stored.execution_log = execution_log
            if completed_nodes is not None:
                stored.completed_nodes = list(completed_nodes)
            stored.completed_at = datetime.now()
            return stored

    async def fail(
        self,
        run_id: str,
        error: str,
        final_state: Optional[Dict[str, Any]] = None,
        execution_log: Optional[List[Dict[str, Any]]] = None,
        failed_node: Optional[str] = None
    ) -> Optional[StoredRun]:
        """Mark a run as failed, keeping the state merged before the failure."""
        async with self._lock:
            if run_id not in self._runs:
                return None
            stored = self._runs[run_id]
            stored.status = "failed"
            stored.error = error
            stored.final_state = final_state
            if final_state is not None:
                stored.current_state = final_state
            if execution_log is not None:
                stored.execution_log = execution_log
            stored.failed_node = failed_node
            stored.completed_at = datetime.now()
            return stored

    async def list_all(self) -> List[StoredRun]:
        """List all runs."""
        async with self._lock:
            return list(self._runs.values())

    async def list_by_graph(self, graph_id: str) -> List[StoredRun]:
        """List all runs for a specific graph."""
        async with self._lock:
            return [r for r in self._runs.values() if r.graph_id == graph_id]

    def __len__(self) -> int:
        return len(self._runs)


# Global storage instances
graph_storage = GraphStorage()
run_storage = RunStorage()
