"""
Async Workflow Executor.

The executor walks a compiled graph in topological waves. Every node whose
predecessors have all completed joins the next wave; the members of a wave
run concurrently and their outputs are merged together once all of them
have finished.
"""

from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import asyncio
import uuid
import time
import logging

from dagflow.engine.errors import DagFlowError, ExecutionError, MergeConflictError
from dagflow.engine.graph import CompiledGraph
from dagflow.engine.node import END, START, Node
from dagflow.engine.state import ExecutionRun, StateMerger


logger = logging.getLogger(__name__)


class ExecutionStatus(str, Enum):
    """Status of a workflow execution."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class ExecutionStep:
    """A single node invocation in the execution log."""
    step: int
    node: str
    wave: int
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_ms: Optional[float] = None
    result: str = "success"
    error: Optional[str] = None
    output: Dict[str, Any] = field(default_factory=dict)
    join_point: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step,
            "node": self.node,
            "wave": self.wave,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "result": self.result,
            "error": self.error,
            "output": self.output,
            "join_point": self.join_point,
        }


@dataclass
class ExecutionResult:
    """Result of a workflow execution."""
    run_id: str
    graph_id: str
    status: ExecutionStatus
    final_state: Dict[str, Any]
    execution_log: List[ExecutionStep] = field(default_factory=list)
    completed_nodes: List[str] = field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    total_duration_ms: Optional[float] = None
    error: Optional[str] = None
    failed_node: Optional[str] = None
    exception: Optional[DagFlowError] = None
    waves: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "graph_id": self.graph_id,
            "status": self.status.value,
            "final_state": self.final_state,
            "execution_log": [step.to_dict() for step in self.execution_log],
            "completed_nodes": self.completed_nodes,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "total_duration_ms": self.total_duration_ms,
            "error": self.error,
            "failed_node": self.failed_node,
            "waves": self.waves,
        }


class Executor:
    """
    Async workflow executor.

    Executes a compiled graph with a given initial state, handling:
    - Initial state validation against the schema
    - Topological scheduling, fan-out siblings running concurrently
    - Isolated, read-only snapshots for each node
    - Merging with conflict detection between concurrent branches
    - Detailed execution logging

    A node that raises aborts the run; nothing is retried.

    Usage:
        executor = Executor(compiled_graph)
        result = await executor.run({"amount_usd": 100})
    """

    def __init__(
        self,
        graph: CompiledGraph,
        run_id: Optional[str] = None,
        on_step: Optional[Callable[[ExecutionStep, Dict[str, Any]], None]] = None
    ):
        """
        Initialize the executor.

        Args:
            graph: The compiled workflow graph to execute
            run_id: Optional run ID (generated if not provided)
            on_step: Optional callback invoked after each node's output is merged
        """
        self.graph = graph
        self.run_id = run_id or str(uuid.uuid4())
        self.on_step = on_step

        self._run: Optional[ExecutionRun] = None
        self._execution_log: List[ExecutionStep] = []
        self._step_counter = 0
        self._status = ExecutionStatus.PENDING

    @property
    def status(self) -> ExecutionStatus:
        return self._status

    @property
    def current_state(self) -> Optional[Dict[str, Any]]:
        if self._run:
            return self._run.current_state
        return None

    async def run(self, initial_state: Mapping[str, Any]) -> ExecutionResult:
        """
        Execute the workflow with the given initial state.

        Args:
            initial_state: Initial state data

        Returns:
            ExecutionResult with final state and logs

        Raises:
            SchemaError: the initial state is invalid; the run never starts
        """
        state = self.graph.schema.validate(initial_state)

        self._execution_log = []
        self._step_counter = 0
        start_time = time.time()
        self._status = ExecutionStatus.RUNNING
        merger = StateMerger(self.graph.schema, state, self.graph.is_ancestor)
        self._run = ExecutionRun(merger, self.graph.order, self.run_id)
        logger.info(f"Starting run {self.run_id} of graph '{self.graph.name}'")

        self._announce_fan_out(START)
        wave = 0
        try:
            while self._run.pending:
                ready = self._ready_nodes()
                if not ready:
                    # Unreachable for a compiled graph
                    raise RuntimeError(f"No runnable nodes among {sorted(self._run.pending)}")
                wave += 1
                await self._execute_wave(ready, wave)

        except (ExecutionError, MergeConflictError) as e:
            logger.error(f"Run {self.run_id} failed: {e}")
            return self._create_error_result(e, start_time, wave)

        self._status = ExecutionStatus.COMPLETED
        final_state = self._run.finalize()
        logger.info(f"Run {self.run_id} reached END after {wave} waves")

        return ExecutionResult(
            run_id=self.run_id,
            graph_id=self.graph.graph_id,
            status=self._status,
            final_state=final_state,
            execution_log=self._execution_log,
            completed_nodes=list(self._run.completed),
            started_at=self._run.started_at,
            completed_at=self._run.completed_at,
            total_duration_ms=(time.time() - start_time) * 1000,
            waves=wave,
        )

    def _ready_nodes(self) -> List[str]:
        """Pending nodes whose predecessors have all completed, in topological order."""
        done = set(self._run.completed)
        return [
            name for name in self.graph.order
            if name in self._run.pending
            and all(p == START or p in done for p in self.graph.predecessors[name])
        ]

    async def _execute_wave(self, names: List[str], wave: int) -> None:
        if len(names) > 1:
            logger.info(f"Wave {wave}: running {names} concurrently")

        # Snapshots are taken before any member starts
        snapshots = {name: self._run.snapshot_for(name) for name in names}
        outcomes = await asyncio.gather(*(
            self._execute_node(name, self.graph.node(name), snapshots[name], wave)
            for name in names
        ))

        failed = [(step, error) for step, _, error in outcomes if error is not None]
        if failed:
            step, error = failed[0]
            raise ExecutionError(step.node, error, self._run.current_state)

        outputs: List[Tuple[str, Dict[str, Any]]] = [
            (step.node, partial) for step, partial, _ in outcomes
        ]
        state = self._run.complete_group(outputs, wave)

        for step, _, _ in outcomes:
            logger.info(f"Node '{step.node}' completed in {step.duration_ms:.2f}ms")
            self._announce_fan_out(step.node)
            if self.on_step:
                try:
                    self.on_step(step, state)
                except Exception as e:
                    logger.warning(f"Step callback failed: {e}")

    async def _execute_node(
        self,
        name: str,
        node: Node,
        snapshot: Mapping[str, Any],
        wave: int
    ) -> Tuple[ExecutionStep, Dict[str, Any], Optional[Exception]]:
        """Invoke one node and check its output; failures are returned, not raised."""
        self._step_counter += 1
        step = ExecutionStep(
            step=self._step_counter,
            node=name,
            wave=wave,
            started_at=datetime.now(),
            join_point=self.graph.join_points.get(name),
        )
        node_start_time = time.perf_counter()
        logger.debug(f"Executing node: {name} (step {step.step})")

        partial: Dict[str, Any] = {}
        error: Optional[Exception] = None
        try:
            partial = self._check_output(node, await node.execute(snapshot))
        except Exception as e:
            logger.error(f"Node {name} failed: {e}")
            error = e

        step.completed_at = datetime.now()
        step.duration_ms = (time.perf_counter() - node_start_time) * 1000
        if error is not None:
            step.result = "error"
            step.error = str(error)
        else:
            step.output = partial

        self._execution_log.append(step)
        return step, partial, error

    def _check_output(self, node: Node, output: Any) -> Dict[str, Any]:
        if not isinstance(output, Mapping):
            raise TypeError(
                f"Node '{node.name}' must return a mapping, "
                f"got {type(output).__name__}"
            )
        if node.output_fields is not None:
            undeclared = sorted(set(output) - node.output_fields)
            if undeclared:
                raise ValueError(f"Node '{node.name}' wrote undeclared fields: {undeclared}")
        return self.graph.schema.validate_partial(output)

    def _announce_fan_out(self, name: str) -> None:
        targets = self.graph.successors.get(name, ())
        if len(targets) > 1:
            join = self.graph.join_points[name]
            logger.info(
                f"Fan-out from '{name}' to {list(targets)}, "
                f"joining at '{'END' if join == END else join}'"
            )

    def _create_error_result(
        self,
        error: DagFlowError,
        start_time: float,
        waves: int
    ) -> ExecutionResult:
        self._status = ExecutionStatus.FAILED
        return ExecutionResult(
            run_id=self.run_id,
            graph_id=self.graph.graph_id,
            status=ExecutionStatus.FAILED,
            final_state=self.current_state or {},
            execution_log=self._execution_log,
            completed_nodes=list(self._run.completed) if self._run else [],
            started_at=self._run.started_at if self._run else None,
            completed_at=datetime.now(),
            total_duration_ms=(time.time() - start_time) * 1000,
            error=str(error),
            failed_node=getattr(error, "node", None),
            exception=error,
            waves=waves,
        )

    def get_execution_summary(self) -> Dict[str, Any]:
        """Get a summary of the current execution."""
        return {
            "run_id": self.run_id,
            "graph_id": self.graph.graph_id,
            "status": self._status.value,
            "current_state": self.current_state,
            "completed_nodes": list(self._run.completed) if self._run else [],
            "pending_nodes": sorted(self._run.pending) if self._run else [],
            "step_count": self._step_counter,
        }


async def execute_graph(
    graph: CompiledGraph,
    initial_state: Mapping[str, Any],
    run_id: Optional[str] = None,
    on_step: Optional[Callable] = None
) -> ExecutionResult:
    """
    Convenience function to execute a compiled graph.

    Args:
        graph: The compiled workflow graph
        initial_state: Initial state data
        run_id: Optional run ID
        on_step: Optional step callback

    Returns:
        ExecutionResult
    """
    executor = Executor(graph, run_id, on_step)
    return await executor.run(initial_state)
