"""
Graph API Routes.

Endpoints for inspecting and executing compiled workflow graphs.
"""

from typing import Any, Dict, Optional, Set
from fastapi import APIRouter, HTTPException, BackgroundTasks
from fastapi.responses import PlainTextResponse
from uuid import uuid4
import asyncio
import logging

from dagflow.api.schemas import (
    EdgeInfo,
    ErrorResponse,
    ExecutionLogEntry,
    ExecutionStatus,
    FieldInfo,
    GraphInfoResponse,
    GraphListResponse,
    GraphRunRequest,
    GraphRunResponse,
    RunListResponse,
    RunStateResponse,
)
from dagflow.engine.errors import SchemaError
from dagflow.engine.executor import ExecutionResult, ExecutionStep, Executor
from dagflow.engine.graph import CompiledGraph
from dagflow.storage.memory import StoredGraph, StoredRun, graph_storage, run_storage


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/graph", tags=["Graph"])

# Keeps progress-update tasks referenced until they finish
_pending_updates: Set[asyncio.Task] = set()


# ============================================================
# Graph Endpoints
# ============================================================

@router.get(
    "/",
    response_model=GraphListResponse,
)
async def list_graphs() -> GraphListResponse:
    """List all available graphs."""
    graphs = await graph_storage.list_all()
    graph_infos = [_graph_info(stored, include_diagram=False) for stored in graphs]
    return GraphListResponse(graphs=graph_infos, total=len(graph_infos))


def _graph_info(stored: StoredGraph, include_diagram: bool = True) -> GraphInfoResponse:
    graph = stored.graph
    return GraphInfoResponse(
        graph_id=stored.graph_id,
        name=stored.name,
        description=graph.description or None,
        node_count=len(graph.order),
        nodes=list(graph.order),
        edges=[EdgeInfo(source=e.source, target=e.target) for e in graph.edges],
        join_points=dict(graph.join_points),
        state_schema={
            name: FieldInfo(type=spec.type.value, required=spec.required)
            for name, spec in graph.schema.fields.items()
        },
        created_at=stored.created_at.isoformat(),
        mermaid_diagram=graph.to_mermaid() if include_diagram else None,
    )


async def _get_graph_or_404(graph_id: str) -> StoredGraph:
    stored = await graph_storage.get(graph_id)
    if not stored:
        raise HTTPException(status_code=404, detail=f"Graph '{graph_id}' not found")
    return stored


# ============================================================
# Run State Endpoints
# ============================================================

@router.get(
    "/runs",
    response_model=RunListResponse,
)
async def list_runs(graph_id: Optional[str] = None) -> RunListResponse:
    """List all runs, optionally filtered by graph_id."""
    if graph_id:
        runs = await run_storage.list_by_graph(graph_id)
    else:
        runs = await run_storage.list_all()

    run_states = [_run_state(stored) for stored in runs]
    return RunListResponse(runs=run_states, total=len(run_states))


@router.get(
    "/state/{run_id}",
    response_model=RunStateResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_run_state(run_id: str) -> RunStateResponse:
    """
    Get the current state of a workflow run.

    Use this to poll the status of async executions.
    """
    stored = await run_storage.get(run_id)
    if not stored:
        raise HTTPException(status_code=404, detail=f"Run '{run_id}' not found")
    return _run_state(stored)


def _run_state(stored: StoredRun) -> RunStateResponse:
    return RunStateResponse(
        run_id=stored.run_id,
        graph_id=stored.graph_id,
        status=ExecutionStatus(stored.status),
        current_state=stored.current_state,
        completed_nodes=list(stored.completed_nodes),
        execution_log=[ExecutionLogEntry(**entry) for entry in stored.execution_log],
        started_at=stored.started_at.isoformat(),
        completed_at=stored.completed_at.isoformat() if stored.completed_at else None,
        error=stored.error,
        failed_node=stored.failed_node,
    )


# ============================================================
# Execution Endpoints
# ============================================================

@router.post(
    "/run",
    response_model=GraphRunResponse,
    responses={
        404: {"model": ErrorResponse},
        422: {"model": ErrorResponse, "description": "Initial state does not match the schema"},
    }
)
async def run_graph(
    request: GraphRunRequest,
    background_tasks: BackgroundTasks,
) -> GraphRunResponse:
    """
    Execute a workflow graph with the given initial state.

    If `async_execution` is True, the workflow runs in the background
    and you can poll the status using GET /graph/state/{run_id}.
    A node failure or a merge conflict is reported with status `failed`.
    """
    stored = await _get_graph_or_404(request.graph_id)
    graph = stored.graph

    # Reject an invalid initial state before a run record exists
    try:
        graph.schema.validate(request.initial_state)
    except SchemaError as e:
        raise HTTPException(
            status_code=422,
            detail={"field": e.field, "reason": e.reason},
        )

    run_id = str(uuid4())
    await run_storage.create(run_id, request.graph_id, request.initial_state)

    if request.async_execution:
        background_tasks.add_task(
            _execute_and_store,
            graph,
            run_id,
            request.initial_state,
        )

        return GraphRunResponse(
            run_id=run_id,
            graph_id=request.graph_id,
            status=ExecutionStatus.PENDING,
            final_state={},
            execution_log=[],
            started_at=None,
            completed_at=None,
            total_duration_ms=None,
        )

    result = await _execute_and_store(graph, run_id, request.initial_state)
    return _result_to_response(result)


async def _execute_and_store(
    graph: CompiledGraph,
    run_id: str,
    initial_state: Dict[str, Any]
) -> ExecutionResult:
    """Execute a workflow and record its outcome in run storage."""
    executor = Executor(
        graph,
        run_id=run_id,
        on_step=lambda step, state: _update_run_state(run_id, step, state),
    )
    result = await executor.run(initial_state)
    log = [s.to_dict() for s in result.execution_log]

    if result.status.value == "completed":
        await run_storage.complete(run_id, result.final_state, log, result.completed_nodes)
    else:
        await run_storage.fail(
            run_id,
            result.error or "Unknown error",
            result.final_state,
            log,
            result.failed_node,
        )
    return result


def _update_run_state(run_id: str, step: ExecutionStep, state: Dict[str, Any]) -> None:
    """Record progress while the run is executing (sync callback)."""
    task = asyncio.get_running_loop().create_task(
        run_storage.update_state(run_id, dict(state), step.node, step.to_dict())
    )
    _pending_updates.add(task)
    task.add_done_callback(_pending_updates.discard)


def _result_to_response(result: ExecutionResult) -> GraphRunResponse:
    """Convert ExecutionResult to API response."""
    return GraphRunResponse(
        run_id=result.run_id,
        graph_id=result.graph_id,
        status=ExecutionStatus(result.status.value),
        final_state=result.final_state,
        execution_log=[ExecutionLogEntry(**s.to_dict()) for s in result.execution_log],
        completed_nodes=list(result.completed_nodes),
        started_at=result.started_at.isoformat() if result.started_at else None,
        completed_at=result.completed_at.isoformat() if result.completed_at else None,
        total_duration_ms=result.total_duration_ms,
        waves=result.waves,
        error=result.error,
        failed_node=result.failed_node,
    )


# ============================================================
# Graph Detail Endpoints
# ============================================================

@router.get(
    "/{graph_id}",
    response_model=GraphInfoResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_graph(graph_id: str) -> GraphInfoResponse:
    """Get information about a specific graph, including its Mermaid diagram."""
    stored = await _get_graph_or_404(graph_id)
    return _graph_info(stored)


@router.get(
    "/{graph_id}/diagram",
    response_class=PlainTextResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_graph_diagram(graph_id: str) -> PlainTextResponse:
    """Get the graph's Mermaid diagram as plain text."""
    stored = await _get_graph_or_404(graph_id)
    return PlainTextResponse(stored.graph.to_mermaid())
