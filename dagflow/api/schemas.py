"""
Pydantic Schemas for API Request/Response Models.

These schemas define the structure of data flowing through the API,
providing automatic validation and documentation.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
from enum import Enum


# ============================================================
# Enums
# ============================================================

class ExecutionStatus(str, Enum):
    """Status of a workflow execution."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


# ============================================================
# Graph Schemas
# ============================================================

class EdgeInfo(BaseModel):
    """A directed edge of the graph."""
    source: str
    target: str


class FieldInfo(BaseModel):
    """A declared state field."""
    type: str
    required: bool


class GraphInfoResponse(BaseModel):
    """Response with graph information."""
    graph_id: str
    name: str
    description: Optional[str]
    node_count: int
    nodes: List[str]
    edges: List[EdgeInfo] = Field(default_factory=list)
    join_points: Dict[str, str] = Field(default_factory=dict)
    state_schema: Dict[str, FieldInfo] = Field(default_factory=dict)
    created_at: str
    mermaid_diagram: Optional[str] = Field(None, description="Mermaid diagram of the graph")


class GraphListResponse(BaseModel):
    """Response listing all graphs."""
    graphs: List[GraphInfoResponse]
    total: int


# ============================================================
# Run Schemas
# ============================================================

class GraphRunRequest(BaseModel):
    """Request to run a workflow graph."""
    graph_id: str = Field(..., description="ID of the graph to run")
    initial_state: Dict[str, Any] = Field(
        ...,
        description="Initial state data for the workflow"
    )
    async_execution: bool = Field(
        False,
        description="If true, run in background and return immediately"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "graph_id": "currency-demo",
                "initial_state": {"amount_usd": 100},
                "async_execution": False
            }
        }


class ExecutionLogEntry(BaseModel):
    """A single entry in the execution log."""
    step: int
    node: str
    wave: int
    started_at: str
    completed_at: Optional[str]
    duration_ms: Optional[float]
    result: str
    error: Optional[str]
    output: Dict[str, Any] = Field(default_factory=dict)
    join_point: Optional[str] = None


class GraphRunResponse(BaseModel):
    """Response after running a graph."""
    run_id: str = Field(..., description="Unique identifier for this run")
    graph_id: str
    status: ExecutionStatus
    final_state: Dict[str, Any]
    execution_log: List[ExecutionLogEntry]
    completed_nodes: List[str] = Field(default_factory=list)
    started_at: Optional[str]
    completed_at: Optional[str]
    total_duration_ms: Optional[float]
    waves: int = 0
    error: Optional[str] = None
    failed_node: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "run_id": "run-xyz789",
                "graph_id": "currency-demo",
                "status": "completed",
                "final_state": {
                    "amount_usd": 100,
                    "rate": 85,
                    "total_inr": 8500,
                    "ai_summary": "USD 100 at rate 85 = INR 8500.",
                    "slack_status": "sent",
                    "email_status": "sent"
                },
                "execution_log": [
                    {
                        "step": 1,
                        "node": "fetch_rate",
                        "wave": 1,
                        "started_at": "2024-01-01T12:00:00",
                        "completed_at": "2024-01-01T12:00:01",
                        "duration_ms": 15.5,
                        "result": "success",
                        "error": None,
                        "output": {"rate": 85},
                        "join_point": None
                    }
                ],
                "completed_nodes": ["fetch_rate"],
                "started_at": "2024-01-01T12:00:00",
                "completed_at": "2024-01-01T12:00:05",
                "total_duration_ms": 5000.0,
                "waves": 4,
                "error": None,
                "failed_node": None
            }
        }


class RunStateResponse(BaseModel):
    """Response with current run state."""
    run_id: str
    graph_id: str
    status: ExecutionStatus
    current_state: Dict[str, Any]
    completed_nodes: List[str]
    execution_log: List[ExecutionLogEntry]
    started_at: str
    completed_at: Optional[str]
    error: Optional[str]
    failed_node: Optional[str] = None


class RunListResponse(BaseModel):
    """Response listing runs."""
    runs: List[RunStateResponse]
    total: int


# ============================================================
# Error Schemas
# ============================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    detail: Optional[Any] = None
