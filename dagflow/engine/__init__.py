"""
Engine package - Core workflow orchestration components.
"""

from dagflow.engine.errors import (
    DagFlowError,
    SchemaError,
    GraphError,
    UnknownNodeError,
    CycleError,
    OrphanNodeError,
    DuplicateNodeError,
    NodeNotFoundError,
    ExecutionError,
    MergeConflictError,
)
from dagflow.engine.schema import StateSchema, FieldSpec, FieldType, number, string, boolean
from dagflow.engine.node import Node, FunctionNode, NodeRegistry, node, START, END
from dagflow.engine.graph import StateGraph, CompiledGraph, Edge
from dagflow.engine.state import StateMerger, ExecutionRun, merge, merge_siblings
from dagflow.engine.executor import Executor, ExecutionResult, ExecutionStatus, execute_graph
from dagflow.engine.diagram import render, write_diagram, save_diagram

__all__ = [
    "DagFlowError",
    "SchemaError",
    "GraphError",
    "UnknownNodeError",
    "CycleError",
    "OrphanNodeError",
    "DuplicateNodeError",
    "NodeNotFoundError",
    "ExecutionError",
    "MergeConflictError",
    "StateSchema",
    "FieldSpec",
    "FieldType",
    "number",
    "string",
    "boolean",
    "Node",
    "FunctionNode",
    "NodeRegistry",
    "node",
    "START",
    "END",
    "StateGraph",
    "CompiledGraph",
    "Edge",
    "StateMerger",
    "ExecutionRun",
    "merge",
    "merge_siblings",
    "Executor",
    "ExecutionResult",
    "ExecutionStatus",
    "execute_graph",
    "render",
    "write_diagram",
    "save_diagram",
]
