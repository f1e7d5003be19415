"""
Storage package - In-memory storage for compiled graphs and runs.
"""

from dagflow.storage.memory import (
    GraphStorage,
    RunStorage,
    graph_storage,
    run_storage,
)

__all__ = [
    "GraphStorage",
    "RunStorage",
    "graph_storage",
    "run_storage",
]
