"""
Workflows package - Sample workflow implementations.
"""

from dagflow.workflows.currency import (
    CURRENCY_GRAPH_ID,
    CURRENCY_SCHEMA,
    build_currency_workflow,
    create_currency_workflow,
    register_currency_workflow,
)

__all__ = [
    "CURRENCY_GRAPH_ID",
    "CURRENCY_SCHEMA",
    "build_currency_workflow",
    "create_currency_workflow",
    "register_currency_workflow",
]
