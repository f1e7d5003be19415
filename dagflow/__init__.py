"""
DagFlow - A small, async-first DAG workflow engine.

Build pipelines from nodes and static edges over a schema-validated shared
state, with concurrent fan-out and conflict-checked fan-in.
"""

__version__ = "1.0.0"
