"""
Mermaid rendering of a graph's edge table.

The diagram depends only on the declared edges, never on a run, so it can be
produced right after the graph is defined.
"""

from pathlib import Path
from typing import IO, Iterable, Tuple, Union
import logging

from dagflow.engine.node import END, START


logger = logging.getLogger(__name__)

DIAGRAM_HEADER = "graph TD"

_TOKENS = {START: "START", END: "END"}


def render(edges: Iterable[Tuple[str, str]]) -> str:
    """
    Render edges as a Mermaid flowchart, one directed edge per line.

    Args:
        edges: (source, target) pairs in declaration order

    Returns:
        Diagram text ending with a newline
    """
    lines = [DIAGRAM_HEADER]
    for source, target in edges:
        lines.append(f"  {_TOKENS.get(source, source)} --> {_TOKENS.get(target, target)}")
    return "\n".join(lines) + "\n"


def write_diagram(edges: Iterable[Tuple[str, str]], sink: IO[str]) -> None:
    """Write the rendered diagram to a file-like sink."""
    sink.write(render(edges))


def save_diagram(edges: Iterable[Tuple[str, str]], path: Union[str, Path] = "graph.mmd") -> Path:
    """Write the rendered diagram to ``path`` and return it."""
    target = Path(path)
    with target.open("w", encoding="utf-8") as fh:
        write_diagram(edges, fh)
    logger.info(f"Mermaid diagram saved to {target}")
    return target
