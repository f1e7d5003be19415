"""
State Management for Workflow Engine.

Nodes never mutate the shared state. Each node receives a read-only snapshot
and returns a partial state; the run's ``StateMerger`` is the single writer
that folds those partials into the canonical state.
"""

from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Set, Tuple
from pydantic import BaseModel, Field
from datetime import datetime
from types import MappingProxyType
import uuid

from dagflow.engine.errors import MergeConflictError
from dagflow.engine.schema import StateSchema


class StateSnapshot(BaseModel):
    """A snapshot of state after a node's output was merged."""

    timestamp: datetime = Field(default_factory=datetime.now)
    node_name: str
    wave: int = 0
    state_data: Dict[str, Any]


def merge(base: Mapping[str, Any], partial: Mapping[str, Any]) -> Dict[str, Any]:
    """Apply ``partial`` over ``base``, the newer value winning per field."""
    merged = dict(base)
    merged.update(partial)
    return merged


def merge_siblings(
    base: Mapping[str, Any],
    outputs: Sequence[Tuple[str, Mapping[str, Any]]],
) -> Dict[str, Any]:
    """
    Union-merge the partial states of concurrently executed nodes.

    Args:
        base: State the siblings started from
        outputs: (node name, partial state) pairs

    Raises:
        MergeConflictError: two siblings set one field to different values
    """
    written: Dict[str, Tuple[str, Any]] = {}
    for node_name, partial in outputs:
        for key, value in partial.items():
            if key in written and written[key][1] != value:
                other_node, other_value = written[key]
                raise MergeConflictError(key, other_value, value, (other_node, node_name))
            written[key] = (node_name, value)
    return merge(base, {key: value for key, (_, value) in written.items()})


class StateMerger:
    """
    Sole writer of a run's canonical state.

    Every field keeps its write history as (writer, value) pairs, the
    initial state being written by ``None``. A new write replaces the
    previous one when the previous writer is an ancestor of the new writer.
    When it is not, the two nodes ran on concurrent branches and differing
    values are a conflict.
    """

    def __init__(
        self,
        schema: StateSchema,
        initial_state: Mapping[str, Any],
        is_ancestor: Callable[[Optional[str], str], bool],
    ):
        self.schema = schema
        self._is_ancestor = is_ancestor
        self._history: Dict[str, List[Tuple[Optional[str], Any]]] = {
            key: [(None, value)] for key, value in initial_state.items()
        }

    @property
    def state(self) -> Dict[str, Any]:
        """The canonical state: the latest value of every field."""
        return {key: writes[-1][1] for key, writes in self._history.items()}

    def snapshot_for(self, node_name: str) -> Mapping[str, Any]:
        """
        Read-only view of the state as seen by ``node_name``.

        Only writes by the initial state and by the node's ancestors are
        visible, so branches running side by side stay isolated.
        """
        view: Dict[str, Any] = {}
        for key, writes in self._history.items():
            for writer, value in reversed(writes):
                if self._is_ancestor(writer, node_name):
                    view[key] = value
                    break
        return MappingProxyType(view)

    def merge(self, node_name: str, partial: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Merge one node's output into the canonical state.

        Raises:
            SchemaError: the output does not conform to the schema
            MergeConflictError: a concurrent node already wrote another value
        """
        validated = self.schema.validate_partial(partial)
        self._check_conflicts(node_name, validated)
        self._commit(node_name, validated)
        return self.state

    def merge_group(self, outputs: Sequence[Tuple[str, Mapping[str, Any]]]) -> Dict[str, Any]:
        """
        Merge the outputs of one concurrently executed group.

        Siblings are compared with each other first, so a collision names
        both siblings. Every output is checked before any is applied; a
        conflict leaves the state as it was before the group.
        """
        merge_siblings({}, outputs)
        validated = [
            (node_name, self.schema.validate_partial(partial))
            for node_name, partial in outputs
        ]
        for node_name, values in validated:
            self._check_conflicts(node_name, values)
        for node_name, values in validated:
            self._commit(node_name, values)
        return self.state

    def _check_conflicts(self, node_name: str, values: Mapping[str, Any]) -> None:
        for key, value in values.items():
            writes = self._history.get(key)
            if writes:
                writer, previous = writes[-1]
                if not self._is_ancestor(writer, node_name) and previous != value:
                    raise MergeConflictError(key, previous, value, (writer, node_name))

    def _commit(self, node_name: str, values: Mapping[str, Any]) -> None:
        for key, value in values.items():
            self._history.setdefault(key, []).append((node_name, value))


class ExecutionRun:
    """
    Bookkeeping for one traversal of a compiled graph.

    Tracks completed and pending nodes and keeps a snapshot of the state
    after every merge for debugging.
    """

    def __init__(
        self,
        merger: StateMerger,
        nodes: Sequence[str],
        run_id: Optional[str] = None,
    ):
        self.run_id = run_id or str(uuid.uuid4())
        self.merger = merger
        self.completed: List[str] = []
        self.pending: Set[str] = set(nodes)
        self.history: List[StateSnapshot] = []
        self.started_at = datetime.now()
        self.completed_at: Optional[datetime] = None

    @property
    def current_state(self) -> Dict[str, Any]:
        return self.merger.state

    def snapshot_for(self, node_name: str) -> Mapping[str, Any]:
        return self.merger.snapshot_for(node_name)

    def complete_group(self, outputs: Sequence[Tuple[str, Mapping[str, Any]]], wave: int) -> Dict[str, Any]:
        """Merge a finished group and mark its nodes completed."""
        if len(outputs) == 1:
            state = self.merger.merge(*outputs[0])
        else:
            state = self.merger.merge_group(outputs)
        for node_name, _ in outputs:
            self.pending.discard(node_name)
            self.completed.append(node_name)
            self.history.append(StateSnapshot(node_name=node_name, wave=wave, state_data=state))
        return state

    def finalize(self) -> Dict[str, Any]:
        self.completed_at = datetime.now()
        return self.current_state

    def get_history(self) -> List[Dict[str, Any]]:
        """Get the state history as a list of dictionaries."""
        return [
            {
                "timestamp": s.timestamp.isoformat(),
                "node": s.node_name,
                "wave": s.wave,
                "state": s.state_data,
            }
            for s in self.history
        ]
