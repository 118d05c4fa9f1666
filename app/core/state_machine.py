"""
Transition Tables

Explicit, construction-validated state graphs shared by the order status
machine and the order request workflow. Each table is validated when it
is built, at module import time.

Author: Khalil Bannouri
Version: 1.0.0
"""

from enum import Enum
from typing import Generic, Iterable, Mapping, Optional, TypeVar

from app.core.exceptions import InvalidTransitionError

S = TypeVar("S", bound=Enum)


class TransitionTable(Generic[S]):
    """
    Directed graph of allowed status changes.

    Args:
        states: Enum class holding every state
        edges: Mapping of state -> states reachable in one step
        terminal: States with no outgoing edges
        entity: Name used in error messages ("order", "order request")
        universal_target: Optional state reachable from every non-terminal state
    """

    def __init__(
        self,
        states: type,
        edges: Mapping[S, Iterable[S]],
        terminal: Iterable[S],
        entity: str,
        universal_target: Optional[S] = None,
    ):
        self.states = states
        self.entity = entity
        self.terminal = frozenset(terminal)
        self.universal_target = universal_target

        graph = {state: frozenset(targets) for state, targets in edges.items()}
        if universal_target is not None:
            graph = {
                state: targets if state in self.terminal else targets | {universal_target}
                for state, targets in graph.items()
            }
        self._edges = graph
        self._validate()

    def _validate(self) -> None:
        known = set(self.states)
        missing = known - set(self._edges)
        if missing:
            raise ValueError(
                f"{self.entity} transition table has no entry for: "
                f"{sorted(s.value for s in missing)}"
            )
        for state, targets in self._edges.items():
            unknown = targets - known
            if unknown:
                raise ValueError(f"{self.entity}: unknown targets from {state.value}")
            if state in targets:
                raise ValueError(f"{self.entity}: self-loop on {state.value}")
            if state in self.terminal and targets:
                raise ValueError(f"{self.entity}: terminal state {state.value} has exits")
            if state not in self.terminal and not targets:
                raise ValueError(f"{self.entity}: dead end at {state.value}")

    def targets(self, state: S) -> frozenset:
        return self._edges[state]

    def is_terminal(self, state: S) -> bool:
        return state in self.terminal

    def can_transition(self, current: S, target: S) -> bool:
        return target in self._edges[current]

    def check(self, current: S, target: S) -> None:
        """Raise InvalidTransitionError unless current -> target is an edge."""
        if not self.can_transition(current, target):
            raise InvalidTransitionError(
                current=current.value,
                target=target.value,
                entity=self.entity,
            )
