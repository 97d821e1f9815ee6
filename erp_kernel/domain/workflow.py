"""
Canonical workflow types (``erp_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for document state machines.  Every document type's
graph is a ``Workflow`` so that transitions are defined once, as data,
and validated by one engine.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/`` or outer layers.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* ``terminal_states`` have no outgoing transitions.
* No self-transitions.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow."""
    from_state: str
    to_state: str
    action: str


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a document lifecycle.

    Contract: frozen; validated on construction.
    Guarantees: ``terminal_states`` are exactly the states without
    outgoing transitions when left empty.
    """
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        known = set(self.states)
        if self.initial_state not in known:
            raise ValueError(
                f"Workflow {self.name}: initial state {self.initial_state!r} "
                "is not a declared state"
            )
        sources: set[str] = set()
        for t in self.transitions:
            if t.from_state not in known or t.to_state not in known:
                raise ValueError(
                    f"Workflow {self.name}: transition {t.from_state}->{t.to_state} "
                    "references an undeclared state"
                )
            if t.from_state == t.to_state:
                raise ValueError(
                    f"Workflow {self.name}: self-transition on {t.from_state}"
                )
            sources.add(t.from_state)

        derived_terminals = tuple(s for s in self.states if s not in sources)
        if not self.terminal_states:
            object.__setattr__(self, "terminal_states", derived_terminals)
        elif set(self.terminal_states) != set(derived_terminals):
            raise ValueError(
                f"Workflow {self.name}: declared terminal states "
                f"{sorted(self.terminal_states)} do not match states without "
                f"outgoing transitions {sorted(derived_terminals)}"
            )

    def successors(self, state: str) -> frozenset[str]:
        """States reachable from ``state`` in one transition."""
        return frozenset(t.to_state for t in self.transitions if t.from_state == state)

    def action_for(self, from_state: str, to_state: str) -> str | None:
        """Name of the action moving ``from_state`` to ``to_state``, if any."""
        for t in self.transitions:
            if t.from_state == from_state and t.to_state == to_state:
                return t.action
        return None
