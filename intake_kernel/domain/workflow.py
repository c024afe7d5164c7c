"""
Canonical workflow types (``intake_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for status state machines (invoice requests, payment
requests) and for the declarative step lists of intake workflows.  Guards
are named here and evaluated by the services layer.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Guard:
    """A named condition evaluated by the services layer.

    Contract: frozen, descriptive only.
    Non-goals: does not evaluate the condition.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid status transition.

    ``records_payment=True`` marks the one transition that writes a real
    payment record and mutates the parent document's paid amount.
    """
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None
    records_payment: bool = False


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a document or request lifecycle."""
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(
                f"Workflow {self.name}: initial state {self.initial_state!r} not in states"
            )
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(
                    f"Workflow {self.name}: transition {t.action!r} "
                    f"references unknown state"
                )

    def actions_from(self, state: str) -> tuple[str, ...]:
        return tuple(t.action for t in self.transitions if t.from_state == state)


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a status transition attempt."""
    success: bool
    new_state: str | None = None
    reason: str = ""
    records_payment: bool = False
