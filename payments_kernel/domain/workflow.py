"""
State machine value objects shared by the boletín and schedule lifecycles.

A ``Workflow`` is plain data: states, the transitions between them and
the guards that name each transition's precondition.  The owning service
evaluates guards and writes audit rows.  Nothing in this module touches the
database.

Construction validates the definition, so a workflow with a typo in a state
name fails at import time instead of on the first transition.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Guard:
    """Named precondition of a transition, for documentation and audit."""

    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    # privileged: only reachable through an administrative override
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None
    privileged: bool = False


@dataclass(frozen=True)
class Workflow:
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        known = set(self.states)
        if self.initial_state not in known:
            raise ValueError(f"{self.name}: initial state {self.initial_state!r} is not a declared state")
        unknown_terminal = set(self.terminal_states) - known
        if unknown_terminal:
            raise ValueError(f"{self.name}: terminal states {sorted(unknown_terminal)} are not declared")
        for transition in self.transitions:
            missing = {transition.from_state, transition.to_state} - known
            if missing:
                raise ValueError(
                    f"{self.name}: {transition.action!r} uses undeclared state(s) {sorted(missing)}"
                )

    def find_transition(
        self,
        from_state: str,
        action: str,
        *,
        to_state: str | None = None,
    ) -> Transition | None:
        """First transition matching ``action`` out of ``from_state``.

        ``to_state`` narrows the match when one action leads to several states.
        """
        return next(
            (
                t for t in self.transitions
                if t.from_state == from_state
                and t.action == action
                and (to_state is None or t.to_state == to_state)
            ),
            None,
        )

    def actions_from(self, state: str) -> tuple[str, ...]:
        """Sorted action names available in ``state``."""
        return tuple(sorted({t.action for t in self.transitions if t.from_state == state}))
