"""Campaign status transitions."""
from __future__ import annotations

from mailroom.core.errors import InvalidTransition

TERMINAL_STATUSES = frozenset({"sent", "failed"})
EDITABLE_STATUSES = frozenset({"draft", "paused"})


class StateMachine:
    """Table of allowed ``current -> target`` status moves."""

    def __init__(self, transitions: dict[str, set[str]]) -> None:
        self._transitions = transitions

    def can_transition(self, current: str, target: str) -> bool:
        return target in self._transitions.get(current, set())

    def targets(self, current: str) -> set[str]:
        return set(self._transitions.get(current, set()))

    def assert_transition(self, current: str, target: str) -> None:
        if not self.can_transition(current=current, target=target):
            raise InvalidTransition(f"Campaign cannot move from {current} to {target}")


CAMPAIGN_MACHINE = StateMachine(
    {
        "draft": {"scheduled", "failed"},
        "scheduled": {"draft", "sending", "paused", "failed"},
        "sending": {"sent", "paused", "failed"},
        "paused": {"scheduled", "sending", "failed"},
        "sent": set(),
        "failed": set(),
    }
)


def assert_editable(status: str) -> None:
    if status not in EDITABLE_STATUSES:
        raise InvalidTransition(f"Campaign content cannot be changed while {status}")
