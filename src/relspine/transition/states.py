"""Transition state machine.

Valid transition graph::

    DISCOVER → CLASSIFY | FAILED
    CLASSIFY → BACKUP | FAILED
    BACKUP   → COMPOSE | FAILED
    COMPOSE  → VALIDATE | CONFIRM | FAILED
    VALIDATE → CONFIRM | FAILED
    CONFIRM  → APPLY | ABORTED
    APPLY    → OBSERVE | DONE | FAILED
    OBSERVE  → DONE
    DONE     → (terminal)
    ABORTED  → (terminal)
    FAILED   → (terminal)

``CONFIRM`` is the only state that may end in ``ABORTED``, and nothing past
``APPLY`` can fail: once the release manager accepted the mutation,
monitoring is advisory.
"""

from __future__ import annotations

from enum import Enum

from relspine.core.errors import InvalidTransitionError


class TransitionState(str, Enum):
    """Phases of one release transition."""

    DISCOVER = "discover"
    CLASSIFY = "classify"
    BACKUP = "backup"
    COMPOSE = "compose"
    VALIDATE = "validate"
    CONFIRM = "confirm"
    APPLY = "apply"
    OBSERVE = "observe"
    DONE = "done"
    ABORTED = "aborted"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({
    TransitionState.DONE,
    TransitionState.ABORTED,
    TransitionState.FAILED,
})

# States that precede any mutating call.
PRE_MUTATION_STATES = frozenset({
    TransitionState.DISCOVER,
    TransitionState.CLASSIFY,
    TransitionState.BACKUP,
    TransitionState.COMPOSE,
    TransitionState.VALIDATE,
    TransitionState.CONFIRM,
})


TRANSITION_VALID_TRANSITIONS: dict[TransitionState, frozenset[TransitionState]] = {
    TransitionState.DISCOVER: frozenset({
        TransitionState.CLASSIFY,
        TransitionState.FAILED,
    }),
    TransitionState.CLASSIFY: frozenset({
        TransitionState.BACKUP,
        TransitionState.FAILED,
    }),
    TransitionState.BACKUP: frozenset({
        TransitionState.COMPOSE,
        TransitionState.FAILED,
    }),
    TransitionState.COMPOSE: frozenset({
        TransitionState.VALIDATE,  # upgrade
        TransitionState.CONFIRM,  # rollback has no dry-run primitive
        TransitionState.FAILED,
    }),
    TransitionState.VALIDATE: frozenset({
        TransitionState.CONFIRM,
        TransitionState.FAILED,
    }),
    TransitionState.CONFIRM: frozenset({
        TransitionState.APPLY,
        TransitionState.ABORTED,
    }),
    TransitionState.APPLY: frozenset({
        TransitionState.OBSERVE,
        TransitionState.DONE,  # monitoring disabled
        TransitionState.FAILED,
    }),
    TransitionState.OBSERVE: frozenset({
        TransitionState.DONE,
    }),
    TransitionState.DONE: frozenset(),  # terminal
    TransitionState.ABORTED: frozenset(),  # terminal
    TransitionState.FAILED: frozenset(),  # terminal
}


def validate_transition(current: TransitionState, target: TransitionState) -> None:
    """Raise :class:`InvalidTransitionError` if *current → target* is illegal.

    Example:
        >>> validate_transition(TransitionState.CONFIRM, TransitionState.APPLY)
        >>> validate_transition(TransitionState.APPLY, TransitionState.ABORTED)
        InvalidTransitionError: Invalid TransitionState transition: apply → aborted
    """
    allowed = TRANSITION_VALID_TRANSITIONS.get(current, frozenset())
    if target not in allowed:
        raise InvalidTransitionError(current.value, target.value, "TransitionState")


__all__ = [
    "PRE_MUTATION_STATES",
    "TERMINAL_STATES",
    "TRANSITION_VALID_TRANSITIONS",
    "TransitionState",
    "validate_transition",
]
