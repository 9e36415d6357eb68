"""Generation lifecycle transitions.

::

    queued ──> processing ──> completed
       │            │
       │            └───────> failed
       ├──────────────────────> completed
       └──────────────────────> failed

``completed`` and ``failed`` are terminal.  Providers deliver at-least-once
and out of order, so every incoming status is classified against the
current one before anything is written.
"""

from __future__ import annotations

import logging
from enum import Enum

from headshot_engine.models.generation import GenerationStatus

logger = logging.getLogger(__name__)

_ALLOWED: dict[GenerationStatus, frozenset[GenerationStatus]] = {
    GenerationStatus.QUEUED: frozenset(
        {GenerationStatus.PROCESSING, GenerationStatus.COMPLETED, GenerationStatus.FAILED}
    ),
    GenerationStatus.PROCESSING: frozenset({GenerationStatus.COMPLETED, GenerationStatus.FAILED}),
    GenerationStatus.COMPLETED: frozenset(),
    GenerationStatus.FAILED: frozenset(),
}


class TransitionOutcome(str, Enum):
    """How an incoming status relates to the stored one."""

    APPLY = "apply"
    NOOP = "noop"
    STALE = "stale"
    REJECTED = "rejected"


def classify_transition(current: GenerationStatus, target: GenerationStatus) -> TransitionOutcome:
    """Classify a proposed move from *current* to *target*.

    * ``APPLY``: a legal forward transition.
    * ``NOOP``: same state (redelivery).
    * ``STALE``: a backwards move between non-terminal states, e.g. a late
      ``queued`` after ``processing``.
    * ``REJECTED``: any attempt to leave a terminal state.
    """
    if current == target:
        return TransitionOutcome.NOOP
    if target in _ALLOWED[current]:
        return TransitionOutcome.APPLY
    if current.terminal:
        return TransitionOutcome.REJECTED
    return TransitionOutcome.STALE


def log_ignored_transition(
    generation_id: str,
    current: GenerationStatus,
    target: GenerationStatus,
    outcome: TransitionOutcome,
) -> None:
    """Log a transition that was not applied at the level its outcome warrants."""
    if outcome is TransitionOutcome.REJECTED:
        logger.warning(
            "Rejected transition out of terminal state for generation %s: %s -> %s",
            generation_id,
            current.value,
            target.value,
        )
    elif outcome is TransitionOutcome.STALE:
        logger.info(
            "Ignoring stale status for generation %s: %s -> %s",
            generation_id,
            current.value,
            target.value,
        )
    else:
        logger.debug("Duplicate status %s for generation %s", target.value, generation_id)
