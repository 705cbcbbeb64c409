"""
Ediens Backend — Claim State Machine
======================================

What:  The single authority on which claim status changes are legal and
       who may request them.
Why:   Every transition path (HTTP handlers, the expiry sweep) goes through
       `authorize_transition`, so no caller can invent a status change.
How:   A static transition table keyed by (from, to) lists the roles allowed
       to request that edge. The module is pure: no I/O, no clock, no DB.

Transition table:
    pending   → confirmed   owner
    pending   → cancelled   owner, claimant
    confirmed → picked_up   claimant
    confirmed → cancelled   owner, claimant
    confirmed → expired     system

Guard order:
    1. role      the actor must be the claimant or the post owner
                 (the system actor is always known); else UnauthorizedError
    2. edge      (current, requested) must exist; else InvalidTransitionError
    3. permission the role must be allowed on the edge; else UnauthorizedError
"""

import enum
import uuid
from typing import Dict, FrozenSet, Optional, Tuple

from ediens.exceptions import InvalidTransitionError, UnauthorizedError
from ediens.models.claim import ClaimStatus


class ActorRole(str, enum.Enum):
    CLAIMANT = "claimant"
    OWNER = "owner"
    SYSTEM = "system"


_CLAIMANT = frozenset({ActorRole.CLAIMANT})
_OWNER = frozenset({ActorRole.OWNER})
_EITHER = frozenset({ActorRole.OWNER, ActorRole.CLAIMANT})
_SYSTEM = frozenset({ActorRole.SYSTEM})

TRANSITIONS: Dict[Tuple[ClaimStatus, ClaimStatus], FrozenSet[ActorRole]] = {
    (ClaimStatus.PENDING, ClaimStatus.CONFIRMED): _OWNER,
    (ClaimStatus.PENDING, ClaimStatus.CANCELLED): _EITHER,
    (ClaimStatus.CONFIRMED, ClaimStatus.PICKED_UP): _CLAIMANT,
    (ClaimStatus.CONFIRMED, ClaimStatus.CANCELLED): _EITHER,
    (ClaimStatus.CONFIRMED, ClaimStatus.EXPIRED): _SYSTEM,
}

# Pseudo-target used when rating; ratings are only accepted on picked_up claims
RATED = "rated"


def resolve_role(
    actor_id: Optional[uuid.UUID],
    claimer_id: uuid.UUID,
    owner_id: uuid.UUID,
) -> ActorRole:
    """
    Map an actor to their role on a claim.

    `actor_id=None` is the system actor (expiry sweep). Anyone who is
    neither the claimant nor the post owner is rejected here.
    """
    if actor_id is None:
        return ActorRole.SYSTEM
    if actor_id == claimer_id:
        return ActorRole.CLAIMANT
    if actor_id == owner_id:
        return ActorRole.OWNER
    raise UnauthorizedError(
        message="You are not a participant in this claim",
        context={"actor_id": str(actor_id)},
    )


def allowed_targets(current: str) -> FrozenSet[ClaimStatus]:
    """Statuses reachable from `current` by anyone."""
    return frozenset(to for (frm, to) in TRANSITIONS if frm.value == current)


def is_terminal(status: str) -> bool:
    return not allowed_targets(status)


def authorize_transition(current: str, requested: str, role: ActorRole) -> ClaimStatus:
    """
    Check that `role` may move a claim from `current` to `requested`.

    Returns the requested status as a ClaimStatus on success.

    Raises:
        InvalidTransitionError: the edge is not in the table
        UnauthorizedError: the edge exists but the role may not request it
    """
    try:
        edge = (ClaimStatus(current), ClaimStatus(requested))
    except ValueError:
        raise InvalidTransitionError(current=current, requested=requested)

    roles = TRANSITIONS.get(edge)
    if roles is None:
        raise InvalidTransitionError(current=current, requested=requested)
    if role not in roles:
        raise UnauthorizedError(
            message=f"A {role.value} cannot move a claim to '{requested}'",
            context={"role": role.value, "requested_status": requested},
        )
    return edge[1]


def authorize_rating(current: str, role: ActorRole) -> None:
    """Ratings are written by the claimant on picked_up claims only."""
    if role is not ActorRole.CLAIMANT:
        raise UnauthorizedError(message="Only the claimant can rate a claim")
    if current != ClaimStatus.PICKED_UP.value:
        raise InvalidTransitionError(current=current, requested=RATED)
