"""Post lifecycle transition table and the single authorization gate.

    draft --staff--> in_review --owner--> approved --staff--> published
                               --owner--> rejected (reason required)

Clients never re-implement these checks: they call ``allowed_targets`` to
decide which actions to show and ``check_transition`` is what the workflow
enforces.
"""

from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from labelhub.auth import Actor
from labelhub.errors import Forbidden, InvalidStatusTransition

STAFF = "staff"
OWNER = "owner"


@dataclass(frozen=True)
class TransitionRule:
    from_status: str
    to_status: str
    actor: str  # STAFF or OWNER
    action: str
    requires_reason: bool = False
    sets_published_at: bool = False


TRANSITIONS: dict[tuple[str, str], TransitionRule] = {
    ("draft", "in_review"): TransitionRule("draft", "in_review", STAFF, "sent_for_review"),
    ("in_review", "approved"): TransitionRule("in_review", "approved", OWNER, "approved"),
    ("in_review", "rejected"): TransitionRule(
        "in_review", "rejected", OWNER, "rejected", requires_reason=True
    ),
    ("approved", "published"): TransitionRule(
        "approved", "published", STAFF, "published", sets_published_at=True
    ),
}

def find_rule(from_status: str, to_status: str) -> Optional[TransitionRule]:
    return TRANSITIONS.get((from_status, to_status))


def is_authorized(rule: TransitionRule, actor: Actor, post_artist_id: UUID) -> bool:
    if rule.actor == STAFF:
        return actor.is_staff
    return actor.owns(post_artist_id)


def check_transition(
    actor: Actor,
    post_artist_id: UUID,
    from_status: str,
    to_status: str,
) -> TransitionRule:
    """Return the rule for ``from_status -> to_status`` or raise.

    Pairs outside the table fail with InvalidStatusTransition for every actor.
    For a legal pair the actor is checked next, so a wrong role or a
    non-owning artist gets Forbidden rather than a workflow error.
    """
    rule = find_rule(from_status, to_status)
    if rule is None:
        raise InvalidStatusTransition(from_status, to_status)
    if not is_authorized(rule, actor, post_artist_id):
        who = "staff" if rule.actor == STAFF else "the owning artist"
        raise Forbidden(f"Only {who} can move a post from {from_status} to {to_status}")
    return rule


def allowed_targets(actor: Actor, post_artist_id: UUID, status: str) -> list[str]:
    """Statuses this actor may move a post to from ``status``."""
    return [
        rule.to_status
        for (from_status, _), rule in TRANSITIONS.items()
        if from_status == status and is_authorized(rule, actor, post_artist_id)
    ]
