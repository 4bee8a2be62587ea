"""
Mutation authorization.

Every mutation entry point (single-lead edits, status changes, assignment,
bulk operations) asks `can_mutate` before touching the store. Denials are
returned, never raised, so callers can show the reason to the operator.
"""

from enum import Enum
from typing import Iterable, NamedTuple, Optional

from leadsync.models import Actor, Lead

REASON_UNASSIGNED = "lead is unassigned"
REASON_OWNED_BY_OTHER = "lead is owned by another agent"
REASON_ASSIGN_TO_OTHER = "agents can only assign leads to themselves"

# Stored owner values that all mean "no owner".
UNASSIGNED_SENTINELS = ("", "-", "–", "—")


class MutationKind(str, Enum):
    EDIT = "edit"
    CHANGE_STATUS = "change_status"
    ASSIGN = "assign"
    UNASSIGN = "unassign"
    SEND_MESSAGE = "send_message"


class AuthorizationDecision(NamedTuple):
    allowed: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.allowed


class BulkAuthorizationDecision(NamedTuple):
    allowed: bool
    reason: Optional[str] = None
    denied_ids: tuple = ()

    def __bool__(self) -> bool:
        return self.allowed


ALLOWED = AuthorizationDecision(True)


def is_unassigned(assigned_to: Optional[str]) -> bool:
    """True when a stored owner value means "no owner".

    None, empty and whitespace-only strings, "-" and the en/em dashes all
    count as unassigned.
    """
    if assigned_to is None:
        return True
    return str(assigned_to).strip() in UNASSIGNED_SENTINELS


def is_owned_by(lead: Lead, actor: Actor) -> bool:
    if is_unassigned(lead.assigned_to):
        return False
    if actor.id and lead.assigned_to_id:
        return lead.assigned_to_id == actor.id
    return lead.assigned_to.strip() == actor.name.strip()


def _is_self(actor: Actor, assignee: Optional[Actor]) -> bool:
    if assignee is None:
        return False
    if actor.id and assignee.id:
        return actor.id == assignee.id
    return actor.name.strip() == assignee.name.strip()


def can_mutate(
    actor: Actor,
    lead: Lead,
    kind: MutationKind,
    assignee: Optional[Actor] = None,
) -> AuthorizationDecision:
    """
    Decide whether `actor` may apply a mutation of `kind` to `lead`.

    Elevated roles may do anything. Agents may claim unassigned leads for
    themselves, work on their own leads, and never touch leads owned by
    someone else. For ASSIGN, `assignee` is the new owner; it defaults to
    the actor.

    Status changes with side effects (follow-up, conversion, language
    barrier) use CHANGE_STATUS and follow the same rule as a plain edit.
    """
    if actor.role.is_elevated:
        return ALLOWED

    if kind == MutationKind.ASSIGN and not _is_self(actor, assignee or actor):
        return AuthorizationDecision(False, REASON_ASSIGN_TO_OTHER)

    if is_unassigned(lead.assigned_to):
        if kind == MutationKind.ASSIGN:
            return ALLOWED
        return AuthorizationDecision(False, REASON_UNASSIGNED)

    if is_owned_by(lead, actor):
        return ALLOWED

    return AuthorizationDecision(False, REASON_OWNED_BY_OTHER)


def can_bulk_mutate(
    actor: Actor,
    leads: Iterable[Lead],
    kind: MutationKind,
    assignee: Optional[Actor] = None,
) -> BulkAuthorizationDecision:
    """Apply `can_mutate` to every lead; one denial rejects the whole batch."""
    denied = []
    first_reason = None
    for lead in leads:
        decision = can_mutate(actor, lead, kind, assignee)
        if not decision.allowed:
            denied.append(lead.id)
            first_reason = first_reason or decision.reason
    if denied:
        return BulkAuthorizationDecision(
            False,
            f"{len(denied)} lead(s) cannot be modified: {first_reason}",
            tuple(denied),
        )
    return BulkAuthorizationDecision(True)
