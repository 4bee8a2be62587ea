"""Tests for the mutation authorization matrix."""

import pytest

from leadsync.authorization import (
    REASON_ASSIGN_TO_OTHER,
    REASON_OWNED_BY_OTHER,
    REASON_UNASSIGNED,
    UNASSIGNED_SENTINELS,
    MutationKind,
    can_bulk_mutate,
    can_mutate,
    is_unassigned,
)
from leadsync.models import Actor, Lead, Role


@pytest.mark.parametrize("value", ["", "-", "–", "—", None, "  ", " - "])
def test_unassigned_sentinels(value):
    assert is_unassigned(value) is True


def test_no_status_label_is_not_an_owner_sentinel():
    assert is_unassigned("No Status") is False
    assert "No Status" not in UNASSIGNED_SENTINELS


@pytest.mark.parametrize("value", ["Priya", "  Rahul ", "unassigned", "0"])
def test_real_owner_is_not_unassigned(value):
    assert is_unassigned(value) is False


UNASSIGNED = Lead(id="l1", assigned_to="-")
OWN = Lead(id="l2", assigned_to="Priya", assigned_to_id="u-priya")
OTHERS = Lead(id="l3", assigned_to="Rahul", assigned_to_id="u-rahul")

PRIYA = Actor(name="Priya", role=Role.SALES, id="u-priya")
RAHUL = Actor(name="Rahul", role=Role.SALES, id="u-rahul")

ALL_KINDS = list(MutationKind)

# (role, lead, kind, expected allowed) for every cell of the matrix.
# ASSIGN rows assign to the acting agent.
AGENT_MATRIX = {
    (UNASSIGNED.id, MutationKind.EDIT): False,
    (UNASSIGNED.id, MutationKind.CHANGE_STATUS): False,
    (UNASSIGNED.id, MutationKind.ASSIGN): True,
    (UNASSIGNED.id, MutationKind.UNASSIGN): False,
    (UNASSIGNED.id, MutationKind.SEND_MESSAGE): False,
    (OWN.id, MutationKind.EDIT): True,
    (OWN.id, MutationKind.CHANGE_STATUS): True,
    (OWN.id, MutationKind.ASSIGN): True,
    (OWN.id, MutationKind.UNASSIGN): True,
    (OWN.id, MutationKind.SEND_MESSAGE): True,
    (OTHERS.id, MutationKind.EDIT): False,
    (OTHERS.id, MutationKind.CHANGE_STATUS): False,
    (OTHERS.id, MutationKind.ASSIGN): False,
    (OTHERS.id, MutationKind.UNASSIGN): False,
    (OTHERS.id, MutationKind.SEND_MESSAGE): False,
}


@pytest.mark.parametrize("role", [Role.ADMIN, Role.OVERLORD])
@pytest.mark.parametrize("lead", [UNASSIGNED, OWN, OTHERS], ids=["unassigned", "own", "others"])
@pytest.mark.parametrize("kind", ALL_KINDS)
def test_elevated_roles_may_do_everything(role, lead, kind):
    actor = Actor(name="Priya", role=role, id="u-priya")
    decision = can_mutate(actor, lead, kind, assignee=RAHUL)
    assert decision.allowed is True
    assert decision.reason is None


@pytest.mark.parametrize("lead", [UNASSIGNED, OWN, OTHERS], ids=["unassigned", "own", "others"])
@pytest.mark.parametrize("kind", ALL_KINDS)
def test_agent_matrix_is_total(lead, kind):
    decision = can_mutate(PRIYA, lead, kind)
    assert decision.allowed is AGENT_MATRIX[(lead.id, kind)]
    if not decision.allowed:
        assert decision.reason in (REASON_UNASSIGNED, REASON_OWNED_BY_OTHER)


def test_agent_denial_reasons():
    assert can_mutate(PRIYA, UNASSIGNED, MutationKind.EDIT).reason == REASON_UNASSIGNED
    assert can_mutate(PRIYA, OTHERS, MutationKind.EDIT).reason == REASON_OWNED_BY_OTHER


def test_agent_cannot_assign_to_someone_else():
    for lead in (UNASSIGNED, OWN):
        decision = can_mutate(PRIYA, lead, MutationKind.ASSIGN, assignee=RAHUL)
        assert decision.allowed is False
        assert decision.reason == REASON_ASSIGN_TO_OTHER


def test_ownership_falls_back_to_name_without_ids():
    actor = Actor(name="Priya", role=Role.SALES)
    lead = Lead(id="x", assigned_to=" Priya ")
    assert can_mutate(actor, lead, MutationKind.EDIT).allowed is True


def test_ownership_prefers_ids_over_names():
    # Same display name, different person.
    impostor = Actor(name="Priya", role=Role.SALES, id="u-other-priya")
    assert can_mutate(impostor, OWN, MutationKind.EDIT).allowed is False


def test_reassigning_own_lead_to_self_is_always_allowed():
    for _ in range(3):
        assert can_mutate(PRIYA, OWN, MutationKind.ASSIGN, assignee=PRIYA).allowed is True


def test_decision_is_falsy_when_denied():
    assert not can_mutate(PRIYA, OTHERS, MutationKind.EDIT)
    assert can_mutate(PRIYA, OWN, MutationKind.EDIT)


def test_bulk_rejects_whole_batch_if_any_lead_denied():
    decision = can_bulk_mutate(PRIYA, [OWN, OTHERS, UNASSIGNED], MutationKind.UNASSIGN)
    assert decision.allowed is False
    assert decision.denied_ids == (OTHERS.id, UNASSIGNED.id)
    assert "2 lead(s)" in decision.reason


def test_bulk_allows_when_every_lead_allowed():
    decision = can_bulk_mutate(PRIYA, [OWN, UNASSIGNED], MutationKind.ASSIGN)
    assert decision.allowed is True
    assert decision.denied_ids == ()


def test_bulk_for_admin_ignores_ownership():
    admin = Actor(name="Meera", role=Role.ADMIN)
    assert can_bulk_mutate(admin, [OWN, OTHERS, UNASSIGNED], MutationKind.SEND_MESSAGE).allowed


def test_role_parse_accepts_legacy_salesperson():
    assert Role.parse("salesperson") is Role.SALES
    assert Role.parse(" Admin ") is Role.ADMIN
    with pytest.raises(ValueError):
        Role.parse("intern")
