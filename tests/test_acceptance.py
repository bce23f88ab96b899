"""
Acceptance workflow tests.

Tests:
1-3.   Accepting supersedes the previously accepted version
4-6.   Disallowed transitions change nothing
7-8.   Racing acceptances: exactly one wins
9-11.  Supersession is idempotent and enforced by the database
12-15. Send / reject / expire
16-17. Terminal states and a failure partway through accept
"""

import re
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from insulquote import quote_builder
from insulquote.acceptance import (
    accept_quote,
    expire_quote,
    reject_quote,
    send_quote,
    supersede_current_final_quote,
)
from insulquote.errors import (
    ConcurrentModification, InvalidInput, InvalidState, NotFound, PersistenceFailure,
)
from insulquote.gateway import QuoteGateway
from insulquote.versioning import create_quote_version

ACTOR = "estimator@example.com"


class RacingGateway(QuoteGateway):
    """Lets a rival writer commit right after this gateway reads the lineage revision."""

    def __init__(self, db, rival):
        super().__init__(db)
        self.rival = rival

    def get_lineage(self, quote_number):
        lineage = super().get_lineage(quote_number)
        if self.rival is not None:
            rival, self.rival = self.rival, None
            rival()
        return lineage


class FailingAcceptGateway(QuoteGateway):
    """Database goes away when the accepted status is written, after siblings were demoted."""

    def update_version_status(self, version_id, **fields):
        if fields.get("status") == "Accepted":
            raise OperationalError("UPDATE quotes", {}, Exception("disk I/O error"))
        return super().update_version_status(version_id, **fields)


def _three_versions(gateway, draft_quote):
    v2 = create_quote_version(gateway, "Q-1001", ACTOR)
    v3 = create_quote_version(gateway, "Q-1001", ACTOR)
    return draft_quote, v2.id, v3.id


# --- Supersession on accept ---

def test_accepting_new_version_supersedes_accepted_one(gateway, draft_quote):
    # Version 1 was accepted before this system recorded who or when
    with gateway.atomic(quote_number="Q-1001"):
        gateway.update_version_status(draft_quote, status="Accepted")
    v2 = create_quote_version(gateway, "Q-1001", ACTOR)

    result = accept_quote(gateway, v2.id, ACTOR)

    assert result.success
    assert result.superseded_versions == [1]
    v1 = gateway.get_version(draft_quote)
    v2 = gateway.get_version(v2.id)
    assert v1.status == "Superseded"
    assert not v1.is_current
    assert v1.superseded_at is not None
    assert v1.accepted_date is None
    assert v2.status == "Accepted"
    assert v2.is_current
    assert v2.accepted_date is not None
    assert v2.accepted_by == ACTOR


def test_superseding_keeps_earlier_acceptance_record(gateway, draft_quote):
    accept_quote(gateway, draft_quote, "customer-portal")
    first_accepted = gateway.get_version(draft_quote).accepted_date
    v2 = create_quote_version(gateway, "Q-1001", ACTOR)

    accept_quote(gateway, v2.id, ACTOR)

    v1 = gateway.get_version(draft_quote)
    assert v1.status == "Superseded"
    assert v1.accepted_date == first_accepted
    assert v1.accepted_by == "customer-portal"


def test_accept_message_names_version_actor_and_date(gateway, draft_quote):
    result = accept_quote(gateway, draft_quote, ACTOR)
    assert result.message.startswith(f"Quote Q-1001 v1 accepted by {ACTOR} on ")
    assert re.search(r"on \d{2}-\d{2}-\d{4}$", result.message)
    assert result.to_dict()["superseded_versions"] == []


# --- Disallowed transitions ---

def test_accept_rejected_version_changes_nothing(gateway, draft_quote):
    send_quote(gateway, draft_quote, ACTOR)
    reject_quote(gateway, draft_quote, ACTOR)
    before = quote_builder.quote_to_dict(gateway.get_quote_aggregate(draft_quote))
    revision = gateway.get_lineage("Q-1001").revision

    with pytest.raises(InvalidState) as exc:
        accept_quote(gateway, draft_quote, ACTOR)

    assert exc.value.current_status == "Rejected"
    assert exc.value.quote_number == "Q-1001"
    after = quote_builder.quote_to_dict(gateway.get_quote_aggregate(draft_quote))
    assert after == before
    assert after["accepted_date"] is None
    assert gateway.get_lineage("Q-1001").revision == revision


def test_accept_requires_actor(gateway, draft_quote):
    with pytest.raises(InvalidInput):
        accept_quote(gateway, draft_quote, "")
    assert gateway.get_version(draft_quote).status == "Draft"


def test_accept_unknown_version(gateway):
    with pytest.raises(NotFound):
        accept_quote(gateway, 9999, ACTOR)


# --- Races ---

def test_racing_acceptances_only_one_wins(db, gateway, draft_quote):
    _, v2_id, v3_id = _three_versions(gateway, draft_quote)
    rival_session = Session(bind=db.get_bind(), autoflush=False)
    rival_results = []

    def rival_accepts_v3():
        rival_results.append(accept_quote(QuoteGateway(rival_session), v3_id, "second-estimator"))

    racing = RacingGateway(db, rival_accepts_v3)
    try:
        with pytest.raises(ConcurrentModification):
            accept_quote(racing, v2_id, ACTOR)
    finally:
        rival_session.close()

    assert rival_results[0].success
    v2 = gateway.get_version(v2_id)
    v3 = gateway.get_version(v3_id)
    assert v2.status == "Draft"
    assert v2.accepted_date is None
    assert v3.status == "Accepted"
    assert v3.is_current
    assert len(gateway.accepted_current_versions("Q-1001")) == 1


def test_loser_can_retry_after_reload(db, gateway, draft_quote):
    _, v2_id, v3_id = _three_versions(gateway, draft_quote)
    rival_session = Session(bind=db.get_bind(), autoflush=False)

    racing = RacingGateway(db, lambda: accept_quote(QuoteGateway(rival_session), v3_id, "second-estimator"))
    try:
        with pytest.raises(ConcurrentModification):
            accept_quote(racing, v2_id, ACTOR)
    finally:
        rival_session.close()

    result = accept_quote(gateway, v2_id, ACTOR)
    assert result.superseded_versions == [3]
    assert gateway.get_version(v3_id).status == "Superseded"


# --- Supersession rules ---

def test_supersede_is_idempotent(gateway, draft_quote):
    accept_quote(gateway, draft_quote, ACTOR)

    assert supersede_current_final_quote(gateway, "Q-1001") == [1]
    revision = gateway.get_lineage("Q-1001").revision
    assert supersede_current_final_quote(gateway, "Q-1001") == []
    assert gateway.get_lineage("Q-1001").revision == revision


def test_supersede_without_accepted_version_is_noop(gateway, draft_quote):
    assert supersede_current_final_quote(gateway, "Q-1001") == []
    assert gateway.get_version(draft_quote).status == "Draft"


def test_database_rejects_two_current_accepted_versions(gateway, draft_quote):
    accept_quote(gateway, draft_quote, ACTOR)
    v2 = create_quote_version(gateway, "Q-1001", ACTOR)

    with pytest.raises(ConcurrentModification):
        with gateway.atomic(quote_number="Q-1001"):
            gateway.update_version_status(v2.id, status="Accepted", is_current=True)

    assert gateway.get_version(v2.id).status == "Draft"


# --- Other transitions ---

def test_send_sets_sent_date_and_allows_accept(gateway, draft_quote):
    sent = send_quote(gateway, draft_quote, ACTOR)
    assert sent.status == "Sent"
    assert sent.sent_date is not None

    result = accept_quote(gateway, draft_quote, ACTOR)
    assert result.success
    assert gateway.get_version(draft_quote).status == "Accepted"


def test_expired_is_terminal(gateway, draft_quote):
    send_quote(gateway, draft_quote, ACTOR)
    expire_quote(gateway, draft_quote, ACTOR)
    for transition in (send_quote, accept_quote, reject_quote):
        with pytest.raises(InvalidState):
            transition(gateway, draft_quote, ACTOR)
    assert gateway.get_version(draft_quote).status == "Expired"


def test_draft_cannot_be_rejected(gateway, draft_quote):
    with pytest.raises(InvalidState):
        reject_quote(gateway, draft_quote, ACTOR)


def test_accepted_version_is_not_editable(gateway, draft_quote):
    accept_quote(gateway, draft_quote, ACTOR)
    with pytest.raises(InvalidState):
        quote_builder.update_terms(gateway, draft_quote, ACTOR, pricing_tier="VIP")
    quote = gateway.get_quote_aggregate(draft_quote)
    assert quote.pricing_tier == "Retail"
    assert quote.total_sell_ex_gst == Decimal("888.00")


def test_superseded_version_cannot_be_reaccepted(gateway, draft_quote):
    accept_quote(gateway, draft_quote, ACTOR)
    v2 = create_quote_version(gateway, "Q-1001", ACTOR)
    accept_quote(gateway, v2.id, ACTOR)

    with pytest.raises(InvalidState) as exc:
        accept_quote(gateway, draft_quote, ACTOR)
    assert "Superseded is final" in exc.value.message


def test_failure_after_supersede_rolls_back_everything(db, gateway, draft_quote):
    accept_quote(gateway, draft_quote, ACTOR)
    v2 = create_quote_version(gateway, "Q-1001", ACTOR)
    v2_id = v2.id
    revision = gateway.get_lineage("Q-1001").revision

    with pytest.raises(PersistenceFailure) as exc:
        accept_quote(FailingAcceptGateway(db), v2_id, ACTOR)

    assert exc.value.quote_number == "Q-1001"
    v1 = gateway.get_version(draft_quote)
    assert v1.status == "Accepted"
    assert v1.is_current
    assert v1.superseded_at is None
    v2 = gateway.get_version(v2_id)
    assert v2.status == "Draft"
    assert v2.is_current
    assert v2.accepted_date is None
    assert gateway.get_lineage("Q-1001").revision == revision
