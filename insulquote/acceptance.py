"""
Acceptance Workflow — quote status state machine.

    Draft ──> Sent ──> Accepted ──> Superseded   (superseded by the system only)
      │         ├────> Rejected
      └──> Accepted    └────> Expired

Rejected, Expired and Superseded are terminal.

Invariant: per quote_number at most one version is Accepted AND is_current.
Accepting a version and demoting the previously accepted one happen in one
atomic unit guarded by the lineage revision, so two racing acceptances can't
both commit: the loser gets ConcurrentModification with nothing applied.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime

from . import models
from .errors import InvalidState
from .gateway import QuoteGateway
from .quote_builder import require_actor

logger = logging.getLogger(__name__)

Status = models.QuoteStatus

ALLOWED_TRANSITIONS = {
    Status.DRAFT: {Status.SENT, Status.ACCEPTED},
    Status.SENT: {Status.ACCEPTED, Status.REJECTED, Status.EXPIRED},
    Status.ACCEPTED: {Status.SUPERSEDED},
    Status.REJECTED: set(),
    Status.EXPIRED: set(),
    Status.SUPERSEDED: set(),
}

TERMINAL_STATES = {s for s, targets in ALLOWED_TRANSITIONS.items() if not targets}


@dataclass
class AcceptanceResult:
    success: bool
    message: str
    quote_number: str = None
    version: int = None
    superseded_versions: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "message": self.message,
            "quote_number": self.quote_number,
            "version": self.version,
            "superseded_versions": self.superseded_versions,
        }


def format_date_ddmmyyyy(value: datetime) -> str:
    return value.strftime("%d-%m-%Y")


def check_transition(quote: models.QuoteVersion, target: Status):
    """Raise InvalidState unless quote.status -> target is allowed."""
    current = Status(quote.status)
    if target not in ALLOWED_TRANSITIONS[current]:
        if current in TERMINAL_STATES:
            allowed = f"none, {current.value} is final"
        else:
            allowed = ", ".join(sorted(s.value for s in ALLOWED_TRANSITIONS[current]))
        raise InvalidState(
            f"Cannot move quote {quote.quote_number} v{quote.version} from {current.value} "
            f"to {target.value}. Allowed: {allowed}",
            quote_number=quote.quote_number, version=quote.version, current_status=current.value,
        )


def _locked_version(gateway: QuoteGateway, version_id: int):
    """Read lineage revision, then the version's status as of that revision."""
    quote_number = gateway.get_version(version_id).quote_number
    lineage = gateway.get_lineage(quote_number)
    quote = gateway.get_version(version_id)
    return quote, lineage


def supersede_current_final_quote(gateway: QuoteGateway, quote_number: str,
                                  except_version_id: int = None) -> list:
    """
    Demote every Accepted + current version of the lineage except one to
    Superseded. System-triggered. Idempotent: with nothing to demote it writes
    nothing. Returns the demoted version numbers.
    """
    with gateway.atomic(quote_number=quote_number):
        # On its own it has to serialize with other writers; inside accept_quote
        # the caller already holds the lineage revision
        lineage = None if gateway.nested else gateway.get_lineage(quote_number)
        siblings = gateway.accepted_current_versions(quote_number, except_version_id=except_version_id)
        if not siblings:
            return []

        now = datetime.utcnow()
        demoted = []
        for sibling in siblings:
            check_transition(sibling, Status.SUPERSEDED)
            gateway.update_version_status(
                sibling.id,
                status=Status.SUPERSEDED.value,
                is_current=False,
                superseded_at=now,
            )
            demoted.append(sibling.version)
        if lineage is not None:
            gateway.touch_lineage(lineage)

    logger.info(f"Superseded {quote_number} versions {demoted}")
    return demoted


def accept_quote(gateway: QuoteGateway, version_id: int, actor_id) -> AcceptanceResult:
    """
    Accept a Draft or Sent version and supersede whatever was accepted before.

    Raises InvalidState for any other status (nothing is written), and
    ConcurrentModification when another writer changed the lineage first.
    """
    actor_id = require_actor(actor_id)
    quote = gateway.get_version(version_id)
    quote_number, version = quote.quote_number, quote.version

    with gateway.atomic(quote_number=quote_number, version=version):
        quote, lineage = _locked_version(gateway, version_id)
        check_transition(quote, Status.ACCEPTED)

        gateway.touch_lineage(lineage)
        # Demote first: the partial unique index rejects two current accepted rows
        superseded = supersede_current_final_quote(gateway, quote_number, except_version_id=version_id)
        now = datetime.utcnow()
        gateway.update_version_status(
            version_id,
            status=Status.ACCEPTED.value,
            accepted_date=now,
            accepted_by=actor_id,
            is_current=True,
            updated_by=actor_id,
        )
        # Drafts/sent siblings stop being current
        for sibling in gateway.current_versions(quote_number, except_version_id=version_id):
            gateway.update_version_status(sibling.id, is_current=False)

    logger.info(
        f"Quote {quote_number} v{version} accepted by {actor_id}"
        + (f", superseded v{superseded}" if superseded else "")
    )
    message = f"Quote {quote_number} v{version} accepted by {actor_id} on {format_date_ddmmyyyy(now)}"
    if superseded:
        message += f" — superseded version(s) {', '.join(str(v) for v in superseded)}"
    return AcceptanceResult(
        success=True,
        message=message,
        quote_number=quote_number,
        version=version,
        superseded_versions=superseded,
    )


def _transition(gateway: QuoteGateway, version_id: int, target: Status, actor_id,
                **extra) -> models.QuoteVersion:
    actor_id = require_actor(actor_id)
    quote = gateway.get_version(version_id)
    quote_number, version = quote.quote_number, quote.version

    with gateway.atomic(quote_number=quote_number, version=version):
        quote, lineage = _locked_version(gateway, version_id)
        check_transition(quote, target)
        gateway.update_version_status(version_id, status=target.value, updated_by=actor_id, **extra)
        gateway.touch_lineage(lineage)

    logger.info(f"Quote {quote_number} v{version} -> {target.value} by {actor_id}")
    return gateway.get_quote_aggregate(version_id)


def send_quote(gateway: QuoteGateway, version_id: int, actor_id) -> models.QuoteVersion:
    return _transition(gateway, version_id, Status.SENT, actor_id, sent_date=datetime.utcnow())


def reject_quote(gateway: QuoteGateway, version_id: int, actor_id) -> models.QuoteVersion:
    return _transition(gateway, version_id, Status.REJECTED, actor_id)


def expire_quote(gateway: QuoteGateway, version_id: int, actor_id) -> models.QuoteVersion:
    return _transition(gateway, version_id, Status.EXPIRED, actor_id)
