from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import acceptance, quote_builder, versioning
from ..auth import get_current_actor
from ..database import get_db
from ..gateway import QuoteGateway
from ..quote_builder import quote_to_dict, section_to_dict, item_to_dict, version_summary
from ..schemas import (
    QuoteCreate, TermsUpdate, VersionCreate, SectionCreate, LineItemCreate, LineItemUpdate,
    AcceptanceResponse,
)

router = APIRouter(prefix="/quotes", tags=["quotes"])


def _changes(model) -> dict:
    """Only the fields the client actually sent."""
    return model.model_dump(exclude_unset=True)


# --- Lineages ---

@router.post("/")
def create_quote(quote: QuoteCreate, db: Session = Depends(get_db),
                 actor_id: str = Depends(get_current_actor)):
    created = quote_builder.create_quote(QuoteGateway(db), actor_id, **_changes(quote))
    return quote_to_dict(created)


@router.get("/{quote_number}/versions")
def list_versions(quote_number: str, db: Session = Depends(get_db)):
    gateway = QuoteGateway(db)
    gateway.get_lineage(quote_number)
    return [version_summary(q) for q in gateway.list_versions(quote_number)]


@router.get("/{quote_number}/next-version")
def next_version(quote_number: str, db: Session = Depends(get_db)):
    gateway = QuoteGateway(db)
    gateway.get_lineage(quote_number)
    return {"quote_number": quote_number, "next_version": versioning.get_next_quote_version(gateway, quote_number)}


@router.post("/{quote_number}/versions")
def create_version(quote_number: str, body: VersionCreate, db: Session = Depends(get_db),
                   actor_id: str = Depends(get_current_actor)):
    changes = _changes(body)
    from_version_id = changes.pop("from_version_id", None)
    created = versioning.create_quote_version(
        QuoteGateway(db), quote_number, actor_id, from_version_id=from_version_id, **changes
    )
    return quote_to_dict(created)


# --- Versions ---

@router.get("/versions/{version_id}")
def get_version(version_id: int, db: Session = Depends(get_db)):
    return quote_to_dict(QuoteGateway(db).get_quote_aggregate(version_id))


@router.patch("/versions/{version_id}/terms")
def update_terms(version_id: int, body: TermsUpdate, db: Session = Depends(get_db),
                 actor_id: str = Depends(get_current_actor)):
    updated = quote_builder.update_terms(QuoteGateway(db), version_id, actor_id, **_changes(body))
    return quote_to_dict(updated)


@router.post("/versions/{version_id}/snapshot")
def snapshot_version(version_id: int, db: Session = Depends(get_db),
                     actor_id: str = Depends(get_current_actor)):
    snapshot_id = versioning.snapshot_quote_terms(QuoteGateway(db), version_id, actor_id)
    return {"ok": True, "snapshot_id": snapshot_id}


# --- Sections + line items ---

@router.post("/versions/{version_id}/sections")
def add_section(version_id: int, body: SectionCreate, db: Session = Depends(get_db),
                actor_id: str = Depends(get_current_actor)):
    gateway = QuoteGateway(db)
    section = quote_builder.add_section(gateway, version_id, actor_id, body.section_name, body.section_color)
    return section_to_dict(gateway.get_section(section.id))


@router.delete("/sections/{section_id}")
def remove_section(section_id: int, db: Session = Depends(get_db),
                   actor_id: str = Depends(get_current_actor)):
    return quote_to_dict(quote_builder.remove_section(QuoteGateway(db), section_id, actor_id))


@router.post("/sections/{section_id}/items")
def add_line_item(section_id: int, body: LineItemCreate, db: Session = Depends(get_db),
                  actor_id: str = Depends(get_current_actor)):
    gateway = QuoteGateway(db)
    item = quote_builder.add_line_item(gateway, section_id, actor_id, **_changes(body))
    return item_to_dict(gateway.get_line_item(item.id))


@router.patch("/items/{item_id}")
def update_line_item(item_id: int, body: LineItemUpdate, db: Session = Depends(get_db),
                     actor_id: str = Depends(get_current_actor)):
    gateway = QuoteGateway(db)
    item = quote_builder.update_line_item(gateway, item_id, actor_id, **_changes(body))
    return item_to_dict(gateway.get_line_item(item.id))


@router.delete("/items/{item_id}")
def remove_line_item(item_id: int, db: Session = Depends(get_db),
                     actor_id: str = Depends(get_current_actor)):
    return quote_to_dict(quote_builder.remove_line_item(QuoteGateway(db), item_id, actor_id))


# --- Workflow ---

@router.post("/versions/{version_id}/send")
def send_quote(version_id: int, db: Session = Depends(get_db),
               actor_id: str = Depends(get_current_actor)):
    return quote_to_dict(acceptance.send_quote(QuoteGateway(db), version_id, actor_id))


@router.post("/versions/{version_id}/reject")
def reject_quote(version_id: int, db: Session = Depends(get_db),
                 actor_id: str = Depends(get_current_actor)):
    return quote_to_dict(acceptance.reject_quote(QuoteGateway(db), version_id, actor_id))


@router.post("/versions/{version_id}/expire")
def expire_quote(version_id: int, db: Session = Depends(get_db),
                 actor_id: str = Depends(get_current_actor)):
    return quote_to_dict(acceptance.expire_quote(QuoteGateway(db), version_id, actor_id))


@router.post("/versions/{version_id}/accept", response_model=AcceptanceResponse)
def accept_quote(version_id: int, db: Session = Depends(get_db),
                 actor_id: str = Depends(get_current_actor)):
    return acceptance.accept_quote(QuoteGateway(db), version_id, actor_id).to_dict()
