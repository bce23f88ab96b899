"""
Data Access Gateway — the only place the quoting core touches the database.

Pricing, versioning and acceptance code ask the gateway for records and hand it
mutations; the gateway decides how they're fetched and when they're committed.

Atomicity: callers wrap multi-step mutations in `with gateway.atomic(...)`.
Nested atomic blocks join the outer one, so snapshot + version creation or
status update + supersession commit together or not at all.

Lineage serialization: every mutation on a quote lineage calls touch_lineage(),
which bumps quote_lineages.revision through SQLAlchemy's version_id_col. A writer
that read an older revision updates zero rows, SQLAlchemy raises StaleDataError,
and the whole unit rolls back as ConcurrentModification. Works across processes
because the check lives in the UPDATE ... WHERE revision = :seen statement.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload, selectinload
from sqlalchemy.orm.exc import StaleDataError

from . import models
from .errors import ConcurrentModification, NotFound, PersistenceFailure

logger = logging.getLogger(__name__)


def _decimal(value):
    """Snapshot JSON stores money as strings."""
    return Decimal(str(value)) if value is not None else None


class QuoteGateway:
    """SQLAlchemy-backed gateway bound to one Session."""

    def __init__(self, db: Session):
        self.db = db
        self._depth = 0

    # --- Unit of work ---

    @contextmanager
    def atomic(self, quote_number: str = None, version: int = None):
        """
        Commit everything done inside the block as one transaction.
        Storage conflicts surface as ConcurrentModification, anything else from
        SQLAlchemy as PersistenceFailure. Rolls back before raising.
        """
        if self._depth:
            # Joined an outer unit, which owns commit/rollback
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
            return

        self._depth = 1
        try:
            yield self
            self.db.commit()
        except StaleDataError as e:
            self.db.rollback()
            logger.warning(f"Lineage {quote_number} changed underneath us (v{version}): {e}")
            raise ConcurrentModification(
                f"Quote {quote_number} was modified by another request — reload and retry",
                quote_number=quote_number, version=version,
            ) from e
        except IntegrityError as e:
            self.db.rollback()
            if "unique" in str(e.orig).lower():
                logger.warning(f"Duplicate key on lineage {quote_number} (v{version}): {e.orig}")
                raise ConcurrentModification(
                    f"Quote {quote_number} was modified by another request — reload and retry",
                    quote_number=quote_number, version=version,
                ) from e
            raise PersistenceFailure(
                f"Database rejected changes to quote {quote_number}: {e.orig}",
                quote_number=quote_number, version=version,
            ) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Database error on lineage {quote_number}: {e}")
            raise PersistenceFailure(
                f"Database error while updating quote {quote_number}",
                quote_number=quote_number, version=version,
            ) from e
        except Exception:
            self.db.rollback()
            raise
        finally:
            self._depth = 0

    @property
    def nested(self) -> bool:
        """True inside an atomic block that joined an outer one."""
        return self._depth > 1

    def flush(self):
        self.db.flush()

    # --- Reads ---

    def get_version(self, version_id: int) -> models.QuoteVersion:
        """Fresh read, overwriting whatever this session already had cached."""
        quote = (
            self.db.query(models.QuoteVersion)
            .populate_existing()
            .filter(models.QuoteVersion.id == version_id)
            .first()
        )
        if not quote:
            raise NotFound(f"Quote version {version_id} not found")
        return quote

    def get_quote_aggregate(self, version_id: int) -> models.QuoteVersion:
        """Version with sections, line items and products loaded in one go."""
        quote = (
            self.db.query(models.QuoteVersion)
            .options(
                selectinload(models.QuoteVersion.sections)
                .selectinload(models.QuoteSection.line_items)
                .joinedload(models.QuoteLineItem.product)
            )
            .filter(models.QuoteVersion.id == version_id)
            .first()
        )
        if not quote:
            raise NotFound(f"Quote version {version_id} not found")
        return quote

    def list_versions(self, quote_number: str) -> list:
        return (
            self.db.query(models.QuoteVersion)
            .filter(models.QuoteVersion.quote_number == quote_number)
            .order_by(models.QuoteVersion.version)
            .all()
        )

    def latest_version(self, quote_number: str) -> models.QuoteVersion:
        quote = (
            self.db.query(models.QuoteVersion)
            .filter(models.QuoteVersion.quote_number == quote_number)
            .order_by(models.QuoteVersion.version.desc())
            .first()
        )
        if not quote:
            raise NotFound(f"Quote {quote_number} has no versions", quote_number=quote_number)
        return quote

    def max_version(self, quote_number: str):
        """Highest version number for the lineage, or None."""
        return (
            self.db.query(func.max(models.QuoteVersion.version))
            .filter(models.QuoteVersion.quote_number == quote_number)
            .scalar()
        )

    def accepted_current_versions(self, quote_number: str, except_version_id: int = None) -> list:
        query = self.db.query(models.QuoteVersion).filter(
            models.QuoteVersion.quote_number == quote_number,
            models.QuoteVersion.status == models.QuoteStatus.ACCEPTED.value,
            models.QuoteVersion.is_current.is_(True),
        )
        if except_version_id is not None:
            query = query.filter(models.QuoteVersion.id != except_version_id)
        return query.order_by(models.QuoteVersion.version).all()

    def current_versions(self, quote_number: str, except_version_id: int = None) -> list:
        query = self.db.query(models.QuoteVersion).filter(
            models.QuoteVersion.quote_number == quote_number,
            models.QuoteVersion.is_current.is_(True),
        )
        if except_version_id is not None:
            query = query.filter(models.QuoteVersion.id != except_version_id)
        return query.all()

    def get_product(self, product_id: int) -> models.Product:
        product = self.db.query(models.Product).filter(models.Product.id == product_id).first()
        if not product:
            raise NotFound(f"Product {product_id} not found")
        return product

    def get_section(self, section_id: int) -> models.QuoteSection:
        section = self.db.query(models.QuoteSection).filter(models.QuoteSection.id == section_id).first()
        if not section:
            raise NotFound(f"Section {section_id} not found")
        return section

    def get_line_item(self, item_id: int) -> models.QuoteLineItem:
        item = self.db.query(models.QuoteLineItem).filter(models.QuoteLineItem.id == item_id).first()
        if not item:
            raise NotFound(f"Line item {item_id} not found")
        return item

    def count_lineages(self) -> int:
        return self.db.query(models.QuoteLineage).count()

    # --- Lineage lock ---

    def get_lineage(self, quote_number: str) -> models.QuoteLineage:
        """Fresh read of the lineage row, so its revision is the one we compare against."""
        lineage = (
            self.db.query(models.QuoteLineage)
            .populate_existing()
            .filter(models.QuoteLineage.quote_number == quote_number)
            .first()
        )
        if not lineage:
            raise NotFound(f"Quote {quote_number} not found", quote_number=quote_number)
        return lineage

    def create_lineage(self, quote_number: str) -> models.QuoteLineage:
        lineage = models.QuoteLineage(quote_number=quote_number)
        self.db.add(lineage)
        self.db.flush()
        return lineage

    def touch_lineage(self, lineage: models.QuoteLineage):
        """Compare-and-swap on the revision. Raises StaleDataError (inside atomic) on a lost race."""
        lineage.updated_at = datetime.utcnow()
        self.db.flush()

    # --- Writes ---

    def create_version(self, quote_number: str, version: int, snapshot: models.QuoteTermsSnapshot,
                       created_by: str, header: dict = None) -> models.QuoteVersion:
        """
        New version of a lineage built from a terms snapshot: terms come from the
        snapshot, sections and line items are rebuilt from snapshot.items_json.
        Derived figures are copied as-is; callers re-price after applying changes.
        """
        header = header or {}
        quote = models.QuoteVersion(
            quote_number=quote_number,
            version=version,
            status=models.QuoteStatus.DRAFT.value,
            is_current=True,
            pricing_tier=snapshot.pricing_tier,
            custom_markup_percent=snapshot.custom_markup_percent,
            waste_percent=snapshot.waste_percent,
            labour_rate_per_sqm=snapshot.labour_rate_per_sqm,
            created_by=created_by,
            updated_by=created_by,
            **header,
        )
        self.db.add(quote)
        self.db.flush()  # duplicate (quote_number, version) fails here

        for section_data in snapshot.items_json:
            section = models.QuoteSection(
                quote_id=quote.id,
                section_name=section_data["section_name"],
                section_color=section_data.get("section_color") or "#ffffff",
                sort_order=section_data.get("sort_order", 1),
            )
            self.db.add(section)
            self.db.flush()

            new_ids = {}
            children = []
            for item_data in section_data.get("line_items", []):
                item = models.QuoteLineItem(
                    section_id=section.id,
                    product_id=item_data.get("product_id"),
                    is_labour=item_data.get("is_labour", False),
                    description=item_data["description"],
                    area_sqm=_decimal(item_data["area_sqm"]),
                    sort_order=item_data.get("sort_order", 1),
                    packs_required=item_data.get("packs_required", 0),
                    cost_price=_decimal(item_data.get("cost_price", 0)),
                    sell_price=_decimal(item_data.get("sell_price", 0)),
                    line_cost=_decimal(item_data.get("line_cost", 0)),
                    line_sell=_decimal(item_data.get("line_sell", 0)),
                    margin_percent=_decimal(item_data.get("margin_percent", 0)),
                )
                self.db.add(item)
                self.db.flush()
                new_ids[item_data.get("id")] = item.id
                if item_data.get("parent_line_item_id"):
                    children.append((item, item_data["parent_line_item_id"]))
            for item, old_parent_id in children:
                item.parent_line_item_id = new_ids.get(old_parent_id)

        self.db.flush()
        self.db.refresh(quote)
        return quote

    def update_version_status(self, version_id: int, **fields) -> models.QuoteVersion:
        quote = self.db.get(models.QuoteVersion, version_id)
        if quote is None:
            raise NotFound(f"Quote version {version_id} not found")
        for field, value in fields.items():
            setattr(quote, field, value)
        self.db.flush()
        return quote

    def create_snapshot(self, **fields) -> models.QuoteTermsSnapshot:
        snapshot = models.QuoteTermsSnapshot(**fields)
        self.db.add(snapshot)
        self.db.flush()
        return snapshot

    def add_section(self, quote: models.QuoteVersion, **fields) -> models.QuoteSection:
        section = models.QuoteSection(quote_id=quote.id, **fields)
        self.db.add(section)
        self.db.flush()
        self.db.refresh(quote)
        return section

    def delete_section(self, section: models.QuoteSection):
        quote = section.quote
        self.db.delete(section)
        self.db.flush()
        self.db.refresh(quote)

    def upsert_line_item(self, section: models.QuoteSection, item_id: int = None,
                         **fields) -> models.QuoteLineItem:
        """Insert a new line (item_id None) or update an existing one in place."""
        if item_id is None:
            item = models.QuoteLineItem(section_id=section.id, **fields)
            self.db.add(item)
        else:
            item = self.get_line_item(item_id)
            for field, value in fields.items():
                setattr(item, field, value)
        self.db.flush()
        self.db.refresh(section)
        return item

    def delete_line_item(self, item: models.QuoteLineItem):
        section = item.section
        self.db.delete(item)
        self.db.flush()
        self.db.refresh(section)

    def labour_children(self, item: models.QuoteLineItem) -> list:
        return (
            self.db.query(models.QuoteLineItem)
            .filter(models.QuoteLineItem.parent_line_item_id == item.id)
            .all()
        )

    def add_product(self, **fields) -> models.Product:
        product = models.Product(**fields)
        self.db.add(product)
        self.db.flush()
        return product

    def list_products(self, active_only: bool = True) -> list:
        query = self.db.query(models.Product)
        if active_only:
            query = query.filter(models.Product.is_active.is_(True))
        return query.order_by(models.Product.sku).all()

    def get_product_by_sku(self, sku: str):
        return self.db.query(models.Product).filter(models.Product.sku == sku).first()
