from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Text, ForeignKey, Boolean, JSON,
    UniqueConstraint, Index, text,
)
from sqlalchemy.orm import relationship
from datetime import datetime
from .database import Base
import enum


class QuoteStatus(str, enum.Enum):
    DRAFT = "Draft"
    SENT = "Sent"
    ACCEPTED = "Accepted"
    REJECTED = "Rejected"
    EXPIRED = "Expired"
    SUPERSEDED = "Superseded"


class PricingTier(str, enum.Enum):
    RETAIL = "Retail"
    TRADE = "Trade"
    VIP = "VIP"
    CUSTOM = "Custom"


# status and pricing_tier are stored as VARCHAR holding the enum values, not SQL enums


class Product(Base):
    """Insulation catalog entry. Read-only from the quoting core's point of view."""
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    sku = Column(String, unique=True, nullable=False)
    description = Column(String, nullable=False)
    category = Column(String, nullable=True)  # 'ceiling' | 'underfloor' | 'wall'
    r_value = Column(String, nullable=True)
    bale_size_sqm = Column(Numeric(10, 3), nullable=False)  # m² covered by one pack
    pack_price = Column(Numeric(12, 2), nullable=False)
    cost_price = Column(Numeric(12, 2), nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class QuoteLineage(Base):
    """
    One row per quote_number. The revision column is the per-lineage
    compare-and-swap counter: every version creation and status change bumps it,
    so two writers working from the same revision can't both commit.
    """
    __tablename__ = "quote_lineages"

    id = Column(Integer, primary_key=True, index=True)
    quote_number = Column(String, unique=True, nullable=False)
    revision = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)

    versions = relationship("QuoteVersion", back_populates="lineage", order_by="QuoteVersion.version")

    __mapper_args__ = {"version_id_col": revision}


class QuoteVersion(Base):
    __tablename__ = "quotes"

    id = Column(Integer, primary_key=True, index=True)
    quote_number = Column(String, ForeignKey("quote_lineages.quote_number"), nullable=False, index=True)
    version = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default=QuoteStatus.DRAFT.value)
    is_current = Column(Boolean, nullable=False, default=True)

    # Header
    customer_name = Column(String, nullable=True)
    site_address = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    valid_days = Column(Integer, default=30)

    # Terms
    pricing_tier = Column(String, nullable=False, default=PricingTier.RETAIL.value)
    custom_markup_percent = Column(Numeric(7, 2), nullable=True)  # only for Custom tier
    waste_percent = Column(Numeric(7, 2), nullable=False, default=10)
    labour_rate_per_sqm = Column(Numeric(10, 2), nullable=False, default=3)

    # Totals, always derived from the line items
    total_cost_ex_gst = Column(Numeric(12, 2), default=0)
    total_sell_ex_gst = Column(Numeric(12, 2), default=0)
    gross_profit = Column(Numeric(12, 2), default=0)
    margin_percent = Column(Numeric(7, 2), default=0)
    gst_amount = Column(Numeric(12, 2), default=0)
    total_inc_gst = Column(Numeric(12, 2), default=0)

    # Workflow
    sent_date = Column(DateTime, nullable=True)
    accepted_date = Column(DateTime, nullable=True)
    accepted_by = Column(String, nullable=True)
    superseded_at = Column(DateTime, nullable=True)
    updated_by = Column(String, nullable=True)
    created_by = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    lineage = relationship("QuoteLineage", back_populates="versions")
    sections = relationship(
        "QuoteSection", back_populates="quote", cascade="all, delete-orphan",
        order_by="QuoteSection.sort_order",
    )
    snapshots = relationship("QuoteTermsSnapshot", back_populates="quote")

    __table_args__ = (
        UniqueConstraint("quote_number", "version", name="uq_quotes_quote_number_version"),
        # At most one current accepted version per lineage, enforced by the database
        Index(
            "uq_quotes_one_current_accepted",
            "quote_number",
            unique=True,
            sqlite_where=text("status = 'Accepted' AND is_current"),
            postgresql_where=text("status = 'Accepted' AND is_current"),
        ),
    )


class QuoteSection(Base):
    __tablename__ = "quote_sections"

    id = Column(Integer, primary_key=True, index=True)
    quote_id = Column(Integer, ForeignKey("quotes.id"), nullable=False)
    section_name = Column(String, nullable=False)
    section_color = Column(String, default="#ffffff")
    sort_order = Column(Integer, default=1)

    quote = relationship("QuoteVersion", back_populates="sections")
    line_items = relationship(
        "QuoteLineItem", back_populates="section", cascade="all, delete-orphan",
        order_by="QuoteLineItem.sort_order",
    )


class QuoteLineItem(Base):
    __tablename__ = "quote_line_items"

    id = Column(Integer, primary_key=True, index=True)
    section_id = Column(Integer, ForeignKey("quote_sections.id"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=True)  # NULL for labour lines
    parent_line_item_id = Column(Integer, ForeignKey("quote_line_items.id", ondelete="SET NULL"), nullable=True)  # labour row -> its product row
    is_labour = Column(Boolean, default=False)
    description = Column(String, nullable=False)
    area_sqm = Column(Numeric(12, 2), nullable=False, default=0)
    sort_order = Column(Integer, default=1)

    # Derived by the pricing engine, never set directly
    packs_required = Column(Integer, default=0)
    cost_price = Column(Numeric(12, 2), default=0)
    sell_price = Column(Numeric(12, 2), default=0)
    line_cost = Column(Numeric(12, 2), default=0)
    line_sell = Column(Numeric(12, 2), default=0)
    margin_percent = Column(Numeric(7, 2), default=0)

    section = relationship("QuoteSection", back_populates="line_items")
    product = relationship("Product")


class QuoteTermsSnapshot(Base):
    """Frozen copy of a version's terms and items, for audit and rollback."""
    __tablename__ = "quote_terms_snapshots"

    id = Column(Integer, primary_key=True, index=True)
    quote_id = Column(Integer, ForeignKey("quotes.id"), nullable=False)
    quote_number = Column(String, nullable=False, index=True)
    version = Column(Integer, nullable=False)
    status = Column(String, nullable=False)
    pricing_tier = Column(String, nullable=False)
    custom_markup_percent = Column(Numeric(7, 2), nullable=True)
    waste_percent = Column(Numeric(7, 2), nullable=False)
    labour_rate_per_sqm = Column(Numeric(10, 2), nullable=False)
    items_json = Column(JSON, nullable=False)  # [{section_name, section_color, line_items: [...]}]
    totals_json = Column(JSON, nullable=False)
    created_by = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    quote = relationship("QuoteVersion", back_populates="snapshots")
