"""
Quote editing — creates quotes and keeps every line item priced.

Each edit (add/remove section, add/update/remove line, change terms) runs as one
atomic unit against the lineage: it re-prices the affected version and bumps the
lineage revision, so an edit racing an acceptance can't slip stale totals into
an accepted quote.

Only Draft versions are editable. Anything already sent to a customer gets a new
version instead (see versioning.create_quote_version).
"""

import logging
from datetime import datetime

from . import models
from .config import settings
from .errors import InvalidInput, InvalidState, ConcurrentModification
from .gateway import QuoteGateway
from .pricing_engine import (
    calculate_line_item, calculate_labour_line, summarize_section, summarize_quote,
    resolve_markup_percent, resolve_pricing_tier, to_decimal, to_stored_scale,
)

logger = logging.getLogger(__name__)

LABOUR_DESCRIPTION = "Labour"

# Term and header fields a version may change
TERM_FIELDS = {
    "pricing_tier", "custom_markup_percent", "waste_percent", "labour_rate_per_sqm",
    "customer_name", "site_address", "notes", "valid_days",
}


def require_actor(actor_id) -> str:
    """Every mutation must say who did it. No default actor."""
    if actor_id is None or not str(actor_id).strip():
        raise InvalidInput("actor_id is required for this operation")
    return str(actor_id).strip()


def validate_terms(pricing_tier, custom_markup_percent, waste_percent, labour_rate_per_sqm):
    resolve_markup_percent(pricing_tier, custom_markup_percent)
    if to_decimal(waste_percent, "waste_percent") < 0:
        raise InvalidInput(f"waste_percent must be >= 0, got {waste_percent}")
    if to_decimal(labour_rate_per_sqm, "labour_rate_per_sqm") < 0:
        raise InvalidInput(f"labour_rate_per_sqm must be >= 0, got {labour_rate_per_sqm}")


def generate_quote_number(gateway: QuoteGateway) -> str:
    count = gateway.count_lineages()
    year = datetime.utcnow().year
    return f"Q-{year}-{str(count + 1).zfill(4)}"


# --- Pricing ---

def price_line_item(item: models.QuoteLineItem, quote: models.QuoteVersion, gateway: QuoteGateway):
    """Recompute one line's derived fields from its area and the version's terms."""
    if item.is_labour:
        pricing = calculate_labour_line(item.area_sqm, quote.labour_rate_per_sqm)
    else:
        product = item.product if item.product is not None else gateway.get_product(item.product_id)
        pricing = calculate_line_item(
            product, item.area_sqm, quote.waste_percent,
            quote.pricing_tier, quote.custom_markup_percent,
        )
    item.packs_required = pricing.packs_required
    item.cost_price = pricing.cost_price
    item.sell_price = pricing.sell_price
    item.line_cost = pricing.line_cost
    item.line_sell = pricing.line_sell
    item.margin_percent = pricing.margin_percent
    return pricing


def reprice_version(gateway: QuoteGateway, quote: models.QuoteVersion) -> models.QuoteVersion:
    """
    Re-price every line, then roll rounded line figures up into section and
    quote totals. Totals are never recomputed from raw area.
    """
    section_totals = []
    for section in quote.sections:
        lines = []
        for item in section.line_items:
            lines.append(price_line_item(item, quote, gateway))
        section_totals.append(summarize_section(lines))

    totals = summarize_quote(section_totals)
    quote.total_cost_ex_gst = totals.total_cost_ex_gst
    quote.total_sell_ex_gst = totals.total_sell_ex_gst
    quote.gross_profit = totals.gross_profit
    quote.margin_percent = totals.margin_percent
    quote.gst_amount = totals.gst_amount
    quote.total_inc_gst = totals.total_inc_gst
    gateway.flush()
    return quote


def apply_terms(quote: models.QuoteVersion, changes: dict):
    """Validate and apply term/header changes to a version. Caller re-prices."""
    unknown = set(changes) - TERM_FIELDS
    if unknown:
        raise InvalidInput(f"Unknown quote fields: {sorted(unknown)}")
    tier = changes.get("pricing_tier", quote.pricing_tier)
    custom = changes.get("custom_markup_percent", quote.custom_markup_percent)
    if "pricing_tier" in changes and resolve_pricing_tier(tier) != models.PricingTier.CUSTOM \
            and "custom_markup_percent" not in changes:
        custom = None  # switching away from Custom drops the old percent
    waste = changes.get("waste_percent", quote.waste_percent)
    labour = changes.get("labour_rate_per_sqm", quote.labour_rate_per_sqm)
    validate_terms(tier, custom, waste, labour)

    quote.pricing_tier = resolve_pricing_tier(tier).value
    quote.custom_markup_percent = to_stored_scale(custom) if custom is not None else None
    quote.waste_percent = to_stored_scale(waste)
    quote.labour_rate_per_sqm = to_stored_scale(labour)
    for field in ("customer_name", "site_address", "notes", "valid_days"):
        if field in changes:
            setattr(quote, field, changes[field])


def _editable_version(gateway: QuoteGateway, version_id: int):
    """Lock-read the lineage first, then the version, so the revision we later
    bump is the one our status check was made against."""
    quote_number = gateway.get_version(version_id).quote_number
    lineage = gateway.get_lineage(quote_number)
    gateway.get_version(version_id)  # re-read status after the revision
    quote = gateway.get_quote_aggregate(version_id)
    if quote.status != models.QuoteStatus.DRAFT.value:
        raise InvalidState(
            f"Quote {quote.quote_number} v{quote.version} is {quote.status} — only Draft "
            f"versions can be edited; create a new version instead",
            quote_number=quote.quote_number, version=quote.version, current_status=quote.status,
        )
    return quote, lineage


def _finish_edit(gateway: QuoteGateway, quote: models.QuoteVersion, lineage, actor_id: str):
    reprice_version(gateway, quote)
    quote.updated_by = actor_id
    gateway.touch_lineage(lineage)


# --- Quotes ---

def create_quote(gateway: QuoteGateway, actor_id, customer_name: str = None,
                 site_address: str = None, notes: str = None,
                 pricing_tier=models.PricingTier.RETAIL, custom_markup_percent=None,
                 waste_percent=None, labour_rate_per_sqm=None, valid_days: int = None,
                 quote_number: str = None) -> models.QuoteVersion:
    """Start a new lineage at version 1 (Draft, current)."""
    actor_id = require_actor(actor_id)
    if waste_percent is None:
        waste_percent = settings.DEFAULT_WASTE_PERCENT
    if labour_rate_per_sqm is None:
        labour_rate_per_sqm = settings.DEFAULT_LABOUR_RATE_PER_SQM
    validate_terms(pricing_tier, custom_markup_percent, waste_percent, labour_rate_per_sqm)
    tier = resolve_pricing_tier(pricing_tier)

    attempts = settings.VERSION_CREATE_MAX_RETRIES
    for attempt in range(1, attempts + 1):
        number = quote_number or generate_quote_number(gateway)
        try:
            with gateway.atomic(quote_number=number, version=1):
                gateway.create_lineage(number)
                quote = models.QuoteVersion(
                    quote_number=number,
                    version=1,
                    status=models.QuoteStatus.DRAFT.value,
                    is_current=True,
                    customer_name=customer_name,
                    site_address=site_address,
                    notes=notes,
                    valid_days=valid_days or settings.QUOTE_VALID_DAYS,
                    pricing_tier=tier.value,
                    custom_markup_percent=(
                        to_stored_scale(custom_markup_percent) if custom_markup_percent is not None else None
                    ),
                    waste_percent=to_stored_scale(waste_percent),
                    labour_rate_per_sqm=to_stored_scale(labour_rate_per_sqm),
                    created_by=actor_id,
                    updated_by=actor_id,
                )
                gateway.db.add(quote)
                gateway.flush()
            logger.info(f"Quote {number} created by {actor_id}")
            return gateway.get_quote_aggregate(quote.id)
        except ConcurrentModification:
            # Explicit numbers don't get a second guess
            if quote_number is not None or attempt == attempts:
                raise
            logger.warning(f"Quote number {number} taken, retrying ({attempt}/{attempts})")


def update_terms(gateway: QuoteGateway, version_id: int, actor_id, **changes) -> models.QuoteVersion:
    """
    Change pricing tier / custom percent / waste / labour rate / header fields
    and re-price every line. Unknown fields raise InvalidInput.
    """
    actor_id = require_actor(actor_id)
    quote = gateway.get_version(version_id)
    with gateway.atomic(quote_number=quote.quote_number, version=quote.version):
        quote, lineage = _editable_version(gateway, version_id)
        apply_terms(quote, changes)
        _finish_edit(gateway, quote, lineage, actor_id)
    logger.info(f"Terms updated on {quote.quote_number} v{quote.version} by {actor_id}")
    return gateway.get_quote_aggregate(version_id)


# --- Sections ---

def add_section(gateway: QuoteGateway, version_id: int, actor_id, section_name: str,
                section_color: str = "#ffffff") -> models.QuoteSection:
    actor_id = require_actor(actor_id)
    if not section_name or not section_name.strip():
        raise InvalidInput("section_name is required")
    quote = gateway.get_version(version_id)
    with gateway.atomic(quote_number=quote.quote_number, version=quote.version):
        quote, lineage = _editable_version(gateway, version_id)
        section = gateway.add_section(
            quote,
            section_name=section_name.strip(),
            section_color=section_color or "#ffffff",
            sort_order=len(quote.sections) + 1,
        )
        _finish_edit(gateway, quote, lineage, actor_id)
    return section


def remove_section(gateway: QuoteGateway, section_id: int, actor_id) -> models.QuoteVersion:
    """Deleting a section deletes its line items with it."""
    actor_id = require_actor(actor_id)
    section = gateway.get_section(section_id)
    version_id = section.quote_id
    quote = gateway.get_version(version_id)
    with gateway.atomic(quote_number=quote.quote_number, version=quote.version):
        quote, lineage = _editable_version(gateway, version_id)
        gateway.delete_section(section)
        _finish_edit(gateway, quote, lineage, actor_id)
    return gateway.get_quote_aggregate(version_id)


# --- Line items ---

def add_line_item(gateway: QuoteGateway, section_id: int, actor_id, area_sqm,
                  product_id: int = None, is_labour: bool = False,
                  with_labour: bool = False, description: str = None) -> models.QuoteLineItem:
    """
    Add a product line (product_id) or a standalone labour line (is_labour).
    with_labour=True also adds a labour row over the same area, tied to the
    product row so area changes and removal carry over.
    """
    actor_id = require_actor(actor_id)
    if not is_labour and product_id is None:
        raise InvalidInput("product_id is required for a product line")
    if is_labour and product_id is not None:
        raise InvalidInput("Labour lines don't reference a product")
    area = to_decimal(area_sqm, "area_sqm")
    if area < 0:
        raise InvalidInput(f"area_sqm must be >= 0, got {area}")
    area = to_stored_scale(area)

    section = gateway.get_section(section_id)
    quote = gateway.get_version(section.quote_id)
    with gateway.atomic(quote_number=quote.quote_number, version=quote.version):
        quote, lineage = _editable_version(gateway, section.quote_id)
        if is_labour:
            description = description or LABOUR_DESCRIPTION
        else:
            product = gateway.get_product(product_id)
            description = description or product.description

        sort_order = len(section.line_items) + 1
        item = gateway.upsert_line_item(
            section,
            product_id=product_id,
            is_labour=is_labour,
            description=description,
            area_sqm=area,
            sort_order=sort_order,
        )
        if with_labour and not is_labour:
            gateway.upsert_line_item(
                section,
                is_labour=True,
                parent_line_item_id=item.id,
                description=LABOUR_DESCRIPTION,
                area_sqm=area,
                sort_order=sort_order + 1,
            )
        _finish_edit(gateway, quote, lineage, actor_id)
    return item


def update_line_item(gateway: QuoteGateway, item_id: int, actor_id, area_sqm=None,
                     product_id: int = None, description: str = None) -> models.QuoteLineItem:
    """Change area or product; the line (and its labour row) are re-priced."""
    actor_id = require_actor(actor_id)
    item = gateway.get_line_item(item_id)
    section = item.section
    quote = gateway.get_version(section.quote_id)
    with gateway.atomic(quote_number=quote.quote_number, version=quote.version):
        quote, lineage = _editable_version(gateway, section.quote_id)
        fields = {}
        if area_sqm is not None:
            area = to_decimal(area_sqm, "area_sqm")
            if area < 0:
                raise InvalidInput(f"area_sqm must be >= 0, got {area}")
            area = to_stored_scale(area)
            fields["area_sqm"] = area
        if product_id is not None:
            if item.is_labour:
                raise InvalidInput("Labour lines don't reference a product")
            product = gateway.get_product(product_id)
            fields["product_id"] = product.id
            fields["description"] = description or product.description
        elif description:
            fields["description"] = description

        item = gateway.upsert_line_item(section, item_id=item.id, **fields)
        if "area_sqm" in fields:
            for child in gateway.labour_children(item):
                gateway.upsert_line_item(section, item_id=child.id, area_sqm=fields["area_sqm"])
        # product relationship may point at the old product until reloaded
        gateway.db.expire(item, ["product"])
        _finish_edit(gateway, quote, lineage, actor_id)
    return item


def remove_line_item(gateway: QuoteGateway, item_id: int, actor_id) -> models.QuoteVersion:
    """Removes the line and any labour row hanging off it."""
    actor_id = require_actor(actor_id)
    item = gateway.get_line_item(item_id)
    version_id = item.section.quote_id
    quote = gateway.get_version(version_id)
    with gateway.atomic(quote_number=quote.quote_number, version=quote.version):
        quote, lineage = _editable_version(gateway, version_id)
        for child in gateway.labour_children(item):
            gateway.delete_line_item(child)
        gateway.delete_line_item(item)
        _finish_edit(gateway, quote, lineage, actor_id)
    return gateway.get_quote_aggregate(version_id)


# --- Serialization ---

def item_to_dict(i: models.QuoteLineItem) -> dict:
    return {
        "id": i.id,
        "section_id": i.section_id,
        "product_id": i.product_id,
        "sku": i.product.sku if i.product else None,
        "parent_line_item_id": i.parent_line_item_id,
        "is_labour": bool(i.is_labour),
        "description": i.description,
        "area_sqm": i.area_sqm,
        "packs_required": i.packs_required,
        "cost_price": i.cost_price,
        "sell_price": i.sell_price,
        "line_cost": i.line_cost,
        "line_sell": i.line_sell,
        "margin_percent": i.margin_percent,
        "sort_order": i.sort_order,
    }


def section_to_dict(s: models.QuoteSection) -> dict:
    totals = summarize_section(s.line_items)
    return {
        "id": s.id,
        "section_name": s.section_name,
        "section_color": s.section_color,
        "sort_order": s.sort_order,
        "subtotal_cost": totals.total_cost,
        "subtotal_sell": totals.total_sell,
        "margin_percent": totals.margin_percent,
        "line_items": [item_to_dict(i) for i in s.line_items],
    }


def version_summary(q: models.QuoteVersion) -> dict:
    return {
        "id": q.id,
        "quote_number": q.quote_number,
        "version": q.version,
        "status": q.status,
        "is_current": bool(q.is_current),
        "total_inc_gst": q.total_inc_gst,
        "accepted_date": q.accepted_date.isoformat() if q.accepted_date else None,
        "accepted_by": q.accepted_by,
        "superseded_at": q.superseded_at.isoformat() if q.superseded_at else None,
        "created_at": q.created_at.isoformat() if q.created_at else None,
    }


def quote_to_dict(q: models.QuoteVersion) -> dict:
    data = version_summary(q)
    data.update({
        "customer_name": q.customer_name,
        "site_address": q.site_address,
        "notes": q.notes,
        "valid_days": q.valid_days,
        "pricing_tier": q.pricing_tier,
        "custom_markup_percent": q.custom_markup_percent,
        "waste_percent": q.waste_percent,
        "labour_rate_per_sqm": q.labour_rate_per_sqm,
        "total_cost_ex_gst": q.total_cost_ex_gst,
        "total_sell_ex_gst": q.total_sell_ex_gst,
        "gross_profit": q.gross_profit,
        "margin_percent": q.margin_percent,
        "gst_amount": q.gst_amount,
        "sent_date": q.sent_date.isoformat() if q.sent_date else None,
        "created_by": q.created_by,
        "updated_by": q.updated_by,
        "updated_at": q.updated_at.isoformat() if q.updated_at else None,
        "sections": [section_to_dict(s) for s in q.sections],
    })
    return data
