"""
Quote Version Manager — version numbers and terms snapshots per quote lineage.

A lineage is every version sharing one quote_number. Version numbers are
max + 1 under the (quote_number, version) unique constraint: if two writers
pick the same number, the loser's INSERT fails, its whole unit (snapshot
included) rolls back, and it tries again with a freshly computed number.
Numbers are never reused or skipped, only delayed.
"""

import logging
from decimal import Decimal

from . import models
from .config import settings
from .errors import ConcurrentModification, InvalidInput
from .gateway import QuoteGateway
from .pricing_engine import summarize_section, summarize_quote
from .quote_builder import (
    TERM_FIELDS, require_actor, apply_terms, reprice_version,
)

logger = logging.getLogger(__name__)


def _json_number(value):
    """Decimals go into the snapshot as strings so cents survive the JSON round trip."""
    if isinstance(value, Decimal):
        return str(value)
    return value


def _snapshot_items(quote: models.QuoteVersion) -> list:
    sections = []
    for section in quote.sections:
        sections.append({
            "section_name": section.section_name,
            "section_color": section.section_color,
            "sort_order": section.sort_order,
            "line_items": [
                {
                    "id": item.id,
                    "parent_line_item_id": item.parent_line_item_id,
                    "product_id": item.product_id,
                    "sku": item.product.sku if item.product else None,
                    "is_labour": bool(item.is_labour),
                    "description": item.description,
                    "area_sqm": _json_number(item.area_sqm),
                    "sort_order": item.sort_order,
                    "packs_required": item.packs_required,
                    "cost_price": _json_number(item.cost_price),
                    "sell_price": _json_number(item.sell_price),
                    "line_cost": _json_number(item.line_cost),
                    "line_sell": _json_number(item.line_sell),
                    "margin_percent": _json_number(item.margin_percent),
                }
                for item in section.line_items
            ],
        })
    return sections


def _snapshot_totals(quote: models.QuoteVersion) -> dict:
    totals = summarize_quote([summarize_section(s.line_items) for s in quote.sections])
    return {key: _json_number(value) for key, value in totals.to_dict().items()}


def get_next_quote_version(gateway: QuoteGateway, quote_number: str) -> int:
    """max(existing versions) + 1, or 1 for a lineage with no versions yet."""
    if not quote_number:
        raise InvalidInput("quote_number is required")
    latest = gateway.max_version(quote_number)
    return (latest or 0) + 1


def snapshot_quote_terms(gateway: QuoteGateway, version, actor_id) -> int:
    """
    Freeze a version's terms, sections, line items and totals. Returns the
    snapshot id.

    version: QuoteVersion or its id. Joins the caller's atomic unit when one is
    open (version creation), otherwise commits on its own.
    """
    actor_id = require_actor(actor_id)
    version_id = version if isinstance(version, int) else version.id
    quote = gateway.get_quote_aggregate(version_id)

    with gateway.atomic(quote_number=quote.quote_number, version=quote.version):
        snapshot = gateway.create_snapshot(
            quote_id=quote.id,
            quote_number=quote.quote_number,
            version=quote.version,
            status=quote.status,
            pricing_tier=quote.pricing_tier,
            custom_markup_percent=quote.custom_markup_percent,
            waste_percent=quote.waste_percent,
            labour_rate_per_sqm=quote.labour_rate_per_sqm,
            items_json=_snapshot_items(quote),
            totals_json=_snapshot_totals(quote),
            created_by=actor_id,
        )
        snapshot_id = snapshot.id
    logger.info(f"Snapshot {snapshot_id} taken of {quote.quote_number} v{quote.version} by {actor_id}")
    return snapshot_id


def create_quote_version(gateway: QuoteGateway, quote_number: str, actor_id,
                         from_version_id: int = None, **overrides) -> models.QuoteVersion:
    """
    Start the next version of a lineage from a prior one (default: the latest).

    One atomic unit: snapshot the source, allocate the next number, rebuild
    header/sections/items from the snapshot, apply overrides, re-price, hand the
    current flag over from any Draft/Sent sibling, bump the lineage revision.
    Accepted siblings stay current until a later version is accepted.

    Retries up to VERSION_CREATE_MAX_RETRIES on a lost race, then raises
    ConcurrentModification.
    """
    actor_id = require_actor(actor_id)
    unknown = set(overrides) - TERM_FIELDS
    if unknown:
        raise InvalidInput(f"Unknown version fields: {sorted(unknown)}")

    attempts = settings.VERSION_CREATE_MAX_RETRIES
    for attempt in range(1, attempts + 1):
        try:
            with gateway.atomic(quote_number=quote_number):
                lineage = gateway.get_lineage(quote_number)
                if from_version_id is not None:
                    source = gateway.get_quote_aggregate(from_version_id)
                    if source.quote_number != quote_number:
                        raise InvalidInput(
                            f"Version {from_version_id} belongs to {source.quote_number}, not {quote_number}",
                            quote_number=quote_number,
                        )
                else:
                    source = gateway.latest_version(quote_number)

                snapshot_id = snapshot_quote_terms(gateway, source, actor_id)
                snapshot = gateway.db.get(models.QuoteTermsSnapshot, snapshot_id)

                number = get_next_quote_version(gateway, quote_number)
                header = {
                    "customer_name": source.customer_name,
                    "site_address": source.site_address,
                    "notes": source.notes,
                    "valid_days": source.valid_days,
                }
                quote = gateway.create_version(quote_number, number, snapshot, actor_id, header=header)

                if overrides:
                    apply_terms(quote, overrides)
                reprice_version(gateway, quote)

                for sibling in gateway.current_versions(quote_number, except_version_id=quote.id):
                    if sibling.status != models.QuoteStatus.ACCEPTED.value:
                        sibling.is_current = False
                gateway.touch_lineage(lineage)
                new_id = quote.id
            logger.info(f"Quote {quote_number} v{number} created from v{source.version} by {actor_id}")
            return gateway.get_quote_aggregate(new_id)
        except ConcurrentModification:
            if attempt == attempts:
                logger.error(f"Gave up creating a version of {quote_number} after {attempts} attempts")
                raise
            logger.warning(
                f"Version number collision on {quote_number}, retrying ({attempt}/{attempts})"
            )

