"""
Pricing Engine — turns measured area into packs and priced line items.

Pure math, no I/O. Area × (1 + waste) ÷ bale size → packs (always rounded UP,
you can't buy half a bale), packs × pack price → cost, cost × (1 + markup) → sell.

All arithmetic is done in Decimal at full precision. Money and margin figures are
rounded half-up to cents only when the result is built, and section/quote totals
are sums of those rounded figures, so the numbers on a quote always foot.
"""

from dataclasses import dataclass, asdict
from decimal import Decimal, ROUND_CEILING, ROUND_HALF_UP, InvalidOperation

from .config import settings
from .errors import InvalidInput, InvalidPricingTier
from .models import PricingTier


# Markup on cost for each named tier (Retail 60% ≈ 37.5% GP, Trade 40% ≈ 28.5% GP, VIP 25% = 20% GP)
TIER_MARKUP_PERCENT = {
    PricingTier.RETAIL: Decimal("60"),
    PricingTier.TRADE: Decimal("40"),
    PricingTier.VIP: Decimal("25"),
}

CENT = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class LineItemPricing:
    packs_required: int
    cost_price: Decimal   # per pack (per m² for labour)
    sell_price: Decimal   # per pack (per m² for labour)
    line_cost: Decimal
    line_sell: Decimal
    margin_percent: Decimal

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class SectionTotals:
    total_cost: Decimal
    total_sell: Decimal
    gross_profit: Decimal
    margin_percent: Decimal

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class QuoteTotals:
    total_cost_ex_gst: Decimal
    total_sell_ex_gst: Decimal
    gross_profit: Decimal
    margin_percent: Decimal
    gst_amount: Decimal
    total_inc_gst: Decimal

    def to_dict(self) -> dict:
        return asdict(self)


def to_decimal(value, field: str = "value") -> Decimal:
    """Convert user/DB input to Decimal without picking up float noise."""
    if isinstance(value, Decimal):
        return value
    if value is None or isinstance(value, bool):
        raise InvalidInput(f"{field} must be a number, got {value!r}")
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidInput(f"{field} must be a number, got {value!r}")


def round_money(value: Decimal) -> Decimal:
    """Half-up to cents (banker's rounding would drift from what customers expect)."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_stored_scale(value, field: str = "value") -> Decimal:
    """Area and terms are stored to two decimals, so they are priced at two decimals too."""
    return round_money(to_decimal(value, field))


def margin_of(cost: Decimal, sell: Decimal) -> Decimal:
    """Gross margin as a % of sell. Zero when there's nothing sold."""
    if sell <= ZERO:
        return ZERO
    return (sell - cost) / sell * HUNDRED


def resolve_pricing_tier(tier) -> PricingTier:
    if isinstance(tier, PricingTier):
        return tier
    try:
        return PricingTier(tier)
    except ValueError:
        valid = [t.value for t in PricingTier]
        raise InvalidPricingTier(f"Unknown pricing tier {tier!r} — must be one of {valid}")


def resolve_markup_percent(tier, custom_percent=None) -> Decimal:
    """
    Markup % for a tier. Named tiers have fixed presets; Custom needs an explicit,
    non-negative percent. A percent passed alongside a named tier is rejected
    rather than silently ignored.
    """
    tier = resolve_pricing_tier(tier)
    if tier == PricingTier.CUSTOM:
        if custom_percent is None:
            raise InvalidPricingTier("Custom pricing tier requires an explicit markup percent")
        try:
            percent = to_decimal(custom_percent, "custom_markup_percent")
        except InvalidInput as e:
            raise InvalidPricingTier(e.message)
        if percent < ZERO:
            raise InvalidPricingTier(f"Custom markup percent must be >= 0, got {percent}")
        return percent
    if custom_percent is not None:
        raise InvalidPricingTier(
            f"Markup percent only applies to the Custom tier — {tier.value} is fixed "
            f"at {TIER_MARKUP_PERCENT[tier]}%"
        )
    return TIER_MARKUP_PERCENT[tier]


def packs_for_area(area_sqm, waste_percent, bale_size_sqm) -> int:
    """ceil(area × (1 + waste/100) ÷ bale size). Zero area needs zero packs."""
    area = to_decimal(area_sqm, "area_sqm")
    waste = to_decimal(waste_percent, "waste_percent")
    bale = to_decimal(bale_size_sqm, "bale_size_sqm")
    if area < ZERO:
        raise InvalidInput(f"area_sqm must be >= 0, got {area}")
    if waste < ZERO:
        raise InvalidInput(f"waste_percent must be >= 0, got {waste}")
    if bale <= ZERO:
        raise InvalidInput(f"bale_size_sqm must be > 0, got {bale}")
    area_with_waste = area * (1 + waste / HUNDRED)
    return int((area_with_waste / bale).to_integral_value(rounding=ROUND_CEILING))


def calculate_line_item(product, area_sqm, waste_percent, pricing_tier,
                        custom_markup_percent=None) -> LineItemPricing:
    """
    Price one product line.

    Args:
        product: anything with bale_size_sqm and pack_price (ORM Product or plain object)
        area_sqm: measured area, >= 0
        waste_percent: offcut allowance, e.g. 10 for 10%
        pricing_tier: PricingTier or its value ("Retail", "Trade", "VIP", "Custom")
        custom_markup_percent: required for Custom, rejected otherwise

    Raises InvalidInput / InvalidPricingTier before computing anything.
    """
    markup = resolve_markup_percent(pricing_tier, custom_markup_percent)
    packs = packs_for_area(area_sqm, waste_percent, product.bale_size_sqm)

    pack_price = to_decimal(product.pack_price, "pack_price")
    if pack_price < ZERO:
        raise InvalidInput(f"pack_price must be >= 0, got {pack_price}")

    sell_per_pack = pack_price * (1 + markup / HUNDRED)
    line_cost = packs * pack_price
    line_sell = packs * sell_per_pack

    # Per-pack prices are display figures; line totals use the unrounded sell rate
    return LineItemPricing(
        packs_required=packs,
        cost_price=round_money(pack_price),
        sell_price=round_money(sell_per_pack),
        line_cost=round_money(line_cost),
        line_sell=round_money(line_sell),
        margin_percent=round_money(margin_of(line_cost, line_sell)),
    )


def calculate_labour_line(area_sqm, labour_rate_per_sqm,
                          labour_cost_per_sqm=None) -> LineItemPricing:
    """Labour is charged per m² installed, with no packs and no waste allowance."""
    area = to_decimal(area_sqm, "area_sqm")
    rate = to_decimal(labour_rate_per_sqm, "labour_rate_per_sqm")
    if labour_cost_per_sqm is None:
        labour_cost_per_sqm = settings.LABOUR_COST_PER_SQM
    cost_rate = to_decimal(labour_cost_per_sqm, "labour_cost_per_sqm")
    if area < ZERO:
        raise InvalidInput(f"area_sqm must be >= 0, got {area}")
    if rate < ZERO or cost_rate < ZERO:
        raise InvalidInput("Labour rates must be >= 0")

    line_cost = area * cost_rate
    line_sell = area * rate
    return LineItemPricing(
        packs_required=0,
        cost_price=round_money(cost_rate),
        sell_price=round_money(rate),
        line_cost=round_money(line_cost),
        line_sell=round_money(line_sell),
        margin_percent=round_money(margin_of(line_cost, line_sell)),
    )


def summarize_section(lines) -> SectionTotals:
    """
    Sum already-rounded line figures. lines: anything with line_cost / line_sell
    (LineItemPricing, ORM QuoteLineItem, ...).
    """
    total_cost = sum((to_decimal(l.line_cost or 0) for l in lines), ZERO)
    total_sell = sum((to_decimal(l.line_sell or 0) for l in lines), ZERO)
    return SectionTotals(
        total_cost=total_cost,
        total_sell=total_sell,
        gross_profit=total_sell - total_cost,
        margin_percent=round_money(margin_of(total_cost, total_sell)),
    )


def summarize_quote(section_totals, gst_rate=None) -> QuoteTotals:
    """Roll section subtotals up to the quote and add GST on the sell total."""
    if gst_rate is None:
        gst_rate = settings.GST_RATE
    rate = to_decimal(gst_rate, "gst_rate")

    total_cost = sum((s.total_cost for s in section_totals), ZERO)
    total_sell = sum((s.total_sell for s in section_totals), ZERO)
    gst_amount = round_money(total_sell * rate)
    return QuoteTotals(
        total_cost_ex_gst=total_cost,
        total_sell_ex_gst=total_sell,
        gross_profit=total_sell - total_cost,
        margin_percent=round_money(margin_of(total_cost, total_sell)),
        gst_amount=gst_amount,
        total_inc_gst=total_sell + gst_amount,
    )
