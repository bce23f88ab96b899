from types import SimpleNamespace

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..errors import InvalidInput
from ..gateway import QuoteGateway
from ..pricing_engine import calculate_line_item, resolve_markup_percent, TIER_MARKUP_PERCENT
from ..schemas import PricingRequest

router = APIRouter(prefix="/pricing", tags=["pricing"])


@router.get("/tiers")
def list_pricing_tiers():
    """Named tiers and their markup on cost. Custom takes an explicit percent."""
    return {tier.value: pct for tier, pct in TIER_MARKUP_PERCENT.items()}


@router.post("/calculate")
def calculate(request: PricingRequest, db: Session = Depends(get_db)):
    """
    Price one line without saving anything.
    Uses the catalog product when product_id is given, otherwise inline bale size + pack price.
    """
    if request.product_id is not None:
        product = QuoteGateway(db).get_product(request.product_id)
    else:
        if request.bale_size_sqm is None or request.pack_price is None:
            raise InvalidInput("Give either product_id or both bale_size_sqm and pack_price")
        product = SimpleNamespace(bale_size_sqm=request.bale_size_sqm, pack_price=request.pack_price)

    pricing = calculate_line_item(
        product,
        request.area_sqm,
        request.waste_percent,
        request.pricing_tier,
        request.custom_markup_percent,
    )
    result = pricing.to_dict()
    result["markup_percent"] = resolve_markup_percent(request.pricing_tier, request.custom_markup_percent)
    return result
