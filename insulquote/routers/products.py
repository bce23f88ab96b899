from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from decimal import Decimal

from .. import models
from ..database import get_db
from ..errors import InvalidInput
from ..gateway import QuoteGateway
from ..schemas import ProductCreate, Product

router = APIRouter(prefix="/products", tags=["products"])

# Starter catalog: common NZ ceiling/underfloor/wall insulation packs.
# Prices are per pack ex GST; bale_size_sqm is coverage per pack.
DEFAULT_PRODUCTS = {
    "CEIL-R32-1200": {"description": "Ceiling blanket R3.2 1200mm", "category": "ceiling", "r_value": "R3.2",
                      "bale_size_sqm": Decimal("13.5"), "pack_price": Decimal("120.00"), "cost_price": Decimal("96.00")},
    "CEIL-R40-1200": {"description": "Ceiling blanket R4.0 1200mm", "category": "ceiling", "r_value": "R4.0",
                      "bale_size_sqm": Decimal("10.8"), "pack_price": Decimal("138.00"), "cost_price": Decimal("110.40")},
    "CEIL-R60-SEG": {"description": "Ceiling segments R6.0", "category": "ceiling", "r_value": "R6.0",
                     "bale_size_sqm": Decimal("5.6"), "pack_price": Decimal("112.00"), "cost_price": Decimal("89.60")},
    "UFL-R14-PAD": {"description": "Underfloor pads R1.4", "category": "underfloor", "r_value": "R1.4",
                    "bale_size_sqm": Decimal("8.6"), "pack_price": Decimal("89.00"), "cost_price": Decimal("71.20")},
    "WALL-R26-90": {"description": "Wall batts R2.6 90mm", "category": "wall", "r_value": "R2.6",
                    "bale_size_sqm": Decimal("7.0"), "pack_price": Decimal("79.50"), "cost_price": Decimal("63.60")},
}


def seed_default_products(gateway: QuoteGateway) -> int:
    """Insert any default products that aren't in the catalog yet. Caller commits."""
    seeded = 0
    for sku, data in DEFAULT_PRODUCTS.items():
        if gateway.get_product_by_sku(sku) is None:
            gateway.add_product(sku=sku, **data)
            seeded += 1
    return seeded


def _product_to_dict(p: models.Product) -> dict:
    return Product.model_validate(p).model_dump()


@router.get("/seed")
def seed_products(db: Session = Depends(get_db)):
    """Seed the default catalog. Skips existing SKUs, so it is safe to run again."""
    gateway = QuoteGateway(db)
    with gateway.atomic():
        seeded = seed_default_products(gateway)
    return {"ok": True, "seeded": seeded}


@router.get("/")
def list_products(include_inactive: bool = False, db: Session = Depends(get_db)):
    products = QuoteGateway(db).list_products(active_only=not include_inactive)
    return [_product_to_dict(p) for p in products]


@router.get("/{product_id}")
def get_product(product_id: int, db: Session = Depends(get_db)):
    return _product_to_dict(QuoteGateway(db).get_product(product_id))


@router.post("/")
def create_product(product: ProductCreate, db: Session = Depends(get_db)):
    if product.bale_size_sqm <= 0:
        raise InvalidInput(f"bale_size_sqm must be > 0, got {product.bale_size_sqm}")
    if product.pack_price < 0 or product.cost_price < 0:
        raise InvalidInput("Prices must be >= 0")
    gateway = QuoteGateway(db)
    if gateway.get_product_by_sku(product.sku) is not None:
        raise InvalidInput(f"SKU {product.sku} already exists")
    with gateway.atomic():
        created = gateway.add_product(**product.model_dump())
        product_id = created.id
    return _product_to_dict(gateway.get_product(product_id))
