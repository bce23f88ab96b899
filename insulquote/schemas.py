from pydantic import BaseModel
from typing import Optional, List
from decimal import Decimal
from datetime import datetime
from .models import PricingTier


class ProductBase(BaseModel):
    sku: str
    description: str
    category: Optional[str] = None
    r_value: Optional[str] = None
    bale_size_sqm: Decimal
    pack_price: Decimal
    cost_price: Decimal

class ProductCreate(ProductBase):
    pass

class Product(ProductBase):
    id: int
    is_active: bool
    created_at: datetime
    class Config:
        from_attributes = True


class PricingRequest(BaseModel):
    """Ad-hoc line pricing from either a catalog product_id or inline pack data."""
    product_id: Optional[int] = None
    bale_size_sqm: Optional[Decimal] = None
    pack_price: Optional[Decimal] = None
    area_sqm: Decimal
    waste_percent: Decimal = Decimal("10")
    pricing_tier: str = PricingTier.RETAIL.value
    custom_markup_percent: Optional[Decimal] = None


class QuoteCreate(BaseModel):
    customer_name: Optional[str] = None
    site_address: Optional[str] = None
    notes: Optional[str] = None
    pricing_tier: str = PricingTier.RETAIL.value
    custom_markup_percent: Optional[Decimal] = None
    waste_percent: Optional[Decimal] = None
    labour_rate_per_sqm: Optional[Decimal] = None
    valid_days: Optional[int] = None


class TermsUpdate(BaseModel):
    pricing_tier: Optional[str] = None
    custom_markup_percent: Optional[Decimal] = None
    waste_percent: Optional[Decimal] = None
    labour_rate_per_sqm: Optional[Decimal] = None
    customer_name: Optional[str] = None
    site_address: Optional[str] = None
    notes: Optional[str] = None
    valid_days: Optional[int] = None


class VersionCreate(TermsUpdate):
    from_version_id: Optional[int] = None


class SectionCreate(BaseModel):
    section_name: str
    section_color: str = "#ffffff"


class LineItemCreate(BaseModel):
    area_sqm: Decimal
    product_id: Optional[int] = None
    is_labour: bool = False
    with_labour: bool = False
    description: Optional[str] = None


class LineItemUpdate(BaseModel):
    area_sqm: Optional[Decimal] = None
    product_id: Optional[int] = None
    description: Optional[str] = None


class AcceptanceResponse(BaseModel):
    success: bool
    message: str
    quote_number: Optional[str] = None
    version: Optional[int] = None
    superseded_versions: List[int] = []
