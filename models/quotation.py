from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
from datetime import datetime, date as date_type
from decimal import Decimal

from config import DEFAULT_VAT_PERCENTAGE
from models.common import Money

class ItemImage(BaseModel):
    url: str
    key: str
    content_type: Optional[str] = None

class QuotationItemBase(BaseModel):
    description: str = Field(..., min_length=1)
    quantity: Money = Field(..., ge=0)
    unit: Optional[str] = None
    unit_price: Money = Field(..., ge=0)

class QuotationItemIn(QuotationItemBase):
    # Existing item to keep (and keep its image) on update
    item_id: Optional[str] = None
    # Name of the multipart field carrying this item's image
    image_field: Optional[str] = None

class QuotationItem(QuotationItemBase):
    item_id: str
    total_price: Money
    image: Optional[ItemImage] = None

class QuotationCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    project_id: str
    valid_until: date_type
    scope_of_work: List[str] = []
    items: List[QuotationItemIn] = Field(..., min_length=1)
    terms_and_conditions: List[str] = []
    vat_percentage: Decimal = Field(Decimal(DEFAULT_VAT_PERCENTAGE), ge=0, le=100)

class QuotationUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    valid_until: Optional[date_type] = None
    scope_of_work: Optional[List[str]] = None
    items: Optional[List[QuotationItemIn]] = Field(None, min_length=1)
    terms_and_conditions: Optional[List[str]] = None
    vat_percentage: Optional[Decimal] = Field(None, ge=0, le=100)

class QuotationApproval(BaseModel):
    is_approved: bool
    comment: Optional[str] = None

class Quotation(BaseModel):
    id: str
    project_id: str
    estimation_id: Optional[str] = None
    quotation_number: str
    date: datetime
    valid_until: datetime
    scope_of_work: List[str]
    items: List[QuotationItem]
    terms_and_conditions: List[str]
    vat_percentage: Money
    subtotal: Money
    vat_amount: Money
    total: Money
    prepared_by: str
    is_approved: bool = False
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    approval_comment: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
