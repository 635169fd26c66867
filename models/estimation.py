from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import List, Optional
from datetime import datetime, date as date_type
from decimal import Decimal

from models.common import Money

class MaterialItemBase(BaseModel):
    description: str = Field(..., min_length=1)
    quantity: Money = Field(..., ge=0)
    unit: str = Field(..., min_length=1)
    unit_price: Money = Field(..., ge=0)

class MaterialItem(MaterialItemBase):
    total: Money

class LabourItemBase(BaseModel):
    designation: str = Field(..., min_length=1)
    days: Money = Field(..., ge=0)
    price: Money = Field(..., ge=0)

class LabourItem(LabourItemBase):
    total: Money

class EstimationCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    project_id: str
    work_start_date: date_type
    work_end_date: date_type
    valid_until: date_type
    payment_due_by: int = Field(..., ge=0, description="Number of days")
    materials: List[MaterialItemBase] = Field(..., min_length=1)
    labour: List[LabourItemBase] = []
    terms_and_conditions: List[MaterialItemBase] = []
    quotation_amount: Optional[Decimal] = Field(None, ge=0)
    commission_amount: Optional[Decimal] = Field(None, ge=0)

    @model_validator(mode="after")
    def work_dates_in_order(self):
        if self.work_end_date <= self.work_start_date:
            raise ValueError("Work end date must be after start date")
        return self

class EstimationUpdate(BaseModel):
    """Fields an estimation's preparer may change; totals and review state are not among them."""
    model_config = ConfigDict(extra="forbid")

    work_start_date: Optional[date_type] = None
    work_end_date: Optional[date_type] = None
    valid_until: Optional[date_type] = None
    payment_due_by: Optional[int] = Field(None, ge=0)
    materials: Optional[List[MaterialItemBase]] = Field(None, min_length=1)
    labour: Optional[List[LabourItemBase]] = None
    terms_and_conditions: Optional[List[MaterialItemBase]] = None
    quotation_amount: Optional[Decimal] = Field(None, ge=0)
    commission_amount: Optional[Decimal] = Field(None, ge=0)

class EstimationCheck(BaseModel):
    comment: Optional[str] = None

class EstimationApproval(BaseModel):
    is_approved: bool
    comment: Optional[str] = None

class Estimation(BaseModel):
    id: str
    project_id: str
    estimation_number: str
    work_start_date: datetime
    work_end_date: datetime
    valid_until: datetime
    payment_due_by: int
    materials: List[MaterialItem]
    labour: List[LabourItem]
    terms_and_conditions: List[MaterialItem]
    estimated_amount: Money
    quotation_amount: Optional[Money] = None
    commission_amount: Optional[Money] = None
    profit: Optional[Money] = None
    prepared_by: str
    is_checked: bool
    checked_by: Optional[str] = None
    checked_at: Optional[datetime] = None
    check_comment: Optional[str] = None
    is_approved: bool
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    approval_comment: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
