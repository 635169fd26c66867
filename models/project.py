from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from datetime import datetime
from enum import Enum

class ProjectStatus(str, Enum):
    DRAFT = "draft"
    ESTIMATION_PREPARED = "estimation_prepared"
    QUOTATION_SENT = "quotation_sent"
    QUOTATION_APPROVED = "quotation_approved"
    QUOTATION_REJECTED = "quotation_rejected"
    CONTRACT_SIGNED = "contract_signed"
    WORK_STARTED = "work_started"
    IN_PROGRESS = "in_progress"
    WORK_COMPLETED = "work_completed"
    QUALITY_CHECK = "quality_check"
    CLIENT_HANDOVER = "client_handover"
    FINAL_INVOICE_SENT = "final_invoice_sent"
    PAYMENT_RECEIVED = "payment_received"
    PROJECT_CLOSED = "project_closed"
    ON_HOLD = "on_hold"
    CANCELLED = "cancelled"

class ProjectBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    client_id: str
    site_address: str = Field(..., min_length=1)
    site_location: str = Field(..., min_length=1)

class ProjectCreate(ProjectBase):
    model_config = ConfigDict(extra="forbid")

class ProjectUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    client_id: Optional[str] = None
    site_address: Optional[str] = Field(None, min_length=1)
    site_location: Optional[str] = Field(None, min_length=1)

class ProjectStatusUpdate(BaseModel):
    status: ProjectStatus

class ProjectProgressUpdate(BaseModel):
    progress: int = Field(..., ge=0, le=100)

class ProjectAssign(BaseModel):
    assigned_to: str

class ClientSummary(BaseModel):
    id: str
    client_name: str
    client_address: str
    mobile_number: str

class Project(ProjectBase):
    id: str
    status: ProjectStatus
    progress: int
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    assigned_to: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

class ProjectDetail(Project):
    client: Optional[ClientSummary] = None
    estimation_id: Optional[str] = None
    quotation_id: Optional[str] = None
