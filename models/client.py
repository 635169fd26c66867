from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional
from datetime import datetime

from models.common import validate_phone

class ClientBase(BaseModel):
    client_name: str = Field(..., min_length=1)
    client_address: str = Field(..., min_length=1)
    mobile_number: str
    telephone_number: Optional[str] = None
    trn_number: str = Field(..., min_length=1)
    vat_number: Optional[str] = None

class ClientCreate(ClientBase):
    model_config = ConfigDict(extra="forbid")

    @field_validator("mobile_number")
    @classmethod
    def mobile_number_format(cls, v):
        return validate_phone(v, "mobile number")

    @field_validator("telephone_number")
    @classmethod
    def telephone_number_format(cls, v):
        if v is not None:
            return validate_phone(v, "telephone number")
        return v

class ClientUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    client_name: Optional[str] = Field(None, min_length=1)
    client_address: Optional[str] = Field(None, min_length=1)
    mobile_number: Optional[str] = None
    telephone_number: Optional[str] = None
    trn_number: Optional[str] = Field(None, min_length=1)
    vat_number: Optional[str] = None

    @field_validator("mobile_number")
    @classmethod
    def mobile_number_format(cls, v):
        if v is not None:
            return validate_phone(v, "mobile number")
        return v

    @field_validator("telephone_number")
    @classmethod
    def telephone_number_format(cls, v):
        if v is not None:
            return validate_phone(v, "telephone number")
        return v

class Client(ClientBase):
    id: str
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
