from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from typing import List, Optional
from datetime import datetime
from enum import Enum

from models.common import validate_phone

class UserRole(str, Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    ENGINEER = "engineer"
    FINANCE = "finance"
    DRIVER = "driver"

# Roles allowed to act on any user's record
ADMIN_ROLES = [UserRole.SUPER_ADMIN, UserRole.ADMIN]

class UserBase(BaseModel):
    email: EmailStr
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    phone_numbers: List[str] = Field(..., min_length=1)
    role: UserRole
    address: Optional[str] = None

class UserCreate(UserBase):
    model_config = ConfigDict(extra="forbid")

    password: str

    @field_validator('password')
    @classmethod
    def password_min_length(cls, v):
        if len(v) < 6:
            raise ValueError('Password must be at least 6 characters')
        return v

    @field_validator('phone_numbers')
    @classmethod
    def phone_numbers_format(cls, v):
        return [validate_phone(number) for number in v]

class UserUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: Optional[EmailStr] = None
    first_name: Optional[str] = Field(None, min_length=1)
    last_name: Optional[str] = Field(None, min_length=1)
    phone_numbers: Optional[List[str]] = Field(None, min_length=1)
    role: Optional[UserRole] = None
    address: Optional[str] = None
    is_active: Optional[bool] = None
    password: Optional[str] = None

    @field_validator('password')
    @classmethod
    def password_min_length(cls, v):
        if v is not None and len(v) < 6:
            raise ValueError('Password must be at least 6 characters')
        return v

    @field_validator('phone_numbers')
    @classmethod
    def phone_numbers_format(cls, v):
        if v is not None:
            return [validate_phone(number) for number in v]
        return v

class User(UserBase):
    id: str
    is_active: bool = True
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

class Token(BaseModel):
    access_token: str
    token_type: str

# Alias for Token to match naming in auth.py
TokenResponse = Token

class TokenData(BaseModel):
    email: Optional[str] = None
    user_id: Optional[str] = None
    role: Optional[UserRole] = None
