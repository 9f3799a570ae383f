"""
Pydantic schemas for User and authentication operations
"""
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, ConfigDict, EmailStr, Field

from travelpi.db.models import UserTier


class UserCreate(BaseModel):
    """Schema for signup"""
    username: str = Field(..., min_length=3, max_length=50)
    email: EmailStr
    firstname: str = Field(..., min_length=1)
    lastname: str = Field(..., min_length=1)
    password: str = Field(..., min_length=8)


class UserResponse(BaseModel):
    """Schema for user response"""
    id: int
    username: str
    email: str
    firstname: str
    lastname: str
    is_active: bool
    tier: UserTier
    pi_uid: Optional[str] = None
    pi_username: Optional[str] = None
    pi_balance: float
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class PiLinkRequest(BaseModel):
    """Pi SDK access token obtained by the front-end after Pi.authenticate()"""
    model_config = ConfigDict(populate_by_name=True)

    access_token: str = Field(..., alias="accessToken", min_length=1)


class LoginRequest(BaseModel):
    username: str
    password: str
