"""
Pydantic schemas for Hotel operations
"""
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, ConfigDict


class HotelResponse(BaseModel):
    """Schema for hotel response"""
    id: int
    name: str
    city: str
    address: Optional[str] = None
    description: Optional[str] = None
    price_per_night: float
    currency: str
    rating: Optional[float] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
