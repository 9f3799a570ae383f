"""
Pydantic schemas for Booking operations
"""
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, model_validator

from travelpi.db.models import BookingStatus, BookingPaymentStatus


class BookingCreate(BaseModel):
    """Schema for creating a booking"""
    hotel_id: int
    check_in: datetime
    check_out: datetime
    guests: int = Field(1, ge=1)
    rooms: int = Field(1, ge=1)
    discount: float = Field(0.0, ge=0)
    special_requests: Optional[str] = Field(None, max_length=1000)

    @model_validator(mode="after")
    def check_dates(self) -> "BookingCreate":
        if self.check_out <= self.check_in:
            raise ValueError("Check-out must be after check-in")
        return self


class BookingResponse(BaseModel):
    """Schema for booking response"""
    id: int
    user_id: int
    hotel_id: int
    status: BookingStatus
    payment_status: BookingPaymentStatus
    check_in: datetime
    check_out: datetime
    guests: int
    rooms: int
    subtotal: float
    discount: float
    tax: float
    service_fee: float
    total_price: float
    currency: str
    special_requests: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


