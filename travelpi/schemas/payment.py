"""
Pydantic schemas for Pi payment operations

Request bodies use the camelCase keys sent by the Pi SDK front-end.
"""
from typing import Any, Dict, Optional
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field

from travelpi.db.models import PaymentStatus


class PaymentCreateRequest(BaseModel):
    """Schema for creating a pending payment for a booking"""
    model_config = ConfigDict(populate_by_name=True)

    booking_id: int = Field(..., alias="bookingId")


class PiApproveRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    payment_id: str = Field(..., alias="paymentId", min_length=1)
    booking_id: Optional[int] = Field(None, alias="bookingId")


class PiCompleteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    payment_id: str = Field(..., alias="paymentId", min_length=1)
    txid: str = Field(..., min_length=1)


class PiCancelRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    payment_id: str = Field(..., alias="paymentId", min_length=1)


class PiIncompleteRequest(BaseModel):
    """Payment reported by the SDK's onIncompletePaymentFound callback"""
    model_config = ConfigDict(populate_by_name=True)

    payment_id: str = Field(..., alias="paymentId", min_length=1)


class PiRefundRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    payment_id: str = Field(..., alias="paymentId", min_length=1)
    reason: Optional[str] = Field(None, max_length=500)


class PaymentResponse(BaseModel):
    """Schema for payment response"""
    id: int
    user_id: int
    booking_id: Optional[int] = None
    amount: float
    currency: str
    payment_method: str
    pi_payment_id: Optional[str] = None
    status: PaymentStatus
    transaction_id: Optional[str] = None
    memo: Optional[str] = None
    payment_metadata: Optional[Dict[str, Any]] = Field(None, serialization_alias="metadata")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class WebhookPayment(BaseModel):
    """Payment object carried by a Pi webhook"""
    model_config = ConfigDict(extra="allow")

    identifier: str = Field(..., min_length=1)
    amount: Optional[float] = None
    user_uid: Optional[str] = None
    transaction: Optional[Dict[str, Any]] = None


class WebhookEvent(BaseModel):
    event: str
    payment: WebhookPayment
