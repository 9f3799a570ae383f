"""
Booking routes
"""
from typing import Optional
from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from travelpi.core.config import settings
from travelpi.core.middleware import get_client_ip
from travelpi.db.models import BookingStatus, User
from travelpi.db.session import get_db
from travelpi.routes.auth import get_current_user
from travelpi.schemas.booking import BookingCreate, BookingResponse
from travelpi.services.booking_service import booking_service
from travelpi.utils.pagination import PaginatedResponse, paginate_query

router = APIRouter(
    prefix="/api/bookings",
    tags=["bookings"]
)


@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Create a pending booking; payment follows through /api/payments/pi/create"""
    return booking_service.create_booking(
        db,
        current_user,
        booking_data,
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("user-agent")
    )


@router.get("", response_model=PaginatedResponse[BookingResponse])
async def list_bookings(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    query = booking_service.get_user_bookings_query(db, current_user, status_filter)
    return paginate_query(query, BookingResponse, page, page_size)


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return booking_service.get_booking(db, current_user, booking_id)
