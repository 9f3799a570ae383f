"""
Booking management service
"""
from typing import Optional
from sqlalchemy.orm import Session, Query

from travelpi.core.exceptions import AuthorizationError, BadRequestError, NotFoundError
from travelpi.core.logging_config import logger
from travelpi.db.models import Booking, BookingStatus, BookingPaymentStatus, Hotel, User
from travelpi.schemas.booking import BookingCreate
from travelpi.services.audit_service import audit_service
from travelpi.services.fraud_service import ACTION_MONITOR, ACTION_VERIFY, assess_booking
from travelpi.utils.price_utils import calculate_booking_price, count_nights


class BookingService:
    """Service for booking management operations"""

    @staticmethod
    def create_booking(
        db: Session,
        user: User,
        booking_data: BookingCreate,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> Booking:
        """
        Price, risk-check and insert a pending booking

        Raises:
            NotFoundError: Hotel missing or inactive
            AuthorizationError: Fraud score requires manual verification
        """
        hotel = db.query(Hotel).filter(
            Hotel.id == booking_data.hotel_id,
            Hotel.is_active == True
        ).first()
        if not hotel:
            raise NotFoundError("Hotel")

        nights = count_nights(booking_data.check_in, booking_data.check_out)
        pricing = calculate_booking_price(
            hotel.price_per_night,
            nights,
            rooms=booking_data.rooms,
            discount=booking_data.discount
        )

        assessment = assess_booking(db, user, hotel.id, pricing["total_price"], ip_address, user_agent)
        if assessment.action == ACTION_VERIFY:
            # Keep the fraud audit entry even though the booking is refused
            db.commit()
            logger.warning(f"Booking refused for user {user.id}: risk score {assessment.score}")
            raise AuthorizationError("Booking requires additional verification")
        if assessment.action == ACTION_MONITOR:
            logger.info(f"Monitoring booking by user {user.id}: risk score {assessment.score} {assessment.reasons}")

        if pricing["total_price"] <= 0:
            raise BadRequestError("Booking total must be positive")

        booking = Booking(
            user_id=user.id,
            hotel_id=hotel.id,
            status=BookingStatus.PENDING,
            payment_status=BookingPaymentStatus.UNPAID,
            check_in=booking_data.check_in,
            check_out=booking_data.check_out,
            guests=booking_data.guests,
            rooms=booking_data.rooms,
            currency=hotel.currency,
            special_requests=booking_data.special_requests,
            **pricing
        )
        db.add(booking)
        db.flush()

        audit_service.notify(
            db,
            user.id,
            "booking",
            "Booking Created",
            f"Your booking at {hotel.name} for {nights} night(s) is awaiting payment.",
            data={"bookingId": booking.id},
        )
        audit_service.log_action(
            db,
            "booking_created",
            user_id=user.id,
            entity_type="booking",
            entity_id=booking.id,
            changes={"hotelId": hotel.id, "totalPrice": booking.total_price, "riskScore": assessment.score},
            ip_address=ip_address,
            user_agent=user_agent,
        )
        db.commit()
        db.refresh(booking)

        logger.info(f"Booking created: {booking.id} for user {user.id}")
        return booking

    @staticmethod
    def get_user_bookings_query(
        db: Session,
        user: User,
        status: Optional[BookingStatus] = None
    ) -> Query:
        query = db.query(Booking).filter(Booking.user_id == user.id)
        if status:
            query = query.filter(Booking.status == status)
        return query.order_by(Booking.created_at.desc(), Booking.id.desc())

    @staticmethod
    def get_booking(db: Session, user: User, booking_id: int) -> Booking:
        """Get one of the user's bookings"""
        booking = db.query(Booking).filter(Booking.id == booking_id).first()
        if not booking:
            raise NotFoundError("Booking")
        if booking.user_id != user.id:
            raise AuthorizationError("Booking does not belong to this user")
        return booking


# Global instance
booking_service = BookingService()
