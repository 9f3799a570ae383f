"""
Price calculation utilities
"""
from datetime import datetime
from typing import Dict
import math

from travelpi.core.config import settings
from travelpi.core.logging_config import logger


def count_nights(check_in: datetime, check_out: datetime) -> int:
    """Whole nights between the two dates, a partial night counts as one"""
    seconds = (check_out - check_in).total_seconds()
    return max(1, math.ceil(seconds / 86400))


def calculate_booking_price(
    price_per_night: float,
    nights: int,
    rooms: int = 1,
    discount: float = 0.0
) -> Dict[str, float]:
    """
    Calculate the price breakdown for a stay

    Tax and service fee are charged on the undiscounted subtotal; the
    discount never exceeds the subtotal.

    Returns:
        Dict with subtotal, discount, tax, service_fee and total_price
    """
    subtotal = round(price_per_night * nights * rooms, 2)
    discount_applied = min(max(discount or 0.0, 0.0), subtotal)
    tax = round(subtotal * settings.TAX_RATE, 2)
    service_fee = round(subtotal * settings.SERVICE_FEE_RATE, 2)
    total_price = round(subtotal - discount_applied + tax + service_fee, 2)

    logger.info(
        f"Price calculated: nights={nights}, rooms={rooms}, "
        f"subtotal={subtotal}, discount={discount_applied}, total={total_price}"
    )

    return {
        "subtotal": subtotal,
        "discount": discount_applied,
        "tax": tax,
        "service_fee": service_fee,
        "total_price": total_price,
    }
