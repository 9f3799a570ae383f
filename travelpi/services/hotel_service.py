"""
Hotel catalogue service with Redis-backed caching
"""
from typing import Any, Dict, Optional
from sqlalchemy.orm import Session

from travelpi.core.config import settings
from travelpi.core.exceptions import NotFoundError
from travelpi.core.logging_config import logger
from travelpi.db.models import Hotel
from travelpi.schemas.hotel import HotelResponse
from travelpi.services.cache_service import CacheService
from travelpi.utils.pagination import paginate_query, normalize_page_params


class HotelService:
    """Service for hotel listing and detail lookups"""

    @staticmethod
    def list_hotels(
        db: Session,
        cache: CacheService,
        city: Optional[str] = None,
        page: int = 1,
        page_size: int = settings.DEFAULT_PAGE_SIZE
    ) -> Dict[str, Any]:
        page, page_size = normalize_page_params(page, page_size)
        cache_key = f"hotels:list:{(city or '').lower()}:{page}:{page_size}"

        cached = cache.get(cache_key)
        if cached is not None:
            logger.debug(f"[CACHE] hit {cache_key}")
            return cached

        query = db.query(Hotel).filter(Hotel.is_active == True)
        if city:
            query = query.filter(Hotel.city.ilike(city))
        query = query.order_by(Hotel.rating.desc(), Hotel.id.asc())

        result = paginate_query(query, HotelResponse, page, page_size).model_dump(mode="json")
        cache.set(cache_key, result, settings.HOTEL_LIST_CACHE_TTL)
        return result

    @staticmethod
    def get_hotel(db: Session, cache: CacheService, hotel_id: int) -> Dict[str, Any]:
        cache_key = f"hotels:{hotel_id}"

        cached = cache.get(cache_key)
        if cached is not None:
            return cached

        hotel = db.query(Hotel).filter(Hotel.id == hotel_id, Hotel.is_active == True).first()
        if not hotel:
            raise NotFoundError("Hotel")

        result = HotelResponse.model_validate(hotel).model_dump(mode="json")
        cache.set(cache_key, result, settings.HOTEL_CACHE_TTL)
        return result


# Global instance
hotel_service = HotelService()
