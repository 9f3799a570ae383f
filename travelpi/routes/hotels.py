"""
Hotel catalogue routes (public)
"""
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from travelpi.core.config import settings
from travelpi.db.session import get_db
from travelpi.routes.dependencies import get_cache
from travelpi.services.cache_service import CacheService
from travelpi.services.hotel_service import hotel_service

router = APIRouter(
    prefix="/api/hotels",
    tags=["hotels"]
)


@router.get("")
async def list_hotels(
    city: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1),
    db: Session = Depends(get_db),
    cache: CacheService = Depends(get_cache)
):
    """List active hotels, optionally filtered by city"""
    return hotel_service.list_hotels(db, cache, city=city, page=page, page_size=page_size)


@router.get("/{hotel_id}")
async def get_hotel(
    hotel_id: int,
    db: Session = Depends(get_db),
    cache: CacheService = Depends(get_cache)
):
    return hotel_service.get_hotel(db, cache, hotel_id)
