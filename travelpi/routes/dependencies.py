"""
Shared route dependencies
"""
from fastapi import Depends, Request
from sqlalchemy.orm import Session

from travelpi.db.session import get_db
from travelpi.services.cache_service import CacheService
from travelpi.services.payment_service import PaymentService
from travelpi.services.pi_network_service import PiNetworkClient
from travelpi.utils.redis_client import get_redis


def get_pi_client(request: Request) -> PiNetworkClient:
    """The client created at startup and kept on app.state"""
    return request.app.state.pi_client


def get_payment_service(
    db: Session = Depends(get_db),
    pi_client: PiNetworkClient = Depends(get_pi_client)
) -> PaymentService:
    return PaymentService(db, pi_client)


def get_cache() -> CacheService:
    return CacheService(get_redis())
