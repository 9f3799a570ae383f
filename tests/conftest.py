import copy
import os
from datetime import datetime

# Must be set before any travelpi module reads settings
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("PI_API_KEY", "test-pi-api-key")

import pytest
from fastapi.testclient import TestClient

from travelpi.core.security import create_access_token
from travelpi.db.models import (
    Booking, BookingPaymentStatus, BookingStatus, Hotel, Payment, PaymentStatus,
    User, UserTier
)
from travelpi.db.session import Base, SessionLocal, engine
from travelpi.main import app
from travelpi.routes.dependencies import get_cache
from travelpi.services.cache_service import CacheService
from travelpi.services.pi_network_service import PiNetworkError
from travelpi.services.rate_limiter import RateLimiter


class FakePipeline:
    """Queues calls and replays them against the owning FakeRedis on execute()"""

    def __init__(self, redis):
        self.redis = redis
        self.calls = []

    def __getattr__(self, name):
        method = getattr(self.redis, name)

        def queue(*args, **kwargs):
            self.calls.append((method, args, kwargs))
            return self

        return queue

    def execute(self):
        results = [method(*args, **kwargs) for method, args, kwargs in self.calls]
        self.calls = []
        return results


class FakeRedis:
    """The handful of Redis commands the app uses, kept in dicts"""

    def __init__(self):
        self.sorted_sets = {}
        self.values = {}
        self.expiry = {}

    def pipeline(self):
        return FakePipeline(self)

    def zadd(self, key, mapping):
        members = self.sorted_sets.setdefault(key, {})
        added = sum(1 for member in mapping if member not in members)
        members.update(mapping)
        return added

    def zremrangebyscore(self, key, min_score, max_score):
        members = self.sorted_sets.get(key, {})
        doomed = [m for m, score in members.items() if float(min_score) <= score <= float(max_score)]
        for member in doomed:
            del members[member]
        return len(doomed)

    def zcount(self, key, min_score, max_score):
        members = self.sorted_sets.get(key, {})
        return sum(1 for score in members.values() if float(min_score) <= score <= float(max_score))

    def expire(self, key, seconds):
        self.expiry[key] = seconds
        return True

    def get(self, key):
        return self.values.get(key)

    def setex(self, key, ttl, value):
        self.values[key] = value
        self.expiry[key] = ttl
        return True

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.values.pop(key, None) is not None:
                removed += 1
        return removed


class BrokenRedis:
    """Every command fails as if the server were unreachable"""

    def __getattr__(self, name):
        def fail(*args, **kwargs):
            raise ConnectionError("Redis unavailable")

        return fail


class FakePiClient:
    """In-memory stand-in for the Pi Network platform API"""

    def __init__(self):
        self.payments = {}
        self.users = {}
        self.calls = []
        self.failing = set()
        self._a2u_counter = 0

    def add_payment(self, identifier, amount, user_uid, metadata=None, memo="TravelPi booking", direction="user_to_app"):
        self.payments[identifier] = {
            "identifier": identifier,
            "user_uid": user_uid,
            "direction": direction,
            "amount": amount,
            "memo": memo,
            "metadata": metadata or {},
            "status": {
                "developer_approved": False,
                "transaction_verified": False,
                "developer_completed": False,
                "cancelled": False,
                "user_cancelled": False,
            },
            "transaction": None,
        }
        return self.payments[identifier]

    def _record(self, operation, *args):
        self.calls.append((operation,) + args)
        if operation in self.failing:
            raise PiNetworkError("Pi Network unavailable")

    def _payment(self, identifier):
        if identifier not in self.payments:
            raise PiNetworkError("Failed to retrieve payment details")
        return self.payments[identifier]

    def get_me(self, access_token):
        self._record("get_me", access_token)
        if access_token not in self.users:
            raise PiNetworkError("Invalid Pi access token")
        return copy.deepcopy(self.users[access_token])

    def get_payment(self, payment_id):
        self._record("get_payment", payment_id)
        return copy.deepcopy(self._payment(payment_id))

    def get_incomplete_payment(self, payment_id):
        self._record("get_incomplete_payment", payment_id)
        payment = self.payments.get(payment_id)
        if payment is None or payment["status"]["developer_completed"] or payment["status"]["cancelled"]:
            return None
        return copy.deepcopy(payment)

    def approve_payment(self, payment_id):
        self._record("approve_payment", payment_id)
        payment = self._payment(payment_id)
        payment["status"]["developer_approved"] = True
        return copy.deepcopy(payment)

    def complete_payment(self, payment_id, txid):
        self._record("complete_payment", payment_id, txid)
        payment = self._payment(payment_id)
        payment["status"]["developer_completed"] = True
        payment["status"]["transaction_verified"] = True
        payment["transaction"] = {"txid": txid, "verified": True}
        return copy.deepcopy(payment)

    def cancel_payment(self, payment_id):
        self._record("cancel_payment", payment_id)
        payment = self._payment(payment_id)
        payment["status"]["cancelled"] = True
        return copy.deepcopy(payment)

    def create_payment(self, uid, amount, memo, metadata):
        self._record("create_payment", uid, amount, memo, metadata)
        self._a2u_counter += 1
        identifier = f"a2u_{self._a2u_counter}"
        payment = self.add_payment(identifier, amount, uid, metadata=metadata, memo=memo, direction="app_to_user")
        payment["transaction"] = {"txid": f"refund_tx_{self._a2u_counter}", "verified": True}
        return copy.deepcopy(payment)

    def called(self, operation):
        return [call for call in self.calls if call[0] == operation]


@pytest.fixture
def db_session():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def fake_pi():
    return FakePiClient()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def client(db_session, fake_pi, fake_redis):
    original_pi_client = app.state.pi_client
    original_rate_limiter = app.state.rate_limiter

    app.state.pi_client = fake_pi
    app.state.rate_limiter = RateLimiter(fake_redis)
    app.dependency_overrides[get_cache] = lambda: CacheService(fake_redis)
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
        app.state.pi_client = original_pi_client
        app.state.rate_limiter = original_rate_limiter


@pytest.fixture
def make_user(db_session):
    def _make(username="traveller", pi_uid="pi-uid-1", tier=UserTier.FREE, created_at=None, hashed_password=None):
        user = User(
            username=username,
            email=f"{username}@example.com",
            firstname="Test",
            lastname="Traveller",
            hashed_password=hashed_password,
            tier=tier,
            pi_uid=pi_uid,
            pi_balance=0.0,
        )
        if created_at is not None:
            user.created_at = created_at
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def other_user(make_user):
    return make_user(username="stranger", pi_uid="pi-uid-2")


def auth_headers_for(user):
    token = create_access_token(data={"sub": user.username, "tier": user.tier.value})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers(user):
    return auth_headers_for(user)


@pytest.fixture
def hotel(db_session):
    hotel = Hotel(
        name="Harbour View Inn",
        city="Lisbon",
        address="Rua da Prata 12",
        price_per_night=45.0,
        rating=4.6,
    )
    db_session.add(hotel)
    db_session.commit()
    db_session.refresh(hotel)
    return hotel


@pytest.fixture
def make_booking(db_session, hotel):
    def _make(user, total_price=100.0, status=BookingStatus.PENDING):
        booking = Booking(
            user_id=user.id,
            hotel_id=hotel.id,
            status=status,
            payment_status=BookingPaymentStatus.UNPAID,
            check_in=datetime(2030, 1, 10, 15, 0),
            check_out=datetime(2030, 1, 12, 11, 0),
            guests=2,
            rooms=1,
            subtotal=total_price,
            total_price=total_price,
        )
        db_session.add(booking)
        db_session.commit()
        db_session.refresh(booking)
        return booking

    return _make


@pytest.fixture
def make_payment(db_session):
    def _make(user, booking=None, pi_payment_id=None, status=PaymentStatus.PENDING, amount=None, metadata=None):
        payment = Payment(
            user_id=user.id,
            booking_id=booking.id if booking else None,
            amount=amount if amount is not None else booking.total_price,
            currency="PI",
            pi_payment_id=pi_payment_id,
            status=status,
            memo=f"Booking #{booking.id}" if booking else "Standalone",
            payment_metadata=metadata,
        )
        db_session.add(payment)
        db_session.commit()
        db_session.refresh(payment)
        return payment

    return _make


@pytest.fixture
def headers_for():
    return auth_headers_for


@pytest.fixture
def broken_redis():
    return BrokenRedis()
