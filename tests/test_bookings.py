from travelpi.core.config import settings
from travelpi.db.models import AuditLog, Booking, BookingStatus, Hotel, Notification, User
from travelpi.utils.price_utils import calculate_booking_price, count_nights
from datetime import datetime


def booking_body(hotel, **overrides):
    body = {
        "hotel_id": hotel.id,
        "check_in": "2030-01-10T15:00:00",
        "check_out": "2030-01-12T11:00:00",
        "guests": 2,
        "rooms": 1,
    }
    body.update(overrides)
    return body


def test_price_breakdown():
    pricing = calculate_booking_price(45.0, nights=2, rooms=1)

    assert pricing == {
        "subtotal": 90.0,
        "discount": 0.0,
        "tax": 9.0,
        "service_fee": 4.5,
        "total_price": 103.5,
    }


def test_discount_never_exceeds_subtotal():
    pricing = calculate_booking_price(45.0, nights=1, discount=500.0)

    assert pricing["discount"] == 45.0
    assert pricing["total_price"] == 6.75


def test_partial_night_counts_as_a_night():
    assert count_nights(datetime(2030, 1, 10, 15), datetime(2030, 1, 12, 11)) == 2
    assert count_nights(datetime(2030, 1, 10, 15), datetime(2030, 1, 10, 18)) == 1


def test_create_booking(client, db_session, user, auth_headers, hotel):
    response = client.post("/api/bookings", json=booking_body(hotel), headers=auth_headers)

    assert response.status_code == 201
    payload = response.json()
    assert payload["status"] == "pending"
    assert payload["payment_status"] == "unpaid"
    assert payload["subtotal"] == 90.0
    assert payload["total_price"] == 103.5
    assert payload["currency"] == "PI"

    db_session.expire_all()
    assert db_session.query(Notification).filter(Notification.user_id == user.id).count() == 1
    audit = db_session.query(AuditLog).filter(AuditLog.action == "booking_created").one()
    assert audit.ip_address == "testclient"


def test_create_booking_with_discount(client, user, auth_headers, hotel):
    response = client.post("/api/bookings", json=booking_body(hotel, discount=10.0), headers=auth_headers)

    assert response.json()["total_price"] == 93.5


def test_create_booking_rejects_reversed_dates(client, auth_headers, hotel):
    body = booking_body(hotel, check_in="2030-01-12T11:00:00", check_out="2030-01-10T15:00:00")

    response = client.post("/api/bookings", json=body, headers=auth_headers)

    assert response.status_code == 422


def test_create_booking_rejects_zero_guests(client, auth_headers, hotel):
    response = client.post("/api/bookings", json=booking_body(hotel, guests=0), headers=auth_headers)

    assert response.status_code == 422


def test_create_booking_for_missing_hotel(client, auth_headers, hotel):
    response = client.post("/api/bookings", json=booking_body(hotel, hotel_id=999), headers=auth_headers)

    assert response.status_code == 404


def test_rapid_repeat_bookings_require_verification(client, db_session, auth_headers, hotel):
    for _ in range(3):
        assert client.post("/api/bookings", json=booking_body(hotel), headers=auth_headers).status_code == 201

    # new account + 3 bookings in 24h + 3 for the same hotel = 50
    response = client.post("/api/bookings", json=booking_body(hotel), headers=auth_headers)

    assert response.status_code == 403
    db_session.expire_all()
    assert db_session.query(Booking).count() == 3


def test_blocking_risk_score_deactivates_account(client, db_session, monkeypatch, user, auth_headers, hotel):
    monkeypatch.setattr(settings, "FRAUD_BLOCK_THRESHOLD", 50)
    for _ in range(3):
        assert client.post("/api/bookings", json=booking_body(hotel), headers=auth_headers).status_code == 201

    response = client.post("/api/bookings", json=booking_body(hotel), headers=auth_headers)

    assert response.status_code == 403
    db_session.expire_all()
    assert db_session.get(User, user.id).is_active is False
    assert client.get("/api/bookings", headers=auth_headers).status_code == 401


def test_list_only_own_bookings(client, user, other_user, auth_headers, make_booking):
    make_booking(user)
    make_booking(user, status=BookingStatus.CONFIRMED)
    make_booking(other_user)

    response = client.get("/api/bookings", headers=auth_headers)

    assert response.status_code == 200
    payload = response.json()
    assert payload["total"] == 2
    assert {item["user_id"] for item in payload["items"]} == {user.id}

    filtered = client.get("/api/bookings", params={"status": "confirmed"}, headers=auth_headers).json()
    assert filtered["total"] == 1


def test_get_booking_of_another_user_forbidden(client, user, other_user, headers_for, make_booking):
    booking = make_booking(user)

    assert client.get(f"/api/bookings/{booking.id}", headers=headers_for(user)).status_code == 200
    assert client.get(f"/api/bookings/{booking.id}", headers=headers_for(other_user)).status_code == 403


def test_list_hotels_filters_by_city(client, db_session, hotel):
    db_session.add(Hotel(name="Canal House", city="Amsterdam", price_per_night=80.0, rating=4.4))
    db_session.commit()

    response = client.get("/api/hotels", params={"city": "lisbon"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["total"] == 1
    assert payload["items"][0]["name"] == "Harbour View Inn"


def test_hotel_list_is_cached(client, db_session, fake_redis, hotel):
    first = client.get("/api/hotels").json()
    db_session.add(Hotel(name="Canal House", city="Amsterdam", price_per_night=80.0))
    db_session.commit()

    second = client.get("/api/hotels").json()

    assert second == first
    assert any(key.startswith("travelpi:hotels:list:") for key in fake_redis.values)


def test_hotel_list_served_from_db_when_cache_is_down(client, broken_redis, hotel):
    from travelpi.routes.dependencies import get_cache
    from travelpi.services.cache_service import CacheService

    client.app.dependency_overrides[get_cache] = lambda: CacheService(broken_redis)

    response = client.get("/api/hotels")

    assert response.status_code == 200
    assert response.json()["total"] == 1


def test_get_hotel(client, hotel):
    response = client.get(f"/api/hotels/{hotel.id}")

    assert response.status_code == 200
    assert response.json()["price_per_night"] == 45.0
    assert client.get("/api/hotels/999").status_code == 404
