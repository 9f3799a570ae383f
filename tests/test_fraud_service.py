from datetime import datetime, timedelta

from travelpi.core.config import settings
from travelpi.db.models import (
    AuditLog, Booking, BookingPaymentStatus, BookingStatus, Payment, PaymentStatus,
    SecurityLog, User
)
from travelpi.services.fraud_service import (
    RiskSignals, assess_booking, calculate_risk_score, collect_risk_signals
)


def established(**overrides):
    """Signals for a long-standing customer with an unremarkable booking"""
    values = dict(
        recent_booking_count=0,
        account_age_days=365,
        prior_booking_count=12,
        same_item_count=0,
        recent_failed_payments=0,
        amount=100.0,
        average_amount=100.0,
        ip_address="203.0.113.7",
        known_ips={"203.0.113.7"},
    )
    values.update(overrides)
    return RiskSignals(**values)


def test_established_customer_allowed():
    assessment = calculate_risk_score(established())

    assert assessment.score == 0
    assert assessment.action == "allow"
    assert assessment.reasons == []


def test_new_account_first_booking_is_monitored():
    assessment = calculate_risk_score(established(account_age_days=0.1, prior_booking_count=0))

    assert assessment.score == 30
    assert assessment.action == "monitor"


def test_booking_velocity_points():
    assert calculate_risk_score(established(recent_booking_count=3)).score == 15
    assert calculate_risk_score(established(recent_booking_count=4)).score == 15
    assert calculate_risk_score(established(recent_booking_count=5)).score == 30


def test_failed_payment_points():
    assert calculate_risk_score(established(recent_failed_payments=1)).score == 10
    assert calculate_risk_score(established(recent_failed_payments=2)).score == 10
    assert calculate_risk_score(established(recent_failed_payments=3)).score == 25


def test_amount_deviation_points():
    assert calculate_risk_score(established(amount=201.0)).score == 10
    assert calculate_risk_score(established(amount=301.0)).score == 20
    assert calculate_risk_score(established(amount=500.0, average_amount=None)).score == 0


def test_unknown_ip_only_counts_with_history():
    assert calculate_risk_score(established(ip_address="192.0.2.1")).score == 10
    assert calculate_risk_score(established(ip_address="192.0.2.1", known_ips=set())).score == 0


def test_week_old_account_and_same_hotel():
    assessment = calculate_risk_score(established(account_age_days=3, same_item_count=3))

    assert assessment.score == 25
    assert assessment.action == "allow"


def test_score_capped_at_100_and_requires_verification():
    assessment = calculate_risk_score(established(
        recent_booking_count=6,
        account_age_days=0,
        prior_booking_count=0,
        same_item_count=4,
        recent_failed_payments=5,
        amount=1000.0,
        average_amount=10.0,
        ip_address="192.0.2.1",
    ))

    assert assessment.score == 100
    assert assessment.action == "verify"


def test_action_boundaries():
    assert calculate_risk_score(established(recent_booking_count=5)).action == "monitor"  # 30
    assert calculate_risk_score(established(recent_booking_count=5, amount=250.0)).action == "monitor"  # 40
    assert calculate_risk_score(established(recent_booking_count=5, amount=350.0)).action == "verify"  # 50


def test_collect_risk_signals_reads_history(db_session, make_user, hotel):
    user = make_user(created_at=datetime.utcnow() - timedelta(days=30))
    now = datetime.utcnow()

    for _ in range(3):
        db_session.add(Booking(
            user_id=user.id,
            hotel_id=hotel.id,
            status=BookingStatus.PENDING,
            payment_status=BookingPaymentStatus.UNPAID,
            check_in=now + timedelta(days=10),
            check_out=now + timedelta(days=12),
            subtotal=90.0,
            total_price=90.0,
        ))
    db_session.add(Payment(user_id=user.id, amount=80.0, status=PaymentStatus.COMPLETED))
    db_session.add(Payment(user_id=user.id, amount=120.0, status=PaymentStatus.COMPLETED))
    db_session.add(Payment(user_id=user.id, amount=50.0, status=PaymentStatus.FAILED))
    db_session.add(AuditLog(user_id=user.id, action="booking_created", ip_address="203.0.113.7"))
    db_session.commit()

    signals = collect_risk_signals(db_session, user, hotel.id, 150.0, "192.0.2.1")

    assert signals.recent_booking_count == 3
    assert signals.prior_booking_count == 3
    assert signals.same_item_count == 3
    assert signals.recent_failed_payments == 1
    assert signals.average_amount == 100.0
    assert signals.known_ips == {"203.0.113.7"}
    assert 29 < signals.account_age_days < 31


def test_assess_booking_audits_high_risk(db_session, make_user, hotel, monkeypatch):
    monkeypatch.setattr(settings, "FRAUD_AUDIT_THRESHOLD", 30)
    user = make_user()

    assessment = assess_booking(db_session, user, hotel.id, 90.0, "203.0.113.7")
    db_session.commit()

    assert assessment.score == 30
    entry = db_session.query(AuditLog).filter(AuditLog.action == "fraud_risk_high").one()
    assert entry.user_id == user.id
    assert entry.changes["score"] == 30

    event = db_session.query(SecurityLog).filter(SecurityLog.action == "SUSPICIOUS_ACTIVITY").one()
    assert event.success is False
    assert event.ip_address == "203.0.113.7"
    assert event.event_metadata["riskScore"] == 30
    assert db_session.get(User, user.id).is_active is True


def test_assess_booking_low_risk_writes_nothing(db_session, make_user, hotel):
    user = make_user()

    assess_booking(db_session, user, hotel.id, 90.0)
    db_session.commit()

    assert db_session.query(AuditLog).count() == 0


def test_assess_booking_deactivates_account_at_block_threshold(db_session, make_user, hotel, monkeypatch):
    monkeypatch.setattr(settings, "FRAUD_AUDIT_THRESHOLD", 30)
    monkeypatch.setattr(settings, "FRAUD_BLOCK_THRESHOLD", 30)
    user = make_user()

    assess_booking(db_session, user, hotel.id, 90.0, "203.0.113.7", "Mozilla/5.0")
    db_session.commit()

    db_session.expire_all()
    assert db_session.get(User, user.id).is_active is False
    event = db_session.query(SecurityLog).filter(SecurityLog.action == "SUSPICIOUS_ACTIVITY").one()
    assert event.user_agent == "Mozilla/5.0"
    assert event.failure_reason == "New account (<1 day); No booking history"
    assert event.event_metadata == {
        "activityType": "booking",
        "description": "New account (<1 day); No booking history",
        "riskScore": 30,
    }
