"""
Fraud heuristics for new bookings

Scoring is a pure function of a RiskSignals snapshot; collecting the
signals is the only part that touches the database.
"""
from datetime import datetime, timedelta
from typing import List, Optional, Set

from pydantic import BaseModel, Field
from sqlalchemy import func
from sqlalchemy.orm import Session

from travelpi.core.config import settings
from travelpi.core.logging_config import logger
from travelpi.db.models import AuditLog, Booking, Payment, PaymentStatus, User
from travelpi.services.audit_service import audit_service

MAX_SCORE = 100
MONITOR_THRESHOLD = 30
VERIFY_THRESHOLD = 50

ACTION_ALLOW = "allow"
ACTION_MONITOR = "monitor"
ACTION_VERIFY = "verify"

SUSPICIOUS_ACTIVITY = "SUSPICIOUS_ACTIVITY"


class RiskSignals(BaseModel):
    """Observations about a user and a prospective booking"""
    recent_booking_count: int = 0  # last 24h
    account_age_days: float = 0
    prior_booking_count: int = 0
    same_item_count: int = 0  # same hotel, last 24h
    recent_failed_payments: int = 0  # last 24h
    amount: float = 0
    average_amount: Optional[float] = None  # completed payments
    ip_address: Optional[str] = None
    known_ips: Set[str] = Field(default_factory=set)


class RiskAssessment(BaseModel):
    score: int
    reasons: List[str]
    action: str


def calculate_risk_score(signals: RiskSignals) -> RiskAssessment:
    """
    Score a booking attempt from 0 (benign) to 100

    Returns:
        RiskAssessment whose action is allow (<30), monitor (30-49) or
        verify (>=50)
    """
    score = 0
    reasons: List[str] = []

    if signals.recent_booking_count >= 5:
        score += 30
        reasons.append("High booking velocity")
    elif signals.recent_booking_count >= 3:
        score += 15
        reasons.append("Elevated booking velocity")

    if signals.account_age_days < 1:
        score += 20
        reasons.append("New account (<1 day)")
    elif signals.account_age_days < 7:
        score += 10
        reasons.append("Recent account (<7 days)")

    if signals.prior_booking_count == 0:
        score += 10
        reasons.append("No booking history")

    if signals.same_item_count >= 3:
        score += 15
        reasons.append("Repeated bookings for the same hotel")

    if signals.recent_failed_payments >= 3:
        score += 25
        reasons.append("Multiple failed payments")
    elif signals.recent_failed_payments >= 1:
        score += 10
        reasons.append("Recent failed payment")

    if signals.average_amount:
        if signals.amount > signals.average_amount * 3:
            score += 20
            reasons.append("Amount far above usual spend")
        elif signals.amount > signals.average_amount * 2:
            score += 10
            reasons.append("Amount above usual spend")

    if signals.known_ips and signals.ip_address and signals.ip_address not in signals.known_ips:
        score += 10
        reasons.append("Unrecognised IP address")

    score = min(score, MAX_SCORE)

    if score >= VERIFY_THRESHOLD:
        action = ACTION_VERIFY
    elif score >= MONITOR_THRESHOLD:
        action = ACTION_MONITOR
    else:
        action = ACTION_ALLOW

    return RiskAssessment(score=score, reasons=reasons, action=action)


def collect_risk_signals(
    db: Session,
    user: User,
    hotel_id: int,
    amount: float,
    ip_address: Optional[str] = None,
    now: Optional[datetime] = None
) -> RiskSignals:
    now = now or datetime.utcnow()
    since = now - timedelta(hours=24)

    recent_booking_count = db.query(Booking).filter(
        Booking.user_id == user.id,
        Booking.created_at >= since
    ).count()

    prior_booking_count = db.query(Booking).filter(Booking.user_id == user.id).count()

    same_item_count = db.query(Booking).filter(
        Booking.user_id == user.id,
        Booking.hotel_id == hotel_id,
        Booking.created_at >= since
    ).count()

    recent_failed_payments = db.query(Payment).filter(
        Payment.user_id == user.id,
        Payment.status == PaymentStatus.FAILED,
        Payment.created_at >= since
    ).count()

    average_amount = db.query(func.avg(Payment.amount)).filter(
        Payment.user_id == user.id,
        Payment.status == PaymentStatus.COMPLETED
    ).scalar()

    known_ips = {
        row[0] for row in db.query(AuditLog.ip_address).filter(
            AuditLog.user_id == user.id,
            AuditLog.ip_address.isnot(None)
        ).distinct().all()
    }

    account_age_days = (now - user.created_at).total_seconds() / 86400 if user.created_at else 0

    return RiskSignals(
        recent_booking_count=recent_booking_count,
        account_age_days=account_age_days,
        prior_booking_count=prior_booking_count,
        same_item_count=same_item_count,
        recent_failed_payments=recent_failed_payments,
        amount=amount,
        average_amount=float(average_amount) if average_amount is not None else None,
        ip_address=ip_address,
        known_ips=known_ips,
    )


def assess_booking(
    db: Session,
    user: User,
    hotel_id: int,
    amount: float,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None
) -> RiskAssessment:
    """
    Score a booking attempt; record high-risk ones and deactivate the
    account at FRAUD_BLOCK_THRESHOLD (caller commits)
    """
    signals = collect_risk_signals(db, user, hotel_id, amount, ip_address)
    assessment = calculate_risk_score(signals)

    if assessment.score >= settings.FRAUD_AUDIT_THRESHOLD:
        description = "; ".join(assessment.reasons)
        audit_service.log_security_event(
            db,
            SUSPICIOUS_ACTIVITY,
            success=False,
            user_id=user.id,
            failure_reason=description,
            ip_address=ip_address,
            user_agent=user_agent,
            metadata={
                "activityType": "booking",
                "description": description,
                "riskScore": assessment.score,
            },
        )
        audit_service.log_action(
            db,
            "fraud_risk_high",
            user_id=user.id,
            entity_type="booking",
            changes={
                "score": assessment.score,
                "reasons": assessment.reasons,
                "hotelId": hotel_id,
                "amount": amount,
            },
            ip_address=ip_address,
        )
        logger.warning(f"High fraud risk for user {user.id}: {assessment.score} {assessment.reasons}")

    if assessment.score >= settings.FRAUD_BLOCK_THRESHOLD and user.is_active:
        user.is_active = False
        logger.warning(f"User {user.id} deactivated: risk score {assessment.score}")

    return assessment
