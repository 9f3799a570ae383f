"""
Pi payment reconciliation service

Drives a payment from creation through completion (or cancellation,
failure and refund) and keeps the local Payment and Booking rows
consistent with the Pi Network view of the transaction. The same
completion routine serves the direct API flow, the webhook flow and the
reconciliation sweep.
"""
import math
import time
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from travelpi.core.config import settings
from travelpi.core.exceptions import (
    AppError, AuthorizationError, BadRequestError, ConflictError, NotFoundError
)
from travelpi.core.logging_config import logger
from travelpi.db.models import (
    ACTIVE_PAYMENT_STATUSES, Booking, BookingPaymentStatus, BookingStatus,
    Payment, PaymentStatus, PiTransaction, ProcessedWebhook, User
)
from travelpi.services.audit_service import audit_service
from travelpi.services.pi_network_service import PiNetworkClient, PiNetworkError

AMOUNT_TOLERANCE = 0.0001
MAX_PAYMENT_AMOUNT = 1_000_000

COMPLETABLE_STATUSES = (PaymentStatus.PENDING, PaymentStatus.PROCESSING)

WEBHOOK_PROCESSED_ACTION = "pi_webhook_processed"


def is_valid_amount(amount: float) -> bool:
    return math.isfinite(amount) and 0 < amount <= MAX_PAYMENT_AMOUNT


class PaymentService:
    """Service for the Pi payment lifecycle"""

    def __init__(self, db: Session, pi_client: PiNetworkClient):
        self.db = db
        self.pi_client = pi_client

    # ── Lookups ───────────────────────────────────────────────────────────────

    def get_by_pi_id(self, pi_payment_id: str) -> Optional[Payment]:
        return self.db.query(Payment).filter(Payment.pi_payment_id == pi_payment_id).first()

    def _get_owned_booking(self, user: User, booking_id: Any) -> Booking:
        try:
            booking_id = int(booking_id)
        except (TypeError, ValueError):
            raise BadRequestError("Invalid booking ID")

        booking = self.db.query(Booking).filter(Booking.id == booking_id).first()
        if not booking:
            raise NotFoundError("Booking")
        if booking.user_id != user.id:
            raise AuthorizationError("Booking does not belong to this user")
        return booking

    def _ensure_payable(self, booking: Booking) -> None:
        """A pending booking with no pending, processing or completed payment"""
        if booking.status != BookingStatus.PENDING:
            raise BadRequestError("Invalid booking state")

        existing = self.db.query(Payment).filter(
            Payment.booking_id == booking.id,
            Payment.status.in_(ACTIVE_PAYMENT_STATUSES)
        ).first()
        if existing:
            if existing.status == PaymentStatus.COMPLETED:
                raise ConflictError("Booking already paid")
            raise ConflictError("A payment is already in progress for this booking")

    def _find_refund(self, pi_payment_id: str) -> Optional[Payment]:
        return self.db.query(Payment).filter(
            Payment.payment_metadata["refundOf"].as_string() == pi_payment_id
        ).first()

    def _ensure_pi_owner(self, user: User, pi_payment: Dict[str, Any], pi_payment_id: str) -> None:
        """403 and a security log entry unless the Pi payment is the user's"""
        if user.pi_uid and pi_payment.get("user_uid") == user.pi_uid:
            return

        audit_service.log_security_event(
            self.db,
            "pi_payment_owner_mismatch",
            success=False,
            user_id=user.id,
            failure_reason="Payment does not belong to this user",
            metadata={"paymentId": pi_payment_id},
        )
        self.db.commit()
        logger.warning(f"User {user.id} tried to act on Pi payment {pi_payment_id} owned by another account")
        raise AuthorizationError("Payment does not belong to this user")

    # ── Create / approve ──────────────────────────────────────────────────────

    def create_payment(self, user: User, booking_id: Any) -> Payment:
        """Insert a pending payment for one of the user's bookings"""
        booking = self._get_owned_booking(user, booking_id)
        self._ensure_payable(booking)

        payment = Payment(
            user_id=user.id,
            booking_id=booking.id,
            amount=booking.total_price,
            currency="PI",
            payment_method="pi_network",
            status=PaymentStatus.PENDING,
            memo=f"Booking #{booking.id}",
            payment_metadata={"bookingId": booking.id},
        )
        self.db.add(payment)
        self.db.flush()
        audit_service.log_action(
            self.db,
            "payment_created",
            user_id=user.id,
            entity_type="payment",
            entity_id=payment.id,
            changes={"bookingId": booking.id, "amount": payment.amount},
        )
        self.db.commit()
        self.db.refresh(payment)

        logger.info(f"Pending payment {payment.id} created for booking {booking.id}")
        return payment

    def approve_payment(
        self,
        user: User,
        pi_payment_id: str,
        booking_id: Optional[Any] = None
    ) -> Payment:
        """
        Approve a user-to-app payment on Pi Network and record it locally

        Args:
            user: Authenticated user
            pi_payment_id: Pi Network payment identifier
            booking_id: Optional booking to attach when the payment was not
                created through create_payment

        Returns:
            The local payment, now in processing
        """
        pi_payment = self.pi_client.get_payment(pi_payment_id)
        self._ensure_pi_owner(user, pi_payment, pi_payment_id)

        if self.get_by_pi_id(pi_payment_id):
            raise ConflictError("Payment already processed")

        if pi_payment.get("direction") != "user_to_app":
            raise BadRequestError("Invalid payment direction")

        metadata = pi_payment.get("metadata") or {}
        amount = float(pi_payment.get("amount") or 0)
        if not is_valid_amount(amount):
            raise BadRequestError("Invalid payment amount")

        # Every local check happens before the remote approval
        payment = None
        booking = None
        if metadata.get("paymentId") is not None:
            try:
                local_id = int(metadata["paymentId"])
            except (TypeError, ValueError):
                raise BadRequestError("Invalid payment reference")
            payment = self.db.query(Payment).filter(
                Payment.id == local_id,
                Payment.user_id == user.id
            ).first()
            if not payment:
                raise NotFoundError("Payment")
            if payment.status != PaymentStatus.PENDING or payment.pi_payment_id:
                raise ConflictError("Payment already processed")
            if abs(payment.amount - amount) > AMOUNT_TOLERANCE:
                raise BadRequestError("Payment amount mismatch")
        else:
            target_booking_id = booking_id if booking_id is not None else metadata.get("bookingId")
            if target_booking_id is not None:
                booking = self._get_owned_booking(user, target_booking_id)
                self._ensure_payable(booking)
                if abs(booking.total_price - amount) > AMOUNT_TOLERANCE:
                    raise BadRequestError("Payment amount mismatch")

        self.pi_client.approve_payment(pi_payment_id)

        approved_at = datetime.utcnow().isoformat()
        try:
            if payment is None:
                payment = Payment(
                    user_id=user.id,
                    booking_id=booking.id if booking else None,
                    amount=amount,
                    currency="PI",
                    payment_method="pi_network",
                    pi_payment_id=pi_payment_id,
                    status=PaymentStatus.PROCESSING,
                    memo=pi_payment.get("memo"),
                    payment_metadata={**metadata, "memo": pi_payment.get("memo"), "approvedAt": approved_at},
                )
                self.db.add(payment)
            else:
                payment.pi_payment_id = pi_payment_id
                payment.status = PaymentStatus.PROCESSING
                payment.payment_metadata = {**(payment.payment_metadata or {}), "approvedAt": approved_at}

            audit_service.log_action(
                self.db,
                "pi_payment_approved",
                user_id=user.id,
                entity_type="payment",
                entity_id=pi_payment_id,
                changes={"amount": amount},
            )
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError("Payment already processed")
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(
                f"Pi payment {pi_payment_id} approved remotely but the local record failed; "
                f"requires reconciliation: {str(e)}"
            )
            raise AppError("Payment approval failed") from e

        self.db.refresh(payment)
        logger.info(f"Pi payment {pi_payment_id} approved (local payment {payment.id})")
        return payment

    # ── Completion ────────────────────────────────────────────────────────────

    def _credit_cashback(self, payment: Payment, cashback: float) -> None:
        """Server-side increment; no read-modify-write in Python"""
        self.db.query(User).filter(User.id == payment.user_id).update(
            {User.pi_balance: User.pi_balance + cashback},
            synchronize_session=False
        )
        balance_after = self.db.query(User.pi_balance).filter(User.id == payment.user_id).scalar()
        self.db.add(PiTransaction(
            user_id=payment.user_id,
            type="cashback",
            amount=cashback,
            description=f"{settings.CASHBACK_RATE:.0%} cashback on payment {payment.pi_payment_id}",
            balance_after=balance_after,
            pi_payment_id=payment.pi_payment_id,
            status="completed",
        ))

    def _claim_completion(self, payment: Payment) -> bool:
        """Flip the row to completed only if it is still completable"""
        claimed = self.db.query(Payment).filter(
            Payment.id == payment.id,
            Payment.status.in_(COMPLETABLE_STATUSES)
        ).update({Payment.status: PaymentStatus.COMPLETED}, synchronize_session=False)
        return claimed == 1

    def _recorded_cashback(self, pi_payment_id: str) -> float:
        amount = self.db.query(PiTransaction.amount).filter(
            PiTransaction.pi_payment_id == pi_payment_id,
            PiTransaction.type == "cashback"
        ).scalar()
        return amount or 0.0

    def _apply_completion(
        self,
        payment: Payment,
        txid: str,
        transaction: Optional[Dict[str, Any]] = None
    ) -> Optional[float]:
        """
        Mark completed, confirm booking, credit cashback, notify. Caller commits.

        Returns:
            The cashback credited, or None when another path completed the
            payment first and nothing was applied
        """
        if not self._claim_completion(payment):
            return None

        metadata = dict(payment.payment_metadata or {})
        metadata["completedAt"] = datetime.utcnow().isoformat()
        metadata["txid"] = txid
        if transaction:
            metadata["transaction"] = transaction

        payment.status = PaymentStatus.COMPLETED
        payment.transaction_id = txid
        payment.payment_metadata = metadata

        if payment.booking:
            payment.booking.status = BookingStatus.CONFIRMED
            payment.booking.payment_status = BookingPaymentStatus.PAID

        cashback = round(payment.amount * settings.CASHBACK_RATE, 8)
        self._credit_cashback(payment, cashback)

        audit_service.notify(
            self.db,
            payment.user_id,
            "payment",
            "Payment Completed!",
            f"Your payment of π{payment.amount} has been completed. "
            f"You earned π{cashback:.2f} cashback!",
            data={"paymentId": payment.pi_payment_id, "txid": txid},
        )
        return cashback

    def complete_payment(self, user: User, pi_payment_id: str, txid: str) -> Dict[str, Any]:
        """Complete a payment on Pi Network after the client submitted the transaction"""
        payment = self.get_by_pi_id(pi_payment_id)
        if not payment:
            raise NotFoundError("Payment")
        if payment.user_id != user.id:
            raise AuthorizationError("Payment does not belong to this user")
        if payment.status == PaymentStatus.COMPLETED:
            raise ConflictError("Payment already completed")
        if payment.status not in (PaymentStatus.PENDING, PaymentStatus.PROCESSING):
            raise BadRequestError(f"Payment is {payment.status.value} and cannot be completed")

        pi_payment = self.pi_client.complete_payment(pi_payment_id, txid)

        try:
            cashback = self._apply_completion(payment, txid, (pi_payment or {}).get("transaction"))
            if cashback is None:
                self.db.rollback()
                logger.info(f"Pi payment {pi_payment_id} was completed by another request; nothing applied")
                return {
                    "payment": self.get_by_pi_id(pi_payment_id),
                    "txid": txid,
                    "cashback": self._recorded_cashback(pi_payment_id),
                }
            audit_service.log_action(
                self.db,
                "pi_payment_completed",
                user_id=user.id,
                entity_type="payment",
                entity_id=pi_payment_id,
                changes={"txid": txid, "cashback": cashback},
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(
                f"Pi payment {pi_payment_id} completed remotely but the local update failed; "
                f"requires reconciliation: {str(e)}"
            )
            raise AppError("Payment completion failed") from e

        logger.info(f"Pi payment {pi_payment_id} completed, cashback {cashback} Pi")
        return {"payment": payment, "txid": txid, "cashback": cashback}

    # ── Cancellation / failure ────────────────────────────────────────────────

    def _close_payment(
        self,
        payment: Payment,
        new_status: PaymentStatus,
        reason: Optional[str] = None
    ) -> str:
        """
        Move a payment to cancelled or failed

        Returns:
            "unchanged" when already cancelled/failed, "ignored" when
            completed/refunded, otherwise the new status value
        """
        if payment.status in (PaymentStatus.CANCELLED, PaymentStatus.FAILED):
            return "unchanged"
        if payment.status in (PaymentStatus.COMPLETED, PaymentStatus.REFUNDED):
            return "ignored"

        payment.status = new_status
        if new_status == PaymentStatus.FAILED:
            payment.error_message = reason or "Payment failed"

        if payment.booking:
            payment.booking.status = BookingStatus.CANCELLED
            payment.booking.payment_status = BookingPaymentStatus.FAILED

        return new_status.value

    def cancel_payment(self, user: User, pi_payment_id: str) -> Payment:
        payment = self.get_by_pi_id(pi_payment_id)
        if not payment:
            raise NotFoundError("Payment")
        if payment.user_id != user.id:
            raise AuthorizationError("Payment does not belong to this user")
        if payment.status in (PaymentStatus.COMPLETED, PaymentStatus.REFUNDED):
            raise ConflictError("Completed payments must be refunded, not cancelled")
        if payment.status in (PaymentStatus.CANCELLED, PaymentStatus.FAILED):
            return payment

        self.pi_client.cancel_payment(pi_payment_id)

        self._close_payment(payment, PaymentStatus.CANCELLED)
        audit_service.log_action(
            self.db,
            "pi_payment_cancelled",
            user_id=user.id,
            entity_type="payment",
            entity_id=pi_payment_id,
        )
        self.db.commit()
        self.db.refresh(payment)
        return payment

    # ── Refund ────────────────────────────────────────────────────────────────

    def _release_refund_claim(self, payment: Payment) -> None:
        self.db.rollback()
        self.db.query(Payment).filter(
            Payment.id == payment.id,
            Payment.status == PaymentStatus.REFUNDED
        ).update({Payment.status: PaymentStatus.COMPLETED}, synchronize_session=False)
        self.db.commit()
        logger.warning(f"Refund of Pi payment {payment.pi_payment_id} not sent; payment reopened")

    def refund_payment(
        self,
        user: User,
        pi_payment_id: str,
        reason: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Refund a completed payment with an app-to-user payment

        The original payment is claimed (completed -> refunded) and committed
        before the payout is sent, and reopened if the payout fails. The
        refund row, the booking and the notification are written in one
        transaction after the remote payment is created.
        """
        payment = self.get_by_pi_id(pi_payment_id)
        if not payment or payment.user_id != user.id:
            raise NotFoundError("Payment")
        if payment.status == PaymentStatus.REFUNDED or self._find_refund(pi_payment_id):
            raise ConflictError("Payment already refunded")
        if payment.status != PaymentStatus.COMPLETED:
            raise BadRequestError("Only completed payments can be refunded")
        if not user.pi_uid:
            raise BadRequestError("No Pi account linked to receive the refund")

        memo = f"Refund for payment {pi_payment_id}"
        if reason:
            memo = f"{memo}: {reason}"

        # Claimed before the payout; a concurrent refund sees it as refunded
        claimed = self.db.query(Payment).filter(
            Payment.id == payment.id,
            Payment.status == PaymentStatus.COMPLETED
        ).update({Payment.status: PaymentStatus.REFUNDED}, synchronize_session=False)
        self.db.commit()
        if claimed != 1:
            raise ConflictError("Payment already refunded")

        try:
            remote = self.pi_client.create_payment(user.pi_uid, payment.amount, memo, {"refundOf": pi_payment_id})
            refund_pi_id = remote.get("identifier")
            if not refund_pi_id:
                logger.error(f"A2U refund for {pi_payment_id} returned no identifier: {remote}")
                raise PiNetworkError("A2U payment creation failed")
        except Exception:
            self._release_refund_claim(payment)
            raise
        txid = (remote.get("transaction") or {}).get("txid")

        try:
            refund = Payment(
                user_id=payment.user_id,
                amount=payment.amount,
                currency=payment.currency,
                payment_method="pi_network",
                pi_payment_id=refund_pi_id,
                transaction_id=txid,
                status=PaymentStatus.COMPLETED,
                memo=memo,
                payment_metadata={
                    "refundOf": pi_payment_id,
                    "reason": reason,
                    "bookingId": payment.booking_id,
                },
            )
            self.db.add(refund)

            payment.status = PaymentStatus.REFUNDED
            if payment.booking:
                payment.booking.status = BookingStatus.CANCELLED
                payment.booking.payment_status = BookingPaymentStatus.REFUNDED

            audit_service.notify(
                self.db,
                payment.user_id,
                "payment",
                "Refund Processed",
                f"Your refund of π{payment.amount} has been processed.",
                data={"paymentId": refund_pi_id, "txid": txid},
            )
            audit_service.log_action(
                self.db,
                "pi_payment_refunded",
                user_id=user.id,
                entity_type="payment",
                entity_id=pi_payment_id,
                changes={"refundPaymentId": refund_pi_id, "reason": reason},
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(
                f"A2U refund {refund_pi_id} for {pi_payment_id} created remotely but the local "
                f"records failed; requires reconciliation: {str(e)}"
            )
            raise AppError("Refund failed") from e

        self.db.refresh(refund)
        logger.info(f"Pi payment {pi_payment_id} refunded with {refund_pi_id}")
        return {"refund": refund, "txid": txid, "amount": payment.amount}

    # ── Incomplete payments ───────────────────────────────────────────────────

    def _record_recovered_payment(self, user: User, pi_payment_id: str, pi_payment: Dict[str, Any]) -> Payment:
        """Link or insert the local row for a payment Pi approved without us recording it"""
        metadata = pi_payment.get("metadata") or {}
        amount = float(pi_payment.get("amount") or 0)
        recovered_at = datetime.utcnow().isoformat()

        try:
            local_id = int(metadata.get("paymentId"))
        except (TypeError, ValueError):
            local_id = None

        payment = None
        if local_id is not None:
            payment = self.db.query(Payment).filter(
                Payment.id == local_id,
                Payment.user_id == user.id,
                Payment.status == PaymentStatus.PENDING,
                Payment.pi_payment_id.is_(None)
            ).first()
            if payment and abs(payment.amount - amount) > AMOUNT_TOLERANCE:
                payment = None

        if payment is not None:
            payment.pi_payment_id = pi_payment_id
            payment.status = PaymentStatus.PROCESSING
            payment.payment_metadata = {**(payment.payment_metadata or {}), "recoveredAt": recovered_at}
            return payment

        booking = None
        if metadata.get("bookingId") is not None:
            try:
                booking = self._get_owned_booking(user, metadata["bookingId"])
                self._ensure_payable(booking)
                if abs(booking.total_price - amount) > AMOUNT_TOLERANCE:
                    booking = None
            except AppError:
                booking = None

        payment = Payment(
            user_id=user.id,
            booking_id=booking.id if booking else None,
            amount=amount,
            currency="PI",
            payment_method="pi_network",
            pi_payment_id=pi_payment_id,
            status=PaymentStatus.PROCESSING,
            memo=pi_payment.get("memo"),
            payment_metadata={**metadata, "memo": pi_payment.get("memo"), "recoveredAt": recovered_at},
        )
        self.db.add(payment)
        return payment

    def recover_incomplete_payment(self, user: User, pi_payment_id: str) -> Dict[str, Any]:
        """
        Settle a payment the Pi SDK reported through onIncompletePaymentFound

        An approval that succeeded on Pi Network but was never recorded
        locally gets its local row here. When the transaction is already on
        chain the payment is completed as well.

        Returns:
            {"action": "none" | "recorded" | "completed", "payment": Payment or None}
        """
        pi_payment = self.pi_client.get_incomplete_payment(pi_payment_id)
        local = self.get_by_pi_id(pi_payment_id)
        if local is not None and local.user_id != user.id:
            raise AuthorizationError("Payment does not belong to this user")
        if pi_payment is None:
            return {"action": "none", "payment": local}

        self._ensure_pi_owner(user, pi_payment, pi_payment_id)
        if pi_payment.get("direction") != "user_to_app":
            raise BadRequestError("Invalid payment direction")

        action = "none"
        if local is None:
            if not (pi_payment.get("status") or {}).get("developer_approved"):
                # Not approved yet; the normal approve call handles it
                return {"action": "none", "payment": None}
            try:
                local = self._record_recovered_payment(user, pi_payment_id, pi_payment)
                audit_service.log_action(
                    self.db,
                    "pi_payment_recovered",
                    user_id=user.id,
                    entity_type="payment",
                    entity_id=pi_payment_id,
                    changes={"amount": local.amount},
                )
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                local = self.get_by_pi_id(pi_payment_id)
            else:
                action = "recorded"
                logger.info(f"Recorded Pi payment {pi_payment_id} approved without a local row")

        txid = (pi_payment.get("transaction") or {}).get("txid")
        if txid and local is not None and local.status in COMPLETABLE_STATUSES:
            completed = self.pi_client.complete_payment(pi_payment_id, txid)
            cashback = self._apply_completion(local, txid, (completed or {}).get("transaction"))
            if cashback is None:
                self.db.rollback()
            else:
                audit_service.log_action(
                    self.db,
                    "pi_payment_completed",
                    user_id=user.id,
                    entity_type="payment",
                    entity_id=pi_payment_id,
                    changes={"txid": txid, "cashback": cashback, "recovered": True},
                )
                self.db.commit()
                action = "completed"
                logger.info(f"Completed incomplete Pi payment {pi_payment_id}, cashback {cashback} Pi")

        return {"action": action, "payment": self.get_by_pi_id(pi_payment_id)}

    # ── Verification ──────────────────────────────────────────────────────────

    def verify_payment(self, user: User, pi_payment_id: str) -> Dict[str, Any]:
        """Provider view, local view and whether they agree on completion"""
        pi_payment = self.pi_client.get_payment(pi_payment_id)

        local = self.get_by_pi_id(pi_payment_id)
        if local and local.user_id != user.id:
            raise AuthorizationError("Payment does not belong to this user")

        developer_completed = bool((pi_payment.get("status") or {}).get("developer_completed"))
        locally_completed = local is not None and local.status == PaymentStatus.COMPLETED
        return {
            "piNetwork": pi_payment,
            "database": local,
            "synced": developer_completed == locally_completed,
        }

    # ── Webhook ───────────────────────────────────────────────────────────────

    def handle_webhook(self, event: str, pi_payment: Dict[str, Any], request_id: str) -> Dict[str, Any]:
        """
        Apply a verified webhook delivery at most once per payment

        The ProcessedWebhook row is inserted first, so a repeated or
        concurrent delivery hits the unique constraint and is reported as a
        duplicate without touching any other row.
        """
        handlers = {
            "payment_completed": self._on_payment_completed,
            "payment_cancelled": self._on_payment_cancelled,
            "payment_failed": self._on_payment_failed,
        }
        handler = handlers.get(event)
        if handler is None:
            logger.warning(f"[{request_id}] Unknown event: {event}")
            raise BadRequestError("Unknown event")

        identifier = pi_payment["identifier"]
        started = time.monotonic()

        self.db.add(ProcessedWebhook(pi_payment_id=identifier, event=event, request_id=request_id))
        try:
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            logger.info(f"[{request_id}] Duplicate webhook for {identifier} - already processed")
            return {"duplicate": True}

        try:
            result = handler(pi_payment, request_id)
            processing_time = int((time.monotonic() - started) * 1000)
            audit_service.log_action(
                self.db,
                WEBHOOK_PROCESSED_ACTION,
                entity_type="payment",
                entity_id=identifier,
                changes={
                    "event": event,
                    "result": result,
                    "processingTime": processing_time,
                    "requestId": request_id,
                },
            )
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.info(f"[{request_id}] Concurrent delivery for {identifier} won - already processed")
            return {"duplicate": True}
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"[{request_id}] Processed {event} for {identifier} in {processing_time}ms")
        return {"duplicate": False, "result": result, "processingTime": processing_time}

    def _on_payment_completed(self, pi_payment: Dict[str, Any], request_id: str) -> Dict[str, Any]:
        payment = self.get_by_pi_id(pi_payment["identifier"])
        if not payment:
            raise NotFoundError("Payment")

        transaction = pi_payment.get("transaction") or {}
        if not transaction.get("txid") or not transaction.get("verified"):
            raise BadRequestError("Transaction not verified")

        if payment.status == PaymentStatus.COMPLETED:
            # Completed through the direct API already
            return {"paymentId": payment.id, "status": "already_completed"}
        if payment.status not in (PaymentStatus.PENDING, PaymentStatus.PROCESSING):
            logger.warning(f"[{request_id}] Ignoring completion of {payment.status.value} payment {payment.id}")
            return {"paymentId": payment.id, "status": "ignored"}

        cashback = self._apply_completion(payment, transaction["txid"], transaction)
        if cashback is None:
            return {"paymentId": payment.id, "status": "already_completed"}
        logger.info(f"[{request_id}] Cashback: {cashback} Pi")
        return {
            "paymentId": payment.id,
            "bookingId": payment.booking_id,
            "cashback": cashback,
            "txid": transaction["txid"],
        }

    def _on_payment_cancelled(self, pi_payment: Dict[str, Any], request_id: str) -> Dict[str, Any]:
        payment = self.get_by_pi_id(pi_payment["identifier"])
        if not payment:
            return {"status": "not_found"}
        outcome = self._close_payment(payment, PaymentStatus.CANCELLED)
        return {"paymentId": payment.id, "status": outcome}

    def _on_payment_failed(self, pi_payment: Dict[str, Any], request_id: str) -> Dict[str, Any]:
        payment = self.get_by_pi_id(pi_payment["identifier"])
        if not payment:
            return {"status": "not_found"}
        outcome = self._close_payment(payment, PaymentStatus.FAILED, reason="Payment failed")
        return {"paymentId": payment.id, "status": outcome}

    # ── Reconciliation ────────────────────────────────────────────────────────

    def reconcile_processing_payments(self, limit: int = 100) -> Dict[str, int]:
        """
        Poll Pi Network for payments stuck in processing and settle them

        Returns:
            Counts of checked, completed, cancelled, unchanged and errored payments
        """
        summary = {"checked": 0, "completed": 0, "cancelled": 0, "unchanged": 0, "errors": 0}

        payments = self.db.query(Payment).filter(
            Payment.status == PaymentStatus.PROCESSING,
            Payment.pi_payment_id.isnot(None)
        ).order_by(Payment.created_at.asc()).limit(limit).all()

        for payment in payments:
            summary["checked"] += 1
            pi_payment_id = payment.pi_payment_id
            try:
                pi_payment = self.pi_client.get_payment(pi_payment_id)
            except PiNetworkError:
                summary["errors"] += 1
                continue

            try:
                outcome = self._settle_from_remote(payment, pi_payment)
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error(f"Reconciliation of Pi payment {pi_payment_id} failed: {str(e)}")
                summary["errors"] += 1
                continue
            summary[outcome] += 1

        logger.info(f"Reconciliation finished: {summary}")
        return summary

    def _settle_from_remote(self, payment: Payment, pi_payment: Dict[str, Any]) -> str:
        """Apply the provider's terminal state to a processing payment and commit"""
        remote_status = pi_payment.get("status") or {}
        transaction = pi_payment.get("transaction") or {}

        if remote_status.get("developer_completed") and transaction.get("verified") and transaction.get("txid"):
            if self._apply_completion(payment, transaction["txid"], transaction) is None:
                self.db.rollback()
                return "unchanged"
            new_status = PaymentStatus.COMPLETED
            outcome = "completed"
        elif remote_status.get("cancelled") or remote_status.get("user_cancelled"):
            self._close_payment(payment, PaymentStatus.CANCELLED)
            new_status = PaymentStatus.CANCELLED
            outcome = "cancelled"
        else:
            return "unchanged"

        audit_service.log_action(
            self.db,
            "pi_payment_reconciled",
            user_id=payment.user_id,
            entity_type="payment",
            entity_id=payment.pi_payment_id,
            changes={"status": new_status.value},
        )
        self.db.commit()
        return outcome
