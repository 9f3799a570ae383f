"""
Pi Network payment routes

The Pi SDK drives the flow from the browser: the app creates a pending
payment, the SDK asks the server to approve it once the user confirms, and
to complete it once the transaction is on chain.
"""
from fastapi import APIRouter, Depends, Query

from travelpi.core.exceptions import AppError
from travelpi.core.logging_config import logger
from travelpi.db.models import User
from travelpi.routes.auth import get_current_user
from travelpi.routes.dependencies import get_payment_service
from travelpi.schemas.payment import (
    PaymentCreateRequest, PaymentResponse, PiApproveRequest, PiCancelRequest,
    PiCompleteRequest, PiIncompleteRequest, PiRefundRequest
)
from travelpi.services.payment_service import PaymentService

router = APIRouter(
    prefix="/api/payments",
    tags=["payments"]
)

pi_router = APIRouter(
    prefix="/api/pi",
    tags=["pi"]
)


@router.post("/pi/create")
def create_pi_payment(
    request: PaymentCreateRequest,
    current_user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service)
):
    """
    Create a pending payment for a booking

    Returns the amount, memo and metadata to pass to Pi.createPayment()
    """
    try:
        payment = service.create_payment(current_user, request.booking_id)
        return {
            "success": True,
            "paymentId": payment.id,
            "amount": payment.amount,
            "memo": payment.memo,
            "metadata": {"paymentId": payment.id, "bookingId": payment.booking_id},
        }
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error creating payment: {str(e)}")
        raise AppError("Failed to create payment")


@pi_router.post("/approve")
def approve_pi_payment(
    request: PiApproveRequest,
    current_user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service)
):
    """Server-side approval requested by the Pi SDK (onReadyForServerApproval)"""
    try:
        payment = service.approve_payment(current_user, request.payment_id, request.booking_id)
        return {
            "success": True,
            "message": "Payment approved",
            "paymentId": payment.pi_payment_id,
        }
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error approving Pi payment {request.payment_id}: {str(e)}")
        raise AppError("Payment approval failed")


@pi_router.post("/complete")
def complete_pi_payment(
    request: PiCompleteRequest,
    current_user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service)
):
    """Server-side completion requested by the Pi SDK (onReadyForServerCompletion)"""
    try:
        result = service.complete_payment(current_user, request.payment_id, request.txid)
        return {
            "success": True,
            "message": "Payment completed",
            "paymentId": request.payment_id,
            "txid": result["txid"],
            "cashback": result["cashback"],
        }
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error completing Pi payment {request.payment_id}: {str(e)}")
        raise AppError("Payment completion failed")


@pi_router.post("/cancel")
def cancel_pi_payment(
    request: PiCancelRequest,
    current_user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service)
):
    try:
        payment = service.cancel_payment(current_user, request.payment_id)
        return {
            "success": True,
            "message": "Payment cancelled",
            "paymentId": payment.pi_payment_id,
            "status": payment.status.value,
        }
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error cancelling Pi payment {request.payment_id}: {str(e)}")
        raise AppError("Payment cancellation failed")


@pi_router.post("/incomplete")
def recover_incomplete_pi_payment(
    request: PiIncompleteRequest,
    current_user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service)
):
    """Record and complete a payment the Pi SDK reported as incomplete"""
    try:
        result = service.recover_incomplete_payment(current_user, request.payment_id)
        payment = result["payment"]
        return {
            "success": True,
            "action": result["action"],
            "paymentId": request.payment_id,
            "status": payment.status.value if payment else None,
        }
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error recovering incomplete Pi payment {request.payment_id}: {str(e)}")
        raise AppError("Incomplete payment recovery failed")


@pi_router.get("/verify")
def verify_pi_payment(
    payment_id: str = Query(..., alias="paymentId", min_length=1),
    current_user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service)
):
    """Compare the Pi Network view of a payment with the local record"""
    try:
        result = service.verify_payment(current_user, payment_id)
        local = result["database"]
        return {
            "success": True,
            "piNetwork": result["piNetwork"],
            "database": PaymentResponse.model_validate(local).model_dump(mode="json", by_alias=True) if local else None,
            "synced": result["synced"],
        }
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error verifying Pi payment {payment_id}: {str(e)}")
        raise AppError("Payment verification failed")


@pi_router.post("/refund")
def refund_pi_payment(
    request: PiRefundRequest,
    current_user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service)
):
    """Refund a completed payment through an app-to-user payment"""
    try:
        result = service.refund_payment(current_user, request.payment_id, request.reason)
        return {
            "success": True,
            "message": "Refund processed",
            "refundPaymentId": result["refund"].pi_payment_id,
            "txid": result["txid"],
            "amount": result["amount"],
        }
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error refunding Pi payment {request.payment_id}: {str(e)}")
        raise AppError("Refund failed")
