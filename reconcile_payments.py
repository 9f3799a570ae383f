"""
Settle payments stuck in processing by polling Pi Network.

Run periodically (cron) to settle local processing payments whose
completion or cancellation on Pi Network was never applied locally.
Payments approved on Pi Network without any local row are recovered by
POST /api/pi/incomplete instead.
"""
import argparse

from travelpi.core.config import settings
from travelpi.core.logging_config import logger, setup_logging
from travelpi.db.session import SessionLocal
from travelpi.services.payment_service import PaymentService
from travelpi.services.pi_network_service import PiNetworkClient


def reconcile(limit: int) -> dict:
    db = SessionLocal()
    try:
        service = PaymentService(db, PiNetworkClient.from_settings())
        return service.reconcile_processing_payments(limit=limit)
    except Exception as e:
        logger.error(f"Reconciliation aborted: {str(e)}", exc_info=True)
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Reconcile processing Pi payments")
    parser.add_argument("--limit", type=int, default=100, help="Maximum payments to check")
    args = parser.parse_args()

    setup_logging(log_level="DEBUG" if settings.DEBUG else "INFO", log_file=settings.LOG_FILE)
    summary = reconcile(args.limit)
    print(summary)
