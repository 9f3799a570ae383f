"""
Pi Network platform API client
Handles payment lookup, approval, completion, cancellation and
app-to-user (A2U) payments used for refunds
"""
from typing import Any, Dict, Optional

import requests

from travelpi.core.config import settings
from travelpi.core.exceptions import UpstreamServiceError
from travelpi.core.logging_config import logger


class PiNetworkError(UpstreamServiceError):
    """A call to the Pi Network platform API failed"""


class PiNetworkClient:
    """
    Client for the Pi Network platform API.

    Constructed explicitly and handed to whatever needs it; the app keeps
    one instance on ``app.state`` and routes receive it through the
    ``get_pi_client`` dependency, so tests can substitute their own.
    """

    def __init__(
        self,
        api_url: str,
        api_key: Optional[str],
        timeout: int = 30,
        session: Optional[requests.Session] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

        if not self.api_key:
            logger.warning("PI_API_KEY not configured. Pi payment integration will not work.")

    @classmethod
    def from_settings(cls) -> "PiNetworkClient":
        return cls(
            api_url=settings.PI_API_URL,
            api_key=settings.PI_API_KEY,
            timeout=settings.PI_REQUEST_TIMEOUT,
        )

    def _server_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Key {self.api_key}",
            "Content-Type": "application/json",
        }

    def _request(
        self,
        method: str,
        path: str,
        error_message: str,
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        url = f"{self.api_url}{path}"
        try:
            response = self.session.request(
                method,
                url,
                json=json,
                headers=headers or self._server_headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Pi API {method} {path} failed: {str(e)}")
            raise PiNetworkError(error_message) from e

        if not response.ok:
            logger.error(f"Pi API {method} {path} returned {response.status_code}: {response.text}")
            raise PiNetworkError(error_message)

        try:
            return response.json() if response.content else {}
        except ValueError as e:
            logger.error(f"Pi API {method} {path} returned invalid JSON")
            raise PiNetworkError(error_message) from e

    def get_me(self, access_token: str) -> Dict[str, Any]:
        """Resolve a user's Pi access token to their uid and username"""
        return self._request(
            "GET",
            "/v2/me",
            "Invalid Pi access token",
            headers={"Authorization": f"Bearer {access_token}"},
        )

    def get_payment(self, payment_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/v2/payments/{payment_id}", "Failed to retrieve payment details")

    def approve_payment(self, payment_id: str) -> Dict[str, Any]:
        logger.info(f"Approving Pi payment {payment_id}")
        return self._request("POST", f"/v2/payments/{payment_id}/approve", "Payment approval failed", json={})

    def complete_payment(self, payment_id: str, txid: str) -> Dict[str, Any]:
        logger.info(f"Completing Pi payment {payment_id} (txid {txid})")
        return self._request(
            "POST",
            f"/v2/payments/{payment_id}/complete",
            "Payment completion failed",
            json={"txid": txid},
        )

    def cancel_payment(self, payment_id: str) -> Dict[str, Any]:
        logger.info(f"Cancelling Pi payment {payment_id}")
        return self._request("POST", f"/v2/payments/{payment_id}/cancel", "Payment cancellation failed", json={})

    def create_payment(
        self,
        uid: str,
        amount: float,
        memo: str,
        metadata: Dict[str, Any],
    ) -> Dict[str, Any]:
        """
        Create an app-to-user payment

        Args:
            uid: Pi uid of the recipient
            amount: Amount in Pi
            memo: Memo shown to the recipient
            metadata: Arbitrary metadata stored with the payment

        Returns:
            Payment DTO; ``identifier`` is the new payment id and
            ``transaction.txid`` is set once the transfer is on chain
        """
        logger.info(f"Creating A2U payment of {amount} Pi for {uid}")
        return self._request(
            "POST",
            "/v2/payments",
            "A2U payment creation failed",
            json={
                "payment": {
                    "amount": amount,
                    "memo": memo,
                    "metadata": metadata,
                    "uid": uid,
                }
            },
        )

    def get_incomplete_payment(self, payment_id: str) -> Optional[Dict[str, Any]]:
        """Return the payment if it is neither completed nor cancelled"""
        try:
            payment = self.get_payment(payment_id)
        except PiNetworkError:
            return None

        payment_status = payment.get("status") or {}
        if not payment_status.get("developer_completed") and not payment_status.get("cancelled"):
            return payment
        return None
