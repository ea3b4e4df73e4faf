"""
Invoice Service Client

HTTP client for the external invoicing system. Charges (proration, early
termination fees) and credits (downgrade proration, cooling-off refunds) are
requested after the membership transaction has committed; the invoicing side
owns payment, wallet and refund decisions.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from ..money import Money

logger = logging.getLogger(__name__)


class InvoiceServiceClient:
    """Client for invoice_service HTTP API"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize invoice service client

        Args:
            base_url: Base URL of invoice service (e.g., "http://localhost:8216")
            timeout: Request timeout in seconds
            client: Optional pre-built httpx client (shares its transport and pool)
        """
        self.base_url = (base_url or "http://invoice_service:8216").rstrip("/")
        self.timeout = timeout
        self.client = client or httpx.AsyncClient(timeout=timeout)

    def _payload(
        self,
        member_id: str,
        subscription_id: str,
        amount: Money,
        reason: str,
        reference_id: Optional[str],
    ) -> Dict[str, Any]:
        return {
            "member_id": member_id,
            "subscription_id": subscription_id,
            "amount": str(amount.amount),
            "currency": amount.currency,
            "reason": reason,
            "reference_id": reference_id,
            "source": "membership_service",
        }

    async def _post(self, path: str, payload: Dict[str, Any]) -> bool:
        try:
            response = await self.client.post(
                f"{self.base_url}{path}",
                json=payload,
                headers={"X-Internal-Call": "true"},
            )
            if response.status_code in (200, 201, 202):
                return True
            logger.error(
                f"Invoice request {payload['reason']} for {payload['subscription_id']} "
                f"rejected: {response.status_code}"
            )
            return False
        except httpx.HTTPError as e:
            logger.error(f"Error calling invoice_service {path}: {e}")
            return False

    async def request_charge(
        self,
        member_id: str,
        subscription_id: str,
        amount: Money,
        reason: str,
        reference_id: Optional[str] = None,
    ) -> bool:
        """
        Ask the invoicing system to bill the member

        Args:
            member_id: Member to charge
            subscription_id: Subscription the charge belongs to
            amount: Positive amount in the subscription currency
            reason: Machine-readable reason (e.g. "plan_change_proration")
            reference_id: Entity that caused the charge (history or request id)

        Returns:
            True if the invoicing system accepted the request
        """
        return await self._post(
            "/api/v1/invoices/charges",
            self._payload(member_id, subscription_id, amount, reason, reference_id),
        )

    async def request_credit(
        self,
        member_id: str,
        subscription_id: str,
        amount: Money,
        reason: str,
        reference_id: Optional[str] = None,
    ) -> bool:
        """Ask the invoicing system to credit or refund the member"""
        return await self._post(
            "/api/v1/invoices/credits",
            self._payload(member_id, subscription_id, amount, reason, reference_id),
        )

    async def close(self):
        """Close the HTTP client"""
        await self.client.aclose()


__all__ = ["InvoiceServiceClient"]
