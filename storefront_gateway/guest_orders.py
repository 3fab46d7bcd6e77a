"""
guest_orders.py — Guest-Order Reconciliation

Once a shopper authenticates, the orders they placed earlier as a guest (email only,
no customer id) are re-attached to their customer account.

Workflow:
    1. Resolve the session token through the platform's `me` endpoint.
    2. List the orders whose `customerEmail` is the session's email and that have no customer id.
    3. Bind each order with one versioned `setCustomerId` update.

Step 3 is a best-effort batch: the updates run concurrently, each order is attempted and
reported on its own, and a failed order never aborts or rolls back the others.
"""

import asyncio
from typing import Optional

from .clients import CommerceClient
from .errors import GatewayError, UnauthenticatedError
from .logging_config import get_logger
from .models import GuestOrderOutcome, GuestOrderReport, Order, SetCustomerId

log = get_logger(__name__)


class GuestOrderReconciler:
    def __init__(self, commerce: CommerceClient):
        self.commerce = commerce

    async def _bind(self, order: Order, customer_id: str) -> GuestOrderOutcome:
        log_prefix = f"[Order: {order.id}]"
        try:
            updated = await self.commerce.update_order(order.id, order.version, SetCustomerId(customerId=customer_id))
        except GatewayError as e:
            log.warning(f"{log_prefix} Could not bind to customer {customer_id}: {e.code} {e.message}")
            return GuestOrderOutcome(orderId=order.id, ok=False, errorCode=e.code, errorMessage=str(e))
        log.info(f"{log_prefix} Bound to customer {customer_id} (version {updated.version}).")
        return GuestOrderOutcome(orderId=order.id, ok=True, order=updated)

    async def reconcile_guest_orders(self, session_token: Optional[str]) -> GuestOrderReport:
        """
        Attaches every guest order placed with the session's email to the session's customer.

        Args:
            session_token (str | None): Customer session token from the request cookie.

        Returns:
            GuestOrderReport: One outcome per guest order, successes and failures alike.

        Raises:
            UnauthenticatedError: If the token is missing, invalid or expired.
            UpstreamError: If the session lookup or the order listing fails.
        """
        if not session_token:
            raise UnauthenticatedError("No session token provided", operation="reconcileGuestOrders")

        session = await self.commerce.get_current_session(session_token)
        orders = await self.commerce.list_orders(session.email)
        guest_orders = [order for order in orders if order.is_guest_order]
        log.info(f"[Customer: {session.id}] {len(guest_orders)} guest order(s) to reconcile.")

        # Already started updates finish even if the caller goes away.
        outcomes = await asyncio.shield(
            asyncio.gather(*(self._bind(order, session.id) for order in guest_orders))
        )

        report = GuestOrderReport(customerId=session.id, email=session.email, outcomes=list(outcomes))
        if report.failed:
            log.warning(f"[Customer: {session.id}] {len(report.failed)} of {len(outcomes)} guest order(s) not bound.")
        return report
