# motorconnect/utils/payment_service.py

import asyncio
import inspect
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Union

from pydantic import ValidationError

from motorconnect.core.config import settings
from motorconnect.schemas.payments import (
    InitiatePaymentRequest,
    OrderGroupRef,
    PaymentProvider,
    PaymentResponse,
    PaymentState,
    PaymentStatus,
    PaystackVerification,
    TIMEOUT_FAILURE_REASON,
)
from .api_client import MarketplaceAPI, MarketplaceAPIError, MarketplaceNetworkError, SessionExpiredError
from .api_error_handler import error_message, log_error_context

logger = logging.getLogger(__name__)

PAYMENT_TIMEOUT_MESSAGE = "Payment timeout. Please check your order status."

CompletionCallback = Callable[[PaymentStatus], Any]


class PaymentServiceError(Exception):
    """Raised when a payment call to the marketplace API fails"""
    pass


class PollingHandle:
    """Owns one running status-polling loop"""

    def __init__(self, transaction_id: str, task: asyncio.Task):
        self.transaction_id = transaction_id
        self.task = task

    @property
    def active(self) -> bool:
        return not self.task.done()

    def cancel(self) -> None:
        if not self.task.done():
            self.task.cancel()

    async def wait(self) -> PaymentStatus:
        """Wait for the terminal (or timed-out) status"""
        return await self.task


async def _call(callback: CompletionCallback, status: PaymentStatus) -> None:
    result = callback(status)
    if inspect.isawaitable(result):
        await result


class PaymentService:
    """
    Payment state for one checkout/payment page: initiation, status checks
    and the polling loop that waits for PAID or FAILED.
    """

    def __init__(
        self,
        api: MarketplaceAPI,
        poll_interval: Optional[float] = None,
        poll_timeout: Optional[float] = None,
    ):
        self.api = api
        self.poll_interval = settings.PAYMENT_POLL_INTERVAL_SECONDS if poll_interval is None else poll_interval
        self.poll_timeout = settings.PAYMENT_POLL_TIMEOUT_SECONDS if poll_timeout is None else poll_timeout

        self.current_transaction: Optional[PaymentResponse] = None
        self.payment_status: Optional[PaymentStatus] = None
        self.is_polling = False
        self.error: Optional[str] = None
        self._polling: Optional[PollingHandle] = None

    async def initiate_payment(
        self,
        order_group_id: str,
        payment_method: Union[PaymentProvider, str],
        phone_number: Optional[str] = None,
    ) -> PaymentResponse:
        """
        Start a payment for an order group.
        M-Pesa triggers an STK push server-side; Stripe and Paystack return the
        keys the card widgets need.
        """
        self.error = None
        try:
            request = InitiatePaymentRequest(
                order_group_id=order_group_id,
                payment_method=payment_method,
                phone_number=phone_number,
            )
        except ValidationError as e:
            self.error = error_message(e, "Invalid payment details")
            raise

        try:
            response = await self.api.post("/api/payments/initiate", request.to_payload())
            transaction = PaymentResponse.model_validate(response)
        except (MarketplaceAPIError, MarketplaceNetworkError, ValidationError) as e:
            log_error_context("initiate_payment", e, {"order_group_id": order_group_id})
            message = error_message(e, "Failed to initiate payment")
            if isinstance(e, ValidationError):
                message = "Failed to initiate payment"
            self.error = message
            raise PaymentServiceError(message) from e

        # card widgets need a public key even when the API leaves it out
        if transaction.provider == PaymentProvider.stripe and not transaction.publishable_key:
            transaction.publishable_key = settings.STRIPE_PUBLISHABLE_KEY
        elif transaction.provider == PaymentProvider.paystack and not transaction.public_key:
            transaction.public_key = settings.PAYSTACK_PUBLIC_KEY

        logger.info(f"Initiated {request.payment_method} payment {transaction.transaction_id} for order group {order_group_id}")
        self.current_transaction = transaction
        return transaction

    async def check_payment_status(self, transaction_id: str) -> PaymentStatus:
        try:
            response = await self.api.get(f"/api/payments/{transaction_id}/status")
            status = PaymentStatus.model_validate(response)
        except (MarketplaceAPIError, MarketplaceNetworkError, ValidationError) as e:
            message = error_message(e, "Failed to check payment status")
            if isinstance(e, ValidationError):
                message = "Failed to check payment status"
            self.error = message
            raise PaymentServiceError(message) from e

        self.payment_status = status
        return status

    async def check_order_status(self, order_id: str) -> PaymentStatus:
        """
        Payment status read from the order itself (M-Pesa C2B flow).
        Never raises: failures come back as a PENDING status so polling continues.
        """
        try:
            try:
                response = await self.api.get(f"/api/orders/{order_id}")
            except SessionExpiredError:
                logger.info("Unauthorized, trying public guest endpoint...")
                response = await self.api.get(f"/api/orders/group/{order_id}", include_auth=False)

            order = None
            if isinstance(response, dict):
                order = response.get("order") or response.get("orderGroup") or response
            if not isinstance(order, dict) or not order:
                raise ValueError("Order not found")

            nested_group = order.get("orderGroup")
            if not isinstance(nested_group, dict):
                nested_group = {}
            status = PaymentStatus(
                transaction_id=order_id,
                status=PaymentState.PAID if order.get("paymentStatus") == "PAID" else PaymentState.PENDING,
                provider=PaymentProvider.mpesa,
                amount=float(order.get("totalAmount") or order.get("total") or 0),
                created_at=order.get("createdAt"),
                order_group=OrderGroupRef(
                    id=str(order.get("id") or order_id),
                    order_number=order.get("orderNumber"),
                    payment_reference=order.get("paymentReference") or nested_group.get("paymentReference"),
                    payment_status=order.get("paymentStatus"),
                ),
            )
        except (MarketplaceAPIError, MarketplaceNetworkError, SessionExpiredError, ValueError, TypeError) as e:
            self.error = error_message(e, str(e) or "Failed to check order status")
            return PaymentStatus(
                transaction_id=order_id,
                status=PaymentState.PENDING,
                provider=PaymentProvider.mpesa,
                amount=0,
                created_at=datetime.now(timezone.utc).isoformat(),
            )

        self.payment_status = status
        self.error = None
        return status

    async def verify_paystack_payment(self, reference: str) -> PaystackVerification:
        try:
            response = await self.api.get(f"/api/payments/paystack/verify/{reference}")
            if isinstance(response, dict):
                response.setdefault("reference", reference)
            return PaystackVerification.model_validate(response)
        except (MarketplaceAPIError, MarketplaceNetworkError, ValidationError) as e:
            log_error_context("verify_paystack_payment", e, {"reference": reference})
            message = error_message(e, "Failed to verify Paystack payment")
            self.error = message
            raise PaymentServiceError(message) from e

    async def simulate_mpesa_payment(self, transaction_id: str) -> Dict[str, Any]:
        """Ask the backend to complete an M-Pesa payment (development only)"""
        if settings.is_production:
            raise PaymentServiceError("M-Pesa simulation is not available in production")
        try:
            return await self.api.post("/api/payments/mpesa/simulate", {"transactionId": transaction_id}) or {}
        except (MarketplaceAPIError, MarketplaceNetworkError) as e:
            message = error_message(e, "Failed to simulate M-Pesa payment")
            self.error = message
            raise PaymentServiceError(message) from e

    # Polling

    def start_polling(
        self,
        transaction_id: str,
        on_complete: CompletionCallback,
        is_order_id: bool = False,
    ) -> PollingHandle:
        """
        Check the status now and then every poll interval until it is PAID or
        FAILED, or until the timeout synthesizes a FAILED status.
        Any poll already running on this service is cancelled first.
        """
        self.stop_polling()
        self.is_polling = True
        task = asyncio.ensure_future(self._poll(transaction_id, on_complete, is_order_id))
        self._polling = PollingHandle(transaction_id, task)
        return self._polling

    async def _poll_until_terminal(self, transaction_id: str, is_order_id: bool) -> PaymentStatus:
        check = self.check_order_status if is_order_id else self.check_payment_status
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while True:
            try:
                status = await check(transaction_id)
                if status.is_terminal:
                    return status
            except (PaymentServiceError, SessionExpiredError) as e:
                logger.error(f"Polling error for {transaction_id}: {str(e)}")
            # fixed rate: a slow status call does not push the next tick back
            next_tick += self.poll_interval
            await asyncio.sleep(max(0.0, next_tick - loop.time()))

    def _timeout_status(self, transaction_id: str) -> PaymentStatus:
        if self.payment_status is not None and self.payment_status.transaction_id == transaction_id:
            return self.payment_status.model_copy(
                update={"status": PaymentState.FAILED, "failure_reason": TIMEOUT_FAILURE_REASON}
            )
        return PaymentStatus(
            transaction_id=transaction_id,
            status=PaymentState.FAILED,
            failure_reason=TIMEOUT_FAILURE_REASON,
        )

    async def _poll(self, transaction_id: str, on_complete: CompletionCallback, is_order_id: bool) -> PaymentStatus:
        try:
            status = await asyncio.wait_for(
                self._poll_until_terminal(transaction_id, is_order_id),
                timeout=self.poll_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Payment {transaction_id} still pending after {self.poll_timeout}s, giving up")
            status = self._timeout_status(transaction_id)
            self.payment_status = status
            self.error = PAYMENT_TIMEOUT_MESSAGE

        self._polling = None
        self.is_polling = False
        try:
            await _call(on_complete, status)
        except Exception as e:
            logger.error(f"Payment completion callback failed for {transaction_id}: {str(e)}")
        return status

    def stop_polling(self) -> None:
        if self._polling is not None:
            self._polling.cancel()
            self._polling = None
        self.is_polling = False

    async def wait_for_completion(self, transaction_id: str, is_order_id: bool = False) -> PaymentStatus:
        """Poll until the payment settles and return the final status"""
        handle = self.start_polling(transaction_id, lambda status: None, is_order_id)
        try:
            return await handle.wait()
        finally:
            handle.cancel()

    def clear_error(self) -> None:
        self.error = None

    def reset(self) -> None:
        self.stop_polling()
        self.current_transaction = None
        self.payment_status = None
        self.is_polling = False
        self.error = None
