# motorconnect/routers/payments.py
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import ValidationError

from motorconnect.core.config import settings
from motorconnect.core.security import limiter
from motorconnect.dependencies import get_payment_service
from motorconnect.schemas.payments import (
    InitiatePaymentRequest,
    MpesaSimulateRequest,
    PaymentResponse,
    PaymentStatus,
    PaystackVerification,
)
from motorconnect.utils.api_error_handler import status_code_for
from motorconnect.utils.payment_service import PaymentService, PaymentServiceError

logger = logging.getLogger(__name__)

router = APIRouter()


def _raise_for(e: PaymentServiceError):
    raise HTTPException(status_code=status_code_for(e.__cause__ or e), detail=str(e))


@router.post(
    "/initiate",
    response_model=PaymentResponse,
    summary="Initiate Payment",
    description="Starts an M-Pesa STK push, or returns the Stripe/Paystack keys for the card widget.",
)
@limiter.limit(settings.PAYMENT_INITIATE_RATE_LIMIT)
async def initiate_payment(
    request: Request,
    data: InitiatePaymentRequest,
    service: PaymentService = Depends(get_payment_service),
):
    try:
        return await service.initiate_payment(data.order_group_id, data.payment_method, data.phone_number)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=service.error or str(e))
    except PaymentServiceError as e:
        _raise_for(e)


@router.get("/paystack/verify/{reference}", response_model=PaystackVerification)
async def verify_paystack_payment(
    reference: str,
    service: PaymentService = Depends(get_payment_service),
):
    try:
        return await service.verify_paystack_payment(reference)
    except PaymentServiceError as e:
        _raise_for(e)


@router.post("/mpesa/simulate", summary="Simulate M-Pesa callback (development only)")
async def simulate_mpesa_payment(
    data: MpesaSimulateRequest,
    service: PaymentService = Depends(get_payment_service),
):
    if settings.is_production:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")
    try:
        return await service.simulate_mpesa_payment(data.transaction_id)
    except PaymentServiceError as e:
        _raise_for(e)


@router.get("/{transaction_id}/status", response_model=PaymentStatus)
async def get_payment_status(
    transaction_id: str,
    service: PaymentService = Depends(get_payment_service),
):
    try:
        return await service.check_payment_status(transaction_id)
    except PaymentServiceError as e:
        _raise_for(e)


@router.get(
    "/{transaction_id}/await",
    response_model=PaymentStatus,
    summary="Wait For Payment",
    description="Long-polls the payment until it is PAID or FAILED. Gives up with a FAILED status after the polling timeout.",
)
async def await_payment(
    transaction_id: str,
    is_order_id: bool = Query(False, alias="isOrderId"),
    service: PaymentService = Depends(get_payment_service),
):
    final_status = await service.wait_for_completion(transaction_id, is_order_id)
    logger.info(f"Payment {transaction_id} settled as {final_status.status}")
    return final_status
