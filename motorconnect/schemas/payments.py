# motorconnect/schemas/payments.py
import re
from enum import Enum
from typing import Optional

from pydantic import Field, field_validator, model_validator

from motorconnect.schemas.commission import CamelModel

MPESA_PHONE_PATTERN = re.compile(r"^(07|01)\d{8}$")
TIMEOUT_FAILURE_REASON = "Timeout - payment not completed within 5 minutes"


class PaymentProvider(str, Enum):
    mpesa = "mpesa"
    stripe = "stripe"
    paystack = "paystack"


class PaymentState(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"


TERMINAL_STATES = (PaymentState.PAID, PaymentState.FAILED)


class InitiatePaymentRequest(CamelModel):
    order_group_id: str = Field(..., alias="orderGroupId", min_length=1)
    payment_method: PaymentProvider = Field(..., alias="paymentMethod")
    phone_number: Optional[str] = Field(None, alias="phoneNumber", description="Safaricom number, 07XXXXXXXX or 01XXXXXXXX")

    @field_validator("phone_number")
    def normalize_phone(cls, v):
        if v is None:
            return v
        return re.sub(r"\D", "", v)

    @model_validator(mode="after")
    def validate_mpesa_phone(self):
        if self.payment_method == PaymentProvider.mpesa:
            if not self.phone_number or not MPESA_PHONE_PATTERN.match(self.phone_number):
                raise ValueError("Please enter a valid phone number (07XXXXXXXX or 01XXXXXXXX)")
        else:
            # only M-Pesa needs a phone for the STK push
            self.phone_number = None
        return self

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class PaymentResponse(CamelModel):
    success: bool = True
    provider: PaymentProvider
    transaction_id: str = Field(..., alias="transactionId")
    message: Optional[str] = None
    checkout_request_id: Optional[str] = Field(None, alias="checkoutRequestId")
    client_secret: Optional[str] = Field(None, alias="clientSecret")
    publishable_key: Optional[str] = Field(None, alias="publishableKey")
    public_key: Optional[str] = Field(None, alias="publicKey")
    reference: Optional[str] = None
    email: Optional[str] = None
    amount: Optional[float] = None
    poll_url: Optional[str] = Field(None, alias="pollUrl")


class OrderGroupRef(CamelModel):
    id: str
    order_number: Optional[str] = Field(None, alias="orderNumber")
    payment_reference: Optional[str] = Field(None, alias="paymentReference")
    payment_status: Optional[str] = Field(None, alias="paymentStatus")


class PaymentStatus(CamelModel):
    transaction_id: str = Field(..., alias="transactionId")
    status: PaymentState = PaymentState.PENDING
    provider: PaymentProvider = PaymentProvider.mpesa
    amount: float = 0
    mpesa_receipt_number: Optional[str] = Field(None, alias="mpesaReceiptNumber")
    paid_at: Optional[str] = Field(None, alias="paidAt")
    failure_reason: Optional[str] = Field(None, alias="failureReason")
    created_at: Optional[str] = Field(None, alias="createdAt")
    order_group: Optional[OrderGroupRef] = Field(None, alias="orderGroup")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES


class PaystackVerification(CamelModel):
    success: bool
    reference: str
    status: Optional[str] = None
    message: Optional[str] = None
    order_group_id: Optional[str] = Field(None, alias="orderGroupId")


class MpesaSimulateRequest(CamelModel):
    transaction_id: str = Field(..., alias="transactionId", min_length=1)
