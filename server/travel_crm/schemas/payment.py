"""Payment-related Pydantic schemas."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..models.payment import PaymentStatus


class PaymentNotification(BaseModel):
    """HTTP notification posted by Midtrans. Unknown fields are kept."""

    model_config = ConfigDict(extra="allow")

    order_id: str = Field(..., min_length=1)
    status_code: str = Field(..., description="Provider status code, part of the signature")
    gross_amount: str = Field(..., description="Amount exactly as sent, part of the signature")
    signature_key: Optional[str] = Field(None, description="SHA-512 signature")
    transaction_status: str = Field(..., description="capture, settlement, pending, deny, ...")
    fraud_status: Optional[str] = None
    payment_type: Optional[str] = None
    transaction_id: Optional[str] = None
    transaction_time: Optional[str] = None


class PaymentInitiation(BaseModel):
    """Hosted checkout handle for a booking."""

    payment_id: str
    order_id: str
    token: Optional[str] = None
    redirect_url: Optional[str] = None
    already_initiated: bool = Field(False, description="True when an existing pending payment was returned")


class NotificationResult(BaseModel):
    """Outcome of processing a provider notification."""

    payment_id: str = Field(..., serialization_alias="paymentId")
    status: PaymentStatus
