"""Payment router: provider webhook and status lookups."""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import get_db
from ..core.dependencies import Principal, get_payment_gateway, require_roles
from ..integrations.midtrans import MidtransClient
from ..models.user import UserRole
from ..schemas.booking import PaymentSummary
from ..schemas.common import ApiResponse
from ..schemas.payment import NotificationResult, PaymentNotification
from ..services.payment_service import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/payments", tags=["payments"])

# Define dependencies to avoid B008 linting errors
DB_DEPENDENCY = Depends(get_db)
GATEWAY_DEPENDENCY = Depends(get_payment_gateway)
STAFF_ROLES = Depends(require_roles(UserRole.ADMIN, UserRole.SALES, UserRole.CS))


@router.post("/webhook", response_model=ApiResponse[NotificationResult])
async def payment_webhook(
    notification: PaymentNotification,
    db: AsyncSession = DB_DEPENDENCY,
    gateway: MidtransClient = GATEWAY_DEPENDENCY
) -> ApiResponse[NotificationResult]:
    """
    Receive a payment notification from Midtrans.

    Authenticated by the payload signature, not by a bearer token.
    """
    logger.info(
        "Payment notification received",
        extra={
            "order_id": notification.order_id,
            "transaction_status": notification.transaction_status,
            "fraud_status": notification.fraud_status
        }
    )

    payment = await PaymentService(db, gateway).process_notification(notification)
    return ApiResponse(
        message="Notification processed",
        data=NotificationResult(payment_id=str(payment.id), status=payment.status)
    )


@router.get("/{order_id}/status", response_model=ApiResponse[Dict[str, Any]])
async def get_transaction_status(
    order_id: str,
    db: AsyncSession = DB_DEPENDENCY,
    gateway: MidtransClient = GATEWAY_DEPENDENCY,
    principal: Principal = STAFF_ROLES
) -> ApiResponse[Dict[str, Any]]:
    """Provider's current view of a transaction."""
    status = await PaymentService(db, gateway).get_transaction_status(order_id)
    return ApiResponse(message="Transaction status retrieved successfully", data=status)


@router.post("/{order_id}/sync", response_model=ApiResponse[PaymentSummary])
async def sync_payment_status(
    order_id: str,
    db: AsyncSession = DB_DEPENDENCY,
    gateway: MidtransClient = GATEWAY_DEPENDENCY,
    principal: Principal = STAFF_ROLES
) -> ApiResponse[PaymentSummary]:
    """Pull the provider status for an order and apply it locally."""
    payment = await PaymentService(db, gateway).sync_payment_status(order_id)
    return ApiResponse(message="Payment status synchronized", data=PaymentSummary.model_validate(payment))
