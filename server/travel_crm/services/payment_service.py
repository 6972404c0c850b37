"""Payment service: hosted checkout creation and provider notification handling."""

import logging
import secrets
import time
from datetime import timedelta
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..core.config import settings
from ..core.database import as_utc, utcnow
from ..core.exceptions import (
    ConflictError,
    InvalidSignatureError,
    InvalidStateError,
    NotFoundError,
    PaymentGatewayError,
)
from ..core.observability import metrics_collector
from ..integrations.midtrans import MidtransClient, MidtransError, verify_signature
from ..models.booking import Booking, BookingStatus
from ..models.payment import Payment, PaymentStatus
from ..schemas.payment import PaymentInitiation, PaymentNotification
from .booking_service import BookingService

logger = logging.getLogger(__name__)


def generate_order_id(booking_code: str) -> str:
    """Unique provider order id for a booking: ``TRV-<code>-<epoch ms>-<hex>``."""
    return f"TRV-{booking_code}-{int(time.time() * 1000)}-{secrets.token_hex(3)}"


def map_provider_status(
    transaction_status: str,
    fraud_status: Optional[str] = None,
) -> tuple[PaymentStatus, Optional[BookingStatus]]:
    """
    Translate a provider transaction status into the payment status and the
    booking status it implies. ``None`` means the booking is left as is.
    """
    if transaction_status == "capture":
        if fraud_status == "accept":
            return PaymentStatus.SUCCESS, BookingStatus.PAID
        return PaymentStatus.PENDING, None
    if transaction_status == "settlement":
        return PaymentStatus.SUCCESS, BookingStatus.PAID
    if transaction_status == "pending":
        return PaymentStatus.PENDING, None
    if transaction_status in ("deny", "cancel"):
        return PaymentStatus.FAILED, BookingStatus.CANCELED
    if transaction_status == "expire":
        return PaymentStatus.EXPIRED, BookingStatus.CANCELED
    if transaction_status == "refund":
        return PaymentStatus.REFUND, None
    return PaymentStatus.PENDING, None


class PaymentService:
    """Service for payment-related operations."""

    def __init__(self, db: AsyncSession, gateway: MidtransClient):
        self.db = db
        self.gateway = gateway
        self.booking_service = BookingService(db)

    def _build_transaction_payload(self, booking: Booking, order_id: str) -> Dict[str, Any]:
        customer = booking.customer
        package = booking.package
        gross_amount = int(booking.total_amount)
        # Midtrans requires the item lines to sum to gross_amount exactly
        if gross_amount % booking.participants == 0:
            item_price, quantity = gross_amount // booking.participants, booking.participants
        else:
            item_price, quantity = gross_amount, 1
        frontend_url = settings.frontend_url.rstrip("/")

        return {
            "transaction_details": {
                "order_id": order_id,
                "gross_amount": gross_amount,
            },
            "customer_details": {
                "first_name": customer.name,
                "email": customer.email,
                "phone": customer.phone or "",
            },
            "item_details": [
                {
                    "id": f"PKG-{package.id}",
                    "name": package.name[:50],
                    "price": item_price,
                    "quantity": quantity,
                    "category": "Travel Package",
                }
            ],
            "expiry": {
                "unit": "hours",
                "duration": settings.payment_expiry_hours,
            },
            "callbacks": {
                "finish": f"{frontend_url}/booking/finish",
                "error": f"{frontend_url}/booking/error",
                "pending": f"{frontend_url}/booking/pending",
            },
        }

    async def initiate_payment(self, booking_id: UUID) -> PaymentInitiation:
        """
        Create a hosted checkout transaction for a pending booking.

        The booking row stays locked until the payment row is committed, so
        concurrent initiations for one booking call the provider once.

        Raises:
            NotFoundError: If booking not found
            InvalidStateError: If the booking is not PENDING
            ConflictError: If the booking already has a settled or failed payment
            PaymentGatewayError: If the provider call fails
        """
        stmt = (
            select(Booking)
            .options(
                selectinload(Booking.payment),
                selectinload(Booking.customer),
                selectinload(Booking.package),
            )
            .where(Booking.id == booking_id)
            .with_for_update(of=Booking)
            .execution_options(populate_existing=True)
        )
        booking = (await self.db.execute(stmt)).scalar_one_or_none()
        if not booking:
            raise NotFoundError(resource_type="booking", resource_id=str(booking_id))

        if booking.status != BookingStatus.PENDING:
            raise InvalidStateError(
                detail="Payment can only be initiated for pending bookings",
                code="BOOKING_NOT_PENDING",
                extensions={"booking_id": str(booking_id), "status": booking.status}
            )

        existing = booking.payment
        if existing is not None:
            if existing.status == PaymentStatus.PENDING:
                logger.info(
                    "Payment already initiated - returning existing transaction",
                    extra={"booking_id": str(booking_id), "order_id": existing.order_id}
                )
                metrics_collector.record_payment_initiated("existing")
                return PaymentInitiation(
                    payment_id=str(existing.id),
                    order_id=existing.order_id,
                    token=existing.token,
                    redirect_url=existing.redirect_url,
                    already_initiated=True,
                )
            raise ConflictError(
                detail="Booking already has a completed payment attempt",
                conflicting_resource={
                    "payment_id": str(existing.id),
                    "order_id": existing.order_id,
                    "status": existing.status,
                }
            )

        order_id = generate_order_id(booking.booking_code)
        payload = self._build_transaction_payload(booking, order_id)

        try:
            response = await self.gateway.create_transaction(payload)
        except MidtransError as exc:
            metrics_collector.record_payment_initiated("gateway_error")
            logger.error(
                "Payment initiation failed",
                extra={
                    "booking_id": str(booking_id),
                    "order_id": order_id,
                    "provider_status": exc.status_code
                }
            )
            raise PaymentGatewayError() from exc

        payment = Payment(
            booking=booking,
            order_id=order_id,
            token=response["token"],
            redirect_url=response["redirect_url"],
            amount=booking.total_amount,
            status=PaymentStatus.PENDING,
            expired_at=utcnow() + timedelta(hours=settings.payment_expiry_hours),
        )
        self.db.add(payment)
        await self.db.commit()

        metrics_collector.record_payment_initiated("created")
        logger.info(
            "Payment initiated successfully",
            extra={
                "booking_id": str(booking_id),
                "payment_id": str(payment.id),
                "order_id": order_id,
                "amount": str(payment.amount)
            }
        )

        return PaymentInitiation(
            payment_id=str(payment.id),
            order_id=payment.order_id,
            token=payment.token,
            redirect_url=payment.redirect_url,
        )

    async def get_payment_by_order_id(self, order_id: str, for_update: bool = False) -> Payment:
        """
        Get payment by provider order id.

        Raises:
            NotFoundError: If no payment carries this order id
        """
        stmt = select(Payment).where(Payment.order_id == order_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        payment = (await self.db.execute(stmt)).scalar_one_or_none()
        if not payment:
            raise NotFoundError(resource_type="payment", resource_id=order_id)
        return payment

    async def process_notification(self, notification: PaymentNotification) -> Payment:
        """
        Verify and apply a provider notification.

        Redelivered and out-of-order notifications are acknowledged without
        changing state.

        Raises:
            InvalidSignatureError: If the signature is missing or wrong
            NotFoundError: If the order id is unknown
        """
        if not verify_signature(
            notification.order_id,
            notification.status_code,
            notification.gross_amount,
            notification.signature_key,
            self.gateway.server_key,
        ):
            logger.warning(
                "Payment notification rejected - invalid signature",
                extra={
                    "order_id": notification.order_id,
                    "transaction_status": notification.transaction_status
                }
            )
            metrics_collector.record_notification(notification.transaction_status, "invalid_signature")
            raise InvalidSignatureError(order_id=notification.order_id)

        try:
            payment = await self.get_payment_by_order_id(notification.order_id, for_update=True)
        except NotFoundError:
            logger.warning(
                "Payment notification for unknown order",
                extra={"order_id": notification.order_id}
            )
            metrics_collector.record_notification(notification.transaction_status, "unknown_order")
            raise

        await self._apply_provider_status(
            payment,
            transaction_status=notification.transaction_status,
            fraud_status=notification.fraud_status,
            payment_type=notification.payment_type,
            source="webhook",
        )
        return payment

    async def get_transaction_status(self, order_id: str) -> Dict[str, Any]:
        """
        Provider's current view of a transaction, returned verbatim.

        Raises:
            PaymentGatewayError: If the provider call fails
        """
        try:
            return await self.gateway.get_status(order_id)
        except MidtransError as exc:
            logger.error(
                "Transaction status lookup failed",
                extra={"order_id": order_id, "provider_status": exc.status_code}
            )
            raise PaymentGatewayError("Failed to get transaction status") from exc

    async def sync_payment_status(self, order_id: str) -> Payment:
        """
        Pull the provider status for an order and apply it like a notification.

        Used when a notification was lost. The response comes from an
        authenticated outbound call, so no signature is checked.

        Raises:
            NotFoundError: If the order id is unknown
            PaymentGatewayError: If the provider call fails
        """
        await self.get_payment_by_order_id(order_id)
        # No transaction or row lock is held across the provider call
        await self.db.commit()
        provider_status = await self.get_transaction_status(order_id)
        payment = await self.get_payment_by_order_id(order_id, for_update=True)

        transaction_status = provider_status.get("transaction_status")
        if not transaction_status:
            logger.info(
                "Provider has no transaction for order yet",
                extra={"order_id": order_id, "status_code": provider_status.get("status_code")}
            )
            await self.db.commit()
            return payment

        await self._apply_provider_status(
            payment,
            transaction_status=transaction_status,
            fraud_status=provider_status.get("fraud_status"),
            payment_type=provider_status.get("payment_type"),
            source="sync",
        )
        return payment

    async def _apply_provider_status(
        self,
        payment: Payment,
        transaction_status: str,
        fraud_status: Optional[str],
        payment_type: Optional[str],
        source: str,
    ) -> str:
        """
        Move the payment, and the booking behind it, to the state the
        provider reports. Commits and returns the outcome label.
        """
        new_status, booking_target = map_provider_status(transaction_status, fraud_status)
        current_status = PaymentStatus(payment.status)
        log_context = {
            "order_id": payment.order_id,
            "payment_id": str(payment.id),
            "transaction_status": transaction_status,
            "fraud_status": fraud_status,
            "source": source,
        }

        if new_status == current_status:
            logger.info("Payment notification already applied", extra=log_context)
            if payment_type and not payment.payment_type:
                payment.payment_type = payment_type
            await self.db.commit()
            metrics_collector.record_notification(transaction_status, "duplicate")
            return "duplicate"

        if not payment.can_transition_to(new_status):
            logger.warning(
                "Payment notification ignored - would move payment backward",
                extra={**log_context, "current_status": current_status.value, "reported_status": new_status.value}
            )
            await self.db.commit()
            metrics_collector.record_notification(transaction_status, "ignored")
            return "ignored"

        booking = await self.booking_service.get_booking_by_id_or_raise(payment.booking_id, for_update=True)

        payment.status = new_status
        if payment_type:
            payment.payment_type = payment_type

        if new_status == PaymentStatus.SUCCESS:
            now = utcnow()
            expired_at = as_utc(payment.expired_at)
            if expired_at is not None and now > expired_at:
                logger.warning(
                    "Settlement received after payment expiry - honoring it",
                    extra={**log_context, "expired_at": expired_at.isoformat()}
                )
            payment.paid_at = now
        else:
            payment.paid_at = None

        outcome = "applied"
        current_booking_status = BookingStatus(booking.status)

        if booking_target is not None:
            if current_booking_status == BookingStatus.PENDING:
                await self.booking_service.update_booking_status(booking, booking_target, commit=False)
                if booking_target == BookingStatus.CANCELED:
                    metrics_collector.record_booking_canceled(f"payment_{new_status.value.lower()}")
            elif booking_target == BookingStatus.PAID and current_booking_status == BookingStatus.CANCELED:
                logger.warning(
                    "Payment settled for a canceled booking - manual refund required",
                    extra={**log_context, "booking_id": str(booking.id)}
                )
                outcome = "paid_canceled_booking"
            else:
                logger.info(
                    "Booking left unchanged by payment notification",
                    extra={**log_context, "booking_status": current_booking_status.value}
                )

        await self.db.commit()

        metrics_collector.record_notification(transaction_status, outcome)
        logger.info(
            "Payment status updated",
            extra={
                **log_context,
                "old_status": current_status.value,
                "new_status": new_status.value,
                "booking_id": str(booking.id),
                "booking_status": BookingStatus(booking.status).value
            }
        )

        return outcome
