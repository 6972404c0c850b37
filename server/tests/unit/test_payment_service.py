"""Unit tests for payment initiation and provider notification handling."""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from travel_crm.core.database import as_utc, utcnow
from travel_crm.core.exceptions import (
    ConflictError,
    InvalidSignatureError,
    InvalidStateError,
    NotFoundError,
    PaymentGatewayError,
)
from travel_crm.core.observability import REGISTRY
from travel_crm.integrations.midtrans import MidtransError
from travel_crm.models import BookingStatus, CustomerStatus, PaymentStatus
from travel_crm.schemas.booking import CreateBookingRequest, UpdateBookingRequest
from travel_crm.schemas.payment import PaymentNotification
from travel_crm.services.booking_service import BookingService
from travel_crm.services.payment_service import PaymentService, generate_order_id, map_provider_status


@pytest.fixture
def payment_service(test_session, payment_gateway):
    return PaymentService(test_session, payment_gateway)


@pytest.fixture
def booking_factory(test_session, customer, travel_package):
    async def factory(participants: int = 2, customer_id=None):
        request = CreateBookingRequest(
            package_id=travel_package.id,
            participants=participants,
            departure_date=utcnow() + timedelta(days=30),
        )
        return await BookingService(test_session).create_booking(request, customer_id or customer.id)

    return factory


@pytest.fixture
def notify(payment_service, notification_factory):
    """Send a signed notification through the service."""

    async def send(order_id: str, transaction_status: str, **kwargs):
        payload = notification_factory(order_id, transaction_status, **kwargs)
        return await payment_service.process_notification(PaymentNotification(**payload))

    return send


@pytest.mark.parametrize(
    "transaction_status, fraud_status, expected",
    [
        ("capture", "accept", (PaymentStatus.SUCCESS, BookingStatus.PAID)),
        ("capture", "challenge", (PaymentStatus.PENDING, None)),
        ("capture", None, (PaymentStatus.PENDING, None)),
        ("settlement", None, (PaymentStatus.SUCCESS, BookingStatus.PAID)),
        ("pending", None, (PaymentStatus.PENDING, None)),
        ("deny", None, (PaymentStatus.FAILED, BookingStatus.CANCELED)),
        ("cancel", None, (PaymentStatus.FAILED, BookingStatus.CANCELED)),
        ("expire", None, (PaymentStatus.EXPIRED, BookingStatus.CANCELED)),
        ("refund", None, (PaymentStatus.REFUND, None)),
        ("authorize", None, (PaymentStatus.PENDING, None)),
    ],
)
def test_map_provider_status(transaction_status, fraud_status, expected):
    assert map_provider_status(transaction_status, fraud_status) == expected


def test_order_ids_are_unique():
    ids = {generate_order_id("BKABC12345") for _ in range(50)}
    assert len(ids) == 50
    assert all(order_id.startswith("TRV-BKABC12345-") for order_id in ids)


@pytest.mark.asyncio
async def test_initiate_payment(payment_service, payment_gateway, booking_factory, customer, travel_package):
    """a pending booking gets a hosted checkout."""
    booking = await booking_factory(participants=2)

    initiation = await payment_service.initiate_payment(booking.id)

    assert initiation.already_initiated is False
    assert initiation.token == "snap-token-1"
    assert initiation.redirect_url.endswith("snap-token-1")
    assert initiation.order_id.startswith(f"TRV-{booking.booking_code}-")

    [payload] = payment_gateway.created
    assert payload["transaction_details"] == {"order_id": initiation.order_id, "gross_amount": 2000000}
    assert payload["customer_details"]["email"] == customer.email
    assert payload["item_details"][0]["id"] == f"PKG-{travel_package.id}"
    assert payload["item_details"][0]["quantity"] == 2
    assert payload["item_details"][0]["price"] * 2 == 2000000
    assert payload["expiry"] == {"unit": "hours", "duration": 24}
    assert set(payload["callbacks"]) == {"finish", "error", "pending"}

    payment = await payment_service.get_payment_by_order_id(initiation.order_id)
    assert payment.status == PaymentStatus.PENDING
    assert payment.amount == booking.total_amount
    assert as_utc(payment.expired_at) > utcnow() + timedelta(hours=23)


@pytest.mark.asyncio
async def test_initiate_twice_returns_existing(payment_service, payment_gateway, booking_factory):
    booking = await booking_factory()

    first = await payment_service.initiate_payment(booking.id)
    second = await payment_service.initiate_payment(booking.id)

    assert second.already_initiated is True
    assert second.order_id == first.order_id
    assert second.token == first.token
    assert len(payment_gateway.created) == 1


@pytest.mark.asyncio
async def test_initiate_requires_pending_booking(payment_service, booking_factory, test_session):
    booking = await booking_factory()
    await BookingService(test_session).cancel_booking(booking.id)

    with pytest.raises(InvalidStateError) as exc_info:
        await payment_service.initiate_payment(booking.id)

    assert exc_info.value.detail == "Payment can only be initiated for pending bookings"


@pytest.mark.asyncio
async def test_initiate_unknown_booking(payment_service):
    with pytest.raises(NotFoundError):
        await payment_service.initiate_payment(uuid4())


@pytest.mark.asyncio
async def test_initiate_gateway_failure_persists_nothing(payment_service, payment_gateway, booking_factory):
    booking = await booking_factory()
    payment_gateway.fail_with = MidtransError("Midtrans responded with status 500", status_code=500)

    with pytest.raises(PaymentGatewayError) as exc_info:
        await payment_service.initiate_payment(booking.id)

    assert exc_info.value.status_code == 500
    assert exc_info.value.detail == "Failed to create payment transaction"

    payment_gateway.fail_with = None
    retry = await payment_service.initiate_payment(booking.id)
    assert retry.already_initiated is False


@pytest.mark.asyncio
async def test_initiate_after_failed_payment_conflicts(payment_service, booking_factory, notify, test_session):
    """A terminal payment is never replaced by a second checkout."""
    booking = await booking_factory()
    initiation = await payment_service.initiate_payment(booking.id)
    payment = await payment_service.get_payment_by_order_id(initiation.order_id)
    payment.status = PaymentStatus.FAILED
    await test_session.commit()

    with pytest.raises(ConflictError):
        await payment_service.initiate_payment(booking.id)


@pytest.mark.asyncio
async def test_settlement_marks_booking_paid(payment_service, booking_factory, notify, customer):
    """settlement moves payment to SUCCESS and booking to PAID."""
    booking = await booking_factory()
    initiation = await payment_service.initiate_payment(booking.id)

    payment = await notify(initiation.order_id, "settlement")

    assert payment.status == PaymentStatus.SUCCESS
    assert payment.paid_at is not None
    assert payment.payment_type == "bank_transfer"
    reloaded = await BookingService(payment_service.db).get_booking_by_id_or_raise(booking.id)
    assert reloaded.status == BookingStatus.PAID
    assert customer.status == CustomerStatus.ACTIVE


@pytest.mark.asyncio
async def test_capture_accept_marks_booking_paid(payment_service, booking_factory, notify):
    booking = await booking_factory()
    initiation = await payment_service.initiate_payment(booking.id)

    payment = await notify(initiation.order_id, "capture", fraud_status="accept", payment_type="credit_card")

    assert payment.status == PaymentStatus.SUCCESS
    assert (await BookingService(payment_service.db).get_booking_by_id_or_raise(booking.id)).status == BookingStatus.PAID


@pytest.mark.asyncio
async def test_capture_challenge_leaves_booking_pending(payment_service, booking_factory, notify):
    booking = await booking_factory()
    initiation = await payment_service.initiate_payment(booking.id)

    payment = await notify(initiation.order_id, "capture", fraud_status="challenge")

    assert payment.status == PaymentStatus.PENDING
    assert (await BookingService(payment_service.db).get_booking_by_id_or_raise(booking.id)).status == BookingStatus.PENDING


@pytest.mark.asyncio
async def test_invalid_signature_rejected(payment_service, booking_factory, notify):
    """a tampered notification changes nothing."""
    booking = await booking_factory()
    initiation = await payment_service.initiate_payment(booking.id)

    with pytest.raises(InvalidSignatureError) as exc_info:
        await notify(initiation.order_id, "settlement", signature_key="0" * 128)

    assert exc_info.value.status_code == 403
    assert exc_info.value.detail == "Invalid signature"
    payment = await payment_service.get_payment_by_order_id(initiation.order_id)
    assert payment.status == PaymentStatus.PENDING
    assert (await BookingService(payment_service.db).get_booking_by_id_or_raise(booking.id)).status == BookingStatus.PENDING


@pytest.mark.asyncio
async def test_signature_covers_gross_amount(payment_service, booking_factory, notification_factory):
    booking = await booking_factory()
    initiation = await payment_service.initiate_payment(booking.id)
    payload = notification_factory(initiation.order_id, "settlement")
    payload["gross_amount"] = "1.00"

    with pytest.raises(InvalidSignatureError):
        await payment_service.process_notification(PaymentNotification(**payload))


@pytest.mark.asyncio
async def test_missing_signature_rejected(payment_service, booking_factory, notification_factory):
    booking = await booking_factory()
    initiation = await payment_service.initiate_payment(booking.id)
    payload = notification_factory(initiation.order_id, "settlement")
    del payload["signature_key"]

    with pytest.raises(InvalidSignatureError):
        await payment_service.process_notification(PaymentNotification(**payload))


@pytest.mark.asyncio
async def test_unknown_order(notify):
    with pytest.raises(NotFoundError):
        await notify("TRV-UNKNOWN-1-abc", "settlement")


@pytest.mark.asyncio
async def test_expire_cancels_booking_and_frees_slots(payment_service, booking_factory, notify, test_session):
    """expiry cancels the booking and its slots become available."""
    booking = await booking_factory(participants=10)
    initiation = await payment_service.initiate_payment(booking.id)

    payment = await notify(initiation.order_id, "expire")

    assert payment.status == PaymentStatus.EXPIRED
    assert payment.paid_at is None
    reloaded = await BookingService(test_session).get_booking_by_id_or_raise(booking.id)
    assert reloaded.status == BookingStatus.CANCELED

    replacement = await booking_factory(participants=10)
    assert replacement.status == BookingStatus.PENDING


@pytest.mark.asyncio
@pytest.mark.parametrize("transaction_status", ["deny", "cancel"])
async def test_deny_and_cancel_fail_payment(payment_service, booking_factory, notify, transaction_status):
    booking = await booking_factory()
    initiation = await payment_service.initiate_payment(booking.id)

    payment = await notify(initiation.order_id, transaction_status)

    assert payment.status == PaymentStatus.FAILED
    assert (await BookingService(payment_service.db).get_booking_by_id_or_raise(booking.id)).status == BookingStatus.CANCELED


@pytest.mark.asyncio
async def test_redelivered_settlement_is_a_no_op(payment_service, booking_factory, notify):
    booking = await booking_factory()
    initiation = await payment_service.initiate_payment(booking.id)
    first = await notify(initiation.order_id, "settlement")
    paid_at = first.paid_at
    before = REGISTRY.get_sample_value(
        "payment_notifications_total", {"transaction_status": "settlement", "outcome": "duplicate"}
    ) or 0.0

    second = await notify(initiation.order_id, "settlement")

    assert second.status == PaymentStatus.SUCCESS
    assert as_utc(second.paid_at) == as_utc(paid_at)
    after = REGISTRY.get_sample_value(
        "payment_notifications_total", {"transaction_status": "settlement", "outcome": "duplicate"}
    )
    assert after == before + 1


@pytest.mark.asyncio
@pytest.mark.parametrize("late_status", ["pending", "expire", "deny"])
async def test_success_never_regresses(payment_service, booking_factory, notify, late_status):
    """Out-of-order notifications cannot undo a settlement."""
    booking = await booking_factory()
    initiation = await payment_service.initiate_payment(booking.id)
    await notify(initiation.order_id, "settlement")

    payment = await notify(initiation.order_id, late_status)

    assert payment.status == PaymentStatus.SUCCESS
    assert payment.paid_at is not None
    assert (await BookingService(payment_service.db).get_booking_by_id_or_raise(booking.id)).status == BookingStatus.PAID


@pytest.mark.asyncio
async def test_refund_after_success(payment_service, booking_factory, notify):
    booking = await booking_factory()
    initiation = await payment_service.initiate_payment(booking.id)
    await notify(initiation.order_id, "settlement")

    payment = await notify(initiation.order_id, "refund")

    assert payment.status == PaymentStatus.REFUND
    assert payment.paid_at is None
    assert (await BookingService(payment_service.db).get_booking_by_id_or_raise(booking.id)).status == BookingStatus.PAID


@pytest.mark.asyncio
async def test_expired_payment_is_final(payment_service, booking_factory, notify):
    booking = await booking_factory()
    initiation = await payment_service.initiate_payment(booking.id)
    await notify(initiation.order_id, "expire")

    payment = await notify(initiation.order_id, "settlement")

    assert payment.status == PaymentStatus.EXPIRED
    assert (await BookingService(payment_service.db).get_booking_by_id_or_raise(booking.id)).status == BookingStatus.CANCELED


@pytest.mark.asyncio
async def test_settlement_does_not_revive_canceled_booking(payment_service, booking_factory, notify, test_session):
    booking = await booking_factory()
    initiation = await payment_service.initiate_payment(booking.id)
    await BookingService(test_session).cancel_booking(booking.id)
    before = REGISTRY.get_sample_value(
        "payment_notifications_total", {"transaction_status": "settlement", "outcome": "paid_canceled_booking"}
    ) or 0.0

    payment = await notify(initiation.order_id, "settlement")

    assert payment.status == PaymentStatus.SUCCESS
    assert (await BookingService(test_session).get_booking_by_id_or_raise(booking.id)).status == BookingStatus.CANCELED
    after = REGISTRY.get_sample_value(
        "payment_notifications_total", {"transaction_status": "settlement", "outcome": "paid_canceled_booking"}
    )
    assert after == before + 1


@pytest.mark.asyncio
async def test_late_settlement_is_honored(payment_service, booking_factory, notify, test_session):
    booking = await booking_factory()
    initiation = await payment_service.initiate_payment(booking.id)
    payment = await payment_service.get_payment_by_order_id(initiation.order_id)
    payment.expired_at = utcnow() - timedelta(hours=1)
    await test_session.commit()

    payment = await notify(initiation.order_id, "settlement")

    assert payment.status == PaymentStatus.SUCCESS
    assert (await BookingService(test_session).get_booking_by_id_or_raise(booking.id)).status == BookingStatus.PAID


@pytest.mark.asyncio
async def test_get_transaction_status_passthrough(payment_service, payment_gateway):
    payment_gateway.statuses["TRV-X-1-aa"] = {"status_code": "200", "transaction_status": "settlement"}

    status = await payment_service.get_transaction_status("TRV-X-1-aa")

    assert status == {"status_code": "200", "transaction_status": "settlement"}


@pytest.mark.asyncio
async def test_get_transaction_status_gateway_failure(payment_service, payment_gateway):
    payment_gateway.fail_with = MidtransError("Failed to reach Midtrans")

    with pytest.raises(PaymentGatewayError):
        await payment_service.get_transaction_status("TRV-X-1-aa")


@pytest.mark.asyncio
async def test_sync_applies_provider_status(payment_service, payment_gateway, booking_factory):
    """A lost settlement notification is recovered by pulling the status."""
    booking = await booking_factory()
    initiation = await payment_service.initiate_payment(booking.id)
    payment_gateway.statuses[initiation.order_id] = {
        "status_code": "200",
        "order_id": initiation.order_id,
        "transaction_status": "settlement",
        "payment_type": "qris",
    }

    payment = await payment_service.sync_payment_status(initiation.order_id)

    assert payment.status == PaymentStatus.SUCCESS
    assert payment.payment_type == "qris"
    assert (await BookingService(payment_service.db).get_booking_by_id_or_raise(booking.id)).status == BookingStatus.PAID


@pytest.mark.asyncio
async def test_sync_without_provider_transaction(payment_service, booking_factory):
    booking = await booking_factory()
    initiation = await payment_service.initiate_payment(booking.id)

    payment = await payment_service.sync_payment_status(initiation.order_id)

    assert payment.status == PaymentStatus.PENDING


@pytest.mark.asyncio
async def test_participants_locked_while_payment_pending(payment_service, booking_factory, notify, test_session):
    """A checkout in progress pins the amount the booking can be paid for."""
    booking = await booking_factory(participants=2)
    initiation = await payment_service.initiate_payment(booking.id)
    booking_service = BookingService(test_session)

    with pytest.raises(InvalidStateError) as exc_info:
        await booking_service.update_booking(booking.id, UpdateBookingRequest(participants=5))

    assert exc_info.value.problem_details["code"] == "PAYMENT_IN_PROGRESS"

    updated = await booking_service.update_booking(booking.id, UpdateBookingRequest(notes="Halal meals"))
    assert updated.notes == "Halal meals"

    await notify(initiation.order_id, "settlement", gross_amount="2000000.00")
    payment = await payment_service.get_payment_by_order_id(initiation.order_id)
    paid = await booking_service.get_booking_by_id_or_raise(booking.id)
    assert paid.status == BookingStatus.PAID
    assert paid.participants == 2
    assert payment.amount == paid.total_amount


@pytest.mark.asyncio
async def test_uneven_total_sent_as_single_item(test_session, customer, package_factory, payment_service, payment_gateway):
    package = await package_factory(price=Decimal("1000000.50"))
    booking = await BookingService(test_session).create_booking(
        CreateBookingRequest(package_id=package.id, participants=3, departure_date=utcnow() + timedelta(days=30)),
        customer.id,
    )

    await payment_service.initiate_payment(booking.id)

    [payload] = payment_gateway.created
    gross_amount = payload["transaction_details"]["gross_amount"]
    [item] = payload["item_details"]
    assert gross_amount == 3000001
    assert item["quantity"] == 1
    assert item["price"] * item["quantity"] == gross_amount


@pytest.mark.asyncio
async def test_duplicate_notification_records_payment_type(payment_service, booking_factory, notify):
    booking = await booking_factory()
    initiation = await payment_service.initiate_payment(booking.id)
    assert (await payment_service.get_payment_by_order_id(initiation.order_id)).payment_type is None

    payment = await notify(initiation.order_id, "pending", payment_type="gopay")

    assert payment.status == PaymentStatus.PENDING
    assert payment.payment_type == "gopay"


@pytest.mark.asyncio
async def test_sync_holds_no_transaction_during_provider_call(payment_service, payment_gateway, booking_factory):
    booking = await booking_factory()
    initiation = await payment_service.initiate_payment(booking.id)
    payment_gateway.statuses[initiation.order_id] = {"status_code": "200", "transaction_status": "settlement"}
    seen = []
    lookup = payment_gateway.get_status

    async def get_status(order_id):
        seen.append(payment_service.db.in_transaction())
        return await lookup(order_id)

    payment_gateway.get_status = get_status

    payment = await payment_service.sync_payment_status(initiation.order_id)

    assert seen == [False]
    assert payment.status == PaymentStatus.SUCCESS


@pytest.mark.asyncio
async def test_sync_unknown_order_skips_provider(payment_service, payment_gateway):
    with pytest.raises(NotFoundError):
        await payment_service.sync_payment_status("TRV-NOPE-1-abc")

    assert payment_gateway.status_lookups == []
