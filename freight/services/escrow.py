"""
Escrow ledger: owns the Payment lifecycle and its coupling to one booking.

Payment is the source of truth. The booking's `payment_status` column is a
projection recomputed from the Payment after every ledger write.

Escrow axis only moves forward:
    held -> released   (auto_release, after delivery)
    held -> refunded   (refund, before release)
Once released, a refund request is recorded as intent and flagged for manual
processing; the ledger never claims that released money was returned.
"""
import logging
from contextlib import nullcontext
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from freight.config import Settings, get_settings
from freight.errors import (
    AuthorizationError,
    ConflictError,
    ManualInterventionRequired,
    NotFoundError,
    ValidationError,
)
from freight.models.booking import Booking
from freight.models.payment import Payment
from freight.schemas.schemas import (
    Actor,
    BookingPaymentStatusEnum,
    BookingStatusEnum,
    EscrowStatusEnum,
    PaymentStatusEnum,
    RoleEnum,
)
from freight.services.gateway import GatewayReceipt, normalize_phone
from freight.services.notifier import notify_safely
from freight.services.pricing import to_transferable_amount

logger = logging.getLogger(__name__)

LIVE_STATUSES = frozenset({
    PaymentStatusEnum.PENDING.value,
    PaymentStatusEnum.PROCESSING.value,
    PaymentStatusEnum.COMPLETED.value,
})
REFUNDABLE_STATUSES = frozenset({
    PaymentStatusEnum.PROCESSING.value,
    PaymentStatusEnum.COMPLETED.value,
})


class SettlementOutcome(str, Enum):
    NO_PAYMENT = "no_payment"
    REFUNDED = "refunded"
    VOIDED = "voided"
    MANUAL_INTERVENTION = "manual_intervention"
    ALREADY_SETTLED = "already_settled"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def project_payment_status(payment: Optional[Payment]) -> str:
    """Booking-facing payment status derived from the Payment row."""
    if payment is None:
        return BookingPaymentStatusEnum.PENDING.value
    if payment.status in (PaymentStatusEnum.REFUNDED.value, PaymentStatusEnum.CANCELLED.value):
        return BookingPaymentStatusEnum.REFUNDED.value
    if payment.status == PaymentStatusEnum.COMPLETED.value:
        if payment.escrow_status == EscrowStatusEnum.RELEASED.value:
            return BookingPaymentStatusEnum.PAID.value
        return BookingPaymentStatusEnum.HELD.value
    if payment.status == PaymentStatusEnum.FAILED.value:
        return BookingPaymentStatusEnum.PENDING.value
    return BookingPaymentStatusEnum.PROCESSING.value


class EscrowLedger:
    def __init__(self, payments, bookings, gateway, notifier=None, locks=None,
                 settings: Optional[Settings] = None):
        self.payments = payments
        self.bookings = bookings
        self.gateway = gateway
        self.notifier = notifier
        self.locks = locks
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def payment_for(self, booking: Booking) -> Optional[Payment]:
        if not booking.payment_id:
            return None
        return await self.payments.get(booking.payment_id)

    async def get_payment(self, actor: Actor, payment_id: str) -> Payment:
        payment = await self._load(payment_id)
        if not actor.is_admin and actor.id not in (payment.customer_id, payment.trucker_id):
            raise AuthorizationError("Not authorized to view this payment")
        return payment

    # ------------------------------------------------------------------
    # Initiation and gateway callback
    # ------------------------------------------------------------------

    async def initiate(self, actor: Actor, booking_id: str, payer_phone: str) -> tuple[Payment, GatewayReceipt]:
        if self.locks is None:
            return await self._initiate(actor, booking_id, payer_phone)
        async with self.locks.hold(booking_id):
            return await self._initiate(actor, booking_id, payer_phone)

    async def _initiate(self, actor: Actor, booking_id: str, payer_phone: str) -> tuple[Payment, GatewayReceipt]:
        booking = await self.bookings.get(booking_id)
        if booking is None:
            raise NotFoundError("Booking not found", booking_id=booking_id)
        if actor.role != RoleEnum.customer or booking.customer_id != actor.id:
            raise AuthorizationError("Only the booking's customer can pay for it")
        if booking.status == BookingStatusEnum.CANCELLED.value:
            raise ConflictError("Cannot pay for a cancelled booking", booking_id=booking_id)

        existing = [p for p in await self.payments.list_for_booking(booking.id) if p.status in LIVE_STATUSES]
        if existing:
            raise ConflictError(
                "A payment for this booking already exists",
                booking_id=booking.id,
                payment_id=existing[-1].id,
                payment_status=existing[-1].status,
            )

        amount = to_transferable_amount(booking.estimated_amount)
        if amount <= 0:
            raise ValidationError("Booking amount must be positive", booking_id=booking.id)
        phone = normalize_phone(payer_phone)

        # Gateway failures propagate; nothing is stored for a request the gateway never accepted.
        receipt = await self.gateway.initiate(amount, phone, booking.id)

        payment = Payment(
            booking_id=booking.id,
            customer_id=booking.customer_id,
            trucker_id=booking.trucker_id,
            amount=amount,
            currency=self.settings.currency,
            method=booking.payment_method,
            status=PaymentStatusEnum.PROCESSING.value,
            escrow_status=EscrowStatusEnum.HELD.value,
            external_request_id=receipt.external_request_id,
            merchant_request_id=receipt.merchant_request_id,
            payer_phone=phone,
            requires_manual_processing=False,
        )
        payment = await self.payments.save(payment)

        booking.payment_id = payment.id
        booking.payment_status = project_payment_status(payment)
        await self.bookings.save(booking)
        logger.info("Payment %s initiated for booking=%s amount=%s", payment.id, booking.id, amount)
        return payment, receipt

    async def confirm_external_result(
        self,
        reference: Optional[str],
        succeeded: Optional[bool],
        transaction_reference: Optional[str] = None,
    ) -> Optional[Payment]:
        """
        Apply an asynchronous gateway outcome. Safe to call repeatedly and at any
        time after initiation; unknown references are ignored so the gateway can retry.

        Runs under the booking lock against a row-locked re-read, so it cannot
        overwrite a refund or void committed while the callback was in flight.
        """
        if not reference:
            return None
        found = await self.payments.get_by_external_id(reference)
        if found is None:
            logger.info("Gateway callback for unknown reference %s ignored", reference)
            return None
        if succeeded is None:
            return found

        async with self._hold(found.booking_id):
            payment = await self._reload(found)
            if succeeded:
                self._apply_capture(payment, transaction_reference)
            elif payment.status in (PaymentStatusEnum.PENDING.value, PaymentStatusEnum.PROCESSING.value):
                payment.status = PaymentStatusEnum.FAILED.value

            payment = await self.payments.save(payment)
            await self._sync_booking(payment)

            if payment.status == PaymentStatusEnum.COMPLETED.value and \
                    payment.escrow_status == EscrowStatusEnum.HELD.value:
                booking = await self.bookings.get(payment.booking_id)
                if booking is not None and booking.status == BookingStatusEnum.COMPLETED.value:
                    payment = await self._release(payment)
        return payment

    def _apply_capture(self, payment: Payment, transaction_reference: Optional[str]) -> None:
        first_capture = payment.paid_at is None
        if first_capture:
            payment.paid_at = _now()
        if transaction_reference and not payment.transaction_reference:
            payment.transaction_reference = transaction_reference
        if payment.status in (PaymentStatusEnum.PENDING.value, PaymentStatusEnum.PROCESSING.value,
                              PaymentStatusEnum.FAILED.value):
            payment.status = PaymentStatusEnum.COMPLETED.value
        elif first_capture and \
                payment.status in (PaymentStatusEnum.CANCELLED.value, PaymentStatusEnum.REFUNDED.value) and \
                payment.escrow_status != EscrowStatusEnum.RELEASED.value:
            # Money arrived after the booking was cancelled and the payment voided or refunded.
            payment.requires_manual_processing = True
            logger.warning("Payment %s captured after it was %s; flagged for manual refund",
                           payment.id, payment.status)

    # ------------------------------------------------------------------
    # Money movements
    # ------------------------------------------------------------------

    async def auto_release(self, payment: Payment) -> Payment:
        """The only path that moves escrow held -> released."""
        async with self._hold(payment.booking_id):
            return await self._release(await self._reload(payment))

    async def release_on_delivery(self, booking: Booking) -> Optional[Payment]:
        """Release captured escrow for a delivered booking; uncaptured funds wait for the callback."""
        async with self._hold(booking.id):
            payment = await self._payment_for_update(booking)
            if payment is None or payment.escrow_status != EscrowStatusEnum.HELD.value:
                return payment
            if payment.status != PaymentStatusEnum.COMPLETED.value:
                logger.info("Escrow for booking=%s not captured yet (status=%s); release deferred to gateway callback",
                            booking.id, payment.status)
                return payment
            return await self._release(payment)

    async def _release(self, payment: Payment) -> Payment:
        if payment.escrow_status != EscrowStatusEnum.HELD.value or \
                payment.status != PaymentStatusEnum.COMPLETED.value:
            raise ConflictError(
                "Payment can only be released while held and completed",
                payment_id=payment.id,
                status=payment.status,
                escrow_status=payment.escrow_status,
            )
        payment.escrow_status = EscrowStatusEnum.RELEASED.value
        if payment.released_at is None:
            payment.released_at = _now()
        payment = await self.payments.save(payment)
        await self._sync_booking(payment)
        logger.info("Escrow released: payment=%s booking=%s", payment.id, payment.booking_id)

        await notify_safely(
            self.notifier,
            payment.trucker_id,
            "system",
            "Payment Released",
            f"Payment of {payment.currency} {payment.amount:,} has been released to your account "
            f"for completed booking.",
            related_booking_id=payment.booking_id,
        )
        return payment

    async def refund(self, payment: Payment, reason: Optional[str], actor: Optional[Actor]) -> Payment:
        """
        Return held funds to the customer.

        Raises ManualInterventionRequired (after recording the refund intent)
        when escrow was already released.
        """
        async with self._hold(payment.booking_id):
            return await self._refund(await self._reload(payment), reason, actor)

    async def _refund(self, payment: Payment, reason: Optional[str], actor: Optional[Actor]) -> Payment:
        if payment.status == PaymentStatusEnum.REFUNDED.value:
            raise ConflictError("Payment has already been refunded", payment_id=payment.id)

        if payment.escrow_status == EscrowStatusEnum.RELEASED.value:
            payment.status = PaymentStatusEnum.CANCELLED.value
            payment.requires_manual_processing = True
            payment.refund_reason = reason or payment.refund_reason
            payment = await self.payments.save(payment)
            await self._sync_booking(payment)
            logger.warning(
                "Refund requested for released payment=%s booking=%s by %s; manual processing required",
                payment.id, payment.booking_id, actor.id if actor else "system",
            )
            await notify_safely(
                self.notifier,
                payment.customer_id,
                "system",
                "Refund Processing Required",
                "Since payment was already released to the trucker, support will contact you "
                "to process your refund.",
                related_booking_id=payment.booking_id,
            )
            raise ManualInterventionRequired(payment.id)

        if payment.status not in REFUNDABLE_STATUSES:
            raise ConflictError(
                "Payment cannot be refunded (not completed)",
                payment_id=payment.id,
                status=payment.status,
            )

        payment.status = PaymentStatusEnum.REFUNDED.value
        payment.escrow_status = EscrowStatusEnum.REFUNDED.value
        if payment.refunded_at is None:
            payment.refunded_at = _now()
        payment.refund_reason = reason
        payment = await self.payments.save(payment)
        await self._sync_booking(payment)
        logger.info("Payment refunded: payment=%s booking=%s amount=%s", payment.id, payment.booking_id,
                    payment.amount)

        await notify_safely(
            self.notifier,
            payment.customer_id,
            "system",
            "Payment Refunded",
            f"Your payment of {payment.currency} {payment.amount:,} has been refunded."
            + (f" Reason: {reason}" if reason else ""),
            related_booking_id=payment.booking_id,
        )
        return payment

    async def void(self, payment: Payment, reason: Optional[str] = None) -> Payment:
        """Cancel a payment that never captured funds. Escrow stays held; nothing moved."""
        async with self._hold(payment.booking_id):
            return await self._void(await self._reload(payment), reason)

    async def _void(self, payment: Payment, reason: Optional[str]) -> Payment:
        if payment.status in (PaymentStatusEnum.CANCELLED.value, PaymentStatusEnum.REFUNDED.value):
            return payment
        payment.status = PaymentStatusEnum.CANCELLED.value
        payment.refund_reason = reason
        payment = await self.payments.save(payment)
        await self._sync_booking(payment)
        return payment

    async def settle_cancellation(self, booking: Booking, reason: Optional[str], actor: Actor) -> SettlementOutcome:
        """Refund policy applied when a booking is cancelled."""
        async with self._hold(booking.id):
            return await self._settle_cancellation(booking, reason, actor)

    async def _settle_cancellation(self, booking: Booking, reason: Optional[str], actor: Actor) -> SettlementOutcome:
        payment = await self._payment_for_update(booking)
        if payment is None:
            return SettlementOutcome.NO_PAYMENT

        refund_reason = f"Booking cancelled by {actor.role.value}: {reason or 'No reason provided'}"
        if payment.status == PaymentStatusEnum.REFUNDED.value:
            return SettlementOutcome.ALREADY_SETTLED

        if payment.escrow_status == EscrowStatusEnum.RELEASED.value or payment.status in REFUNDABLE_STATUSES:
            try:
                await self._refund(payment, refund_reason, actor)
            except ManualInterventionRequired:
                return SettlementOutcome.MANUAL_INTERVENTION
            return SettlementOutcome.REFUNDED

        await self._void(payment, refund_reason)
        return SettlementOutcome.VOIDED

    # ------------------------------------------------------------------
    # Boundary entry points
    # ------------------------------------------------------------------

    async def request_refund(self, actor: Actor, payment_id: str, reason: Optional[str]) -> Payment:
        payment = await self._load(payment_id)
        if not actor.is_admin and payment.customer_id != actor.id:
            raise AuthorizationError("Not authorized to refund this payment")
        return await self.refund(payment, reason, actor)

    async def release(self, actor: Actor, payment_id: str) -> Payment:
        payment = await self._load(payment_id)
        if not actor.is_admin and payment.customer_id != actor.id:
            raise AuthorizationError("Not authorized to release this payment")
        booking = await self.bookings.get(payment.booking_id)
        if booking is None:
            raise NotFoundError("Booking not found", booking_id=payment.booking_id)
        if booking.status != BookingStatusEnum.COMPLETED.value:
            raise ConflictError("Booking must be completed first", booking_status=booking.status)
        return await self.auto_release(payment)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _load(self, payment_id: str) -> Payment:
        payment = await self.payments.get(payment_id)
        if payment is None:
            raise NotFoundError("Payment not found", payment_id=payment_id)
        return payment

    def _hold(self, booking_id: str):
        return self.locks.hold(booking_id) if self.locks is not None else nullcontext()

    async def _reload(self, payment: Payment) -> Payment:
        fresh = await self.payments.get_for_update(payment.id)
        if fresh is None:
            raise NotFoundError("Payment not found", payment_id=payment.id)
        return fresh

    async def _payment_for_update(self, booking: Booking) -> Optional[Payment]:
        if not booking.payment_id:
            return None
        return await self.payments.get_for_update(booking.payment_id)

    async def _sync_booking(self, payment: Payment) -> None:
        try:
            booking = await self.bookings.get(payment.booking_id)
            if booking is None or booking.payment_id != payment.id:
                return
            projected = project_payment_status(payment)
            if booking.payment_status != projected:
                booking.payment_status = projected
                await self.bookings.save(booking)
        except Exception as exc:
            # Projection is recomputed on the next read; the payment write already stands.
            logger.error("Failed to sync payment status onto booking=%s: %s", payment.booking_id, exc,
                         exc_info=True)
            await self.payments.rollback(payment)
