# core/services/bookings.py

"""
Deposit lifecycle on booking requests: capture, scheduling the automatic
release, and cancellation (refund to the customer or retention for the
provider). Every state change appends a BookingEvent.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from core.exceptions import BookingConflict
from core.models import BookingEvent, BookingRequest
from core.services.deposit_release import (
    claim_booking,
    default_worker_id,
    lease_seconds_setting,
    release_amount_for,
    release_booking_claim,
)
from core.services.deposits import CancellationOutcome, get_cancellation_outcome
from core.services.payments import create_refund, create_transfer, transfer_group_for_booking

logger = logging.getLogger(__name__)


def append_booking_event(booking: BookingRequest, event_type: str, actor_type: str = "system",
                         actor=None, metadata: dict = None, created_at=None) -> BookingEvent:
    return BookingEvent.objects.create(
        booking=booking,
        event_type=event_type,
        actor_type=actor_type,
        actor=actor,
        metadata=metadata or {},
        created_at=created_at or timezone.now(),
    )


def booking_event_log(booking: BookingRequest):
    return BookingEvent.objects.filter(booking=booking).order_by("created_at", "id")


def record_deposit_capture(booking: BookingRequest, charge_id: str, payment_intent_id: str = None,
                           actor_type: str = "customer") -> BookingRequest:
    """Processor settled the deposit: ``none``/``held`` -> ``captured``."""
    if not charge_id:
        raise ValueError("A charge id is required to capture a deposit")

    with transaction.atomic():
        locked = BookingRequest.objects.select_for_update().get(pk=booking.pk)
        if locked.deposit_status == "captured" and locked.stripe_charge_id == charge_id:
            return locked
        if locked.deposit_status not in ("none", "held"):
            raise ValueError(
                f"Cannot capture deposit for booking #{locked.pk} in state '{locked.deposit_status}'"
            )

        locked.deposit_status = "captured"
        locked.stripe_charge_id = charge_id
        if payment_intent_id:
            locked.stripe_payment_intent_id = payment_intent_id
        if locked.completion_status == "pending":
            locked.completion_status = "scheduled"
        locked.save(update_fields=[
            "deposit_status", "stripe_charge_id", "stripe_payment_intent_id",
            "completion_status", "updated_at",
        ])

        append_booking_event(
            locked,
            "deposit_captured",
            actor_type=actor_type,
            metadata={"amount": locked.deposit_amount_cents or 0, "chargeId": charge_id},
        )

    return locked


def schedule_auto_release(booking: BookingRequest, job_end_at=None) -> BookingRequest:
    """Make the deposit eligible for release DEPOSIT_AUTO_RELEASE_HOURS after the job ends."""
    job_end_at = job_end_at or timezone.now()
    hours = int(getattr(settings, "DEPOSIT_AUTO_RELEASE_HOURS", 36))

    booking.job_end_at = job_end_at
    booking.auto_release_at = job_end_at + timedelta(hours=hours)
    booking.save(update_fields=["job_end_at", "auto_release_at", "updated_at"])
    return booking


def hours_until_job(booking: BookingRequest, now=None) -> float:
    if not booking.job_start_at:
        return 0.0
    now = now or timezone.now()
    return (booking.job_start_at - now).total_seconds() / 3600


def cancel_booking(booking: BookingRequest, cancelled_by: str, now=None, actor=None) -> CancellationOutcome:
    """
    Cancel a booking and settle its deposit according to the cancellation policy.

    A captured deposit is leased (same lease as the auto-release scheduler)
    before any processor call, so a cancellation and a release never both
    move money. Raises BookingConflict if the lease is held elsewhere or the
    booking changed underneath us. Processor calls happen before any state is
    written; if one fails the booking is left untouched and the
    PaymentProcessorError propagates.
    """
    now = now or timezone.now()
    if cancelled_by == "worker":
        cancelled_by = "provider"

    booking = BookingRequest.objects.select_related("owner").get(pk=booking.pk)
    _ensure_cancellable(booking)

    holder = None
    if booking.deposit_status == "captured":
        holder = f"cancel:{default_worker_id()}"
        if not claim_booking(booking.pk, holder, lease_seconds_setting(), now=now):
            raise BookingConflict(booking.pk, "deposit release in progress, retry shortly")

    try:
        if holder:
            # Re-read under the lease; anything seen before it may be stale
            booking = BookingRequest.objects.select_related("owner").get(pk=booking.pk)
            _ensure_cancellable(booking)
        return _settle_cancellation(booking, cancelled_by, now, actor)
    finally:
        if holder:
            release_booking_claim(booking.pk, holder)


def _ensure_cancellable(booking: BookingRequest) -> None:
    if booking.completion_status in ("completed", "cancelled"):
        raise ValueError(f"Booking #{booking.pk} is already {booking.completion_status}")


def _settle_cancellation(booking: BookingRequest, cancelled_by: str, now, actor) -> CancellationOutcome:
    paid = release_amount_for(booking) if booking.deposit_status == "captured" else 0
    outcome = get_cancellation_outcome(cancelled_by, hours_until_job(booking, now), paid)

    refund_id = None
    transfer_id = None
    if outcome.refund_amount > 0:
        refund_id = create_refund(
            booking.stripe_charge_id,
            outcome.refund_amount,
            metadata={"booking_id": booking.id, "reason": "cancellation"},
            idempotency_key=f"deposit-refund-{booking.id}",
        )
    elif outcome.retained_amount > 0 and booking.owner.stripe_account_id:
        transfer_id = create_transfer(
            outcome.retained_amount,
            booking.deposit_currency or "usd",
            booking.owner.stripe_account_id,
            transfer_group_for_booking(booking.id),
            metadata={"booking_id": booking.id, "type": "cancellation_retained"},
            idempotency_key=f"deposit-retain-{booking.id}",
        )
    elif outcome.retained_amount > 0:
        logger.warning(
            f"Provider for booking #{booking.pk} has no payable destination; "
            f"retained deposit stays captured"
        )

    changes = {
        "completion_status": "cancelled",
        "cancelled_at": now,
        "cancelled_by": cancelled_by,
        "updated_at": now,
    }
    if refund_id:
        changes.update(deposit_status="refunded", stripe_refund_id=refund_id)
    elif outcome.retained_amount > 0:
        changes["retained_amount_cents"] = outcome.retained_amount
        if transfer_id:
            changes.update(deposit_status="released", stripe_transfer_id=transfer_id)

    with transaction.atomic():
        # Forward-only: applies only if nobody moved the deposit or booking meanwhile
        updated = (
            BookingRequest.objects.filter(pk=booking.pk, deposit_status=booking.deposit_status)
            .exclude(completion_status__in=("completed", "cancelled"))
            .update(**changes)
        )
        if updated != 1:
            logger.error(
                f"Booking #{booking.pk} changed while cancelling; refund={refund_id} "
                f"transfer={transfer_id} need manual reconciliation"
            )
            raise BookingConflict(booking.pk, "booking changed while cancelling")

        if refund_id:
            append_booking_event(
                booking, "deposit_refunded", actor_type=cancelled_by, actor=actor,
                metadata={"amount": outcome.refund_amount, "refundId": refund_id, "reason": outcome.reason},
                created_at=now,
            )
        elif outcome.retained_amount > 0:
            append_booking_event(
                booking, "deposit_retained", actor_type=cancelled_by, actor=actor,
                metadata={"amount": outcome.retained_amount, "transferId": transfer_id, "reason": outcome.reason},
                created_at=now,
            )

        append_booking_event(
            booking, "booking_cancelled", actor_type=cancelled_by, actor=actor,
            metadata={"reason": outcome.reason}, created_at=now,
        )

    logger.info(
        f"Booking #{booking.pk} cancelled by {cancelled_by}: "
        f"refund={outcome.refund_amount} retained={outcome.retained_amount}"
    )
    return outcome
