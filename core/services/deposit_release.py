# core/services/deposit_release.py

"""
Automatic release of captured booking deposits to the worker.

A cycle queries bookings whose deposit is ``captured`` and whose
``auto_release_at`` has passed, then releases each one independently. A failed
booking keeps ``captured`` and simply shows up again in the next cycle; there
is no separate retry queue.

Each booking is leased (``claimed_by``/``claimed_until``) before any processor
call, so two scheduler instances never work the same booking at once. The lease
is a conditional UPDATE, which the database serializes.
"""

from __future__ import annotations

import logging
import os
import socket
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, Optional

from django.conf import settings
from django.core.cache import cache
from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from core.models import BookingEvent, BookingRequest
from core.services.payments import create_transfer, transfer_group_for_booking

logger = logging.getLogger(__name__)

CYCLE_LOCK_KEY = "deposit_auto_release_cycle"
RELEASE_TRIGGER = "36h_auto_release"

RELEASED = "released"
CLOSED_WITHOUT_TRANSFER = "closed_without_transfer"
SKIPPED_NOT_CAPTURED = "skipped_not_captured"
SKIPPED_NO_DESTINATION = "skipped_no_destination"
SKIPPED_CLAIMED = "skipped_claimed"
SKIPPED_CANCELLED = "skipped_cancelled"
FAILED = "failed"


@dataclass
class ReleaseCycleResult:
    found: int = 0
    released: int = 0
    skipped: int = 0
    failed: int = 0
    outcomes: dict = field(default_factory=dict)

    def record(self, booking_id, outcome: str) -> None:
        self.outcomes[booking_id] = outcome
        if outcome in (RELEASED, CLOSED_WITHOUT_TRANSFER):
            self.released += 1
        elif outcome == FAILED:
            self.failed += 1
        else:
            self.skipped += 1


def bookings_awaiting_release(now=None):
    """Captured deposits whose release time has passed."""
    now = now or timezone.now()
    return (
        BookingRequest.objects.filter(
            deposit_status="captured",
            auto_release_at__isnull=False,
            auto_release_at__lte=now,
        )
        .exclude(completion_status="cancelled")
        .order_by("auto_release_at", "id")
    )


def release_amount_for(booking: BookingRequest) -> int:
    # A rolled-forward amount replaces the original deposit when present
    if booking.rolled_amount_cents and booking.rolled_amount_cents > 0:
        return booking.rolled_amount_cents
    return booking.deposit_amount_cents or 0


def default_worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


def lease_seconds_setting() -> int:
    return int(getattr(settings, "DEPOSIT_RELEASE_LEASE_SECONDS", 600))


def claim_booking(booking_id, holder: str, lease_seconds: int, now=None) -> bool:
    """
    Lease a captured booking to ``holder``. Succeeds when the booking has no
    lease, an expired one, or one already held by ``holder``. Every path that
    moves deposit money (release and cancellation) takes this lease first.
    """
    now = now or timezone.now()
    claimed = (
        BookingRequest.objects.filter(pk=booking_id, deposit_status="captured")
        .filter(Q(claimed_until__isnull=True) | Q(claimed_until__lt=now) | Q(claimed_by=holder))
        .update(
            claimed_by=holder,
            claimed_until=now + timedelta(seconds=lease_seconds),
        )
    )
    return claimed == 1


def release_booking_claim(booking_id, holder: str) -> None:
    BookingRequest.objects.filter(pk=booking_id, claimed_by=holder).update(
        claimed_by=None,
        claimed_until=None,
    )


class DepositReleaseScheduler:
    """
    Runs release cycles. All scheduling state lives on the instance; the
    database lease is what makes concurrent instances safe.
    """

    def __init__(self, worker_id: Optional[str] = None, transfer: Optional[Callable] = None,
                 lease_seconds: Optional[int] = None):
        self.worker_id = worker_id or default_worker_id()
        self.transfer = transfer or create_transfer
        self.lease_seconds = int(lease_seconds or lease_seconds_setting())
        self.is_running = False
        self.last_cycle: Optional[ReleaseCycleResult] = None

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def run_cycle(self, now=None) -> ReleaseCycleResult:
        """Release every eligible booking once. Never raises for a single booking."""
        result = ReleaseCycleResult()

        if self.is_running:
            logger.info("Deposit auto-release cycle already running in this scheduler, skipping")
            return result

        # Overlapping cycles in one deployment are pointless; the per-booking
        # lease still guards correctness if the cache is not shared.
        if not cache.add(CYCLE_LOCK_KEY, self.worker_id, timeout=self.lease_seconds):
            logger.info("Another deposit auto-release cycle holds the lock, skipping")
            return result

        self.is_running = True
        try:
            now = now or timezone.now()
            batch_size = int(getattr(settings, "DEPOSIT_RELEASE_BATCH_SIZE", 100))
            booking_ids = list(bookings_awaiting_release(now).values_list("id", flat=True)[:batch_size])
            result.found = len(booking_ids)

            if booking_ids:
                logger.info(f"Found {len(booking_ids)} booking(s) ready for deposit auto-release")

            for booking_id in booking_ids:
                result.record(booking_id, self.release_deposit(booking_id, now=now))

            if result.found:
                logger.info(
                    f"Deposit auto-release cycle complete: found={result.found} "
                    f"released={result.released} skipped={result.skipped} failed={result.failed}"
                )
        finally:
            self.is_running = False
            # A cycle that outlived its lock must not drop a newer cycle's lock
            if cache.get(CYCLE_LOCK_KEY) == self.worker_id:
                cache.delete(CYCLE_LOCK_KEY)
            self.last_cycle = result

        return result

    # ------------------------------------------------------------------
    # Lease
    # ------------------------------------------------------------------

    def claim(self, booking_id, now=None) -> bool:
        return claim_booking(booking_id, self.worker_id, self.lease_seconds, now=now)

    def release_claim(self, booking_id) -> None:
        release_booking_claim(booking_id, self.worker_id)

    # ------------------------------------------------------------------
    # Single booking
    # ------------------------------------------------------------------

    def release_deposit(self, booking_id, now=None) -> str:
        """
        Release one booking's deposit. Returns an outcome string; failures are
        logged and leave the booking ``captured`` for the next cycle.
        """
        now = now or timezone.now()

        try:
            if not self.claim(booking_id, now=now):
                if BookingRequest.objects.filter(pk=booking_id, deposit_status="captured").exists():
                    logger.info(f"Booking {booking_id} is being released by another scheduler")
                    return SKIPPED_CLAIMED
                logger.info(f"Booking {booking_id} has no captured deposit")
                return SKIPPED_NOT_CAPTURED
        except Exception as e:
            logger.error(f"Failed to claim booking {booking_id} for deposit release: {e}")
            return FAILED

        try:
            return self._release_claimed(booking_id, now)
        except Exception as e:
            logger.exception(f"Failed to release deposit for booking {booking_id}: {e}")
            return FAILED
        finally:
            try:
                self.release_claim(booking_id)
            except Exception as e:
                # Lease expires on its own after lease_seconds
                logger.error(f"Failed to clear release lease on booking {booking_id}: {e}")

    def _release_claimed(self, booking_id, now) -> str:
        booking = BookingRequest.objects.select_related("owner").get(pk=booking_id)

        if booking.deposit_status != "captured" or not booking.stripe_charge_id:
            logger.info(f"Booking {booking_id} has no captured deposit")
            return SKIPPED_NOT_CAPTURED

        if booking.completion_status == "cancelled":
            # Cancellation already settled this deposit
            logger.info(f"Booking {booking_id} was cancelled, not auto-releasing")
            return SKIPPED_CANCELLED

        destination = (booking.owner.stripe_account_id or "").strip()
        if not destination:
            logger.warning(f"Provider for booking {booking_id} has no payable destination, skipping release")
            return SKIPPED_NO_DESTINATION

        amount = release_amount_for(booking)
        if amount <= 0:
            logger.info(f"No amount to release for booking {booking_id}, closing out")
            self._mark_released(booking, amount=0, transfer_id=None, now=now)
            return CLOSED_WITHOUT_TRANSFER

        transfer_id = self.transfer(
            amount,
            booking.deposit_currency or "usd",
            destination,
            transfer_group_for_booking(booking.id),
            metadata={"booking_id": booking.id, "type": "auto_release_36h"},
            idempotency_key=f"deposit-release-{booking.id}-{amount}",
        )

        if not self._mark_released(booking, amount=amount, transfer_id=transfer_id, now=now):
            # Someone else moved the booking on while the transfer was in flight
            logger.error(
                f"Booking {booking_id} left 'captured' during release; transfer {transfer_id} "
                f"needs manual reconciliation"
            )
            return FAILED

        logger.info(f"Released deposit for booking {booking_id}: ${amount / 100:.2f} (transfer {transfer_id})")
        return RELEASED

    def _mark_released(self, booking: BookingRequest, amount: int, transfer_id, now) -> bool:
        # Forward-only: the update only applies while the deposit is still captured
        with transaction.atomic():
            updated = (
                BookingRequest.objects.filter(pk=booking.pk, deposit_status="captured")
                .exclude(completion_status="cancelled")
                .update(
                    completion_status="completed",
                    deposit_status="released",
                    stripe_transfer_id=transfer_id or booking.stripe_transfer_id,
                    updated_at=now,
                )
            )
            if updated != 1:
                return False

            BookingEvent.objects.create(
                booking=booking,
                event_type="deposit_auto_released",
                actor_type="system",
                metadata={
                    "amount": amount,
                    "transferId": transfer_id,
                    "trigger": RELEASE_TRIGGER,
                },
                created_at=now,
            )
        return True
