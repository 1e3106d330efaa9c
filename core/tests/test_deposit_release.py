# core/tests/test_deposit_release.py

from datetime import timedelta
from io import StringIO
from unittest import mock

from django.core.cache import cache
from django.core.management import call_command
from django.test import TestCase
from django.utils import timezone

from core.exceptions import PaymentProcessorError
from core.models import BookingEvent, BookingRequest
from core.services.deposit_release import (
    CLOSED_WITHOUT_TRANSFER,
    CYCLE_LOCK_KEY,
    FAILED,
    RELEASED,
    SKIPPED_CANCELLED,
    SKIPPED_CLAIMED,
    SKIPPED_NO_DESTINATION,
    SKIPPED_NOT_CAPTURED,
    DepositReleaseScheduler,
    bookings_awaiting_release,
    release_amount_for,
)
from core.tasks import auto_release_deposits, release_booking_deposit

from .factories import make_captured_booking, make_worker


class FakeTransfer:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    def __call__(self, amount, currency, destination, group_key, metadata=None, idempotency_key=None):
        self.calls.append({
            "amount": amount,
            "currency": currency,
            "destination": destination,
            "group_key": group_key,
            "metadata": metadata,
            "idempotency_key": idempotency_key,
        })
        if self.fail:
            raise PaymentProcessorError("Request timed out")
        return f"tr_{len(self.calls)}"


class DepositReleaseSchedulerTests(TestCase):
    def setUp(self):
        cache.clear()
        self.worker = make_worker(stripe_account_id="acct_123")
        self.transfer = FakeTransfer()
        self.scheduler = DepositReleaseScheduler(worker_id="test-1", transfer=self.transfer)

    def test_releases_eligible_deposit(self):
        booking = make_captured_booking(self.worker, deposit_amount_cents=7500)

        result = self.scheduler.run_cycle()

        self.assertEqual((result.found, result.released, result.failed), (1, 1, 0))
        self.assertEqual(result.outcomes, {booking.id: RELEASED})

        booking.refresh_from_db()
        self.assertEqual(booking.deposit_status, "released")
        self.assertEqual(booking.completion_status, "completed")
        self.assertEqual(booking.stripe_transfer_id, "tr_1")
        self.assertIsNone(booking.claimed_by)

        event = BookingEvent.objects.get(booking=booking, event_type="deposit_auto_released")
        self.assertEqual(event.actor_type, "system")
        self.assertEqual(event.metadata, {"amount": 7500, "transferId": "tr_1", "trigger": "36h_auto_release"})

        call = self.transfer.calls[0]
        self.assertEqual(call["amount"], 7500)
        self.assertEqual(call["destination"], "acct_123")
        self.assertEqual(call["group_key"], f"booking_{booking.id}")
        self.assertEqual(call["idempotency_key"], f"deposit-release-{booking.id}-7500")

    def test_released_booking_is_not_released_again(self):
        make_captured_booking(self.worker)

        self.scheduler.run_cycle()
        second = self.scheduler.run_cycle()

        self.assertEqual(second.found, 0)
        self.assertEqual(len(self.transfer.calls), 1)

    def test_transfer_failure_leaves_booking_captured(self):
        booking = make_captured_booking(self.worker)
        scheduler = DepositReleaseScheduler(worker_id="test-1", transfer=FakeTransfer(fail=True))

        result = scheduler.run_cycle()

        self.assertEqual(result.outcomes, {booking.id: FAILED})
        booking.refresh_from_db()
        self.assertEqual(booking.deposit_status, "captured")
        self.assertEqual(booking.completion_status, "scheduled")
        self.assertIsNone(booking.stripe_transfer_id)
        self.assertIsNone(booking.claimed_until)
        self.assertFalse(BookingEvent.objects.filter(booking=booking).exists())
        self.assertIn(booking, bookings_awaiting_release())

    def test_one_failure_does_not_stop_the_cycle(self):
        flaky = FakeTransfer()
        first = make_captured_booking(self.worker, hours_since_release=3)
        second = make_captured_booking(self.worker, hours_since_release=2)

        def transfer(amount, *args, **kwargs):
            if kwargs["metadata"]["booking_id"] == first.id:
                raise PaymentProcessorError("card_declined", retryable=False)
            return flaky(amount, *args, **kwargs)

        result = DepositReleaseScheduler(worker_id="test-1", transfer=transfer).run_cycle()

        self.assertEqual(result.outcomes, {first.id: FAILED, second.id: RELEASED})
        self.assertEqual(BookingRequest.objects.get(pk=second.pk).deposit_status, "released")

    def test_future_release_time_is_not_eligible(self):
        make_captured_booking(self.worker, hours_since_release=-2)
        self.assertEqual(self.scheduler.run_cycle().found, 0)
        self.assertEqual(self.transfer.calls, [])

    def test_cancelled_and_uncaptured_bookings_are_not_eligible(self):
        make_captured_booking(self.worker, completion_status="cancelled")
        make_captured_booking(self.worker, deposit_status="held")
        make_captured_booking(self.worker, deposit_status="refunded")

        self.assertEqual(self.scheduler.run_cycle().found, 0)

    def test_rolled_amount_replaces_deposit_amount(self):
        booking = make_captured_booking(self.worker, deposit_amount_cents=7500, rolled_amount_cents=2500)
        self.assertEqual(release_amount_for(booking), 2500)

        self.scheduler.run_cycle()

        self.assertEqual(self.transfer.calls[0]["amount"], 2500)

    def test_zero_amount_closes_without_transfer(self):
        booking = make_captured_booking(self.worker, deposit_amount_cents=None)

        result = self.scheduler.run_cycle()

        self.assertEqual(result.outcomes, {booking.id: CLOSED_WITHOUT_TRANSFER})
        self.assertEqual(self.transfer.calls, [])
        booking.refresh_from_db()
        self.assertEqual(booking.deposit_status, "released")
        self.assertEqual(booking.completion_status, "completed")
        event = BookingEvent.objects.get(booking=booking)
        self.assertEqual(event.metadata["amount"], 0)
        self.assertIsNone(event.metadata["transferId"])

    def test_missing_destination_is_skipped(self):
        worker = make_worker(username="no-connect", stripe_account_id="")
        booking = make_captured_booking(worker)

        result = self.scheduler.run_cycle()

        self.assertEqual(result.outcomes, {booking.id: SKIPPED_NO_DESTINATION})
        self.assertEqual(BookingRequest.objects.get(pk=booking.pk).deposit_status, "captured")
        self.assertEqual(self.transfer.calls, [])

    def test_missing_charge_is_skipped(self):
        booking = make_captured_booking(self.worker, stripe_charge_id=None)
        self.assertEqual(self.scheduler.release_deposit(booking.id), SKIPPED_NOT_CAPTURED)
        self.assertEqual(self.transfer.calls, [])

    def test_booking_leased_by_another_scheduler_is_skipped(self):
        booking = make_captured_booking(
            self.worker,
            claimed_by="other-host:42",
            claimed_until=timezone.now() + timedelta(minutes=5),
        )

        self.assertEqual(self.scheduler.release_deposit(booking.id), SKIPPED_CLAIMED)
        self.assertEqual(self.transfer.calls, [])
        booking.refresh_from_db()
        self.assertEqual(booking.claimed_by, "other-host:42")

    def test_expired_lease_can_be_taken_over(self):
        booking = make_captured_booking(
            self.worker,
            claimed_by="crashed-host:1",
            claimed_until=timezone.now() - timedelta(minutes=1),
        )

        self.assertEqual(self.scheduler.release_deposit(booking.id), RELEASED)

    def test_claim_is_exclusive(self):
        booking = make_captured_booking(self.worker)
        other = DepositReleaseScheduler(worker_id="test-2", transfer=self.transfer)

        self.assertTrue(self.scheduler.claim(booking.id))
        self.assertFalse(other.claim(booking.id))

        self.scheduler.release_claim(booking.id)
        self.assertTrue(other.claim(booking.id))

    def test_already_released_booking(self):
        booking = make_captured_booking(self.worker, deposit_status="released")
        self.assertEqual(self.scheduler.release_deposit(booking.id), SKIPPED_NOT_CAPTURED)

    def test_overlapping_cycle_is_skipped(self):
        make_captured_booking(self.worker)
        cache.add(CYCLE_LOCK_KEY, "someone-else", timeout=60)

        result = self.scheduler.run_cycle()

        self.assertEqual(result.found, 0)
        self.assertEqual(self.transfer.calls, [])

    def test_cancelled_booking_is_never_released(self):
        # Cancellation that kept the deposit for a provider without a payable account
        booking = make_captured_booking(self.worker, completion_status="cancelled", retained_amount_cents=5000)

        self.assertEqual(self.scheduler.release_deposit(booking.id), SKIPPED_CANCELLED)
        self.assertEqual(self.transfer.calls, [])
        self.assertEqual(BookingRequest.objects.get(pk=booking.pk).deposit_status, "captured")

    def test_cycle_keeps_a_newer_cycles_lock(self):
        make_captured_booking(self.worker)

        def transfer(*args, **kwargs):
            # This cycle's lock expired mid-run and another cycle took it
            cache.set(CYCLE_LOCK_KEY, "test-2", timeout=60)
            return "tr_1"

        DepositReleaseScheduler(worker_id="test-1", transfer=transfer).run_cycle()

        self.assertEqual(cache.get(CYCLE_LOCK_KEY), "test-2")

    def test_cycle_state_belongs_to_the_instance(self):
        make_captured_booking(self.worker)

        result = self.scheduler.run_cycle()

        self.assertFalse(self.scheduler.is_running)
        self.assertIs(self.scheduler.last_cycle, result)
        self.assertIsNone(cache.get(CYCLE_LOCK_KEY))


@mock.patch("core.services.deposit_release.create_transfer", return_value="tr_task")
class DepositReleaseEntryPointTests(TestCase):
    def setUp(self):
        cache.clear()
        self.worker = make_worker(stripe_account_id="acct_123")

    def test_periodic_task(self, create_transfer):
        booking = make_captured_booking(self.worker)

        summary = auto_release_deposits()

        self.assertEqual(summary, {"found": 1, "released": 1, "skipped": 0, "failed": 0})
        self.assertEqual(BookingRequest.objects.get(pk=booking.pk).stripe_transfer_id, "tr_task")

    def test_single_booking_task(self, create_transfer):
        booking = make_captured_booking(self.worker)
        self.assertEqual(release_booking_deposit(booking.id), {"booking_id": booking.id, "outcome": RELEASED})

    def test_command_dry_run_moves_no_money(self, create_transfer):
        booking = make_captured_booking(self.worker)
        out = StringIO()

        call_command("release_deposits", "--dry-run", stdout=out)

        self.assertIn(f"Booking #{booking.id}", out.getvalue())
        create_transfer.assert_not_called()
        self.assertEqual(BookingRequest.objects.get(pk=booking.pk).deposit_status, "captured")

    def test_command_runs_a_cycle(self, create_transfer):
        make_captured_booking(self.worker)
        out = StringIO()

        call_command("release_deposits", stdout=out)

        self.assertIn("released=1", out.getvalue())
        create_transfer.assert_called_once()
