# core/tests/test_jobs.py

from unittest import mock

from django.test import TestCase

from core.exceptions import InvalidResolution, ResolutionRequired
from core.models import Invoice, Job, JobResolution
from core.services.jobs import (
    complete_job,
    mark_invoice_paid,
    record_job_payment,
    record_job_resolution,
    resolve_and_complete_job,
)

from .factories import make_job, make_worker


class RecordJobResolutionTests(TestCase):
    def setUp(self):
        self.worker = make_worker()
        self.job = make_job(self.worker, status="in_progress")

    def test_waiver_requires_reason(self):
        with self.assertRaises(InvalidResolution):
            record_job_resolution(self.job, "waived")
        self.assertFalse(JobResolution.objects.exists())

    def test_unknown_type_and_reason(self):
        with self.assertRaises(InvalidResolution):
            record_job_resolution(self.job, "barter")
        with self.assertRaises(InvalidResolution):
            record_job_resolution(self.job, "waived", waiver_reason="because")

    def test_reason_is_dropped_for_non_waivers(self):
        resolution = record_job_resolution(self.job, "payment", waiver_reason="goodwill")
        self.assertIsNone(resolution.waiver_reason)

    def test_existing_resolution_is_returned_unchanged(self):
        first = record_job_resolution(self.job, "waived", waiver_reason="warranty", resolved_by=self.worker)
        second = record_job_resolution(self.job, "payment")

        self.assertEqual(first.pk, second.pk)
        self.assertEqual(second.resolution_type, "waived")
        self.assertEqual(JobResolution.objects.filter(job=self.job).count(), 1)


class CompleteJobTests(TestCase):
    def setUp(self):
        self.worker = make_worker()
        self.job = make_job(self.worker, status="in_progress")

    def test_requires_resolution(self):
        with self.assertRaises(ResolutionRequired) as ctx:
            complete_job(self.job)

        self.assertEqual(ctx.exception.job_id, self.job.pk)
        self.assertEqual(ctx.exception.user_message, "Complete this job by recording payment or a waiver first.")
        self.assertEqual(self.job.status, "in_progress")
        self.assertEqual(Job.objects.get(pk=self.job.pk).status, "in_progress")

    def test_storage_guard_rejection_is_translated(self):
        # Resolution check bypassed: the trigger alone must stop the write
        with mock.patch("core.services.jobs.has_resolution", return_value=True):
            with self.assertRaises(ResolutionRequired):
                complete_job(self.job)

        self.job.refresh_from_db()
        self.assertEqual(self.job.status, "in_progress")
        self.assertIsNone(self.job.completed_at)

    def test_completes_with_resolution(self):
        record_job_resolution(self.job, "invoice")

        complete_job(self.job)

        self.job.refresh_from_db()
        self.assertEqual(self.job.status, "completed")
        self.assertIsNotNone(self.job.completed_at)

    def test_already_completed_is_a_no_op(self):
        resolve_and_complete_job(self.job, "payment")
        completed_at = Job.objects.get(pk=self.job.pk).completed_at

        complete_job(self.job)

        self.assertEqual(Job.objects.get(pk=self.job.pk).completed_at, completed_at)

    def test_resolve_and_complete_with_waiver(self):
        resolve_and_complete_job(self.job, "waived", resolved_by=self.worker, waiver_reason="goodwill")

        self.job.refresh_from_db()
        self.assertEqual(self.job.status, "completed")
        self.assertEqual(self.job.resolution.waiver_reason, "goodwill")


class PaymentFlowTests(TestCase):
    def setUp(self):
        self.worker = make_worker()
        self.job = make_job(self.worker, status="in_progress", price_cents=20000)

    def test_paid_invoice_resolves_job(self):
        invoice = Invoice.objects.create(owner=self.worker, job=self.job, amount_cents=20000, status="sent")

        mark_invoice_paid(invoice)

        self.assertEqual(JobResolution.objects.get(job=self.job).resolution_type, "invoice")
        complete_job(self.job)
        self.assertEqual(Job.objects.get(pk=self.job.pk).status, "completed")

    def test_invoice_without_job(self):
        invoice = Invoice.objects.create(owner=self.worker, amount_cents=500)
        mark_invoice_paid(invoice)
        self.assertEqual(invoice.status, "paid")
        self.assertFalse(JobResolution.objects.exists())

    def test_settled_payment_resolves_job(self):
        record_job_payment(self.job, 20000)
        self.assertEqual(JobResolution.objects.get(job=self.job).resolution_type, "payment")

    def test_deposit_and_pending_payments_do_not_resolve(self):
        record_job_payment(self.job, 5000, kind="deposit")
        record_job_payment(self.job, 15000, status="pending")
        record_job_payment(self.job, 15000, notes='{"isDeposit":true}')

        self.assertFalse(JobResolution.objects.exists())
        with self.assertRaises(ResolutionRequired):
            complete_job(self.job)
