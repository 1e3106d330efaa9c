# core/services/jobs.py

"""
Job completion and resolution flows.

The triggers installed by core.enforcement are the authority on "no completed
job without a resolution". The checks here only fail fast with a friendlier
error; every save still goes through translate_resolution_errors.
"""

from __future__ import annotations

import logging

from django.db import transaction
from django.utils import timezone

from core.exceptions import InvalidResolution, ResolutionRequired, translate_resolution_errors
from core.models import Invoice, Job, JobPayment, JobResolution
from core.utils.deposit_metadata import payment_kind

logger = logging.getLogger(__name__)


def has_resolution(job: Job) -> bool:
    return JobResolution.objects.filter(job_id=job.pk).exists()


def record_job_resolution(job: Job, resolution_type: str, resolved_by=None,
                          waiver_reason: str = None, resolved_at=None) -> JobResolution:
    """
    Record the financial outcome of a job. Resolutions are append-only and
    one per job: if the job already has one, that one is returned unchanged.
    """
    valid_types = dict(JobResolution.RESOLUTION_TYPE_CHOICES)
    valid_reasons = dict(JobResolution.WAIVER_REASON_CHOICES)

    if resolution_type not in valid_types:
        raise InvalidResolution(f"Unknown resolution type: {resolution_type!r}")

    if resolution_type == "waived":
        if not waiver_reason:
            raise InvalidResolution("A waiver reason is required when waiving a job.")
        if waiver_reason not in valid_reasons:
            raise InvalidResolution(f"Unknown waiver reason: {waiver_reason!r}")
    else:
        waiver_reason = None

    with transaction.atomic():
        resolution, created = JobResolution.objects.get_or_create(
            job_id=job.pk,
            defaults={
                "resolution_type": resolution_type,
                "waiver_reason": waiver_reason,
                "resolved_at": resolved_at or timezone.now(),
                "resolved_by": resolved_by,
            },
        )

    if created:
        logger.info(f"Recorded {resolution_type} resolution for job #{job.pk}")
    return resolution


def complete_job(job: Job, completed_at=None) -> Job:
    """
    Mark a job completed. Raises ResolutionRequired when no resolution exists,
    whether caught here or rejected by the storage guard.
    """
    if job.status == "completed":
        return job

    if not has_resolution(job):
        raise ResolutionRequired(job.pk)

    previous = (job.status, job.completed_at)
    job.status = "completed"
    job.completed_at = completed_at or timezone.now()

    try:
        with translate_resolution_errors(job.pk):
            with transaction.atomic():
                job.save(update_fields=["status", "completed_at", "updated_at"])
    except ResolutionRequired:
        job.status, job.completed_at = previous
        raise

    logger.info(f"Job #{job.pk} completed")
    return job


def resolve_and_complete_job(job: Job, resolution_type: str, resolved_by=None,
                             waiver_reason: str = None) -> Job:
    """Record a resolution and complete the job in one transaction."""
    with transaction.atomic():
        record_job_resolution(
            job,
            resolution_type,
            resolved_by=resolved_by,
            waiver_reason=waiver_reason,
        )
        return complete_job(job)


def mark_invoice_paid(invoice: Invoice, actor=None, paid_at=None) -> Invoice:
    """Invoice paid: the job (if any) is financially closed by invoice."""
    paid_at = paid_at or timezone.now()

    with transaction.atomic():
        invoice.status = "paid"
        invoice.paid_at = paid_at
        invoice.save(update_fields=["status", "paid_at"])

        if invoice.job_id:
            record_job_resolution(
                invoice.job,
                "invoice",
                resolved_by=actor or invoice.owner,
                resolved_at=paid_at,
            )

    return invoice


def record_job_payment(job: Job, amount_cents: int, method: str = "stripe", status: str = "paid",
                       kind: str = "standard", recorded_by=None, notes: str = "") -> JobPayment:
    """
    Record a payment against a job. A settled non-deposit payment also closes
    the job financially with a ``payment`` resolution.
    """
    now = timezone.now()
    with transaction.atomic():
        payment = JobPayment.objects.create(
            owner=job.owner,
            job=job,
            amount_cents=amount_cents,
            method=method,
            status=status,
            kind=kind,
            notes=notes,
            paid_at=now if status in ("paid", "confirmed") else None,
        )

        if status in ("paid", "confirmed") and payment_kind(payment) == "standard":
            record_job_resolution(job, "payment", resolved_by=recorded_by or job.owner, resolved_at=now)

    return payment
