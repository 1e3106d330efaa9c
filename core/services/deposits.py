# core/services/deposits.py

"""
Pure deposit arithmetic: derived escrow state for a job, how much deposit to
request, and who keeps a paid deposit when a booking is cancelled.

Nothing here touches the database except ``deposit_state_for_job``, which only
loads rows and hands them to ``compute_deposit_state``.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Iterable, Optional

from django.conf import settings

from core.utils.deposit_metadata import job_deposit_metadata, payment_kind

PAID_STATUSES = ("paid", "confirmed")

DEFAULT_PERCENT_CAP = 30
DEFAULT_NOTICE_HOURS = 24


@dataclass(frozen=True)
class DepositState:
    has_deposit: bool
    deposit_requested_cents: int
    deposit_paid_cents: int
    deposit_balance_cents: int
    is_locked: bool
    refunded_at: Optional[datetime] = None

    def as_dict(self) -> dict:
        return {
            "hasDeposit": self.has_deposit,
            "depositRequestedCents": self.deposit_requested_cents,
            "depositPaidCents": self.deposit_paid_cents,
            "depositBalanceCents": self.deposit_balance_cents,
            "isLocked": self.is_locked,
            "refundedAt": self.refunded_at.isoformat() if self.refunded_at else None,
        }


@dataclass(frozen=True)
class CancellationOutcome:
    refund_amount: int
    retained_amount: int
    reason: str

    def as_dict(self) -> dict:
        return asdict(self)


def round_half_up(numerator: int, denominator: int) -> int:
    """Integer division rounding .5 up, for non-negative operands."""
    return (2 * numerator + denominator) // (2 * denominator)


def _percent_cap() -> int:
    return int(getattr(settings, "DEPOSIT_PERCENT_CAP", DEFAULT_PERCENT_CAP))


def _belongs_to_job(payment, job, invoice_ids) -> bool:
    if payment.job_id is not None:
        return payment.job_id == job.id
    return payment.invoice_id is not None and payment.invoice_id in invoice_ids


def compute_deposit_state(job, payments: Iterable, invoice_ids: Iterable = ()) -> DepositState:
    """
    Derive a job's deposit state from its deposit policy and payment rows.

    ``payments`` may include the job's invoice payments; pass the invoice ids
    in ``invoice_ids`` so payments linked only through an invoice count.
    Payments for other jobs are ignored.
    """
    invoice_ids = set(invoice_ids)
    meta = job_deposit_metadata(job)

    requested = 0
    if meta is not None and meta.deposit_amount:
        if meta.deposit_type == "flat":
            requested = meta.deposit_amount
        elif meta.deposit_type == "percent" and job.price_cents:
            requested = round_half_up(job.price_cents * meta.deposit_amount, 100)

    paid = 0
    refunded_at = None
    for payment in payments:
        if not _belongs_to_job(payment, job, invoice_ids):
            continue

        kind = payment_kind(payment)
        if kind == "deposit" and payment.status in PAID_STATUSES:
            paid += payment.amount_cents
        elif kind == "deposit_refund":
            if refunded_at is None or (payment.created_at and payment.created_at < refunded_at):
                refunded_at = payment.created_at

    return DepositState(
        has_deposit=requested > 0,
        deposit_requested_cents=requested,
        deposit_paid_cents=paid,
        deposit_balance_cents=max(0, requested - paid),
        is_locked=paid > 0,
        refunded_at=refunded_at,
    )


def deposit_state_for_job(job) -> DepositState:
    from django.db.models import Q
    from core.models import JobPayment

    invoice_ids = list(job.invoices.values_list("id", flat=True))
    payments = JobPayment.objects.filter(Q(job=job) | Q(invoice_id__in=invoice_ids))
    return compute_deposit_state(job, payments, invoice_ids=invoice_ids)


def calculate_deposit_amount(total_cents: int, deposit_type: str, value: int) -> int:
    """
    How much deposit to request for a job worth ``total_cents``.

    Flat deposits never exceed the job total; percentages are capped at
    DEPOSIT_PERCENT_CAP (30) before being applied.
    """
    total_cents = max(0, int(total_cents or 0))
    value = max(0, int(value or 0))

    if deposit_type == "flat":
        return min(value, total_cents)
    if deposit_type == "percent":
        return round_half_up(total_cents * min(value, _percent_cap()), 100)
    raise ValueError(f"Unknown deposit type: {deposit_type!r}")


def get_cancellation_outcome(cancelled_by: str, hours_until_job: float, deposit_paid_cents: int) -> CancellationOutcome:
    """
    Refund/retain split for a cancelled booking.

    | condition                         | refund | retain |
    |-----------------------------------|--------|--------|
    | no deposit paid                   | 0      | 0      |
    | cancelled by provider             | full   | 0      |
    | customer, more than 24h notice    | full   | 0      |
    | customer, 24h notice or less      | 0      | full   |

    The caller issues the refund or transfer.
    """
    notice_hours = getattr(settings, "CANCELLATION_NOTICE_HOURS", DEFAULT_NOTICE_HOURS)
    deposit_paid_cents = max(0, int(deposit_paid_cents or 0))

    if cancelled_by == "worker":
        cancelled_by = "provider"
    if cancelled_by not in ("provider", "customer"):
        raise ValueError(f"Unknown cancelling party: {cancelled_by!r}")

    if deposit_paid_cents == 0:
        return CancellationOutcome(0, 0, "No deposit to refund")

    if cancelled_by == "provider":
        return CancellationOutcome(deposit_paid_cents, 0, "Refunded - provider cancelled")

    if hours_until_job > notice_hours:
        return CancellationOutcome(
            deposit_paid_cents, 0, f"Refunded - cancelled with {notice_hours}+ hours notice"
        )

    return CancellationOutcome(
        0, deposit_paid_cents, f"Retained - cancelled with less than {notice_hours} hours notice"
    )
