# core/models.py

from django.db import models
from django.contrib.auth.models import AbstractUser
from django.conf import settings
from django.utils import timezone


# Custom user model (extends AbstractUser)
class CustomUser(AbstractUser):
    ROLE_CHOICES = (
        ('worker', 'Service Worker'),
        ('customer', 'Customer'),
        ('admin', 'Admin'),
    )
    role = models.CharField(max_length=10, choices=ROLE_CHOICES, default='worker')
    phone_number = models.CharField(max_length=20, blank=True, null=True)

    # Stripe Connect account that receives released deposits
    stripe_account_id = models.CharField(max_length=100, blank=True, null=True)

    def __str__(self):
        return self.username


# A unit of scheduled work owned by a worker
class Job(models.Model):
    STATUS_CHOICES = (
        ('scheduled', 'Scheduled'),
        ('in_progress', 'In Progress'),
        ('completed', 'Completed'),
        ('cancelled', 'Cancelled'),
    )

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='jobs',
    )
    title = models.CharField(max_length=200)
    client_name = models.CharField(max_length=120, blank=True)

    # Completion is gated at the storage layer, see core.enforcement
    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default='scheduled',
    )

    # Minor currency units
    price_cents = models.PositiveIntegerField(null=True, blank=True)

    # Free text; legacy rows carry the deposit policy as embedded JSON here
    notes = models.TextField(blank=True)

    # Structured deposit policy, see core.utils.deposit_metadata
    deposit_config = models.JSONField(null=True, blank=True)

    scheduled_start_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"Job #{self.id} {self.title} ({self.status})"

    @property
    def is_completed(self) -> bool:
        return self.status == 'completed'


# Proof of financial closure for a job. One per job, never deleted.
class JobResolution(models.Model):
    RESOLUTION_TYPE_CHOICES = (
        ('invoice', 'Invoice'),
        ('payment', 'Payment'),
        ('waived', 'Waived'),
    )

    WAIVER_REASON_CHOICES = (
        ('internal', 'Internal'),
        ('goodwill', 'Goodwill'),
        ('warranty', 'Warranty'),
        ('other', 'Other'),
    )

    job = models.OneToOneField(
        Job,
        on_delete=models.PROTECT,
        related_name='resolution',
    )
    resolution_type = models.CharField(max_length=10, choices=RESOLUTION_TYPE_CHOICES)
    waiver_reason = models.CharField(
        max_length=20,
        choices=WAIVER_REASON_CHOICES,
        null=True,
        blank=True,
    )
    resolved_at = models.DateTimeField(default=timezone.now)
    resolved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='job_resolutions',
        null=True,
        blank=True,
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.CheckConstraint(
                condition=~models.Q(resolution_type='waived') | models.Q(waiver_reason__isnull=False),
                name='core_jobresolution_waiver_reason_required',
            ),
        ]

    def __str__(self):
        return f"Resolution for job #{self.job_id}: {self.resolution_type}"


class Invoice(models.Model):
    STATUS_CHOICES = (
        ('draft', 'Draft'),
        ('sent', 'Sent'),
        ('paid', 'Paid'),
    )

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='invoices',
    )
    job = models.ForeignKey(
        Job,
        on_delete=models.SET_NULL,
        related_name='invoices',
        null=True,
        blank=True,
    )
    amount_cents = models.PositiveIntegerField()
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default='draft')
    paid_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"Invoice #{self.id} ({self.status})"


class JobPayment(models.Model):
    STATUS_CHOICES = (
        ('pending', 'Pending'),
        ('processing', 'Processing'),
        ('paid', 'Paid'),
        ('confirmed', 'Confirmed'),
        ('failed', 'Failed'),
    )

    KIND_CHOICES = (
        ('standard', 'Standard'),
        ('deposit', 'Deposit'),
        ('deposit_refund', 'Deposit Refund'),
    )

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='job_payments',
    )
    job = models.ForeignKey(
        Job,
        on_delete=models.SET_NULL,
        related_name='payments',
        null=True,
        blank=True,
    )
    invoice = models.ForeignKey(
        Invoice,
        on_delete=models.SET_NULL,
        related_name='payments',
        null=True,
        blank=True,
    )
    amount_cents = models.PositiveIntegerField()
    method = models.CharField(max_length=20, default='stripe')
    status = models.CharField(max_length=12, choices=STATUS_CHOICES, default='pending')

    # First-class tag; legacy rows are tagged through notes instead
    kind = models.CharField(max_length=16, choices=KIND_CHOICES, default='standard')
    notes = models.TextField(blank=True)

    paid_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    def __str__(self):
        return f"Payment #{self.id} {self.amount_cents} ({self.status})"


# A prospective engagement that may carry a deposit held in escrow
class BookingRequest(models.Model):
    DEPOSIT_STATUS_CHOICES = (
        ('none', 'None'),
        ('held', 'Held'),
        ('captured', 'Captured'),
        ('released', 'Released'),
        ('refunded', 'Refunded'),
    )

    COMPLETION_STATUS_CHOICES = (
        ('pending', 'Pending'),
        ('scheduled', 'Scheduled'),
        ('completed', 'Completed'),
        ('cancelled', 'Cancelled'),
    )

    CANCELLED_BY_CHOICES = (
        ('customer', 'Customer'),
        ('provider', 'Provider'),
        ('system', 'System'),
    )

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='booking_requests',
    )
    client_name = models.CharField(max_length=120)
    client_phone = models.CharField(max_length=20, blank=True)
    client_email = models.EmailField(blank=True)
    service_type = models.CharField(max_length=60)
    description = models.TextField(blank=True)

    deposit_amount_cents = models.PositiveIntegerField(null=True, blank=True)
    deposit_currency = models.CharField(max_length=3, default='usd')
    deposit_status = models.CharField(
        max_length=10,
        choices=DEPOSIT_STATUS_CHOICES,
        default='none',
    )
    completion_status = models.CharField(
        max_length=10,
        choices=COMPLETION_STATUS_CHOICES,
        default='pending',
    )

    # Stripe integration
    stripe_payment_intent_id = models.CharField(max_length=100, blank=True, null=True)
    stripe_charge_id = models.CharField(max_length=100, blank=True, null=True)
    stripe_transfer_id = models.CharField(max_length=100, blank=True, null=True)
    stripe_refund_id = models.CharField(max_length=100, blank=True, null=True)

    # Partial carry-forward after late reschedules
    rolled_amount_cents = models.PositiveIntegerField(default=0)
    retained_amount_cents = models.PositiveIntegerField(default=0)

    job_start_at = models.DateTimeField(null=True, blank=True)
    job_end_at = models.DateTimeField(null=True, blank=True)
    auto_release_at = models.DateTimeField(null=True, blank=True)

    # Release lease: at most one scheduler works a booking at a time
    claimed_by = models.CharField(max_length=120, blank=True, null=True)
    claimed_until = models.DateTimeField(null=True, blank=True)

    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancelled_by = models.CharField(
        max_length=10,
        choices=CANCELLED_BY_CHOICES,
        null=True,
        blank=True,
    )

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=['deposit_status', 'auto_release_at'], name='core_booking_release_idx'),
        ]

    def __str__(self):
        return f"Booking #{self.id} for {self.client_name} (deposit: {self.deposit_status})"


# Append-only audit log for bookings
class BookingEvent(models.Model):
    ACTOR_TYPE_CHOICES = (
        ('customer', 'Customer'),
        ('provider', 'Provider'),
        ('system', 'System'),
    )

    booking = models.ForeignKey(
        BookingRequest,
        on_delete=models.PROTECT,
        related_name='events',
    )
    event_type = models.CharField(max_length=40)
    actor_type = models.CharField(max_length=10, choices=ACTOR_TYPE_CHOICES)
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name='booking_events',
        null=True,
        blank=True,
    )
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ['created_at', 'id']
        indexes = [
            models.Index(fields=['booking', 'created_at'], name='core_bookingevent_log_idx'),
        ]

    def __str__(self):
        return f"{self.event_type} on booking #{self.booking_id}"
