# core/admin.py

from django.contrib import admin, messages

from .models import (
    BookingEvent,
    BookingRequest,
    CustomUser,
    Invoice,
    Job,
    JobPayment,
    JobResolution,
)
from .exceptions import ResolutionRequired
from .services.deposit_release import DepositReleaseScheduler
from .services.jobs import complete_job


@admin.register(CustomUser)
class CustomUserAdmin(admin.ModelAdmin):
    list_display = (
        'id',
        'username',
        'email',
        'phone_number',
        'role',
        'stripe_account_id',
        'is_active',
        'is_staff',
    )
    list_filter = ('role', 'is_active', 'is_staff')
    search_fields = ('username', 'email', 'phone_number')


@admin.register(Job)
class JobAdmin(admin.ModelAdmin):
    list_display = ('id', 'owner', 'title', 'client_name', 'status', 'price_cents', 'completed_at')
    list_filter = ('status',)
    search_fields = ('id', 'title', 'client_name', 'owner__username')
    # Completion goes through complete_job so a missing resolution is reported, not a 500
    readonly_fields = ('status', 'completed_at')
    actions = ['complete_jobs']

    def complete_jobs(self, request, queryset):
        """Admin action: complete the selected jobs that have a resolution."""
        completed = 0
        blocked = []
        for job in queryset:
            try:
                complete_job(job)
                completed += 1
            except ResolutionRequired:
                blocked.append(job.pk)

        self.message_user(request, f"Completed {completed} job(s).")
        if blocked:
            self.message_user(
                request,
                f"{ResolutionRequired.user_message} Jobs without a resolution: "
                f"{', '.join(f'#{pk}' for pk in blocked)}",
                level=messages.ERROR,
            )

    complete_jobs.short_description = "Complete selected jobs"


# Resolutions are the financial record of a job: never edited or deleted here
@admin.register(JobResolution)
class JobResolutionAdmin(admin.ModelAdmin):
    list_display = ('id', 'job', 'resolution_type', 'waiver_reason', 'resolved_at', 'resolved_by')
    list_filter = ('resolution_type', 'waiver_reason')
    search_fields = ('job__id', 'job__title')
    readonly_fields = ('job', 'resolution_type', 'waiver_reason', 'resolved_at', 'resolved_by', 'created_at')

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Invoice)
class InvoiceAdmin(admin.ModelAdmin):
    list_display = ('id', 'owner', 'job', 'amount_cents', 'status', 'paid_at')
    list_filter = ('status',)


@admin.register(JobPayment)
class JobPaymentAdmin(admin.ModelAdmin):
    list_display = ('id', 'owner', 'job', 'invoice', 'amount_cents', 'kind', 'status', 'paid_at')
    list_filter = ('kind', 'status', 'method')


@admin.register(BookingRequest)
class BookingRequestAdmin(admin.ModelAdmin):
    list_display = (
        'id',
        'owner',
        'client_name',
        'deposit_amount_cents',
        'deposit_status',
        'completion_status',
        'auto_release_at',
        'claimed_by',
    )
    list_filter = ('deposit_status', 'completion_status')
    search_fields = ('id', 'client_name', 'owner__username', 'stripe_charge_id')
    actions = ['release_deposits_now']

    def release_deposits_now(self, request, queryset):
        """
        Admin action: release the selected captured deposits immediately,
        through the same scheduler (lease, transfer, audit event) as beat.
        """
        scheduler = DepositReleaseScheduler()
        outcomes = {}
        for booking in queryset.filter(deposit_status='captured'):
            outcome = scheduler.release_deposit(booking.id)
            outcomes[outcome] = outcomes.get(outcome, 0) + 1

        summary = ", ".join(f"{name}={count}" for name, count in sorted(outcomes.items())) or "nothing to release"
        self.message_user(request, f"Deposit release: {summary}")

    release_deposits_now.short_description = "Release captured deposits now"


@admin.register(BookingEvent)
class BookingEventAdmin(admin.ModelAdmin):
    list_display = ('id', 'booking', 'event_type', 'actor_type', 'created_at')
    list_filter = ('event_type', 'actor_type')
    search_fields = ('booking__id',)
    readonly_fields = ('booking', 'event_type', 'actor_type', 'actor', 'metadata', 'created_at')

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
