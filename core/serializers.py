# core/serializers.py

from rest_framework import serializers

from .models import (
    BookingEvent,
    BookingRequest,
    Job,
    JobResolution,
)
from .utils.deposit_metadata import decode_deposit_metadata, encode_deposit_metadata


class JobResolutionSerializer(serializers.ModelSerializer):
    class Meta:
        model = JobResolution
        fields = [
            'id',
            'job',
            'resolution_type',
            'waiver_reason',
            'resolved_at',
            'resolved_by',
            'created_at',
        ]
        read_only_fields = fields


class JobSerializer(serializers.ModelSerializer):
    resolution = JobResolutionSerializer(read_only=True)

    class Meta:
        model = Job
        fields = [
            'id',
            'title',
            'client_name',
            'status',
            'price_cents',
            'notes',
            'deposit_config',
            'scheduled_start_at',
            'completed_at',
            'resolution',
            'created_at',
            'updated_at',
        ]
        # Completion only goes through the complete action
        read_only_fields = ['status', 'completed_at', 'resolution', 'created_at', 'updated_at']

    def validate_deposit_config(self, value):
        if value in (None, {}):
            return None
        metadata = decode_deposit_metadata(value)
        if metadata is None:
            raise serializers.ValidationError(
                'Expected {"depositType": "flat"|"percent", "depositAmount": <non-negative integer>}.'
            )
        return encode_deposit_metadata(metadata)


class ResolveJobSerializer(serializers.Serializer):
    """Input for POST /api/jobs/{id}/resolution/."""

    resolution_type = serializers.ChoiceField(choices=JobResolution.RESOLUTION_TYPE_CHOICES)
    waiver_reason = serializers.ChoiceField(
        choices=JobResolution.WAIVER_REASON_CHOICES,
        required=False,
        allow_null=True,
    )
    complete = serializers.BooleanField(required=False, default=False)

    def validate(self, attrs):
        if attrs['resolution_type'] == 'waived' and not attrs.get('waiver_reason'):
            raise serializers.ValidationError(
                {'waiver_reason': 'A waiver reason is required when waiving a job.'}
            )
        return attrs


class BookingEventSerializer(serializers.ModelSerializer):
    class Meta:
        model = BookingEvent
        fields = ['id', 'event_type', 'actor_type', 'actor', 'metadata', 'created_at']
        read_only_fields = fields


class BookingRequestSerializer(serializers.ModelSerializer):
    class Meta:
        model = BookingRequest
        fields = [
            'id',
            'client_name',
            'client_phone',
            'client_email',
            'service_type',
            'description',
            'deposit_amount_cents',
            'deposit_currency',
            'deposit_status',
            'completion_status',
            'rolled_amount_cents',
            'retained_amount_cents',
            'job_start_at',
            'job_end_at',
            'auto_release_at',
            'cancelled_at',
            'cancelled_by',
            'created_at',
            'updated_at',
        ]
        # Deposit lifecycle fields move only through the booking services
        read_only_fields = [
            'deposit_status',
            'completion_status',
            'rolled_amount_cents',
            'retained_amount_cents',
            'job_end_at',
            'auto_release_at',
            'cancelled_at',
            'cancelled_by',
            'created_at',
            'updated_at',
        ]

    # Release and cancellation amounts are read from these once money is held
    DEPOSIT_LOCKED_FIELDS = ('deposit_amount_cents', 'deposit_currency', 'job_start_at')

    def validate(self, attrs):
        booking = self.instance
        if booking is not None and booking.deposit_status != 'none':
            errors = {
                name: f"Cannot change once the deposit is {booking.deposit_status}."
                for name in self.DEPOSIT_LOCKED_FIELDS
                if name in attrs and attrs[name] != getattr(booking, name)
            }
            if errors:
                raise serializers.ValidationError(errors)
        return attrs


class CancelBookingSerializer(serializers.Serializer):
    cancelled_by = serializers.ChoiceField(choices=['customer', 'provider', 'worker'])
