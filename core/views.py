# core/views.py

import logging

from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from .exceptions import BookingConflict, InvalidResolution, PaymentProcessorError, ResolutionRequired
from .models import BookingRequest, Job
from .permissions import IsOwner
from .serializers import (
    BookingEventSerializer,
    BookingRequestSerializer,
    CancelBookingSerializer,
    JobResolutionSerializer,
    JobSerializer,
    ResolveJobSerializer,
)
from .services.bookings import booking_event_log, cancel_booking
from .services.deposits import deposit_state_for_job
from .services.jobs import complete_job, record_job_resolution

logger = logging.getLogger(__name__)


def resolution_required_response(exc: ResolutionRequired):
    return Response(
        {
            'code': exc.code,
            'detail': exc.user_message,
            'job_id': exc.job_id,
        },
        status=status.HTTP_409_CONFLICT,
    )


class JobViewSet(viewsets.ModelViewSet):
    serializer_class = JobSerializer
    permission_classes = [IsAuthenticated, IsOwner]

    def get_queryset(self):
        return (
            Job.objects.filter(owner=self.request.user)
            .select_related('resolution')
            .order_by('-created_at')
        )

    def perform_create(self, serializer):
        serializer.save(owner=self.request.user)

    def destroy(self, request, *args, **kwargs):
        job = self.get_object()
        if job.status == 'completed' or hasattr(job, 'resolution'):
            return Response(
                {'detail': 'Resolved or completed jobs cannot be deleted.'},
                status=status.HTTP_400_BAD_REQUEST,
            )
        return super().destroy(request, *args, **kwargs)

    @action(detail=True, methods=['post'])
    def complete(self, request, pk=None):
        """
        POST /api/jobs/{id}/complete/
        Completes the job. Returns 409 RESOLUTION_REQUIRED when the job has no
        payment, invoice or waiver recorded.
        """
        job = self.get_object()
        try:
            complete_job(job)
        except ResolutionRequired as e:
            logger.info(f"Completion of job #{job.pk} blocked: no resolution")
            return resolution_required_response(e)

        return Response(JobSerializer(job).data)

    @action(detail=True, methods=['post'])
    def resolution(self, request, pk=None):
        """
        POST /api/jobs/{id}/resolution/
        Body: {"resolution_type": "waived", "waiver_reason": "goodwill", "complete": true}
        """
        job = self.get_object()
        serializer = ResolveJobSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        if hasattr(job, 'resolution'):
            return Response(
                {'detail': 'This job already has a resolution.'},
                status=status.HTTP_400_BAD_REQUEST,
            )

        try:
            resolution = record_job_resolution(
                job,
                data['resolution_type'],
                resolved_by=request.user,
                waiver_reason=data.get('waiver_reason'),
            )
        except InvalidResolution as e:
            return Response({'detail': str(e)}, status=status.HTTP_400_BAD_REQUEST)

        if data.get('complete'):
            try:
                complete_job(job)
            except ResolutionRequired as e:
                return resolution_required_response(e)

        return Response(JobResolutionSerializer(resolution).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['get'])
    def deposit(self, request, pk=None):
        """GET /api/jobs/{id}/deposit/ - requested/paid/outstanding deposit for the job."""
        job = self.get_object()
        return Response(deposit_state_for_job(job).as_dict())


class BookingRequestViewSet(viewsets.ModelViewSet):
    serializer_class = BookingRequestSerializer
    permission_classes = [IsAuthenticated, IsOwner]
    http_method_names = ['get', 'post', 'patch', 'head', 'options']

    def get_queryset(self):
        return BookingRequest.objects.filter(owner=self.request.user).order_by('-created_at')

    def perform_create(self, serializer):
        serializer.save(owner=self.request.user)

    @action(detail=True, methods=['get'])
    def events(self, request, pk=None):
        """GET /api/bookings/{id}/events/ - audit log, oldest first."""
        booking = self.get_object()
        serializer = BookingEventSerializer(booking_event_log(booking), many=True)
        return Response(serializer.data)

    @action(detail=True, methods=['post'])
    def cancel(self, request, pk=None):
        """
        POST /api/bookings/{id}/cancel/
        Body: {"cancelled_by": "customer" | "provider"}
        """
        booking = self.get_object()
        serializer = CancelBookingSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            outcome = cancel_booking(
                booking,
                serializer.validated_data['cancelled_by'],
                actor=request.user,
            )
        except ValueError as e:
            return Response({'detail': str(e)}, status=status.HTTP_400_BAD_REQUEST)
        except BookingConflict as e:
            return Response({'detail': str(e)}, status=status.HTTP_409_CONFLICT)
        except PaymentProcessorError as e:
            logger.error(f"Cancellation of booking #{booking.pk} failed at the processor: {e}")
            return Response(
                {'detail': 'Payment processor error, please retry.', 'code': e.code},
                status=status.HTTP_502_BAD_GATEWAY,
            )

        return Response(outcome.as_dict())
