# core/tests/test_enforcement.py

from io import StringIO
from unittest import mock

from django.core.management import CommandError, call_command
from django.db import IntegrityError, connection, connections, transaction
from django.test import TestCase
from django.utils import timezone

from core.enforcement import (
    drop_job_resolution_guards,
    initialize_db_enforcement,
    install_job_resolution_guards,
    job_resolution_guards_installed,
    repair_unresolved_completed_jobs,
)
from core.exceptions import (
    RESOLUTION_REQUIRED,
    EnforcementError,
    ResolutionRequired,
    translate_resolution_errors,
)
from core.models import Job, JobResolution
from core.tasks import verify_job_resolution_guards

from .factories import make_job, make_worker


class JobResolutionGuardTests(TestCase):
    """The guards are installed on the test database by the post_migrate hook."""

    def setUp(self):
        self.worker = make_worker()

    def assertRejected(self, write):
        with self.assertRaises(IntegrityError) as ctx:
            with transaction.atomic():
                write()
        self.assertIn(RESOLUTION_REQUIRED, str(ctx.exception))

    def test_guards_are_installed_after_migrate(self):
        self.assertTrue(job_resolution_guards_installed())

    def test_save_without_resolution_is_rejected(self):
        job = make_job(self.worker, status="in_progress")
        job.status = "completed"

        self.assertRejected(job.save)

        job.refresh_from_db()
        self.assertEqual(job.status, "in_progress")

    def test_queryset_update_is_rejected(self):
        job = make_job(self.worker)
        self.assertRejected(lambda: Job.objects.filter(pk=job.pk).update(status="completed"))

    def test_raw_sql_update_is_rejected(self):
        job = make_job(self.worker)

        def raw_update():
            with connection.cursor() as cursor:
                cursor.execute(
                    f"UPDATE {Job._meta.db_table} SET status = 'completed' WHERE id = %s",
                    [job.pk],
                )

        self.assertRejected(raw_update)
        self.assertFalse(Job.objects.filter(status="completed").exists())

    def test_insert_completed_without_resolution_is_rejected(self):
        self.assertRejected(lambda: make_job(self.worker, status="completed", completed_at=timezone.now()))
        self.assertFalse(Job.objects.exists())

    def test_insert_completed_after_resolution_succeeds(self):
        with transaction.atomic():
            JobResolution.objects.create(job_id=4242, resolution_type="payment", resolved_by=self.worker)
            make_job(self.worker, id=4242, status="completed", completed_at=timezone.now())

        self.assertTrue(Job.objects.filter(pk=4242, status="completed").exists())

    def test_non_completion_transitions_are_not_checked(self):
        job = make_job(self.worker, status="scheduled")

        job.status = "in_progress"
        job.save()
        job.status = "cancelled"
        job.save()

        job.refresh_from_db()
        self.assertEqual(job.status, "cancelled")

    def test_completing_with_resolution_succeeds(self):
        job = make_job(self.worker, status="in_progress")
        JobResolution.objects.create(job=job, resolution_type="invoice")

        Job.objects.filter(pk=job.pk).update(status="completed")

        self.assertEqual(Job.objects.get(pk=job.pk).status, "completed")

    def test_already_completed_job_can_be_edited(self):
        job = make_job(self.worker, status="in_progress")
        JobResolution.objects.create(job=job, resolution_type="payment")
        Job.objects.filter(pk=job.pk).update(status="completed")

        Job.objects.filter(pk=job.pk).update(title="Fix sink (done)")

        self.assertEqual(Job.objects.get(pk=job.pk).title, "Fix sink (done)")

    def test_translate_resolution_errors(self):
        job = make_job(self.worker)

        with self.assertRaises(ResolutionRequired) as ctx:
            with translate_resolution_errors(job.pk):
                with transaction.atomic():
                    Job.objects.filter(pk=job.pk).update(status="completed")

        self.assertEqual(ctx.exception.job_id, job.pk)
        self.assertEqual(ctx.exception.code, RESOLUTION_REQUIRED)
        self.assertIsInstance(ctx.exception.__cause__, IntegrityError)

    def test_translate_leaves_other_integrity_errors_alone(self):
        job = make_job(self.worker)
        JobResolution.objects.create(job=job, resolution_type="payment")

        with self.assertRaises(IntegrityError) as ctx:
            with translate_resolution_errors(job.pk):
                with transaction.atomic():
                    JobResolution.objects.create(job=job, resolution_type="invoice")

        self.assertNotIsInstance(ctx.exception, ResolutionRequired)

    def test_waiver_requires_reason_at_storage_level(self):
        job = make_job(self.worker)
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                JobResolution.objects.create(job=job, resolution_type="waived", waiver_reason=None)


class RepairTests(TestCase):
    def setUp(self):
        self.worker = make_worker()
        drop_job_resolution_guards()

    def tearDown(self):
        install_job_resolution_guards()

    def test_guards_report_missing_after_drop(self):
        self.assertFalse(job_resolution_guards_installed())

    def test_repair_backfills_internal_waivers(self):
        completed_at = timezone.now()
        legacy = make_job(self.worker, status="completed", completed_at=completed_at)
        make_job(self.worker, status="in_progress", title="Open job")

        result = repair_unresolved_completed_jobs()

        self.assertEqual((result.checked, result.repaired), (1, 1))
        resolution = JobResolution.objects.get(job=legacy)
        self.assertEqual(resolution.resolution_type, "waived")
        self.assertEqual(resolution.waiver_reason, "internal")
        self.assertEqual(resolution.resolved_at, completed_at)
        self.assertEqual(resolution.resolved_by, self.worker)
        self.assertEqual(JobResolution.objects.count(), 1)

    def test_repair_falls_back_to_created_at(self):
        legacy = make_job(self.worker, status="completed")
        repair_unresolved_completed_jobs()
        self.assertEqual(JobResolution.objects.get(job=legacy).resolved_at, legacy.created_at)

    def test_repair_is_idempotent(self):
        make_job(self.worker, status="completed")
        make_job(self.worker, status="completed", title="Second")

        first = repair_unresolved_completed_jobs()
        rows = list(JobResolution.objects.order_by("job_id").values_list("job_id", "resolution_type", "waiver_reason"))
        second = repair_unresolved_completed_jobs()

        self.assertEqual(first.repaired, 2)
        self.assertEqual((second.checked, second.repaired), (0, 0))
        self.assertEqual(
            list(JobResolution.objects.order_by("job_id").values_list("job_id", "resolution_type", "waiver_reason")),
            rows,
        )

    def test_repair_leaves_existing_resolutions_alone(self):
        job = make_job(self.worker, status="completed")
        JobResolution.objects.create(job=job, resolution_type="invoice")

        result = repair_unresolved_completed_jobs()

        self.assertEqual(result.repaired, 0)
        self.assertEqual(JobResolution.objects.get(job=job).resolution_type, "invoice")

    def test_initialize_repairs_then_installs(self):
        make_job(self.worker, status="completed")

        result = initialize_db_enforcement()

        self.assertEqual(result.repaired, 1)
        self.assertTrue(job_resolution_guards_installed())
        self.assertFalse(Job.objects.filter(status="completed", resolution__isnull=True).exists())

    def test_initialize_refuses_unsupported_backend(self):
        with mock.patch.object(connections["default"], "vendor", "mysql"):
            with self.assertRaises(EnforcementError):
                initialize_db_enforcement()

    def test_reinstall_is_idempotent(self):
        install_job_resolution_guards()
        install_job_resolution_guards()
        self.assertTrue(job_resolution_guards_installed())


class EnforceCommandTests(TestCase):
    def test_check_reports_installed(self):
        out = StringIO()
        call_command("enforce_job_resolutions", "--check", stdout=out)
        self.assertIn("installed", out.getvalue())

    def test_check_fails_when_missing(self):
        drop_job_resolution_guards()
        try:
            with self.assertRaises(CommandError):
                call_command("enforce_job_resolutions", "--check", stdout=StringIO())
        finally:
            install_job_resolution_guards()

    def test_command_repairs_and_installs(self):
        worker = make_worker()
        drop_job_resolution_guards()
        make_job(worker, status="completed")

        out = StringIO()
        call_command("enforce_job_resolutions", stdout=out)

        self.assertIn("repaired=1", out.getvalue())
        self.assertTrue(job_resolution_guards_installed())


class VerifyGuardsTaskTests(TestCase):
    def test_no_op_when_installed(self):
        self.assertEqual(verify_job_resolution_guards(), {"installed": True, "reinstalled": False})

    def test_reinstalls_missing_guards(self):
        drop_job_resolution_guards()

        self.assertEqual(verify_job_resolution_guards(), {"installed": True, "reinstalled": True})
        self.assertTrue(job_resolution_guards_installed())
