# core/enforcement.py

"""
Storage-level enforcement: no job is ever persisted as ``completed`` without a
JobResolution.

The guards are triggers on the job table itself, so they hold for every write
path: ORM saves, ``QuerySet.update``, raw SQL, data fixes and migrations.
Application checks (core.services.jobs) only fail fast in front of them.

Startup order is strict: repair legacy gaps, then install the guards. If the
guards cannot be installed the process must not start.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from django.db import connections, transaction
from django.utils import timezone

from core.exceptions import EnforcementError, RESOLUTION_REQUIRED

logger = logging.getLogger(__name__)

INSERT_TRIGGER = "enforce_job_resolution_insert_trigger"
UPDATE_TRIGGER = "enforce_job_resolution_trigger"
INSERT_FUNCTION = "enforce_job_resolution_on_insert"
UPDATE_FUNCTION = "enforce_job_resolution_on_update"


@dataclass(frozen=True)
class RepairResult:
    checked: int
    repaired: int


def _tables():
    from core.models import Job, JobResolution

    return Job._meta.db_table, JobResolution._meta.db_table


def _postgresql_statements(job_table: str, resolution_table: str) -> list:
    # SQLSTATE 23514 (check_violation) surfaces as django.db.IntegrityError
    return [
        f"""
        CREATE OR REPLACE FUNCTION {UPDATE_FUNCTION}()
        RETURNS TRIGGER AS $$
        BEGIN
          IF NEW.status = 'completed' AND (OLD.status IS NULL OR OLD.status <> 'completed') THEN
            IF NOT EXISTS (SELECT 1 FROM {resolution_table} WHERE job_id = NEW.id) THEN
              RAISE EXCEPTION '{RESOLUTION_REQUIRED}: Completed jobs must have a job resolution record (invoice, payment, or waiver). Job ID: %', NEW.id
                USING ERRCODE = '23514';
            END IF;
          END IF;
          RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
        """,
        f"""
        CREATE OR REPLACE FUNCTION {INSERT_FUNCTION}()
        RETURNS TRIGGER AS $$
        BEGIN
          IF NEW.status = 'completed' THEN
            IF NOT EXISTS (SELECT 1 FROM {resolution_table} WHERE job_id = NEW.id) THEN
              RAISE EXCEPTION '{RESOLUTION_REQUIRED}: Cannot insert job with completed status without a job resolution record. Job ID: %', NEW.id
                USING ERRCODE = '23514';
            END IF;
          END IF;
          RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
        """,
        f"DROP TRIGGER IF EXISTS {UPDATE_TRIGGER} ON {job_table};",
        f"DROP TRIGGER IF EXISTS {INSERT_TRIGGER} ON {job_table};",
        f"""
        CREATE TRIGGER {UPDATE_TRIGGER}
        BEFORE UPDATE ON {job_table}
        FOR EACH ROW
        EXECUTE FUNCTION {UPDATE_FUNCTION}();
        """,
        f"""
        CREATE TRIGGER {INSERT_TRIGGER}
        BEFORE INSERT ON {job_table}
        FOR EACH ROW
        EXECUTE FUNCTION {INSERT_FUNCTION}();
        """,
    ]


def _sqlite_statements(job_table: str, resolution_table: str) -> list:
    # RAISE() only takes a literal message; the job id is added by
    # core.exceptions.translate_resolution_errors.
    return [
        f"DROP TRIGGER IF EXISTS {UPDATE_TRIGGER};",
        f"DROP TRIGGER IF EXISTS {INSERT_TRIGGER};",
        f"""
        CREATE TRIGGER {UPDATE_TRIGGER}
        BEFORE UPDATE ON {job_table}
        FOR EACH ROW
        WHEN NEW.status = 'completed'
          AND OLD.status IS NOT 'completed'
          AND NOT EXISTS (SELECT 1 FROM {resolution_table} WHERE job_id = NEW.id)
        BEGIN
          SELECT RAISE(ABORT, '{RESOLUTION_REQUIRED}: Completed jobs must have a job resolution record (invoice, payment, or waiver)');
        END;
        """,
        f"""
        CREATE TRIGGER {INSERT_TRIGGER}
        BEFORE INSERT ON {job_table}
        FOR EACH ROW
        WHEN NEW.status = 'completed'
          AND NOT EXISTS (SELECT 1 FROM {resolution_table} WHERE job_id = NEW.id)
        BEGIN
          SELECT RAISE(ABORT, '{RESOLUTION_REQUIRED}: Cannot insert job with completed status without a job resolution record');
        END;
        """,
    ]


def install_job_resolution_guards(using: str = "default") -> None:
    """
    Drop and recreate the insert and update guards on the job table.
    Safe to call on every start; the definitions are stateless.
    """
    connection = connections[using]
    job_table, resolution_table = _tables()

    if connection.vendor == "postgresql":
        statements = _postgresql_statements(job_table, resolution_table)
    elif connection.vendor == "sqlite":
        statements = _sqlite_statements(job_table, resolution_table)
    else:
        raise EnforcementError(
            f"Job resolution guards are not implemented for the '{connection.vendor}' database backend"
        )

    with transaction.atomic(using=using):
        with connection.cursor() as cursor:
            for sql in statements:
                cursor.execute(sql)

    logger.info("Job resolution guards (INSERT + UPDATE) installed")


def drop_job_resolution_guards(using: str = "default") -> None:
    connection = connections[using]
    job_table, _ = _tables()

    with transaction.atomic(using=using):
        with connection.cursor() as cursor:
            if connection.vendor == "postgresql":
                cursor.execute(f"DROP TRIGGER IF EXISTS {UPDATE_TRIGGER} ON {job_table};")
                cursor.execute(f"DROP TRIGGER IF EXISTS {INSERT_TRIGGER} ON {job_table};")
            else:
                cursor.execute(f"DROP TRIGGER IF EXISTS {UPDATE_TRIGGER};")
                cursor.execute(f"DROP TRIGGER IF EXISTS {INSERT_TRIGGER};")

    logger.warning("Job resolution guards dropped")


def job_resolution_guards_installed(using: str = "default") -> bool:
    connection = connections[using]
    job_table, _ = _tables()

    with connection.cursor() as cursor:
        if connection.vendor == "postgresql":
            cursor.execute(
                "SELECT tgname FROM pg_trigger "
                "WHERE tgrelid = %s::regclass AND tgname IN (%s, %s) AND NOT tgisinternal",
                [job_table, INSERT_TRIGGER, UPDATE_TRIGGER],
            )
        elif connection.vendor == "sqlite":
            cursor.execute(
                "SELECT name FROM sqlite_master "
                "WHERE type = 'trigger' AND tbl_name = %s AND name IN (%s, %s)",
                [job_table, INSERT_TRIGGER, UPDATE_TRIGGER],
            )
        else:
            return False
        names = {row[0] for row in cursor.fetchall()}

    return names == {INSERT_TRIGGER, UPDATE_TRIGGER}


def repair_unresolved_completed_jobs(using: str = "default") -> RepairResult:
    """
    Give every completed job without a resolution a ``waived``/``internal`` one.

    Runs before the guards exist so legacy rows cannot block startup. Inserts
    ignore conflicts on the unique job id, so reruns are no-ops.
    """
    from core.models import Job, JobResolution

    try:
        unresolved = list(
            Job.objects.using(using)
            .filter(status="completed", resolution__isnull=True)
            .only("id", "owner", "completed_at", "created_at")
        )

        now = timezone.now()
        resolutions = [
            JobResolution(
                job_id=job.id,
                resolution_type="waived",
                waiver_reason="internal",
                resolved_at=job.completed_at or job.created_at or now,
                resolved_by_id=job.owner_id,
            )
            for job in unresolved
        ]

        if resolutions:
            with transaction.atomic(using=using):
                JobResolution.objects.using(using).bulk_create(resolutions, ignore_conflicts=True)
            for job in unresolved:
                logger.info(f"Repaired job {job.id} with internal waiver")
            logger.warning(f"Repaired {len(unresolved)} unresolved completed job(s)")
        else:
            logger.info("No unresolved completed jobs found")

        return RepairResult(checked=len(unresolved), repaired=len(resolutions))

    except Exception as e:
        logger.error(f"Error repairing unresolved completed jobs: {e}")
        return RepairResult(checked=0, repaired=0)


def initialize_db_enforcement(using: str = "default") -> RepairResult:
    """
    Repair, then install the guards. Call on every process start before any
    job is written. Raises EnforcementError if the guards cannot be installed.
    """
    logger.info("Initializing job resolution enforcement...")

    result = repair_unresolved_completed_jobs(using=using)

    try:
        install_job_resolution_guards(using=using)
    except Exception as e:
        logger.critical(f"Failed to install job resolution guards: {e}")
        logger.critical("Refusing to run without revenue protection enforcement")
        if isinstance(e, EnforcementError):
            raise
        raise EnforcementError(f"Could not install job resolution guards: {e}") from e

    logger.info("Job resolution enforcement initialized")
    return result
