import os
from celery import Celery
from celery.schedules import crontab
from celery.signals import beat_init, worker_init

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'gigaid_project.settings')

app = Celery('gigaid_project')
app.config_from_object('django.conf:settings', namespace='CELERY')
app.autodiscover_tasks()

_release_interval = int(os.getenv('DEPOSIT_AUTO_RELEASE_INTERVAL_MINUTES', '5'))

# Beat schedule - runs same logic as the release_deposits management command
app.conf.beat_schedule = {
    'auto-release-captured-deposits': {
        'task': 'core.tasks.auto_release_deposits',
        'schedule': crontab(minute=f'*/{_release_interval}'),
    },
    'verify-job-resolution-guards-hourly': {
        'task': 'core.tasks.verify_job_resolution_guards',
        'schedule': crontab(minute=0),  # Every hour
    },
}

app.conf.timezone = 'UTC'


@worker_init.connect
@beat_init.connect
def _enforce_job_resolutions_on_startup(**kwargs):
    # Worker and beat refuse to start without the job-completion guards.
    from core.enforcement import initialize_db_enforcement

    initialize_db_enforcement()
