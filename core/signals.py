# core/signals.py


from django.db.models.signals import post_migrate
from django.dispatch import receiver

from .enforcement import initialize_db_enforcement


@receiver(post_migrate, dispatch_uid="core_enforce_job_resolutions")
def enforce_job_resolutions_after_migrate(sender, app_config=None, using="default", **kwargs):
    # Fires once per app; only react to ours so the guards go in after core's tables exist.
    if app_config is None or app_config.name != "core":
        return
    initialize_db_enforcement(using=using)
