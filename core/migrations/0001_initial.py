# core/migrations/0001_initial.py

import django.contrib.auth.models
import django.contrib.auth.validators
import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("auth", "0012_alter_user_first_name_max_length"),
    ]

    operations = [
        migrations.CreateModel(
            name="CustomUser",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("password", models.CharField(max_length=128, verbose_name="password")),
                ("last_login", models.DateTimeField(blank=True, null=True, verbose_name="last login")),
                ("is_superuser", models.BooleanField(default=False, help_text="Designates that this user has all permissions without explicitly assigning them.", verbose_name="superuser status")),
                ("username", models.CharField(error_messages={"unique": "A user with that username already exists."}, help_text="Required. 150 characters or fewer. Letters, digits and @/./+/-/_ only.", max_length=150, unique=True, validators=[django.contrib.auth.validators.UnicodeUsernameValidator()], verbose_name="username")),
                ("first_name", models.CharField(blank=True, max_length=150, verbose_name="first name")),
                ("last_name", models.CharField(blank=True, max_length=150, verbose_name="last name")),
                ("email", models.EmailField(blank=True, max_length=254, verbose_name="email address")),
                ("is_staff", models.BooleanField(default=False, help_text="Designates whether the user can log into this admin site.", verbose_name="staff status")),
                ("is_active", models.BooleanField(default=True, help_text="Designates whether this user should be treated as active. Unselect this instead of deleting accounts.", verbose_name="active")),
                ("date_joined", models.DateTimeField(default=django.utils.timezone.now, verbose_name="date joined")),
                ("role", models.CharField(choices=[("worker", "Service Worker"), ("customer", "Customer"), ("admin", "Admin")], default="worker", max_length=10)),
                ("phone_number", models.CharField(blank=True, max_length=20, null=True)),
                ("stripe_account_id", models.CharField(blank=True, max_length=100, null=True)),
                ("groups", models.ManyToManyField(blank=True, help_text="The groups this user belongs to. A user will get all permissions granted to each of their groups.", related_name="user_set", related_query_name="user", to="auth.group", verbose_name="groups")),
                ("user_permissions", models.ManyToManyField(blank=True, help_text="Specific permissions for this user.", related_name="user_set", related_query_name="user", to="auth.permission", verbose_name="user permissions")),
            ],
            options={
                "verbose_name": "user",
                "verbose_name_plural": "users",
                "abstract": False,
            },
            managers=[
                ("objects", django.contrib.auth.models.UserManager()),
            ],
        ),
        migrations.CreateModel(
            name="Job",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("title", models.CharField(max_length=200)),
                ("client_name", models.CharField(blank=True, max_length=120)),
                ("status", models.CharField(choices=[("scheduled", "Scheduled"), ("in_progress", "In Progress"), ("completed", "Completed"), ("cancelled", "Cancelled")], default="scheduled", max_length=20)),
                ("price_cents", models.PositiveIntegerField(blank=True, null=True)),
                ("notes", models.TextField(blank=True)),
                ("deposit_config", models.JSONField(blank=True, null=True)),
                ("scheduled_start_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("owner", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="jobs", to=settings.AUTH_USER_MODEL)),
            ],
        ),
        migrations.CreateModel(
            name="JobResolution",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("resolution_type", models.CharField(choices=[("invoice", "Invoice"), ("payment", "Payment"), ("waived", "Waived")], max_length=10)),
                ("waiver_reason", models.CharField(blank=True, choices=[("internal", "Internal"), ("goodwill", "Goodwill"), ("warranty", "Warranty"), ("other", "Other")], max_length=20, null=True)),
                ("resolved_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("job", models.OneToOneField(on_delete=django.db.models.deletion.PROTECT, related_name="resolution", to="core.job")),
                ("resolved_by", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name="job_resolutions", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "constraints": [
                    models.CheckConstraint(condition=models.Q(("resolution_type", "waived"), _negated=True) | models.Q(("waiver_reason__isnull", False)), name="core_jobresolution_waiver_reason_required"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Invoice",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("amount_cents", models.PositiveIntegerField()),
                ("status", models.CharField(choices=[("draft", "Draft"), ("sent", "Sent"), ("paid", "Paid")], default="draft", max_length=10)),
                ("paid_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("job", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="invoices", to="core.job")),
                ("owner", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="invoices", to=settings.AUTH_USER_MODEL)),
            ],
        ),
        migrations.CreateModel(
            name="JobPayment",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("amount_cents", models.PositiveIntegerField()),
                ("method", models.CharField(default="stripe", max_length=20)),
                ("status", models.CharField(choices=[("pending", "Pending"), ("processing", "Processing"), ("paid", "Paid"), ("confirmed", "Confirmed"), ("failed", "Failed")], default="pending", max_length=12)),
                ("kind", models.CharField(choices=[("standard", "Standard"), ("deposit", "Deposit"), ("deposit_refund", "Deposit Refund")], default="standard", max_length=16)),
                ("notes", models.TextField(blank=True)),
                ("paid_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("invoice", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="payments", to="core.invoice")),
                ("job", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="payments", to="core.job")),
                ("owner", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="job_payments", to=settings.AUTH_USER_MODEL)),
            ],
        ),
        migrations.CreateModel(
            name="BookingRequest",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("client_name", models.CharField(max_length=120)),
                ("client_phone", models.CharField(blank=True, max_length=20)),
                ("client_email", models.EmailField(blank=True, max_length=254)),
                ("service_type", models.CharField(max_length=60)),
                ("description", models.TextField(blank=True)),
                ("deposit_amount_cents", models.PositiveIntegerField(blank=True, null=True)),
                ("deposit_currency", models.CharField(default="usd", max_length=3)),
                ("deposit_status", models.CharField(choices=[("none", "None"), ("held", "Held"), ("captured", "Captured"), ("released", "Released"), ("refunded", "Refunded")], default="none", max_length=10)),
                ("completion_status", models.CharField(choices=[("pending", "Pending"), ("scheduled", "Scheduled"), ("completed", "Completed"), ("cancelled", "Cancelled")], default="pending", max_length=10)),
                ("stripe_payment_intent_id", models.CharField(blank=True, max_length=100, null=True)),
                ("stripe_charge_id", models.CharField(blank=True, max_length=100, null=True)),
                ("stripe_transfer_id", models.CharField(blank=True, max_length=100, null=True)),
                ("stripe_refund_id", models.CharField(blank=True, max_length=100, null=True)),
                ("rolled_amount_cents", models.PositiveIntegerField(default=0)),
                ("retained_amount_cents", models.PositiveIntegerField(default=0)),
                ("job_start_at", models.DateTimeField(blank=True, null=True)),
                ("job_end_at", models.DateTimeField(blank=True, null=True)),
                ("auto_release_at", models.DateTimeField(blank=True, null=True)),
                ("claimed_by", models.CharField(blank=True, max_length=120, null=True)),
                ("claimed_until", models.DateTimeField(blank=True, null=True)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                ("cancelled_by", models.CharField(blank=True, choices=[("customer", "Customer"), ("provider", "Provider"), ("system", "System")], max_length=10, null=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("owner", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="booking_requests", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "indexes": [models.Index(fields=["deposit_status", "auto_release_at"], name="core_booking_release_idx")],
            },
        ),
        migrations.CreateModel(
            name="BookingEvent",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("event_type", models.CharField(max_length=40)),
                ("actor_type", models.CharField(choices=[("customer", "Customer"), ("provider", "Provider"), ("system", "System")], max_length=10)),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("actor", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="booking_events", to=settings.AUTH_USER_MODEL)),
                ("booking", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="events", to="core.bookingrequest")),
            ],
            options={
                "ordering": ["created_at", "id"],
                "indexes": [models.Index(fields=["booking", "created_at"], name="core_bookingevent_log_idx")],
            },
        ),
    ]
