"""
Add Celery Beat schedules for payment maintenance tasks.

This migration creates periodic task schedules for:
- Webhook recovery (retry failed events, reset stuck events)
- Revenue reconciliation
- Promotion expiry
"""

from django.db import migrations

PERIODIC_TASK_NAMES = [
    "Payments: Retry Failed Webhooks",
    "Payments: Cleanup Stuck Webhooks",
    "Payments: Reconcile Revenue",
    "Payments: Expire Promotions",
]


def create_periodic_tasks(apps, schema_editor):
    """Create periodic tasks for payment maintenance."""
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    CrontabSchedule = apps.get_model("django_celery_beat", "CrontabSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    # =========================================================================
    # Schedules
    # =========================================================================

    schedule_5min, _ = IntervalSchedule.objects.get_or_create(
        every=5,
        period="minutes",
    )
    schedule_15min, _ = IntervalSchedule.objects.get_or_create(
        every=15,
        period="minutes",
    )
    schedule_1hour, _ = IntervalSchedule.objects.get_or_create(
        every=1,
        period="hours",
    )

    # Daily at 3 AM UTC
    crontab_daily_3am, _ = CrontabSchedule.objects.get_or_create(
        minute="0",
        hour="3",
        day_of_week="*",
        day_of_month="*",
        month_of_year="*",
    )

    # =========================================================================
    # Periodic Tasks
    # =========================================================================

    PeriodicTask.objects.get_or_create(
        name="Payments: Retry Failed Webhooks",
        defaults={
            "task": "payments.tasks.retry_failed_webhooks",
            "interval": schedule_5min,
            "enabled": True,
            "description": (
                "Re-processes FAILED webhook events that have not reached "
                "WEBHOOK_MAX_RETRIES."
            ),
        },
    )

    PeriodicTask.objects.get_or_create(
        name="Payments: Cleanup Stuck Webhooks",
        defaults={
            "task": "payments.tasks.cleanup_stuck_webhooks",
            "interval": schedule_15min,
            "enabled": True,
            "description": (
                "Marks webhook events stuck in PROCESSING for more than 30 "
                "minutes as FAILED so the retry task picks them up."
            ),
        },
    )

    PeriodicTask.objects.get_or_create(
        name="Payments: Reconcile Revenue",
        defaults={
            "task": "payments.tasks.reconcile_revenue",
            "crontab": crontab_daily_3am,
            "enabled": True,
            "description": (
                "Checks seller revenue conservation and order escrow amounts. "
                "Discrepancies are logged at CRITICAL, never corrected."
            ),
        },
    )

    PeriodicTask.objects.get_or_create(
        name="Payments: Expire Promotions",
        defaults={
            "task": "payments.tasks.expire_promotions",
            "interval": schedule_1hour,
            "enabled": True,
            "description": "Marks promotions past their expiry date as expired.",
        },
    )


def remove_periodic_tasks(apps, schema_editor):
    """Remove the periodic tasks on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(name__in=PERIODIC_TASK_NAMES).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("payments", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]
