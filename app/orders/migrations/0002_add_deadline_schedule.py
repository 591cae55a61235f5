"""
Add celery-beat schedule for overdue order deadlines.

This migration creates the periodic task schedule for the
extend_overdue_deadlines task, which runs hourly and gives orders past
their delivery date a one-time grace period.
"""

from django.db import migrations


def create_periodic_task(apps, schema_editor):
    """Create the periodic task for overdue deadlines."""
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    schedule, _ = IntervalSchedule.objects.get_or_create(
        every=1,
        period="hours",
    )

    PeriodicTask.objects.get_or_create(
        name="Orders: Extend Overdue Deadlines",
        defaults={
            "task": "orders.tasks.extend_overdue_deadlines",
            "interval": schedule,
            "enabled": True,
            "description": (
                "Extends the delivery date of overdue active orders once, "
                "by ORDER_DEADLINE_AUTO_EXTENSION_DAYS, and notifies both parties."
            ),
        },
    )


def remove_periodic_task(apps, schema_editor):
    """Remove the periodic task on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(
        name="Orders: Extend Overdue Deadlines",
    ).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("orders", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_task, remove_periodic_task),
    ]
