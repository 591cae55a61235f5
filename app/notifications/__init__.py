"""
Notifications application.

In-app notifications for buyers and sellers, with optional e-mail
delivery tracked per notification and sent by a Celery task.

Usage:
    from notifications.services import NotificationService
"""
