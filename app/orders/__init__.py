"""
Orders app for gig purchases.

This app handles:
- The Order model and its workflow statuses
- Checkout and workflow action endpoints
- Deadline housekeeping
"""
