"""
Authentication application.

Provides the email-based User model shared by buyers and sellers. A user
can place orders as a buyer and fulfil gigs as a seller.

Usage:
    from authentication.models import User
"""
