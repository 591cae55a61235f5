"""
Tests for authentication app.

This package contains test modules for:
- test_managers.py: UserManager and display name helpers
- test_views.py: Token and current-user endpoints

Usage:
    pytest authentication/tests/
"""
