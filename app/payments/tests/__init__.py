"""
Tests for payments app.

This package contains test modules for:
- test_pricing.py: Price breakdown and tranche split
- test_state_machine.py: Escrow transition table and progress
- test_escrow_service.py: Captures, release, cancellation and replays
- test_*_service.py: Checkout, payout, promotion, extension, reconciliation
- test_views.py: Revenue, withdrawal and promotion endpoints

Usage:
    pytest payments/tests/
    pytest payments/tests/test_escrow_service.py
"""
