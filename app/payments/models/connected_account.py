"""
ConnectedAccount: a seller's Stripe Connect account.

Released order funds are transferred to it and withdrawals are paid out
from it. Flags are kept in sync by the account.updated webhook.
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel
from payments.state_machines import OnboardingStatus


class ConnectedAccount(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    Stripe Connect account for one seller.

    Lifecycle:
        NOT_STARTED -> IN_PROGRESS (details being submitted)
        IN_PROGRESS -> COMPLETE (charges and payouts enabled)
        any -> RESTRICTED (Stripe disabled a capability)
    """

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="connected_account",
    )
    stripe_account_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Stripe Account ID (acct_xxx)",
    )
    onboarding_status = models.CharField(
        max_length=20,
        choices=OnboardingStatus.choices,
        default=OnboardingStatus.NOT_STARTED,
        db_index=True,
    )
    charges_enabled = models.BooleanField(default=False)
    payouts_enabled = models.BooleanField(default=False)
    details_submitted = models.BooleanField(default=False)
    metadata = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Connected Account"
        verbose_name_plural = "Connected Accounts"

    def __str__(self) -> str:
        return f"ConnectedAccount({self.stripe_account_id}, {self.onboarding_status})"

    @property
    def is_ready_for_payouts(self) -> bool:
        return self.onboarding_status == OnboardingStatus.COMPLETE and self.payouts_enabled

    def sync_from_stripe(self, account: dict) -> bool:
        """
        Copy capability flags from a Stripe Account object.

        Returns True when the account just became fully verified, so the
        caller can notify the seller once. Does not save.
        """
        was_ready = self.is_ready_for_payouts

        self.charges_enabled = bool(account.get("charges_enabled"))
        self.payouts_enabled = bool(account.get("payouts_enabled"))
        self.details_submitted = bool(account.get("details_submitted"))

        if self.charges_enabled and self.payouts_enabled:
            self.onboarding_status = OnboardingStatus.COMPLETE
        elif self.details_submitted:
            disabled_reason = (account.get("requirements") or {}).get("disabled_reason")
            self.onboarding_status = (
                OnboardingStatus.RESTRICTED if disabled_reason else OnboardingStatus.IN_PROGRESS
            )
        else:
            self.onboarding_status = OnboardingStatus.IN_PROGRESS

        return not was_ready and self.is_ready_for_payouts
