"""Factories for the payment gateway and notifier used by routes and jobs."""
from __future__ import annotations

from marketplace_escrow.config import get_settings
from marketplace_escrow.services.notifications import LogNotifier, Notifier
from marketplace_escrow.services.payouts import DisabledTransferGateway, PaymentTransferGateway


def get_transfer_gateway() -> PaymentTransferGateway:
    settings = get_settings()
    if not settings.STRIPE_ENABLED:
        return DisabledTransferGateway()
    from marketplace_escrow.services.psp_stripe import StripeTransferGateway

    return StripeTransferGateway(settings)


def get_notifier() -> Notifier:
    return LogNotifier()
