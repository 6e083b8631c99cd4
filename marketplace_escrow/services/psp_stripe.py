"""Stripe SDK wrapper implementing the payment transfer gateway."""
from __future__ import annotations

import logging
from typing import Any, Dict

import stripe

from marketplace_escrow.config import Settings, get_settings
from marketplace_escrow.services.payouts import (
    RefundResult,
    TransferError,
    TransferOutcomeUnknown,
    TransferResult,
)

logger = logging.getLogger(__name__)


class StripeTransferGateway:
    """Wrapper around the Stripe Python SDK to isolate PSP concerns.

    Every call forwards the caller's idempotency key to Stripe, so a retried release
    for the same purchase returns the original transfer instead of creating another.
    """

    def __init__(self, settings: Settings) -> None:
        """Initialise the client and set the API key when enabled."""

        self.settings = settings
        self._ensure_enabled()
        self._secret_key = settings.STRIPE_SECRET_KEY
        self._currency = settings.PAYOUT_CURRENCY

        if not self._secret_key:
            raise RuntimeError("Stripe secret key is missing; configure STRIPE_SECRET_KEY.")

        stripe.api_key = self._secret_key
        stripe.max_network_retries = settings.STRIPE_MAX_NETWORK_RETRIES
        stripe.default_http_client = stripe.RequestsClient(timeout=settings.STRIPE_TIMEOUT_SECONDS)

    @classmethod
    def from_env(cls) -> "StripeTransferGateway":
        """Instantiate a client using the cached application settings."""

        return cls(get_settings())

    def _ensure_enabled(self) -> None:
        if not self.settings.STRIPE_ENABLED:
            raise RuntimeError("Stripe integration is disabled; enable STRIPE_ENABLED to proceed.")

    def _charge_id_for(self, payment_intent_id: str) -> str | None:
        """Transfers tied to a sale need the charge id, not the payment intent id."""

        payment_intent = stripe.PaymentIntent.retrieve(payment_intent_id)
        latest_charge = payment_intent.latest_charge
        if latest_charge is None:
            return None
        if isinstance(latest_charge, str):
            return latest_charge
        return latest_charge.id

    def transfer(
        self,
        idempotency_key: str,
        amount_cents: int,
        payee_account_id: str,
        *,
        source_reference: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> TransferResult:
        """Create a Transfer from the platform balance to a connected account."""

        params: Dict[str, Any] = {
            "amount": amount_cents,
            "currency": self._currency,
            "destination": payee_account_id,
            "metadata": {"type": "escrow_release", **(metadata or {})},
        }
        try:
            if source_reference:
                charge_id = self._charge_id_for(source_reference)
                if charge_id is None:
                    raise TransferError(f"No charge found for payment {source_reference}")
                params["source_transaction"] = charge_id
            transfer = stripe.Transfer.create(idempotency_key=idempotency_key, **params)
        except (stripe.APIConnectionError, stripe.APIError) as exc:
            logger.warning(
                "Stripe transfer outcome unknown",
                extra={"idempotency_key": idempotency_key, "error": str(exc)},
            )
            raise TransferOutcomeUnknown(str(exc)) from exc
        except stripe.StripeError as exc:
            raise TransferError(exc.user_message or str(exc)) from exc
        return TransferResult(transfer_id=transfer.id)

    def refund(
        self,
        idempotency_key: str,
        payment_reference: str,
        *,
        metadata: dict[str, Any] | None = None,
    ) -> RefundResult:
        """Refund the full charge behind ``payment_reference`` to the buyer."""

        try:
            refund = stripe.Refund.create(
                payment_intent=payment_reference,
                reason="requested_by_customer",
                metadata={"type": "dispute_refund", **(metadata or {})},
                idempotency_key=idempotency_key,
            )
        except (stripe.APIConnectionError, stripe.APIError) as exc:
            logger.warning(
                "Stripe refund outcome unknown",
                extra={"idempotency_key": idempotency_key, "error": str(exc)},
            )
            raise TransferOutcomeUnknown(str(exc)) from exc
        except stripe.StripeError as exc:
            raise TransferError(exc.user_message or str(exc)) from exc
        return RefundResult(refund_id=refund.id)
