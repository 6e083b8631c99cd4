"""Payment transfer gateway interface used by settlement and staff resolution."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol


@dataclass(frozen=True)
class TransferResult:
    transfer_id: str


@dataclass(frozen=True)
class RefundResult:
    refund_id: str


class TransferError(Exception):
    """The gateway refused or failed the request; nothing was moved."""


class TransferOutcomeUnknown(TransferError):
    """Timeout or connection loss: the transfer may or may not exist.

    Callers retry later with the same idempotency key instead of starting a new one.
    """


class PaymentTransferGateway(Protocol):
    """Moves money; repeated calls with one idempotency key move it at most once."""

    def transfer(
        self,
        idempotency_key: str,
        amount_cents: int,
        payee_account_id: str,
        *,
        source_reference: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> TransferResult:
        ...

    def refund(
        self,
        idempotency_key: str,
        payment_reference: str,
        *,
        metadata: dict[str, Any] | None = None,
    ) -> RefundResult:
        ...


class DisabledTransferGateway:
    """Used when payouts are switched off; every call fails without side effects."""

    def transfer(self, idempotency_key: str, amount_cents: int, payee_account_id: str, **kwargs: Any) -> TransferResult:
        raise TransferError("Payouts are disabled; enable STRIPE_ENABLED to release funds.")

    def refund(self, idempotency_key: str, payment_reference: str, **kwargs: Any) -> RefundResult:
        raise TransferError("Payouts are disabled; enable STRIPE_ENABLED to refund buyers.")


def release_idempotency_key(purchase_id: int) -> str:
    return f"purchase:{purchase_id}:release"


def refund_idempotency_key(purchase_id: int) -> str:
    return f"purchase:{purchase_id}:refund"
