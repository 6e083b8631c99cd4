"""Standardized error payloads and typed rejections."""
from __future__ import annotations

from typing import Any

from fastapi import HTTPException, status


def error_response(code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return a standardized error payload."""

    payload: dict[str, Any] = {"error": {"code": code, "message": message}}
    if details:
        payload["error"]["details"] = details
    return payload


class RejectionError(HTTPException):
    """A guard refused the requested operation.

    Rejections carry a stable ``code`` and a plain-language ``message`` that can be
    shown to the buyer or seller as-is. They are never retried automatically.
    """

    code = "REJECTED"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(
            status_code=type(self).status_code,
            detail=error_response(self.code, message, self.details or None),
        )

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class PurchaseNotFound(RejectionError):
    code = "PURCHASE_NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


class ListingNotFound(RejectionError):
    code = "LISTING_NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


class NotPurchaseBuyer(RejectionError):
    code = "NOT_PURCHASE_BUYER"
    status_code = status.HTTP_403_FORBIDDEN


class DisputeWindowClosed(RejectionError):
    code = "DISPUTE_WINDOW_CLOSED"


class AlreadyDisputed(RejectionError):
    code = "ALREADY_DISPUTED"


class InvalidEscrowTransition(RejectionError):
    code = "INVALID_ESCROW_TRANSITION"


class PaymentNotCaptured(RejectionError):
    code = "PAYMENT_NOT_CAPTURED"


class PayoutNotPossible(RejectionError):
    code = "PAYOUT_NOT_POSSIBLE"


class SpendLimitExceeded(RejectionError):
    code = "SPEND_LIMIT_EXCEEDED"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class ListingLimitReached(RejectionError):
    code = "LISTING_LIMIT_REACHED"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class ListingUnavailable(RejectionError):
    code = "LISTING_UNAVAILABLE"
    status_code = status.HTTP_400_BAD_REQUEST


class AlreadyClaimed(RejectionError):
    code = "ALREADY_CLAIMED"


class UnsupportedResolution(RejectionError):
    code = "UNSUPPORTED_RESOLUTION"
    status_code = status.HTTP_400_BAD_REQUEST


class InvalidListingPrice(RejectionError):
    code = "INVALID_LISTING_PRICE"
    status_code = status.HTTP_400_BAD_REQUEST


class PaymentGatewayError(RejectionError):
    """The payment gateway failed a staff-initiated transfer or refund."""

    code = "PAYMENT_GATEWAY_ERROR"
    status_code = status.HTTP_502_BAD_GATEWAY


class EscrowInvariantError(RuntimeError):
    """Stored escrow data contradicts itself; never expected in a healthy system."""


__all__ = [
    "error_response",
    "RejectionError",
    "PurchaseNotFound",
    "ListingNotFound",
    "NotPurchaseBuyer",
    "DisputeWindowClosed",
    "AlreadyDisputed",
    "InvalidEscrowTransition",
    "PaymentNotCaptured",
    "PayoutNotPossible",
    "SpendLimitExceeded",
    "ListingLimitReached",
    "ListingUnavailable",
    "AlreadyClaimed",
    "UnsupportedResolution",
    "InvalidListingPrice",
    "PaymentGatewayError",
    "EscrowInvariantError",
]
