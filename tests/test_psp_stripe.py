from types import SimpleNamespace

import pytest
import stripe

from marketplace_escrow.config import Settings
from marketplace_escrow.services.payouts import DisabledTransferGateway, TransferError, TransferOutcomeUnknown
from marketplace_escrow.services.providers import get_transfer_gateway
from marketplace_escrow.services.psp_stripe import StripeTransferGateway


@pytest.fixture
def stripe_gateway(monkeypatch):
    for attr in ("api_key", "max_network_retries", "default_http_client"):
        monkeypatch.setattr(stripe, attr, getattr(stripe, attr, None), raising=False)
    monkeypatch.setattr(
        stripe.PaymentIntent, "retrieve", lambda payment_intent_id: SimpleNamespace(latest_charge="ch_123")
    )
    return StripeTransferGateway(Settings(STRIPE_ENABLED=True, STRIPE_SECRET_KEY="sk_test_123"))


def test_transfer_forwards_idempotency_key(monkeypatch, stripe_gateway):
    calls = []

    def fake_create(**kwargs):
        calls.append(kwargs)
        return SimpleNamespace(id="tr_42")

    monkeypatch.setattr(stripe.Transfer, "create", fake_create)

    result = stripe_gateway.transfer(
        "purchase:7:release",
        4_850,
        "acct_seller",
        source_reference="pi_123",
        metadata={"purchase_id": "7"},
    )

    assert result.transfer_id == "tr_42"
    assert stripe.api_key == "sk_test_123"
    assert calls == [
        {
            "idempotency_key": "purchase:7:release",
            "amount": 4_850,
            "currency": "usd",
            "destination": "acct_seller",
            "metadata": {"type": "escrow_release", "purchase_id": "7"},
            "source_transaction": "ch_123",
        }
    ]


def test_transfer_without_charge_is_rejected(monkeypatch, stripe_gateway):
    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", lambda payment_intent_id: SimpleNamespace(latest_charge=None))

    with pytest.raises(TransferError):
        stripe_gateway.transfer("purchase:7:release", 100, "acct_seller", source_reference="pi_123")


def test_connection_errors_leave_outcome_unknown(monkeypatch, stripe_gateway):
    def boom(**kwargs):
        raise stripe.APIConnectionError("connection reset")

    monkeypatch.setattr(stripe.Transfer, "create", boom)
    monkeypatch.setattr(stripe.Refund, "create", boom)

    with pytest.raises(TransferOutcomeUnknown):
        stripe_gateway.transfer("purchase:7:release", 100, "acct_seller")
    with pytest.raises(TransferOutcomeUnknown):
        stripe_gateway.refund("purchase:7:refund", "pi_123")


def test_declines_are_definite_failures(monkeypatch, stripe_gateway):
    def declined(**kwargs):
        raise stripe.InvalidRequestError("No such destination: acct_missing", param="destination")

    monkeypatch.setattr(stripe.Transfer, "create", declined)

    with pytest.raises(TransferError) as excinfo:
        stripe_gateway.transfer("purchase:7:release", 100, "acct_missing")
    assert not isinstance(excinfo.value, TransferOutcomeUnknown)
    assert "acct_missing" in str(excinfo.value)


def test_refund_forwards_idempotency_key(monkeypatch, stripe_gateway):
    calls = []

    def fake_create(**kwargs):
        calls.append(kwargs)
        return SimpleNamespace(id="re_42")

    monkeypatch.setattr(stripe.Refund, "create", fake_create)

    result = stripe_gateway.refund("purchase:7:refund", "pi_123", metadata={"purchase_id": "7"})

    assert result.refund_id == "re_42"
    assert calls[0]["idempotency_key"] == "purchase:7:refund"
    assert calls[0]["payment_intent"] == "pi_123"
    assert calls[0]["metadata"] == {"type": "dispute_refund", "purchase_id": "7"}


def test_gateway_requires_enabled_flag_and_key():
    with pytest.raises(RuntimeError):
        StripeTransferGateway(Settings(STRIPE_ENABLED=False, STRIPE_SECRET_KEY="sk_test_123"))
    with pytest.raises(RuntimeError):
        StripeTransferGateway(Settings(STRIPE_ENABLED=True, STRIPE_SECRET_KEY="  "))


def test_disabled_gateway_refuses_to_move_money(monkeypatch):
    monkeypatch.setattr(
        "marketplace_escrow.services.providers.get_settings", lambda: Settings(STRIPE_ENABLED=False)
    )
    gateway = get_transfer_gateway()

    assert isinstance(gateway, DisabledTransferGateway)
    with pytest.raises(TransferError):
        gateway.transfer("purchase:1:release", 100, "acct_x")
