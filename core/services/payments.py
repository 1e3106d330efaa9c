# core/services/payments.py

"""
Payment processor capability (Stripe).

Only two operations are needed by the escrow code: move captured funds to a
worker's connected account, and refund a captured charge. Both carry a request
timeout and an idempotency key; any processor failure surfaces as
PaymentProcessorError so callers never mistake a timeout for success.
"""

from __future__ import annotations

import logging
from typing import Optional

import stripe
from django.conf import settings

from core.exceptions import PaymentProcessorError

logger = logging.getLogger(__name__)

_http_client = None


def _configure_stripe() -> None:
    global _http_client
    stripe.api_key = settings.STRIPE_SECRET_KEY
    if _http_client is None:
        timeout = int(getattr(settings, "PAYMENT_PROCESSOR_TIMEOUT_SECONDS", 30))
        _http_client = stripe.RequestsClient(timeout=timeout)
        stripe.default_http_client = _http_client


def transfer_group_for_booking(booking_id) -> str:
    return f"booking_{booking_id}"


def create_transfer(
    amount_cents: int,
    currency: str,
    destination: str,
    group_key: str,
    metadata: Optional[dict] = None,
    idempotency_key: Optional[str] = None,
) -> str:
    """
    Transfer ``amount_cents`` (minor units) to a connected account.
    Returns the processor's transfer id.
    """
    destination = (destination or "").strip()
    if not destination:
        raise PaymentProcessorError("No destination account for transfer", code="no_destination", retryable=False)
    if amount_cents <= 0:
        raise PaymentProcessorError("Transfer amount must be > 0", code="invalid_amount", retryable=False)

    _configure_stripe()
    params = {
        "amount": int(amount_cents),
        "currency": (currency or "usd").lower(),
        "destination": destination,
        "transfer_group": group_key,
        "metadata": {k: str(v) for k, v in (metadata or {}).items()},
    }
    if idempotency_key:
        params["idempotency_key"] = idempotency_key

    try:
        transfer = stripe.Transfer.create(**params)
    except stripe.StripeError as e:
        logger.warning(f"Stripe transfer failed group={group_key} amount={amount_cents}: {e}")
        raise PaymentProcessorError(str(e), code=getattr(e, "code", "") or "") from e

    return transfer.id


def create_refund(
    charge_id: str,
    amount_cents: int,
    metadata: Optional[dict] = None,
    idempotency_key: Optional[str] = None,
) -> str:
    """Refund ``amount_cents`` of a captured charge. Returns the refund id."""
    charge_id = (charge_id or "").strip()
    if not charge_id:
        raise PaymentProcessorError("No charge to refund", code="no_charge", retryable=False)
    if amount_cents <= 0:
        raise PaymentProcessorError("Refund amount must be greater than zero", code="invalid_amount", retryable=False)

    _configure_stripe()
    params = {
        "charge": charge_id,
        "amount": int(amount_cents),
        "metadata": {k: str(v) for k, v in (metadata or {}).items()},
    }
    if idempotency_key:
        params["idempotency_key"] = idempotency_key

    try:
        refund = stripe.Refund.create(**params)
    except stripe.StripeError as e:
        logger.warning(f"Stripe refund failed charge={charge_id} amount={amount_cents}: {e}")
        raise PaymentProcessorError(str(e), code=getattr(e, "code", "") or "") from e

    return refund.id
