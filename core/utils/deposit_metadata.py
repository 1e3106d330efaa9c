# core/utils/deposit_metadata.py

"""
Codec for deposit configuration and payment deposit tags.

Current rows store the deposit policy in ``Job.deposit_config`` and the payment
tag in ``JobPayment.kind``. Older rows embedded both as JSON fragments inside
free-text notes, e.g. ``{"depositType":"percent","depositAmount":25}`` or
``{"isDeposit":true}``. Decoding never raises: anything unreadable means
"no deposit configured" / "not tagged".
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Iterator, Optional

CURRENT_VERSION = 1

DEPOSIT_TYPES = ("flat", "percent")

_TYPE_KEYS = ("depositType", "deposit_type")
_AMOUNT_KEYS = ("depositAmount", "deposit_amount")

# Legacy substring tags, kept for notes that are not valid JSON
_IS_DEPOSIT_RE = re.compile(r'"isDeposit"\s*:\s*true')
_IS_DEPOSIT_REFUND_RE = re.compile(r'"isDepositRefund"\s*:\s*true')


@dataclass(frozen=True)
class DepositMetadata:
    deposit_type: str
    deposit_amount: int
    version: int = CURRENT_VERSION


@dataclass(frozen=True)
class PaymentTags:
    is_deposit: bool = False
    is_deposit_refund: bool = False


def _first_key(data: dict, keys) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None


def _as_amount(value: Any) -> Optional[int]:
    # bool is an int subclass; "true" is not an amount
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, float) and value.is_integer() and value >= 0:
        return int(value)
    return None


def _iter_json_objects(text: str) -> Iterator[dict]:
    """Yield every JSON object embedded in ``text``, left to right."""
    decoder = json.JSONDecoder()
    idx = text.find("{")
    while idx != -1:
        try:
            obj, end = decoder.raw_decode(text, idx)
        except ValueError:
            idx = text.find("{", idx + 1)
            continue
        if isinstance(obj, dict):
            yield obj
        idx = text.find("{", end)


def _from_mapping(data: dict) -> Optional[DepositMetadata]:
    deposit_type = _first_key(data, _TYPE_KEYS)
    if deposit_type not in DEPOSIT_TYPES:
        return None

    amount = _as_amount(_first_key(data, _AMOUNT_KEYS))
    if amount is None:
        return None

    version = data.get("v", CURRENT_VERSION)
    if isinstance(version, bool) or not isinstance(version, int) or version > CURRENT_VERSION:
        return None

    return DepositMetadata(deposit_type=deposit_type, deposit_amount=amount, version=CURRENT_VERSION)


def decode_deposit_metadata(value: Any) -> Optional[DepositMetadata]:
    """
    Decode a deposit policy from a structured value or free text.

    Accepts a dict (the ``deposit_config`` column), a JSON string, or any
    text with a JSON object embedded in it. Unknown keys are ignored.
    Returns None when nothing valid is found.
    """
    if value is None:
        return None

    if isinstance(value, DepositMetadata):
        return value

    if isinstance(value, dict):
        return _from_mapping(value)

    if not isinstance(value, str) or "{" not in value:
        return None

    for obj in _iter_json_objects(value):
        meta = _from_mapping(obj)
        if meta is not None:
            return meta
    return None


def encode_deposit_metadata(meta: DepositMetadata) -> dict:
    """Structured, versioned form stored in ``Job.deposit_config``."""
    if meta.deposit_type not in DEPOSIT_TYPES:
        raise ValueError(f"Unknown deposit type: {meta.deposit_type!r}")
    if _as_amount(meta.deposit_amount) is None:
        raise ValueError(f"Deposit amount must be a non-negative integer, got {meta.deposit_amount!r}")

    return {
        "v": CURRENT_VERSION,
        "depositType": meta.deposit_type,
        "depositAmount": int(meta.deposit_amount),
    }


def dumps_deposit_metadata(meta: DepositMetadata) -> str:
    return json.dumps(encode_deposit_metadata(meta), separators=(",", ":"))


def job_deposit_metadata(job) -> Optional[DepositMetadata]:
    """Structured column wins; legacy notes are the fallback."""
    meta = decode_deposit_metadata(getattr(job, "deposit_config", None))
    if meta is not None:
        return meta
    return decode_deposit_metadata(getattr(job, "notes", None))


def decode_payment_tags(notes: Any) -> PaymentTags:
    if not isinstance(notes, str) or not notes:
        return PaymentTags()

    is_deposit = False
    is_refund = False
    for obj in _iter_json_objects(notes):
        if obj.get("isDeposit") is True:
            is_deposit = True
        if obj.get("isDepositRefund") is True:
            is_refund = True

    is_deposit = is_deposit or bool(_IS_DEPOSIT_RE.search(notes))
    is_refund = is_refund or bool(_IS_DEPOSIT_REFUND_RE.search(notes))
    return PaymentTags(is_deposit=is_deposit, is_deposit_refund=is_refund)


def payment_kind(payment) -> str:
    """``deposit``, ``deposit_refund`` or ``standard`` for a JobPayment."""
    kind = getattr(payment, "kind", None) or "standard"
    if kind != "standard":
        return kind

    tags = decode_payment_tags(getattr(payment, "notes", None))
    if tags.is_deposit_refund:
        return "deposit_refund"
    if tags.is_deposit:
        return "deposit"
    return "standard"
