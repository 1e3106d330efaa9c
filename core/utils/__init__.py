# core/utils/__init__.py

# Utils package

from core.utils.deposit_metadata import (
    DepositMetadata,
    PaymentTags,
    decode_deposit_metadata,
    encode_deposit_metadata,
    dumps_deposit_metadata,
    job_deposit_metadata,
    decode_payment_tags,
    payment_kind,
)

__all__ = [
    'DepositMetadata',
    'PaymentTags',
    'decode_deposit_metadata',
    'encode_deposit_metadata',
    'dumps_deposit_metadata',
    'job_deposit_metadata',
    'decode_payment_tags',
    'payment_kind',
]
