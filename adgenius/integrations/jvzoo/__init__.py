"""JVZoo marketplace integration."""

from adgenius.integrations.jvzoo.ipn import (
    JVZOO_PRODUCT_MAP,
    PurchaseEvent,
    parse_ipn,
    sign_fields,
    verify_signature,
)

__all__ = [
    "JVZOO_PRODUCT_MAP",
    "PurchaseEvent",
    "parse_ipn",
    "sign_fields",
    "verify_signature",
]
