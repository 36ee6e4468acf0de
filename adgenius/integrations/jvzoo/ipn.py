"""
JVZoo Instant Payment Notification (IPN) adapter.

Turns a raw notification (JSON or form body, JVZoo field names or the
generic camelCase names) into a typed PurchaseEvent, and verifies the
JVZoo digest:

    SHA1(secret|ctransaction|cproditem|ccustcc|ctransaffiliate|ctransamount)

upper-cased hex. JVZoo sends the first 8 characters of the digest in
cverify; the full 40-character digest is accepted too.

SECURITY:
- Digest comparison is constant-time
- Nothing from an unverified notification is trusted beyond logging
"""

import hashlib
import hmac
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional

from adgenius.entitlements.catalog import (
    AGENCY_LICENSE,
    CATALOG,
    ELITE_BUNDLE,
    FRONTEND,
    PRO_LICENSE,
    RESELLER_LICENSE,
    TEMPLATES_LICENSE,
)
from adgenius.entitlements.errors import VerificationFailedError
from adgenius.models.jvzoo_transaction import TransactionType

logger = logging.getLogger(__name__)

# JVZoo product item number -> catalog product id
JVZOO_PRODUCT_MAP: Dict[str, str] = {
    "427079": FRONTEND,
    "427343": PRO_LICENSE,
    "427345": PRO_LICENSE,          # downsell
    "427347": TEMPLATES_LICENSE,
    "427349": TEMPLATES_LICENSE,    # downsell
    "427351": AGENCY_LICENSE,
    "427353": AGENCY_LICENSE,       # downsell
    "427355": RESELLER_LICENSE,
    "427359": RESELLER_LICENSE,     # downsell
    "427357": ELITE_BUNDLE,
}

# JVZoo ctransaction values -> normalised type
TRANSACTION_TYPE_ALIASES: Dict[str, TransactionType] = {
    "SALE": TransactionType.SALE,
    "RFND": TransactionType.REFUND,
    "REFUND": TransactionType.REFUND,
    "CGBK": TransactionType.CHARGEBACK,
    "CHARGEBACK": TransactionType.CHARGEBACK,
    "BILL": TransactionType.RECURRING,
    "INSTAL": TransactionType.RECURRING,
    "RECURRING": TransactionType.RECURRING,
    "CANCEL-REBILL": TransactionType.CANCEL,
    "CANCEL": TransactionType.CANCEL,
}

# Generic name -> JVZoo name
FIELD_ALIASES: Dict[str, str] = {
    "transactionType": "ctransaction",
    "transactionId": "ctransreceipt",
    "productId": "cproditem",
    "customerEmail": "ccustemail",
    "customerName": "ccustname",
    "customerCountry": "ccustcc",
    "affiliate": "ctransaffiliate",
    "amount": "ctransamount",
    "signature": "cverify",
}

REQUIRED_FIELDS = ("ctransaction", "ctransreceipt", "cproditem", "ccustemail")

SHORT_DIGEST_LENGTH = 8


@dataclass(frozen=True)
class PurchaseEvent:
    """A parsed, not yet verified, purchase notification."""

    transaction_type: TransactionType
    transaction_id: str
    vendor_product_id: str
    customer_email: str
    product_id: Optional[str] = None  # None when the product is not in the catalog
    customer_name: Optional[str] = None
    amount: Optional[Decimal] = None
    signature: Optional[str] = None
    fields: Dict[str, str] = field(default_factory=dict)


def normalize_fields(raw: Mapping[str, Any]) -> Dict[str, str]:
    """Map generic names onto JVZoo names; JVZoo names win when both are present."""
    normalized: Dict[str, str] = {}
    for key, value in raw.items():
        if value is None:
            continue
        normalized[FIELD_ALIASES.get(key, key)] = str(value).strip()
    for jvzoo_name in FIELD_ALIASES.values():
        if jvzoo_name in raw and raw[jvzoo_name] is not None:
            normalized[jvzoo_name] = str(raw[jvzoo_name]).strip()
    return normalized


def resolve_product_id(vendor_product_id: str) -> Optional[str]:
    """Catalog id for a JVZoo item number, or for a catalog id passed through."""
    candidate = str(vendor_product_id).strip()
    if candidate in JVZOO_PRODUCT_MAP:
        return JVZOO_PRODUCT_MAP[candidate]
    if candidate in CATALOG:
        return candidate
    return None


def parse_transaction_type(value: str) -> TransactionType:
    transaction_type = TRANSACTION_TYPE_ALIASES.get(str(value).strip().upper())
    if transaction_type is None:
        raise ValueError(f"Unsupported transaction type: {value}")
    return transaction_type


def _parse_amount(value: Optional[str]) -> Optional[Decimal]:
    if not value:
        return None
    try:
        return Decimal(value).quantize(Decimal("0.01"))
    except InvalidOperation:
        raise ValueError(f"Invalid amount: {value}")


def parse_ipn(raw: Mapping[str, Any]) -> PurchaseEvent:
    """
    Parse a notification body.

    Raises:
        VerificationFailedError: required fields missing or malformed
    """
    fields_ = normalize_fields(raw)
    transaction_id = fields_.get("ctransreceipt") or None

    missing = [name for name in REQUIRED_FIELDS if not fields_.get(name)]
    if missing:
        raise VerificationFailedError(transaction_id, f"missing fields: {', '.join(missing)}")

    try:
        transaction_type = parse_transaction_type(fields_["ctransaction"])
        amount = _parse_amount(fields_.get("ctransamount"))
    except ValueError as exc:
        raise VerificationFailedError(transaction_id, str(exc)) from exc

    return PurchaseEvent(
        transaction_type=transaction_type,
        transaction_id=fields_["ctransreceipt"],
        vendor_product_id=fields_["cproditem"],
        product_id=resolve_product_id(fields_["cproditem"]),
        customer_email=fields_["ccustemail"].lower(),
        customer_name=fields_.get("ccustname") or None,
        amount=amount,
        signature=fields_.get("cverify") or None,
        fields=fields_,
    )


def compute_digest(fields_: Mapping[str, str], secret: str) -> str:
    """Full upper-case SHA-1 digest JVZoo uses for cverify."""
    parts = [
        secret,
        fields_.get("ctransaction", ""),
        fields_.get("cproditem", ""),
        fields_.get("ccustcc", ""),
        fields_.get("ctransaffiliate", ""),
        fields_.get("ctransamount", ""),
    ]
    return hashlib.sha1("|".join(parts).encode("utf-8")).hexdigest().upper()


def verify_signature(event: PurchaseEvent, secret: Optional[str]) -> None:
    """
    Check the notification digest.

    Raises:
        VerificationFailedError: secret not configured, signature missing or wrong
    """
    if not secret:
        logger.error("JVZOO_SECRET_KEY not configured for IPN verification")
        raise VerificationFailedError(event.transaction_id, "secret not configured")

    provided = (event.signature or "").upper()
    if not provided:
        raise VerificationFailedError(event.transaction_id, "signature missing")

    expected = compute_digest(event.fields, secret)
    if len(provided) == SHORT_DIGEST_LENGTH:
        expected = expected[:SHORT_DIGEST_LENGTH]

    if not hmac.compare_digest(expected, provided):
        raise VerificationFailedError(event.transaction_id, "signature mismatch")


def sign_fields(fields_: Mapping[str, Any], secret: str, short: bool = True) -> str:
    """cverify value for a notification; used by the simulator and tests."""
    digest = compute_digest(normalize_fields(fields_), secret)
    return digest[:SHORT_DIGEST_LENGTH] if short else digest
