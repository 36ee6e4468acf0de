"""License key generation: AG- followed by 20 upper-case hex characters."""

import hashlib
import hmac
import re
import secrets
import time

LICENSE_KEY_PREFIX = "AG-"
LICENSE_KEY_HEX_LENGTH = 20

LICENSE_KEY_PATTERN = re.compile(rf"^{LICENSE_KEY_PREFIX}[0-9A-F]{{{LICENSE_KEY_HEX_LENGTH}}}$")


def generate_license_key(secret: str) -> str:
    """HMAC-SHA256 over a timestamp and a random token, keyed by LICENSE_SECRET."""
    token = f"{time.time_ns()}|{secrets.token_hex(16)}"
    digest = hmac.new(secret.encode("utf-8"), token.encode("utf-8"), hashlib.sha256).hexdigest()
    return f"{LICENSE_KEY_PREFIX}{digest.upper()[:LICENSE_KEY_HEX_LENGTH]}"


def is_valid_license_key(value: str) -> bool:
    return bool(LICENSE_KEY_PATTERN.match(str(value or "").strip()))
