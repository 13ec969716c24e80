"""HMAC-SHA256 signing for outbound webhook bodies.

Two header conventions are in use and both are kept: production deliveries
carry the bare hex digest, test probes carry `sha256=<hex>`. Receivers
integrated against either form keep working.

Always sign the exact string that goes on the wire; never re-serialize
the payload before signing or verifying.
"""

import hashlib
import hmac
import secrets

SECRET_PREFIX = "whsec_"
SIGNATURE_PREFIX = "sha256="
MASKED_SECRET = "••••••••"


def generate_webhook_secret() -> str:
    """Generate a new subscription secret: `whsec_` + 48 hex chars."""
    return f"{SECRET_PREFIX}{secrets.token_hex(24)}"


def _to_bytes(value: str | bytes) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def sign_payload(body: str | bytes, secret: str) -> str:
    """Bare hex HMAC-SHA256 of `body` keyed with `secret`."""
    return hmac.new(_to_bytes(secret), _to_bytes(body), hashlib.sha256).hexdigest()


def sign_payload_prefixed(body: str | bytes, secret: str) -> str:
    """Same digest as sign_payload, presented as `sha256=<hex>`."""
    return f"{SIGNATURE_PREFIX}{sign_payload(body, secret)}"


def verify_signature(body: str | bytes, secret: str, signature: str) -> bool:
    """Check a received signature header in either presentation."""
    if not signature:
        return False
    if signature.startswith(SIGNATURE_PREFIX):
        signature = signature[len(SIGNATURE_PREFIX):]
    expected = sign_payload(body, secret).encode("utf-8")
    return hmac.compare_digest(expected, signature.lower().encode("utf-8"))
