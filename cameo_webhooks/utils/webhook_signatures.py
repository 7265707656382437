"""
Webhook signature validation - verify incoming webhooks are authentic.

Supported providers:
- Stripe: timestamped HMAC-SHA256 via Stripe-Signature ("t=...,v1=...")
- fal.ai: HMAC-SHA256 of the raw body via X-Fal-Signature ("sha256=...")
- Replicate: HMAC-SHA1 of the raw body via Replicate-Signature ("sha1=...")

Validators never raise: any parsing/decoding problem comes back as an
invalid result carrying the error message.
"""
import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from typing import Optional, Union

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE_SECONDS = 300

Body = Union[bytes, str]


@dataclass(frozen=True)
class SignatureCheck:
    is_valid: bool
    error: Optional[str] = None


def _to_bytes(body: Body) -> bytes:
    if isinstance(body, bytes):
        return body
    return body.encode("utf-8")


def _hex_digest_matches(expected_hex: str, provided_hex: str) -> bool:
    """Constant-time comparison of two hex digests (decoded to raw bytes)."""
    try:
        provided = bytes.fromhex(provided_hex.strip())
    except ValueError:
        return False
    return hmac.compare_digest(bytes.fromhex(expected_hex), provided)


def _parse_stripe_header(signature: str) -> tuple[Optional[str], list[str]]:
    timestamp = None
    v1_signatures: list[str] = []
    for element in signature.split(","):
        key, sep, value = element.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            timestamp = value
        elif key == "v1":
            v1_signatures.append(value)
    return timestamp, v1_signatures


def validate_stripe_signature(
    body: Body,
    signature: str,
    secret: str,
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
    now: Optional[float] = None,
) -> SignatureCheck:
    """
    Validate a Stripe-style timestamped signature.
    Signed string is "{t}.{body}"; the timestamp must be within tolerance of now.
    """
    try:
        timestamp_raw, v1_signatures = _parse_stripe_header(signature or "")
        if not timestamp_raw or not v1_signatures:
            return SignatureCheck(False, "Invalid signature format")

        timestamp = int(timestamp_raw)
        current = int(now if now is not None else time.time())
        if abs(current - timestamp) > tolerance_seconds:
            return SignatureCheck(False, "Timestamp outside tolerance window")

        signed_payload = f"{timestamp_raw}.".encode("utf-8") + _to_bytes(body)
        expected = hmac.new(
            secret.encode("utf-8"), signed_payload, hashlib.sha256,
        ).hexdigest()

        # Check every v1 entry without short-circuiting (secret rotation sends several)
        matched = False
        for candidate in v1_signatures:
            if _hex_digest_matches(expected, candidate):
                matched = True
        return SignatureCheck(matched, None if matched else "Signature mismatch")
    except Exception as e:
        return SignatureCheck(False, f"Signature validation error: {e}")


def _validate_prefixed_hmac(
    body: Body,
    signature: str,
    secret: str,
    prefix: str,
    digestmod,
    provider: str,
) -> SignatureCheck:
    try:
        provided = signature or ""
        if provided.startswith(prefix):
            provided = provided[len(prefix):]
        if not provided:
            return SignatureCheck(False, "Invalid signature format")

        expected = hmac.new(
            secret.encode("utf-8"), _to_bytes(body), digestmod,
        ).hexdigest()
        if _hex_digest_matches(expected, provided):
            return SignatureCheck(True)
        return SignatureCheck(False, "Signature mismatch")
    except Exception as e:
        return SignatureCheck(False, f"{provider} signature validation error: {e}")


def validate_fal_signature(body: Body, signature: str, secret: str) -> SignatureCheck:
    """Validate an HMAC-SHA256 signature of the form "sha256=<hex>"."""
    return _validate_prefixed_hmac(body, signature, secret, "sha256=", hashlib.sha256, "fal")


def validate_replicate_signature(body: Body, signature: str, secret: str) -> SignatureCheck:
    """Validate an HMAC-SHA1 signature of the form "sha1=<hex>"."""
    return _validate_prefixed_hmac(body, signature, secret, "sha1=", hashlib.sha1, "Replicate")


# Header carrying each provider's signature
SIGNATURE_HEADERS = {
    "stripe": "stripe-signature",
    "fal": "x-fal-signature",
    "replicate": "replicate-signature",
}


def verify_provider_signature(
    source: str,
    body: Body,
    signature: str,
    secret: str,
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
) -> SignatureCheck:
    """Dispatch to the signature scheme used by a provider source."""
    if source == "stripe":
        return validate_stripe_signature(body, signature, secret, tolerance_seconds)
    if source == "fal":
        return validate_fal_signature(body, signature, secret)
    if source == "replicate":
        return validate_replicate_signature(body, signature, secret)
    return SignatureCheck(False, f"Unknown webhook source: {source}")


def compute_payload_hash(body: Body) -> str:
    """Compute SHA-256 hash of raw payload for audit log lines."""
    return hashlib.sha256(_to_bytes(body)).hexdigest()
