"""Webhook signature and token verification.

Every verifier works on the raw request body exactly as received. Parsing
and re-serializing JSON before verifying would change the bytes and break
the HMAC, so callers must pass ``await request.body()`` untouched.
"""

import base64
import hashlib
import hmac
import logging
from collections.abc import Mapping
from typing import Any

import stripe

from src.api.middleware.error_handler import AuthenticationError

logger = logging.getLogger(__name__)

FEDEX_SIGNATURE_HEADER = "x-fedex-signature"
SHIPROCKET_TOKEN_HEADER = "x-shiprocket-token"
UPS_SIGNATURE_HEADER = "x-ups-signature"
UPS_EVENT_ID_HEADER = "x-ups-event-id"
STRIPE_SIGNATURE_HEADER = "stripe-signature"
RAZORPAY_SIGNATURE_HEADER = "x-razorpay-signature"


def _hmac_sha256(secret: str, raw_body: bytes) -> bytes:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()


def _matches(received: str, expected: str) -> bool:
    # Headers may carry arbitrary text; compare_digest only accepts ASCII str.
    return hmac.compare_digest(received.encode("utf-8"), expected.encode("ascii"))


def _redact(signature: str) -> str:
    return f"{signature[:10]}..." if len(signature) > 10 else "***"


def _require_header(headers: Mapping[str, str], name: str, provider: str) -> str:
    value = headers.get(name)
    if not value:
        logger.warning("%s webhook missing %s header", provider, name)
        raise AuthenticationError(f"Missing {name} header")
    return value


def _require_secret(secret: str, provider: str) -> None:
    if not secret:
        logger.error("%s webhook secret is not configured; rejecting event", provider)
        raise AuthenticationError(f"{provider} webhook verification is not configured")


def verify_fedex_signature(raw_body: bytes, headers: Mapping[str, str], secret: str) -> None:
    """Verify a FedEx webhook HMAC-SHA256 signature.

    Integration versions differ in how they encode the digest, so both the
    base64 and hex encodings are accepted.

    Raises:
        AuthenticationError: If the header or secret is missing or neither encoding matches.
    """
    _require_secret(secret, "FedEx")
    signature = _require_header(headers, FEDEX_SIGNATURE_HEADER, "FedEx").strip()

    digest = _hmac_sha256(secret, raw_body)
    expected_base64 = base64.b64encode(digest).decode("ascii")
    expected_hex = digest.hex()

    if not (
        _matches(signature, expected_base64)
        or _matches(signature.lower(), expected_hex)
    ):
        logger.warning("FedEx webhook signature mismatch: %s", _redact(signature))
        raise AuthenticationError("Invalid signature")


def verify_shiprocket_token(headers: Mapping[str, str], token: str) -> None:
    """Verify the static Shiprocket shared-secret token.

    Shiprocket does not sign bodies; the token header is the only credential.

    Raises:
        AuthenticationError: If the token is missing or does not match.
    """
    _require_secret(token, "Shiprocket")
    received = _require_header(headers, SHIPROCKET_TOKEN_HEADER, "Shiprocket")
    if not hmac.compare_digest(received.encode("utf-8"), token.encode("utf-8")):
        logger.warning("Shiprocket webhook token mismatch")
        raise AuthenticationError("Invalid token")


def verify_ups_signature(raw_body: bytes, headers: Mapping[str, str], secret: str) -> None:
    """Verify a UPS webhook HMAC-SHA256 hex signature.

    Raises:
        AuthenticationError: If the header or secret is missing or the digest does not match.
    """
    _require_secret(secret, "UPS")
    signature = _require_header(headers, UPS_SIGNATURE_HEADER, "UPS").strip()
    expected = _hmac_sha256(secret, raw_body).hex()
    if not _matches(signature.lower(), expected):
        logger.warning("UPS webhook signature mismatch: %s", _redact(signature))
        raise AuthenticationError("Invalid signature")


def verify_razorpay_signature(raw_body: bytes, headers: Mapping[str, str], secret: str) -> None:
    """Verify a Razorpay webhook HMAC-SHA256 hex signature.

    Raises:
        AuthenticationError: If the header is missing or the digest does not match.
    """
    _require_secret(secret, "Razorpay")
    signature = _require_header(headers, RAZORPAY_SIGNATURE_HEADER, "Razorpay").strip()
    expected = _hmac_sha256(secret, raw_body).hex()
    if not _matches(signature, expected):
        logger.warning("Razorpay webhook signature mismatch: %s", _redact(signature))
        raise AuthenticationError("Invalid signature")


def construct_stripe_event(
    raw_body: bytes,
    headers: Mapping[str, str],
    secrets: list[str],
) -> dict[str, Any]:
    """Verify a Stripe webhook and return the event.

    Tries each configured signing secret in order (production, then test).

    Args:
        raw_body: Raw request body.
        headers: Request headers.
        secrets: Signing secrets to try.

    Returns:
        dict: Verified Stripe event.

    Raises:
        AuthenticationError: If the header is missing or no secret verifies the payload.
    """
    if not secrets:
        _require_secret("", "Stripe")
    sig_header = _require_header(headers, STRIPE_SIGNATURE_HEADER, "Stripe")

    for secret in secrets:
        try:
            return stripe.Webhook.construct_event(raw_body, sig_header, secret)
        except stripe.error.SignatureVerificationError:
            continue
        except ValueError as e:
            # Payload is not JSON; the signature cannot be trusted either way.
            raise AuthenticationError("Invalid payload") from e

    logger.warning("Stripe webhook signature mismatch: %s", _redact(sig_header))
    raise AuthenticationError("Invalid signature")
