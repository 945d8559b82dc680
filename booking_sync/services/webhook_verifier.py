"""Webhook verifier — signature checks for inbound provider webhooks.

Responsible for:
- Stripe signatures (`Stripe-Signature: t=...,v1=...`) via the stripe library
- Calendly signatures (`Calendly-Webhook-Signature: t=...,v1=...`),
  HMAC-SHA256 over "{t}.{body}"
- Accepting a secondary secret while a signing key is being rotated

Verification fails closed: a missing header, an unparseable header or a
mismatch all return False. AuthenticityError is reserved for "could not
verify at all" (no secret configured, unknown provider).
"""

import hashlib
import hmac
import logging
import time

import stripe

from booking_sync.errors import AuthenticityError
from booking_sync.events import CALENDLY, STRIPE

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE_SECONDS = 300

SIGNATURE_HEADERS = {
    STRIPE: "Stripe-Signature",
    CALENDLY: "Calendly-Webhook-Signature",
}


def _as_text(body):
    if isinstance(body, bytes):
        return body.decode("utf-8")
    return body


# ──────────────────────────────────────────────
# Provider checks
# ──────────────────────────────────────────────

def _verify_stripe(body: str, header: str, secret: str, tolerance: int, now: float) -> bool:
    # stripe checks the timestamp against time.time(); `now` is only used
    # by the Calendly check.
    try:
        return stripe.WebhookSignature.verify_header(body, header, secret, tolerance)
    except stripe.SignatureVerificationError as e:
        logger.debug(f"Stripe signature rejected: {e}")
        return False


def parse_signature_header(header):
    """Split a `t=...,v1=...` header into (timestamp, [v1 signatures]).

    Returns (None, []) when the header cannot be parsed.
    """
    timestamp = None
    signatures = []
    for part in header.split(","):
        key, sep, value = part.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                return None, []
        elif key == "v1" and value:
            signatures.append(value)
    return timestamp, signatures


def compute_calendly_signature(secret: str, timestamp: int, body: str) -> str:
    signed_payload = f"{timestamp}.{body}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()


def _verify_calendly(body: str, header: str, secret: str, tolerance: int, now: float) -> bool:
    timestamp, signatures = parse_signature_header(header)
    if timestamp is None or not signatures:
        logger.debug("Calendly signature header malformed")
        return False

    if tolerance and abs(now - timestamp) > tolerance:
        logger.debug(f"Calendly signature timestamp outside tolerance: t={timestamp}")
        return False

    # Compare bytes: compare_digest rejects non-ASCII str arguments.
    expected = compute_calendly_signature(secret, timestamp, body).encode("ascii")
    return any(
        hmac.compare_digest(expected, candidate.encode("utf-8", "surrogatepass"))
        for candidate in signatures
    )


_VERIFIERS = {
    STRIPE: _verify_stripe,
    CALENDLY: _verify_calendly,
}


# ──────────────────────────────────────────────
# Public API
# ──────────────────────────────────────────────

def verify(provider, body, signature_header, secret, secondary_secret=None,
           tolerance=DEFAULT_TOLERANCE_SECONDS, now=None):
    """Return True only if `signature_header` authenticates `body` for `provider`.

    Raises AuthenticityError if no secret is configured or the provider is
    unknown. Every other failure is a plain False.
    """
    check = _VERIFIERS.get(provider)
    if check is None:
        raise AuthenticityError(f"No verifier registered for provider {provider!r}")
    if not secret:
        raise AuthenticityError(f"Webhook secret for {provider} is not configured")

    if not signature_header:
        return False

    try:
        text = _as_text(body)
    except UnicodeDecodeError:
        return False
    if text is None:
        return False

    now = time.time() if now is None else now

    if check(text, signature_header, secret, tolerance, now):
        return True

    if secondary_secret and check(text, signature_header, secondary_secret, tolerance, now):
        logger.info(f"Validated {provider} webhook signature using secondary secret")
        return True

    return False
