"""Calendly service — scheduling links that carry the booking correlation key.

Calendly echoes UTM parameters back on the invitee in its webhooks. We use
utm_content to smuggle a query string with the booking_ref and the ids a
Booking needs; event_normalizer.parse_tracking_params() reads it back.

Also looks up scheduled events over the Calendly API for webhook payloads
that reference the event by URI only.
"""

import logging
import uuid
from urllib.parse import urlencode, urlsplit, urlunsplit, parse_qsl

import requests

from booking_sync.services.event_normalizer import CORRELATION_FIELD

logger = logging.getLogger(__name__)

UTM_SOURCE = "buildappswith"
UTM_CAMPAIGN = "booking"


def new_correlation_key():
    return f"bk_{uuid.uuid4().hex}"


def build_scheduling_link(scheduling_url, correlation_key, client_id, builder_id,
                          session_type_id, name=None, email=None):
    """Return `scheduling_url` with our tracking parameters appended.

    `name` / `email` prefill the Calendly form when known.
    """
    utm_content = urlencode({
        CORRELATION_FIELD: correlation_key,
        "client_id": client_id,
        "builder_id": builder_id,
        "session_type_id": session_type_id,
    })

    parts = urlsplit(scheduling_url)
    query = dict(parse_qsl(parts.query))
    query.update({
        "utm_source": UTM_SOURCE,
        "utm_campaign": UTM_CAMPAIGN,
        "utm_content": utm_content,
    })
    if name:
        query["name"] = name
    if email:
        query["email"] = email

    return urlunsplit(parts._replace(query=urlencode(query)))


# ──────────────────────────────────────────────
# Calendly API (scheduled event lookup)
# ──────────────────────────────────────────────

CALENDLY_API_BASE_URL = "https://api.calendly.com"


def fetch_scheduled_event(event_uri, api_token, timeout=5):
    """GET a scheduled event resource. Returns the resource dict or None."""
    if not event_uri.startswith(f"{CALENDLY_API_BASE_URL}/scheduled_events/"):
        logger.warning(f"Refusing to fetch non-Calendly event URI {event_uri}")
        return None

    try:
        resp = requests.get(
            event_uri,
            headers={
                "Authorization": f"Bearer {api_token}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
        )
    except requests.exceptions.Timeout:
        logger.warning(f"Calendly API timeout fetching {event_uri}")
        return None
    except requests.exceptions.RequestException as e:
        logger.warning(f"Calendly API request failed for {event_uri}: {e}")
        return None

    if resp.status_code != 200:
        logger.warning(f"Calendly API returned {resp.status_code} for {event_uri}")
        return None

    try:
        data = resp.json()
    except ValueError:
        logger.warning(f"Calendly API returned a non-JSON body for {event_uri}")
        return None

    resource = data.get("resource") if isinstance(data, dict) else None
    if not isinstance(resource, dict):
        logger.warning(f"Calendly API response for {event_uri} has no resource object")
        return None
    return resource


def enrich_invitee_payload(body, api_token):
    """Fill in `payload.scheduled_event` when a webhook only carries the event URI.

    Leaves `body` untouched if there is nothing to fetch or the lookup fails;
    the normalizer then rejects it and Calendly retries.
    """
    invitee = body.get("payload")
    if not isinstance(invitee, dict) or invitee.get("scheduled_event"):
        return body
    if body.get("event") != "invitee.created" or not api_token:
        return body

    event_uri = invitee.get("event")
    if not event_uri or not isinstance(event_uri, str):
        return body

    resource = fetch_scheduled_event(event_uri, api_token)
    if resource:
        invitee["scheduled_event"] = {
            "uri": resource.get("uri", event_uri),
            "start_time": resource.get("start_time"),
            "end_time": resource.get("end_time"),
        }
        logger.info(f"Fetched scheduled event {event_uri} for invitee {invitee.get('uri')}")
    return body
