"""
Order event trail in Firestore.

Each committed order or bill change made through the API is appended to the
events collection as one document. The SQL database stays authoritative;
`record_event` therefore never fails the request that produced the event.
"""
import logging
import os
import time
from typing import Any, Dict, Optional

from google.api_core.exceptions import DeadlineExceeded, GoogleAPIError, RetryError, ServiceUnavailable
from google.auth.exceptions import GoogleAuthError
from google.cloud import firestore

from clock import utc_now

logger = logging.getLogger(__name__)

EVENTS_COLLECTION = os.getenv("FIRESTORE_EVENTS_COLLECTION", "order_events")
# Firestore Native database id; "(default)" is Datastore mode
FIRESTORE_DB_ID = os.getenv("FIRESTORE_DB_ID", "default")

ATTEMPTS = 3
BACKOFF_SECONDS = 1.0
TRANSIENT_ERRORS = (ServiceUnavailable, DeadlineExceeded, RetryError)

ORDER_EVENTS = frozenset({
    "ORDER_CREATED",
    "ITEM_STATUS_CHANGED",
    "ORDER_CANCELLED",
    "BILL_GENERATED",
    "BILL_SPLIT",
    "BILL_PAID",
})

_client: Optional[firestore.Client] = None


def get_client() -> firestore.Client:
    global _client
    if _client is None:
        _client = firestore.Client(database=FIRESTORE_DB_ID)
    return _client


def event_document(order_id: int, actor_email: str, event: str, payload: Optional[Dict[str, Any]] = None) -> dict:
    if event not in ORDER_EVENTS:
        raise ValueError(f"Unknown order event {event!r}")
    return {
        "order_id": int(order_id),
        "event": event,
        "actor_email": actor_email or "",
        "payload": dict(payload or {}),
        "created_at": firestore.SERVER_TIMESTAMP,
        "recorded_at": utc_now().isoformat(),
    }


def log_order_event(order_id: int, actor_email: str, event: str, payload: Optional[Dict[str, Any]] = None) -> str:
    """
    Append one event and return its document id.

    Transient Firestore errors are retried with a linear backoff. Any other
    error, or the last failed attempt, is raised to the caller.
    """
    doc = event_document(order_id, actor_email, event, payload)
    events = get_client().collection(EVENTS_COLLECTION)
    for attempt in range(1, ATTEMPTS + 1):
        ref = events.document()
        try:
            ref.set(doc)
            return ref.id
        except TRANSIENT_ERRORS as e:
            if attempt == ATTEMPTS:
                raise
            logger.warning(
                "Order %s %s: Firestore write attempt %d/%d failed: %s",
                order_id, event, attempt, ATTEMPTS, e,
            )
            time.sleep(BACKOFF_SECONDS * attempt)


def record_event(enabled: bool, order_id: int, actor_email: str, event: str, payload=None) -> Optional[str]:
    """Best-effort `log_order_event`; returns None when disabled or on failure."""
    if not enabled:
        return None
    try:
        doc_id = log_order_event(order_id, actor_email, event, payload)
    except (GoogleAPIError, GoogleAuthError) as e:
        logger.error("Order %s event %s not recorded: %s", order_id, event, e)
        return None
    logger.debug("Order %s event %s recorded as %s", order_id, event, doc_id)
    return doc_id
