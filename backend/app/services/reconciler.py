"""Webhook reconciliation: turn an OpenPix callback into an entitlement.

Every delivery is handled as an independent unit of work. The provider
redelivers freely and in any order, so:

- deliveries that can never become actionable (other event types, missing
  or foreign correlation IDs) are acknowledged as ``ignored`` instead of
  failing, otherwise the provider would retry them forever;
- the ``-> paid`` transition is a conditional update and doubles as the
  at-most-once gate; the entitlement write shares its transaction, so a
  delivery that loses the race never extends a rental twice;
- a session that expired or was cancelled before the money arrived is still
  settled and granted;
- store failures propagate (5xx) so the provider retries later.
"""
import json
import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Optional

from app.config import settings
from app.exceptions import BadRequest, Unauthorized
from app.models.checkout_session import CheckoutSession, SESSION_PAID, SESSION_PENDING
from app.services.checkout import MODE_LIFETIME
from app.services.correlation import decode_correlation_id
from app.services.entitlement_store import EntitlementStore
from app.services.signature import verify_signature
from app.services import webhook_payload

logger = logging.getLogger(__name__)

STATUS_PROCESSED = "processed"
STATUS_IGNORED = "ignored"
STATUS_ALREADY_PROCESSED = "already_processed"


@dataclass
class ReconcileResult:
    """Outcome of one delivery. Always answered with HTTP 200."""

    status: str
    reason: Optional[str] = None
    correlation_id: Optional[str] = None
    email: Optional[str] = None

    def to_dict(self) -> dict:
        return {key: value for key, value in asdict(self).items() if value is not None}


def ignored(reason: str, correlation_id: Optional[str] = None) -> ReconcileResult:
    return ReconcileResult(status=STATUS_IGNORED, reason=reason, correlation_id=correlation_id)


def compute_rental_expiry(
    current_expiry: Optional[datetime],
    duration_days: int,
    now: datetime,
) -> datetime:
    """New rental expiry after a renewal.

    Unexpired time stacks: the duration is added to the current expiry when
    that is still in the future, otherwise to ``now``.
    """
    base = current_expiry if current_expiry is not None and current_expiry > now else now
    return base + timedelta(days=duration_days)


def parse_payload(raw_body: bytes):
    """Decode the body as JSON. Any well-formed value is returned, object or not."""
    try:
        return json.loads(raw_body.decode("utf-8-sig"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise BadRequest("invalid_json") from e


async def apply_entitlement(
    store: EntitlementStore,
    session: CheckoutSession,
    payment_ref: Optional[str],
    now: datetime,
    default_duration_days: int,
) -> None:
    """Grant the lifetime purchase or extend/create the rental for a paid session."""
    if session.mode == MODE_LIFETIME:
        await store.upsert_purchase(session.user_id, session.game_id, payment_ref, now)
        logger.info(f"Lifetime purchase recorded for user {session.user_id} game {session.game_id}")
        return

    duration = default_duration_days
    if session.game is not None and session.game.rental_duration_days is not None:
        duration = session.game.rental_duration_days

    current = await store.get_active_rental(session.user_id, session.game_id)
    if current is not None and current.expires_at is None:
        # Unlimited rental stays unlimited
        expires_at = None
    else:
        expires_at = compute_rental_expiry(
            current.expires_at if current is not None else None,
            duration,
            now,
        )

    await store.upsert_rental(session.user_id, session.game_id, expires_at, payment_ref, now)
    logger.info(
        f"Rental for user {session.user_id} game {session.game_id} "
        f"{'extended' if current is not None else 'created'} until {expires_at}"
    )


async def reconcile(
    store: EntitlementStore,
    raw_body: bytes,
    signature_header: Optional[str],
    now: Optional[datetime] = None,
    secret: Optional[str] = None,
    allow_unsigned: Optional[bool] = None,
    default_duration_days: Optional[int] = None,
) -> ReconcileResult:
    """
    Process one webhook delivery.

    Args:
        store: Store gateway bound to this request's transaction.
        raw_body: Body bytes exactly as received (signature input).
        signature_header: Value of ``x-openpix-signature``.
        now: Clock override for tests.
        secret, allow_unsigned, default_duration_days: Overrides for the
            corresponding settings.

    Raises:
        Unauthorized: signature verification failed.
        BadRequest: body is not valid JSON.
        UpstreamFailure: the store failed; the provider should retry.
    """
    secret = settings.OPENPIX_WEBHOOK_SECRET if secret is None else secret
    if allow_unsigned is None:
        allow_unsigned = settings.OPENPIX_ALLOW_UNSIGNED_WEBHOOKS
    if default_duration_days is None:
        default_duration_days = settings.DEFAULT_RENTAL_DURATION_DAYS

    if not verify_signature(raw_body, signature_header, secret, allow_unsigned=allow_unsigned):
        logger.warning("Rejected webhook delivery with invalid signature")
        raise Unauthorized("invalid_signature")

    payload = parse_payload(raw_body)
    if not isinstance(payload, dict):
        logger.warning(f"Ignoring webhook with non-object JSON body ({type(payload).__name__})")
        return ignored("missing_correlation")

    event_type = webhook_payload.extract_event_type(payload)
    if not webhook_payload.is_completion_event(event_type):
        logger.info(f"Ignoring webhook event type {event_type}")
        return ignored("event_type")

    correlation_id = webhook_payload.extract_correlation_id(payload)
    if not correlation_id:
        logger.warning("Ignoring webhook without correlation ID")
        return ignored("missing_correlation")

    parts = decode_correlation_id(correlation_id)
    if not parts.complete:
        logger.warning(f"Ignoring webhook with undecodable correlation ID {correlation_id}")
        return ignored("invalid_correlation", correlation_id)

    session = await store.get_session_by_correlation(correlation_id)
    if session is None:
        # Usually a charge created by another environment sharing the provider account
        logger.warning(f"No checkout session for correlation ID {correlation_id}")
        return ignored("session_not_found", correlation_id)

    if session.user_id != parts.user_id or session.game_id != parts.game_id or session.id != parts.session_id:
        logger.error(f"Correlation ID {correlation_id} does not match session {session.id}")
        return ignored("correlation_mismatch", correlation_id)

    if session.status == SESSION_PAID:
        logger.info(f"Checkout session {session.id} already processed")
        return ReconcileResult(status=STATUS_ALREADY_PROCESSED, correlation_id=correlation_id)

    if session.status != SESSION_PENDING:
        logger.warning(
            f"Settling {session.status} checkout session {session.id}: payment arrived after it closed"
        )

    now = now or datetime.utcnow()
    payment_ref = webhook_payload.extract_payment_reference(payload)

    try:
        if not await store.mark_session_paid(session.id, payment_ref, now):
            # A concurrent delivery flipped it between our read and this write
            await store.rollback()
            logger.info(f"Checkout session {session.id} settled by a concurrent delivery")
            return ReconcileResult(status=STATUS_ALREADY_PROCESSED, correlation_id=correlation_id)

        await apply_entitlement(store, session, payment_ref, now, default_duration_days)
        await store.commit()
    except Exception:
        await store.rollback()
        raise

    logger.info(f"Processed payment {payment_ref} for checkout session {session.id}")
    return ReconcileResult(
        status=STATUS_PROCESSED,
        correlation_id=correlation_id,
        email=webhook_payload.extract_customer_email(payload),
    )
