"""Tests for OpenPix webhook reconciliation."""
import json
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import func, select

from app.exceptions import UpstreamFailure
from app.models.checkout_session import CheckoutSession
from app.models.purchase import Purchase
from app.models.rental import Rental
from app.services import checkout
from app.services.correlation import encode_correlation_id
from app.services.entitlement_store import EntitlementStore
from app.services.reconciler import compute_rental_expiry, reconcile
from app.services.signature import sign

WEBHOOK_URL = "/webhooks/openpix"
COMPLETED = "OPENPIX:CHARGE_COMPLETED"
T0 = datetime(2026, 3, 1, 12, 0, 0)


def completed_payload(correlation_id, txn_id="txn-1", email="Player@Example.com"):
    return {
        "event": COMPLETED,
        "charge": {
            "correlationID": correlation_id,
            "customer": {"email": email},
        },
        "pix": {"endToEndId": "E123"},
        "transaction": {"id": txn_id},
    }


async def open_session(db, user_id="u1", game_id="g1", mode=None, now=T0):
    """Create a pending session directly through the service."""
    return await checkout.create_session(
        EntitlementStore(db), user_id=user_id, game_id=game_id, mode=mode, now=now
    )


async def deliver(session_factory, payload, now, secret="test-webhook-secret"):
    body = json.dumps(payload).encode()
    async with session_factory() as db:
        return await reconcile(
            EntitlementStore(db), body, sign(body, secret), now=now, secret=secret
        )


async def count(session_factory, model):
    async with session_factory() as db:
        return (await db.execute(select(func.count()).select_from(model))).scalar_one()


async def rentals_for(session_factory, user_id="u1", game_id="g1"):
    async with session_factory() as db:
        result = await db.execute(
            select(Rental).where(Rental.user_id == user_id, Rental.game_id == game_id)
        )
        return result.scalars().all()


# ── HTTP surface ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_webhook_listening(anon_client):
    response = await anon_client.get(WEBHOOK_URL)

    assert response.status_code == 200
    assert response.json()["status"] == "listening"


@pytest.mark.asyncio
async def test_completed_webhook_grants_rental(anon_client, make_game, test_db, session_factory, signed_webhook):
    await make_game()
    result = await open_session(test_db, now=datetime.utcnow())
    body, headers = signed_webhook(completed_payload(result.correlation_id))

    response = await anon_client.post(WEBHOOK_URL, content=body, headers=headers)

    assert response.status_code == 200
    assert response.json() == {
        "status": "processed",
        "correlationId": result.correlation_id,
        "email": "player@example.com",
    }
    async with session_factory() as db:
        session = await db.get(CheckoutSession, result.session_id)
    assert session.status == "paid"
    assert session.payment_ref == "txn-1"
    assert session.paid_at is not None

    rentals = await rentals_for(session_factory)
    assert len(rentals) == 1
    assert rentals[0].status == "active"
    assert rentals[0].payment_ref == "txn-1"


@pytest.mark.asyncio
async def test_base64_signature_accepted(anon_client, make_game, test_db, signed_webhook):
    await make_game()
    result = await open_session(test_db, now=datetime.utcnow())
    body, headers = signed_webhook(completed_payload(result.correlation_id), encoding="base64")

    response = await anon_client.post(WEBHOOK_URL, content=body, headers=headers)

    assert response.status_code == 200
    assert response.json()["status"] == "processed"


@pytest.mark.asyncio
async def test_redelivery_is_already_processed(anon_client, make_game, test_db, session_factory, signed_webhook):
    await make_game()
    result = await open_session(test_db, now=datetime.utcnow())
    body, headers = signed_webhook(completed_payload(result.correlation_id))

    first = await anon_client.post(WEBHOOK_URL, content=body, headers=headers)
    second = await anon_client.post(WEBHOOK_URL, content=body, headers=headers)

    assert first.json()["status"] == "processed"
    assert second.status_code == 200
    assert second.json()["status"] == "already_processed"
    assert len(await rentals_for(session_factory)) == 1


@pytest.mark.asyncio
async def test_bad_signature_rejected(anon_client, make_game, test_db, session_factory, signed_webhook):
    await make_game()
    result = await open_session(test_db)
    body, headers = signed_webhook(completed_payload(result.correlation_id))
    tampered = body.replace(b"txn-1", b"txn-2")

    response = await anon_client.post(WEBHOOK_URL, content=tampered, headers=headers)

    assert response.status_code == 401
    assert response.json() == {"error": "invalid_signature"}
    assert await count(session_factory, Rental) == 0


@pytest.mark.asyncio
async def test_missing_signature_rejected(anon_client):
    response = await anon_client.post(WEBHOOK_URL, json={"event": COMPLETED})

    assert response.status_code == 401
    assert response.json() == {"error": "invalid_signature"}


@pytest.mark.asyncio
async def test_invalid_json_rejected(anon_client, webhook_secret):
    body = b"{oops"

    response = await anon_client.post(
        WEBHOOK_URL,
        content=body,
        headers={"x-openpix-signature": sign(body, webhook_secret)},
    )

    assert response.status_code == 400
    assert response.json() == {"error": "invalid_json"}


@pytest.mark.asyncio
async def test_non_completion_event_ignored(anon_client, make_game, test_db, session_factory, signed_webhook):
    await make_game()
    result = await open_session(test_db)
    payload = completed_payload(result.correlation_id)
    payload["event"] = "OPENPIX:CHARGE_EXPIRED"
    body, headers = signed_webhook(payload)

    response = await anon_client.post(WEBHOOK_URL, content=body, headers=headers)

    assert response.status_code == 200
    assert response.json() == {"status": "ignored", "reason": "event_type"}
    async with session_factory() as db:
        assert (await db.get(CheckoutSession, result.session_id)).status == "pending"
    assert await count(session_factory, Rental) == 0
    assert await count(session_factory, Purchase) == 0


@pytest.mark.parametrize(
    "payload,reason",
    [
        ({"event": COMPLETED, "charge": {}}, "missing_correlation"),
        ({"event": COMPLETED, "charge": {"correlationID": "order-123"}}, "invalid_correlation"),
        (
            {"event": COMPLETED, "charge": {"correlationID": "game_g1__user_u1__session_unknown"}},
            "session_not_found",
        ),
        ([], "missing_correlation"),
        ("x", "missing_correlation"),
        (None, "missing_correlation"),
    ],
)
@pytest.mark.asyncio
async def test_unroutable_deliveries_ignored(anon_client, make_game, session_factory, signed_webhook, payload, reason):
    await make_game()
    body, headers = signed_webhook(payload)

    response = await anon_client.post(WEBHOOK_URL, content=body, headers=headers)

    assert response.status_code == 200
    assert response.json()["status"] == "ignored"
    assert response.json()["reason"] == reason
    assert await count(session_factory, Rental) == 0


@pytest.mark.asyncio
async def test_store_failure_returns_5xx(anon_client, make_game, test_db, signed_webhook):
    await make_game()
    result = await open_session(test_db)
    body, headers = signed_webhook(completed_payload(result.correlation_id))

    with patch.object(
        EntitlementStore,
        "get_session_by_correlation",
        side_effect=UpstreamFailure("store_unavailable"),
    ):
        response = await anon_client.post(WEBHOOK_URL, content=body, headers=headers)

    assert response.status_code == 502
    assert response.json() == {"error": "store_unavailable"}


@pytest.mark.asyncio
async def test_unexpected_error_returns_500(anon_client, signed_webhook):
    body, headers = signed_webhook({"event": COMPLETED})

    with patch("app.routers.webhooks.reconcile", side_effect=RuntimeError("boom")):
        response = await anon_client.post(WEBHOOK_URL, content=body, headers=headers)

    assert response.status_code == 500
    assert response.json() == {"error": "internal_error"}


# ── Reconciliation rules ─────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_first_payment_creates_rental_from_now(make_game, test_db, session_factory):
    """g1 / u1, 30-day rental at 2490 cents: paid at T0, rental ends T0 + 30 days."""
    await make_game()
    result = await open_session(test_db, now=T0)

    outcome = await deliver(session_factory, completed_payload(result.correlation_id), now=T0)

    assert outcome.status == "processed"
    rentals = await rentals_for(session_factory)
    assert len(rentals) == 1
    assert rentals[0].starts_at == T0
    assert rentals[0].expires_at == T0 + timedelta(days=30)

    again = await deliver(session_factory, completed_payload(result.correlation_id), now=T0 + timedelta(minutes=5))
    assert again.status == "already_processed"
    rentals = await rentals_for(session_factory)
    assert len(rentals) == 1
    assert rentals[0].expires_at == T0 + timedelta(days=30)


@pytest.mark.asyncio
async def test_renewal_stacks_on_unexpired_rental(make_game, test_db, session_factory):
    await make_game()
    first = await open_session(test_db, now=T0)
    await deliver(session_factory, completed_payload(first.correlation_id, txn_id="txn-1"), now=T0)

    renew_at = T0 + timedelta(days=25)
    second = await open_session(test_db, now=renew_at)
    outcome = await deliver(
        session_factory, completed_payload(second.correlation_id, txn_id="txn-2"), now=renew_at
    )

    assert outcome.status == "processed"
    rentals = await rentals_for(session_factory)
    assert len(rentals) == 1
    assert rentals[0].expires_at == T0 + timedelta(days=60)
    assert rentals[0].payment_ref == "txn-2"


@pytest.mark.asyncio
async def test_renewal_after_lapse_starts_from_now(make_game, test_db, session_factory):
    await make_game()
    first = await open_session(test_db, now=T0)
    await deliver(session_factory, completed_payload(first.correlation_id), now=T0)

    later = T0 + timedelta(days=45)
    second = await open_session(test_db, now=later)
    await deliver(session_factory, completed_payload(second.correlation_id, txn_id="txn-2"), now=later)

    rentals = await rentals_for(session_factory)
    assert len(rentals) == 1
    assert rentals[0].expires_at == later + timedelta(days=30)


@pytest.mark.asyncio
async def test_game_duration_overrides_default(make_game, test_db, session_factory):
    await make_game(rental_duration_days=7)
    result = await open_session(test_db, now=T0)

    await deliver(session_factory, completed_payload(result.correlation_id), now=T0)

    rentals = await rentals_for(session_factory)
    assert rentals[0].expires_at == T0 + timedelta(days=7)


@pytest.mark.asyncio
async def test_unlimited_rental_stays_unlimited(make_game, test_db, session_factory):
    await make_game()
    test_db.add(Rental(user_id="u1", game_id="g1", starts_at=T0, expires_at=None, status="active"))
    await test_db.commit()
    result = await open_session(test_db, now=T0)

    await deliver(session_factory, completed_payload(result.correlation_id), now=T0)

    rentals = await rentals_for(session_factory)
    assert len(rentals) == 1
    assert rentals[0].expires_at is None


@pytest.mark.asyncio
async def test_lifetime_payment_upserts_purchase(make_game, test_db, session_factory):
    await make_game(is_lifetime_available=True, lifetime_price_cents=9990)
    first = await open_session(test_db, mode="lifetime", now=T0)
    second = await open_session(test_db, mode="lifetime", now=T0)

    await deliver(session_factory, completed_payload(first.correlation_id, txn_id="txn-1"), now=T0)
    await deliver(session_factory, completed_payload(second.correlation_id, txn_id="txn-2"), now=T0)

    async with session_factory() as db:
        purchases = (await db.execute(select(Purchase))).scalars().all()
    assert len(purchases) == 1
    assert purchases[0].payment_ref == "txn-2"
    assert purchases[0].purchased_at == T0
    assert await count(session_factory, Rental) == 0


@pytest.mark.asyncio
async def test_completion_for_cancelled_session_is_settled(make_game, test_db, session_factory):
    """The user cancelled but paid the QR code anyway: the payment still counts."""
    await make_game()
    result = await open_session(test_db, now=T0)
    await checkout.cancel_session(EntitlementStore(test_db), "u1", result.session_id, now=T0)

    outcome = await deliver(session_factory, completed_payload(result.correlation_id), now=T0)

    assert outcome.status == "processed"
    async with session_factory() as db:
        session = await db.get(CheckoutSession, result.session_id)
    assert session.status == "paid"
    assert session.payment_ref == "txn-1"
    rentals = await rentals_for(session_factory)
    assert len(rentals) == 1
    assert rentals[0].expires_at == T0 + timedelta(days=30)


@pytest.mark.asyncio
async def test_completion_for_expired_session_is_settled(make_game, test_db, session_factory):
    """A session expired by polling is still paid when the charge completes afterwards."""
    await make_game()
    result = await open_session(test_db, now=T0)
    polled_at = T0 + timedelta(seconds=1800 + 300 + 1)
    polled = await checkout.get_session_status(EntitlementStore(test_db), "u1", result.session_id, now=polled_at)
    assert polled.status == "expired"

    outcome = await deliver(session_factory, completed_payload(result.correlation_id), now=polled_at)
    again = await deliver(session_factory, completed_payload(result.correlation_id), now=polled_at)

    assert outcome.status == "processed"
    assert again.status == "already_processed"
    async with session_factory() as db:
        assert (await db.get(CheckoutSession, result.session_id)).status == "paid"
    rentals = await rentals_for(session_factory)
    assert len(rentals) == 1
    assert rentals[0].expires_at == polled_at + timedelta(days=30)


@pytest.mark.asyncio
async def test_completion_after_scheduler_sweep_is_settled(make_game, test_db, session_factory):
    await make_game()
    result = await open_session(test_db, now=T0)
    swept_at = T0 + timedelta(hours=1)
    await EntitlementStore(test_db).expire_stale_sessions(swept_at)
    await test_db.commit()

    outcome = await deliver(session_factory, completed_payload(result.correlation_id), now=swept_at)

    assert outcome.status == "processed"
    assert len(await rentals_for(session_factory)) == 1


@pytest.mark.asyncio
async def test_correlation_mismatch_is_ignored(make_game, test_db, session_factory):
    await make_game()
    result = await open_session(test_db, now=T0)
    forged = encode_correlation_id("g1", "u2", result.session_id)
    async with session_factory() as db:
        session = await db.get(CheckoutSession, result.session_id)
        session.correlation_id = forged
        await db.commit()

    outcome = await deliver(session_factory, completed_payload(forged), now=T0)

    assert outcome.status == "ignored"
    assert outcome.reason == "correlation_mismatch"
    assert await count(session_factory, Rental) == 0


@pytest.mark.asyncio
async def test_failed_entitlement_rolls_back_and_retry_succeeds(make_game, test_db, session_factory):
    await make_game()
    result = await open_session(test_db, now=T0)
    payload = completed_payload(result.correlation_id)

    with patch.object(EntitlementStore, "upsert_rental", side_effect=UpstreamFailure("store_unavailable")):
        with pytest.raises(UpstreamFailure):
            await deliver(session_factory, payload, now=T0)

    async with session_factory() as db:
        session = await db.get(CheckoutSession, result.session_id)
        assert session.status == "pending"
        assert session.payment_ref is None
    assert await count(session_factory, Rental) == 0

    outcome = await deliver(session_factory, payload, now=T0)

    assert outcome.status == "processed"
    assert len(await rentals_for(session_factory)) == 1


@pytest.mark.asyncio
async def test_lost_race_does_not_extend_twice(make_game, test_db, session_factory):
    """A delivery whose conditional update matches nothing leaves the rental alone."""
    await make_game()
    result = await open_session(test_db, now=T0)

    with patch.object(EntitlementStore, "mark_session_paid", return_value=False):
        outcome = await deliver(session_factory, completed_payload(result.correlation_id), now=T0)

    assert outcome.status == "already_processed"
    assert await count(session_factory, Rental) == 0


@pytest.mark.asyncio
async def test_blank_secret_accepts_unsigned_delivery(make_game, test_db, session_factory):
    await make_game()
    result = await open_session(test_db, now=T0)
    body = json.dumps(completed_payload(result.correlation_id)).encode()

    async with session_factory() as db:
        outcome = await reconcile(EntitlementStore(db), body, None, now=T0, secret="")

    assert outcome.status == "processed"


def test_compute_rental_expiry():
    assert compute_rental_expiry(None, 30, T0) == T0 + timedelta(days=30)
    assert compute_rental_expiry(T0 + timedelta(days=5), 30, T0) == T0 + timedelta(days=35)
    assert compute_rental_expiry(T0 - timedelta(days=1), 30, T0) == T0 + timedelta(days=30)


@pytest.mark.asyncio
async def test_body_with_utf8_bom_is_accepted(anon_client, make_game, test_db, webhook_secret):
    await make_game()
    result = await open_session(test_db, now=datetime.utcnow())
    body = b"\xef\xbb\xbf" + json.dumps(completed_payload(result.correlation_id)).encode()

    response = await anon_client.post(
        WEBHOOK_URL,
        content=body,
        headers={"x-openpix-signature": sign(body, webhook_secret), "Content-Type": "application/json"},
    )

    assert response.status_code == 200
    assert response.json()["status"] == "processed"
