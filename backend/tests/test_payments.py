"""Tests for payment status, force verify, webhooks and settlement.

Status reads, force-verify and webhooks all settle a pending session through
the same path; a settled session never changes.
"""
import hashlib
import hmac
import json

from eventpass.config import settings
from eventpass.models.enums import PaymentStatus
from eventpass.models.payment import PaymentSession
from eventpass.services import payment_service
from eventpass.services.payment_provider import PaymentProviderError, ProviderStatus
from tests.conftest import create_test_event, create_test_user, get_event, register


def _paid_registration(client):
    organizer = create_test_user(client, name="Organizer")
    attendee = create_test_user(client, name="Attendee", email="attendee@example.com")
    event_id = create_test_event(client, organizer["userId"], eventType="paid", ticketPrice=120)["event"]["eventId"]
    data = register(client, event_id, attendee["userId"]).json()
    return organizer, attendee, event_id, data["registration"]["ticketId"], data["paymentReference"]


def _status(client, event_id, ticket_id, user_id):
    return client.get(
        f"/api/registrations/{event_id}/{ticket_id}/payment-status",
        params={"actor_user_id": user_id},
    )


def _force_verify(client, reference, user_id):
    return client.post(f"/api/payments/{reference}/force-verify", params={"actor_user_id": user_id})


class TestRegistrationPaymentStatus:
    """GET /registrations/{eventId}/{registrationId}/payment-status."""

    def test_pending_status_includes_url(self, client):
        _, attendee, event_id, ticket_id, reference = _paid_registration(client)
        resp = _status(client, event_id, ticket_id, attendee["userId"])
        assert resp.status_code == 200
        data = resp.json()
        assert data["paymentType"] == "event_registration"
        assert data["paymentStatus"] == "pending"
        assert data["paymentReference"] == reference
        assert data["paymentUrl"].endswith(reference)

    def test_status_settles_completed_payment(self, client, provider):
        _, attendee, event_id, ticket_id, reference = _paid_registration(client)
        provider.resolve(reference, ProviderStatus.success)

        data = _status(client, event_id, ticket_id, attendee["userId"]).json()
        assert data["paymentStatus"] == "completed"
        assert data["paymentUrl"] is None

        detail = get_event(client, event_id, attendee["userId"])
        assert detail["event"]["currentAttendees"] == 1
        assert detail["userRegistration"]["status"] == "registered"

    def test_repeated_status_reads_count_once(self, client, provider):
        _, attendee, event_id, ticket_id, reference = _paid_registration(client)
        provider.resolve(reference, ProviderStatus.success)
        for _ in range(3):
            _status(client, event_id, ticket_id, attendee["userId"])
        assert get_event(client, event_id)["event"]["currentAttendees"] == 1

    def test_status_settles_abandoned_payment(self, client, provider):
        _, attendee, event_id, ticket_id, reference = _paid_registration(client)
        provider.resolve(reference, ProviderStatus.abandoned)
        data = _status(client, event_id, ticket_id, attendee["userId"]).json()
        assert data["paymentStatus"] == "abandoned"
        detail = get_event(client, event_id, attendee["userId"])
        assert detail["event"]["currentAttendees"] == 0
        assert detail["userRegistration"] is None

    def test_status_falls_back_when_provider_unreachable(self, client, provider, monkeypatch):
        _, attendee, event_id, ticket_id, reference = _paid_registration(client)

        def _unreachable(ref):
            raise PaymentProviderError("connection refused")

        monkeypatch.setattr(provider, "verify", _unreachable)
        resp = _status(client, event_id, ticket_id, attendee["userId"])
        assert resp.status_code == 200
        assert resp.json()["paymentStatus"] == "pending"

    def test_settled_status_does_not_call_provider(self, client, provider, monkeypatch):
        _, attendee, event_id, ticket_id, reference = _paid_registration(client)
        provider.resolve(reference, ProviderStatus.success)
        _status(client, event_id, ticket_id, attendee["userId"])

        calls = []
        monkeypatch.setattr(provider, "verify", lambda ref: calls.append(ref) or ProviderStatus.failed)
        data = _status(client, event_id, ticket_id, attendee["userId"]).json()
        assert data["paymentStatus"] == "completed"
        assert calls == []

    def test_other_user_forbidden(self, client):
        organizer, _, event_id, ticket_id, _ = _paid_registration(client)
        resp = _status(client, event_id, ticket_id, organizer["userId"])
        assert resp.status_code == 403
        assert resp.json()["detail"]["code"] == "NOT_OWNED"

    def test_free_registration_has_no_payment(self, client):
        organizer = create_test_user(client)
        attendee = create_test_user(client, name="Attendee")
        event_id = create_test_event(client, organizer["userId"])["event"]["eventId"]
        ticket_id = register(client, event_id, attendee["userId"]).json()["registration"]["ticketId"]
        assert _status(client, event_id, ticket_id, attendee["userId"]).status_code == 400


class TestForceVerify:
    """POST /payments/{reference}/force-verify."""

    def test_pending_at_provider(self, client):
        _, attendee, _, _, reference = _paid_registration(client)
        resp = _force_verify(client, reference, attendee["userId"])
        assert resp.status_code == 200
        assert resp.json()["verification"]["status"] == "pending"

    def test_success_confirms_ticket_once(self, client, provider):
        _, attendee, event_id, ticket_id, reference = _paid_registration(client)
        provider.resolve(reference, ProviderStatus.success)

        for _ in range(2):
            resp = _force_verify(client, reference, attendee["userId"])
            assert resp.json()["verification"]["status"] == "success"

        detail = get_event(client, event_id, attendee["userId"])
        assert detail["event"]["currentAttendees"] == 1
        assert detail["userRegistration"]["status"] == "registered"
        status = _status(client, event_id, ticket_id, attendee["userId"]).json()
        assert status["paymentStatus"] == "completed"
        assert status["paymentUrl"] is None

    def test_abandoned_cancels_ticket(self, client, provider):
        _, attendee, event_id, _, reference = _paid_registration(client)
        provider.resolve(reference, ProviderStatus.abandoned)
        resp = _force_verify(client, reference, attendee["userId"])
        assert resp.json()["verification"]["status"] == "abandoned"
        detail = get_event(client, event_id, attendee["userId"])
        assert detail["event"]["currentAttendees"] == 0
        assert detail["userRegistration"] is None

    def test_terminal_state_never_reverts(self, client, provider):
        _, attendee, _, _, reference = _paid_registration(client)
        provider.resolve(reference, ProviderStatus.success)
        _force_verify(client, reference, attendee["userId"])
        provider.resolve(reference, ProviderStatus.failed)
        resp = _force_verify(client, reference, attendee["userId"])
        assert resp.json()["verification"]["status"] == "success"

    def test_other_user_forbidden(self, client):
        organizer, _, _, _, reference = _paid_registration(client)
        assert _force_verify(client, reference, organizer["userId"]).status_code == 403

    def test_unknown_reference(self, client):
        user = create_test_user(client)
        assert _force_verify(client, "evp_missing", user["userId"]).status_code == 404


class TestPublishingPayment:
    """Paid events with a publishing fee."""

    def test_publishing_flow(self, client, provider, monkeypatch):
        monkeypatch.setattr(settings, "EVENT_PUBLISHING_FEE", 49.0)
        organizer = create_test_user(client, name="Organizer")
        created = create_test_event(client, organizer["userId"], eventType="paid", ticketPrice=100)
        event_id = created["event"]["eventId"]
        reference = created["paymentReference"]

        resp = client.get(f"/api/events/{event_id}/payment-status", params={"actor_user_id": organizer["userId"]})
        assert resp.status_code == 200
        data = resp.json()
        assert data["paymentType"] == "event_publishing"
        assert data["paymentStatus"] == "pending"
        assert data["event"]["status"] == "pending_payment"
        assert data["event"]["paymentUrl"] == created["paymentUrl"]

        provider.resolve(reference, ProviderStatus.success)
        data = client.get(
            f"/api/events/{event_id}/payment-status", params={"actor_user_id": organizer["userId"]}
        ).json()
        assert data["paymentStatus"] == "completed"
        assert data["event"]["status"] == "published"
        assert data["event"]["paymentUrl"] is None
        assert [e["eventId"] for e in client.get("/api/events/").json()] == [event_id]

    def test_failed_publishing_returns_to_draft(self, client, provider, monkeypatch):
        monkeypatch.setattr(settings, "EVENT_PUBLISHING_FEE", 49.0)
        organizer = create_test_user(client)
        created = create_test_event(client, organizer["userId"], eventType="paid", ticketPrice=100)
        provider.resolve(created["paymentReference"], ProviderStatus.failed)
        _force_verify(client, created["paymentReference"], organizer["userId"])
        detail = get_event(client, created["event"]["eventId"], organizer["userId"])
        assert detail["event"]["status"] == "draft"

    def test_only_organizer_sees_publishing_status(self, client, monkeypatch):
        monkeypatch.setattr(settings, "EVENT_PUBLISHING_FEE", 49.0)
        organizer = create_test_user(client)
        other = create_test_user(client, name="Other")
        created = create_test_event(client, organizer["userId"], eventType="paid", ticketPrice=100)
        resp = client.get(
            f"/api/events/{created['event']['eventId']}/payment-status",
            params={"actor_user_id": other["userId"]},
        )
        assert resp.status_code == 403


class TestWebhook:
    """POST /payments/webhook."""

    def _post(self, client, body: dict, signature: str = None):
        raw = json.dumps(body).encode()
        headers = {"Content-Type": "application/json"}
        if signature is not None:
            headers["x-paystack-signature"] = signature
        return client.post("/api/payments/webhook", content=raw, headers=headers), raw

    def test_charge_success_settles(self, client):
        _, attendee, event_id, _, reference = _paid_registration(client)
        resp, _ = self._post(client, {"event": "charge.success", "data": {"reference": reference}})
        assert resp.status_code == 200
        assert resp.json()["settled"] == reference
        assert get_event(client, event_id)["event"]["currentAttendees"] == 1

    def test_duplicate_webhook_is_idempotent(self, client):
        _, _, event_id, _, reference = _paid_registration(client)
        for _ in range(2):
            self._post(client, {"event": "charge.success", "data": {"reference": reference}})
        self._post(client, {"event": "charge.failed", "data": {"reference": reference}})
        assert get_event(client, event_id)["event"]["currentAttendees"] == 1

    def test_unknown_event_ignored(self, client):
        resp, _ = self._post(client, {"event": "transfer.success", "data": {"reference": "x"}})
        assert resp.status_code == 200
        assert resp.json()["settled"] is None

    def test_signature_required_with_secret(self, client, monkeypatch):
        _, _, event_id, _, reference = _paid_registration(client)
        monkeypatch.setattr(settings, "PAYSTACK_SECRET_KEY", "sk_test_secret")
        body = {"event": "charge.success", "data": {"reference": reference}}

        resp, _ = self._post(client, body, signature="bad")
        assert resp.status_code == 401
        assert get_event(client, event_id)["event"]["currentAttendees"] == 0

        raw = json.dumps(body).encode()
        signature = hmac.new(b"sk_test_secret", raw, hashlib.sha512).hexdigest()
        resp, _ = self._post(client, body, signature=signature)
        assert resp.status_code == 200
        assert get_event(client, event_id)["event"]["currentAttendees"] == 1

    def test_invalid_json(self, client):
        resp = client.post("/api/payments/webhook", content=b"not json")
        assert resp.status_code == 400


class TestSettle:
    """Service-level settlement rules."""

    def test_pending_outcome_is_ignored(self, client, db):
        _, _, _, _, reference = _paid_registration(client)
        session = db.query(PaymentSession).filter(PaymentSession.reference == reference).one()
        payment_service.settle(db, session, PaymentStatus.pending)
        assert session.status == PaymentStatus.pending
        assert session.settled_at is None

    def test_callback_reports_status(self, client):
        _, _, _, _, reference = _paid_registration(client)
        resp = client.get("/api/payments/callback", params={"reference": reference})
        assert resp.json() == {"reference": reference, "status": "pending"}

    def test_callback_settles_completed_payment(self, client, provider):
        _, _, event_id, _, reference = _paid_registration(client)
        provider.resolve(reference, ProviderStatus.success)
        resp = client.get("/api/payments/callback", params={"reference": reference})
        assert resp.json() == {"reference": reference, "status": "completed"}
        assert get_event(client, event_id)["event"]["currentAttendees"] == 1

    def test_settle_after_webhook_is_a_no_op(self, client, db):
        _, _, event_id, _, reference = _paid_registration(client)
        client.post(
            "/api/payments/webhook",
            content=json.dumps({"event": "charge.success", "data": {"reference": reference}}).encode(),
        )
        session = db.query(PaymentSession).filter(PaymentSession.reference == reference).one()
        payment_service.settle(db, session, PaymentStatus.completed)
        db.commit()
        assert get_event(client, event_id)["event"]["currentAttendees"] == 1
