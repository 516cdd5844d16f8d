import time
from decimal import Decimal
from uuid import uuid4

import pytest
from starlette.websockets import WebSocketDisconnect

from slotbook.core.config import settings
from slotbook.core.security import create_access_token
from slotbook.services.payment_gateway import STATUS_FAILED, STATUS_SUCCEEDED

API = settings.API_V1_STR


def reserve(client, headers, slot, n=2):
    return client.post(
        f"{API}/reservations/",
        json={"schedule_id": str(slot.id), "num_participants": n},
        headers=headers,
    )


def checkout(client, headers, booking_id):
    return client.post(f"{API}/reservations/{booking_id}/checkout", headers=headers)


def webhook(client, transaction_id, status=STATUS_SUCCEEDED):
    return client.post(
        f"{API}/webhooks/payments",
        json={"gateway_transaction_id": transaction_id, "status": status},
    )


def settle(client, gateway, transaction_id, status=STATUS_SUCCEEDED):
    """The customer pays (or fails to) at the gateway, which then notifies us."""
    gateway.set_status(transaction_id, status)
    return webhook(client, transaction_id, status)


# ============================================================================
# Reservations
# ============================================================================


class TestCreateReservation:
    def test_creates_pending_booking(self, client, auth_headers, user, slot):
        response = reserve(client, auth_headers(user), slot, n=2)

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "PENDING"
        assert Decimal(body["total_price"]) == Decimal("200.00")
        assert body["num_participants"] == 2
        assert body["schedule"]["id"] == str(slot.id)
        assert body["payment"] is None

    def test_requires_authentication(self, client, slot):
        response = client.post(
            f"{API}/reservations/", json={"schedule_id": str(slot.id), "num_participants": 1}
        )
        assert response.status_code == 401

    def test_rejects_invalid_token(self, client, slot):
        response = reserve(client, {"Authorization": "Bearer not-a-token"}, slot)
        assert response.status_code == 401

    def test_capacity_exceeded_body(self, client, auth_headers, user, make_slot):
        slot = make_slot(capacity=3, booked_slots=2)

        response = reserve(client, auth_headers(user), slot, n=2)

        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "CapacityExceeded"
        assert body["available"] == 1
        assert body["requested"] == 2
        assert body["message"] == "Not enough available slots. Only 1 left."

    def test_unavailable_slot(self, client, auth_headers, user, make_slot):
        slot = make_slot(is_available=False)

        response = reserve(client, auth_headers(user), slot)

        assert response.status_code == 409
        assert response.json()["error"] == "SlotUnavailable"

    def test_unknown_slot(self, client, auth_headers, user):
        response = client.post(
            f"{API}/reservations/",
            json={"schedule_id": str(uuid4()), "num_participants": 1},
            headers=auth_headers(user),
        )
        assert response.status_code == 404

    def test_participants_must_be_positive(self, client, auth_headers, user, slot):
        response = reserve(client, auth_headers(user), slot, n=0)
        assert response.status_code == 422

    def test_free_booking_is_confirmed(self, client, auth_headers, user, make_slot):
        slot = make_slot(price="0.00")

        response = reserve(client, auth_headers(user), slot, n=1)

        assert response.status_code == 201
        assert response.json()["status"] == "CONFIRMED"
        assert response.json()["payment"] is None


class TestPaymentFlow:
    def test_checkout_then_webhook_confirms(self, client, auth_headers, gateway, user, slot):
        headers = auth_headers(user)
        booking_id = reserve(client, headers, slot).json()["id"]

        response = checkout(client, headers, booking_id)
        assert response.status_code == 200
        body = response.json()
        assert body["booking"]["status"] == "AWAITING_PAYMENT"
        assert body["booking"]["payment"]["status"] == "pending"
        assert body["client_secret"]
        transaction_id = body["gateway_transaction_id"]

        first = settle(client, gateway, transaction_id)
        second = settle(client, gateway, transaction_id)

        assert first.status_code == 200
        assert second.status_code == 200
        assert first.json() == second.json()
        assert first.json()["booking_status"] == "CONFIRMED"
        assert first.json()["payment_status"] == "succeeded"

        booking = client.get(f"{API}/reservations/{booking_id}", headers=headers).json()
        assert booking["status"] == "CONFIRMED"
        assert booking["payment"]["status"] == "succeeded"

        notifications = client.get(f"{API}/me/notifications", headers=headers).json()
        assert notifications["total"] == 1
        assert notifications["data"][0]["type"] == "booking_confirmed"

    def test_pay_endpoint_asks_the_gateway(self, client, auth_headers, gateway, user, slot):
        headers = auth_headers(user)
        booking_id = reserve(client, headers, slot).json()["id"]
        transaction_id = checkout(client, headers, booking_id).json()["gateway_transaction_id"]

        pending = client.post(f"{API}/reservations/{booking_id}/pay", headers=headers)
        assert pending.status_code == 200
        assert pending.json()["status"] == "AWAITING_PAYMENT"

        gateway.set_status(transaction_id, STATUS_SUCCEEDED)
        paid = client.post(f"{API}/reservations/{booking_id}/pay", headers=headers)
        assert paid.json()["status"] == "CONFIRMED"

    def test_failed_webhook_keeps_booking_awaiting_payment(self, client, auth_headers, gateway, user, slot):
        headers = auth_headers(user)
        booking_id = reserve(client, headers, slot).json()["id"]
        transaction_id = checkout(client, headers, booking_id).json()["gateway_transaction_id"]

        response = settle(client, gateway, transaction_id, STATUS_FAILED)

        assert response.status_code == 200
        assert response.json()["payment_status"] == "failed"
        assert response.json()["booking_status"] == "AWAITING_PAYMENT"

    def test_webhook_for_unknown_transaction(self, client):
        response = webhook(client, "pi_test_unknown")

        assert response.status_code == 404
        assert response.json()["error"] == "PaymentRecordNotFound"

    def test_webhook_rejects_malformed_body(self, client):
        response = client.post(f"{API}/webhooks/payments", json={"status": "succeeded"})
        assert response.status_code == 422

    def test_webhook_requires_a_status(self, client, auth_headers, user, slot):
        headers = auth_headers(user)
        booking_id = reserve(client, headers, slot).json()["id"]
        transaction_id = checkout(client, headers, booking_id).json()["gateway_transaction_id"]

        response = client.post(
            f"{API}/webhooks/payments", json={"gateway_transaction_id": transaction_id}
        )

        assert response.status_code == 422

    def test_unpaid_success_notification_is_rejected(self, client, auth_headers, gateway, user, slot):
        headers = auth_headers(user)
        booking_id = reserve(client, headers, slot).json()["id"]
        transaction_id = checkout(client, headers, booking_id).json()["gateway_transaction_id"]

        response = webhook(client, transaction_id)

        assert response.status_code == 409
        assert response.json()["error"] == "PaymentStatusMismatch"
        assert response.json()["gateway_status"] == "pending"
        booking = client.get(f"{API}/reservations/{booking_id}", headers=headers).json()
        assert booking["status"] == "AWAITING_PAYMENT"
        assert booking["payment"]["status"] == "pending"

    def test_plain_webhook_refused_for_a_real_gateway(self, client, gateway, monkeypatch):
        monkeypatch.setattr(gateway, "name", "stripe")

        response = webhook(client, "pi_123")

        assert response.status_code == 500
        assert response.json()["detail"] == "Webhook configuration error"

    def test_payment_after_cancel_is_acknowledged(self, client, auth_headers, gateway, user, slot, db):
        headers = auth_headers(user)
        booking_id = reserve(client, headers, slot).json()["id"]
        transaction_id = checkout(client, headers, booking_id).json()["gateway_transaction_id"]

        client.post(f"{API}/reservations/{booking_id}/cancel", headers=headers)
        assert gateway.retrieve_status(transaction_id) == STATUS_FAILED

        # The customer had already paid before the intent was closed
        response = settle(client, gateway, transaction_id)

        assert response.status_code == 200
        assert response.json()["booking_status"] == "CANCELLED"
        assert response.json()["payment_status"] == "succeeded"
        db.refresh(slot)
        assert slot.booked_slots == 0

    def test_checkout_of_someone_elses_booking(self, client, auth_headers, user, other_user, slot):
        booking_id = reserve(client, auth_headers(user), slot).json()["id"]

        response = checkout(client, auth_headers(other_user), booking_id)

        assert response.status_code == 403
        assert response.json()["error"] == "Forbidden"


class TestReadUpdateCancel:
    def test_other_users_booking_reads_as_missing(self, client, auth_headers, user, other_user, slot):
        booking_id = reserve(client, auth_headers(user), slot).json()["id"]

        response = client.get(f"{API}/reservations/{booking_id}", headers=auth_headers(other_user))

        assert response.status_code == 404

    def test_list_with_status_filter_and_pagination(self, client, auth_headers, user, slot):
        headers = auth_headers(user)
        ids = [reserve(client, headers, slot, n=1).json()["id"] for _ in range(3)]
        client.post(f"{API}/reservations/{ids[0]}/cancel", headers=headers)

        page = client.get(f"{API}/reservations/", params={"limit": 2}, headers=headers).json()
        assert page["total"] == 3
        assert page["total_pages"] == 2
        assert len(page["data"]) == 2

        cancelled = client.get(
            f"{API}/reservations/", params={"status": "CANCELLED"}, headers=headers
        ).json()
        assert [b["id"] for b in cancelled["data"]] == [ids[0]]

    def test_cancel_then_cancel_again(self, client, auth_headers, user, slot, db):
        headers = auth_headers(user)
        booking_id = reserve(client, headers, slot, n=3).json()["id"]

        first = client.post(f"{API}/reservations/{booking_id}/cancel", headers=headers)
        second = client.post(f"{API}/reservations/{booking_id}/cancel", headers=headers)

        assert first.status_code == 200
        assert first.json()["status"] == "CANCELLED"
        assert first.json()["cancelled_by"] == "user"
        assert second.status_code == 409
        assert second.json()["error"] == "InvalidStateTransition"
        assert second.json()["current_status"] == "CANCELLED"
        db.refresh(slot)
        assert slot.booked_slots == 0

    def test_update_participants_of_confirmed_booking(self, client, auth_headers, gateway, user, slot):
        headers = auth_headers(user)
        booking_id = reserve(client, headers, slot, n=2).json()["id"]
        transaction_id = checkout(client, headers, booking_id).json()["gateway_transaction_id"]
        settle(client, gateway, transaction_id)

        response = client.patch(
            f"{API}/reservations/{booking_id}", json={"num_participants": 3}, headers=headers
        )

        assert response.status_code == 200
        assert response.json()["num_participants"] == 3
        assert Decimal(response.json()["total_price"]) == Decimal("300.00")

    def test_update_participants_of_pending_booking(self, client, auth_headers, user, slot):
        headers = auth_headers(user)
        booking_id = reserve(client, headers, slot, n=2).json()["id"]

        response = client.patch(
            f"{API}/reservations/{booking_id}", json={"num_participants": 3}, headers=headers
        )

        assert response.status_code == 409


# ============================================================================
# Partner
# ============================================================================


class TestPartner:
    def test_approval_flow(self, client, auth_headers, user, partner, slot, monkeypatch):
        monkeypatch.setattr(settings, "REQUIRE_PARTNER_APPROVAL", True)
        booking_id = reserve(client, auth_headers(user), slot).json()["id"]

        assert checkout(client, auth_headers(user), booking_id).status_code == 403

        response = client.post(
            f"{API}/partner/reservations/{booking_id}/approve", headers=auth_headers(partner)
        )
        assert response.status_code == 200
        assert response.json()["status"] == "AWAITING_PAYMENT"

        partner_inbox = client.get(f"{API}/me/notifications", headers=auth_headers(partner)).json()
        assert [n["type"] for n in partner_inbox["data"]] == ["booking_pending_approval"]
        user_inbox = client.get(f"{API}/me/notifications", headers=auth_headers(user)).json()
        assert [n["type"] for n in user_inbox["data"]] == ["booking_approved_for_payment"]

    def test_partner_endpoints_require_partner_role(self, client, auth_headers, user, slot):
        booking_id = reserve(client, auth_headers(user), slot).json()["id"]

        response = client.post(
            f"{API}/partner/reservations/{booking_id}/approve", headers=auth_headers(user)
        )

        assert response.status_code == 403

    def test_partner_cancel_and_list(self, client, auth_headers, user, partner, slot):
        booking_id = reserve(client, auth_headers(user), slot).json()["id"]

        response = client.post(
            f"{API}/partner/reservations/{booking_id}/cancel", headers=auth_headers(partner)
        )
        assert response.status_code == 200
        assert response.json()["cancelled_by"] == "partner"

        listing = client.get(f"{API}/partner/reservations/", headers=auth_headers(partner)).json()
        assert listing["total"] == 1
        assert listing["data"][0]["status"] == "CANCELLED"


# ============================================================================
# Availability
# ============================================================================


class TestAvailability:
    def test_lists_open_slots_of_the_day(self, client, listing, make_slot, now):
        day = now.date()
        morning = now.replace(hour=9, minute=0, second=0, microsecond=0)
        evening = morning.replace(hour=18)
        later = make_slot(start_time=evening, capacity=4, booked_slots=1)
        earlier = make_slot(start_time=morning)
        make_slot(start_time=morning.replace(hour=12), capacity=2, booked_slots=2)
        make_slot(start_time=morning.replace(hour=14), is_available=False)

        response = client.get(
            f"{API}/availability/", params={"listing_id": str(listing.id), "date": day.isoformat()}
        )

        assert response.status_code == 200
        slots = response.json()["slots"]
        assert [s["id"] for s in slots] == [str(earlier.id), str(later.id)]
        assert slots[1]["available_slots"] == 3

    def test_unknown_listing(self, client):
        response = client.get(
            f"{API}/availability/", params={"listing_id": str(uuid4()), "date": "2026-01-01"}
        )
        assert response.status_code == 404


# ============================================================================
# Notifications
# ============================================================================


class TestNotifications:
    def test_mark_read(self, client, auth_headers, user, make_slot):
        headers = auth_headers(user)
        slot = make_slot(price="0.00")
        reserve(client, headers, slot, n=1)
        reserve(client, headers, slot, n=1)

        inbox = client.get(f"{API}/me/notifications", headers=headers).json()
        assert inbox["total"] == 2
        first_id = inbox["data"][0]["id"]

        read = client.patch(f"{API}/me/notifications/{first_id}/read", headers=headers)
        assert read.json()["is_read"] is True

        unread = client.get(
            f"{API}/me/notifications", params={"unread_only": True}, headers=headers
        ).json()
        assert unread["total"] == 1

        assert client.patch(f"{API}/me/notifications/read-all", headers=headers).json() == {"marked_read": 1}

    def test_live_push_over_websocket(self, client, auth_headers, user, make_slot, registry):
        slot = make_slot(price="0.00")
        token = create_access_token(str(user.user_id))

        with client.websocket_connect(f"{API}/ws/notifications?token={token}") as ws:
            for _ in range(100):
                if registry.lookup(user.user_id) is not None:
                    break
                time.sleep(0.02)

            reserve(client, auth_headers(user), slot, n=1)
            message = ws.receive_json()

        assert message["type"] == "booking_confirmed"
        assert message["recipient_user_id"] == str(user.user_id)

    def test_websocket_rejects_bad_token(self, client):
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect(f"{API}/ws/notifications?token=nope"):
                pass


# ============================================================================
# Stripe-signed webhooks
# ============================================================================


class TestStripeWebhook:
    @pytest.fixture(autouse=True)
    def webhook_secret(self, monkeypatch):
        monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", "whsec_test")

    def test_signed_success_event_confirms(self, client, auth_headers, user, slot, monkeypatch):
        headers = auth_headers(user)
        booking_id = reserve(client, headers, slot).json()["id"]
        transaction_id = checkout(client, headers, booking_id).json()["gateway_transaction_id"]

        def mock_construct_event(payload, sig_header, secret):
            assert sig_header == "t=1,v1=abc"
            assert secret == "whsec_test"
            return {"type": "payment_intent.succeeded", "data": {"object": {"id": transaction_id}}}

        monkeypatch.setattr(
            "slotbook.api.v1.public.webhooks.stripe.Webhook.construct_event", mock_construct_event
        )

        response = client.post(
            f"{API}/webhooks/payments", content=b"{}", headers={"Stripe-Signature": "t=1,v1=abc"}
        )

        assert response.status_code == 200
        assert response.json()["booking_status"] == "CONFIRMED"

    def test_unrelated_event_is_acknowledged(self, client, monkeypatch):
        monkeypatch.setattr(
            "slotbook.api.v1.public.webhooks.stripe.Webhook.construct_event",
            lambda payload, sig_header, secret: {"type": "customer.created", "data": {"object": {}}},
        )

        response = client.post(
            f"{API}/webhooks/payments", content=b"{}", headers={"Stripe-Signature": "t=1,v1=abc"}
        )

        assert response.status_code == 200
        assert response.json() is None

    def test_bad_signature_is_rejected(self, client):
        response = client.post(
            f"{API}/webhooks/payments", content=b"{}", headers={"Stripe-Signature": "t=1,v1=forged"}
        )
        assert response.status_code == 400

    def test_missing_signature_is_rejected(self, client):
        response = client.post(f"{API}/webhooks/payments", content=b"{}")
        assert response.status_code == 400
