"""HTTP surface tests. Services on app.state are replaced with in-memory fakes."""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from app.core.config import settings
from app.core.security import compute_twilio_signature
from app.flow.dispatcher import IncomingMessageRouter
from app.flow.states import ConfirmationStatus
from app.main import app
from app.services.reminder_service import ReminderService
from app.services.scheduler_service import ReminderScheduler


PHONE = "+13035550100"
SMS_URL = "/api/v1/webhook/sms"


@pytest.fixture
def client(seeded_store, gateway, clock, reminder_config):
    service = ReminderService(seeded_store, gateway, config=reminder_config, clock=clock, send_spacing_seconds=0)
    app.state.store = seeded_store
    app.state.gateway = gateway
    app.state.reminder_service = service
    app.state.scheduler = ReminderScheduler(service, config=reminder_config, clock=clock, sleep=AsyncMock())
    app.state.message_router = IncomingMessageRouter(seeded_store, gateway, clock=clock)

    # No context manager: the lifespan (MongoDB) is not started
    yield TestClient(app)

    for name in ("store", "gateway", "reminder_service", "scheduler", "message_router"):
        delattr(app.state, name)


def inbound_form(body="C", sid="SMin001"):
    return {"From": PHONE, "To": "+17205550199", "Body": body, "MessageSid": sid}


class TestSmsWebhook:

    def test_confirmation_returns_empty_twiml(self, client, seeded_store, gateway):
        response = client.post(SMS_URL, data=inbound_form())

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/xml")
        assert "<Response></Response>" in response.text
        assert seeded_store.placement("job-1", "assoc-1").confirmation_status == ConfirmationStatus.SOFT_CONFIRMED
        assert gateway.sent[0].from_ == "+17205550199"

    def test_unknown_sender_still_gets_twiml(self, client, gateway):
        form = inbound_form()
        form["From"] = "+19995550000"

        response = client.post(SMS_URL, data=form)

        assert response.status_code == 200
        assert gateway.sent == []

    def test_missing_fields_rejected(self, client, seeded_store):
        response = client.post(SMS_URL, data={"From": PHONE, "MessageSid": "SM1"})

        assert response.status_code == 422
        data = response.json()
        assert data["code"] == "VALIDATION_ERROR"
        assert data["details"] == {"missing": ["Body"]}
        assert seeded_store.placement("job-1", "assoc-1").version == 0

    def test_invalid_signature_rejected(self, client, seeded_store, monkeypatch):
        monkeypatch.setattr(settings, "TWILIO_VALIDATE_SIGNATURE", True)
        monkeypatch.setattr(settings, "TWILIO_AUTH_TOKEN", "test-token")

        response = client.post(SMS_URL, data=inbound_form(), headers={"X-Twilio-Signature": "bogus"})

        assert response.status_code == 401
        assert response.json()["code"] == "AUTHENTICATION_FAILED"
        assert seeded_store.placement("job-1", "assoc-1").confirmation_status == ConfirmationStatus.UNCONFIRMED

    def test_valid_signature_accepted(self, client, seeded_store, monkeypatch):
        monkeypatch.setattr(settings, "TWILIO_VALIDATE_SIGNATURE", True)
        monkeypatch.setattr(settings, "TWILIO_AUTH_TOKEN", "test-token")
        form = inbound_form()
        signature = compute_twilio_signature(f"http://testserver{SMS_URL}", form, "test-token")

        response = client.post(SMS_URL, data=form, headers={"X-Twilio-Signature": signature})

        assert response.status_code == 200
        assert seeded_store.placement("job-1", "assoc-1").confirmation_status == ConfirmationStatus.SOFT_CONFIRMED


class TestStatusWebhook:

    def test_status_recorded(self, client, seeded_store):
        client.post(SMS_URL, data=inbound_form())
        sid = next(iter(seeded_store.messages))

        response = client.post("/api/v1/webhook/status", data={"MessageSid": sid, "MessageStatus": "delivered"})

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "recorded": True}
        assert seeded_store.messages[sid]["status"] == "delivered"

    def test_malformed_status_ignored(self, client):
        response = client.post("/api/v1/webhook/status", data={"MessageSid": "SM1"})

        assert response.status_code == 200
        assert response.json() == {"status": "ignored"}


class TestMessagesApi:

    def test_incoming_message(self, client):
        response = client.post("/api/v1/messages/incoming", json={"phone_number": PHONE, "body": "D"})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["action"] == "DECLINE"
        assert data["new_status"] == "DECLINED"
        assert data["job_id"] == "job-1"


class TestRemindersApi:

    def test_test_reminder(self, client, gateway):
        response = client.post("/api/v1/reminders/test", json={"job_id": "job-1", "associate_id": "assoc-1"})

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "sent"
        assert data["reminder_type"] == "night_before"
        assert gateway.sent_to(PHONE)

    def test_test_reminder_unknown_placement(self, client):
        response = client.post("/api/v1/reminders/test", json={"job_id": "nope", "associate_id": "assoc-1"})

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_manual_run(self, client, clock, gateway):
        # 2025-08-04 20:00 MDT, inside the night-before window
        clock.advance(hours=6)

        response = client.post("/api/v1/reminders/run")

        assert response.status_code == 200
        data = response.json()
        assert data["trigger"] == "manual"
        assert data["outcome"] == "SUCCESS"
        assert data["succeeded"] == 1
        assert len(gateway.sent) == 1

    def test_scheduler_stats(self, client):
        response = client.get("/api/v1/reminders/scheduler")

        assert response.status_code == 200
        data = response.json()
        assert data["is_active"] is False
        assert data["total_runs"] == 0

    def test_config_update(self, client):
        response = client.put("/api/v1/reminders/scheduler/config", json={"night_before_time": "18:30"})

        assert response.status_code == 200
        assert response.json()["night_before_time"] == "18:30"
        assert client.get("/api/v1/reminders/scheduler/config").json()["night_before_time"] == "18:30"

    def test_invalid_config_rejected(self, client):
        response = client.put("/api/v1/reminders/scheduler/config", json={"interval_minutes": 0})

        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"
