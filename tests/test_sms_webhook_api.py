"""
Tests for the SMS gateway webhook endpoints.
"""

from unittest.mock import AsyncMock, Mock

import jwt
import pytest
from fastapi.testclient import TestClient

from pigeon.api.sms_webhook import get_webhook_signing_key
from pigeon.clients.sms_client import NotifyResult
from pigeon.main import app
from pigeon.models.internal_models import (
    Chain,
    DispatchOutcome,
    IntentParams,
    IntentResult,
    IntentType
)
from pigeon.services.event_dedup import ProcessedEventStore
from pigeon.services.replies import SECURITY_WARNING
from pigeon.services.session_store import InMemorySessionStore
from pigeon.services.sms_dispatcher import InvalidEventError, SmsDispatcher, get_sms_dispatcher
from pigeon.services.wallet_service import WalletRegistry

SIGNING_KEY = "webhook-signing-key-for-tests"


def received_event(event_id="evt-1", contact="+19912345678", content="balance"):
    return {
        "specversion": "1.0",
        "id": event_id,
        "source": "/v1/messages/receive",
        "type": "message.phone.received",
        "time": "2024-01-01T00:00:00Z",
        "data": {
            "contact": contact,
            "content": content,
            "owner": "+15550000000",
            "sim": "SIM1",
            "timestamp": "2024-01-01T00:00:00Z"
        }
    }


@pytest.fixture
def dispatcher():
    dispatcher = Mock()
    dispatcher.handle_event = AsyncMock(return_value=DispatchOutcome(
        status="processed",
        message="SMS processed and reply sent",
        reply="$$ Balance: 1.000000 ALGO",
        sms_sent=True
    ))
    return dispatcher


@pytest.fixture
def client(dispatcher):
    app.dependency_overrides[get_sms_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_webhook_signing_key] = lambda: None
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestHttpSmsWebhook:

    def test_processed_event(self, client, dispatcher):
        response = client.post("/api/sms-webhook", json=received_event())

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"] == {
            "from": "+19912345678",
            "owner": "+15550000000",
            "intent_reply": "$$ Balance: 1.000000 ALGO",
            "sms_sent": True,
            "sms_send_error": None,
            "security_warning_queued": False
        }

        inbound = dispatcher.handle_event.await_args.args[0]
        assert inbound.event_id == "evt-1"
        assert inbound.sender == "+19912345678"
        assert inbound.content == "balance"
        assert inbound.source == "httpsms"

    @pytest.mark.parametrize("payload", [
        {"data": {"contact": "+1", "content": "hi"}},
        {"type": "message.phone.received"},
        {"type": "message.phone.received", "data": {}},
    ])
    def test_missing_type_or_data(self, client, dispatcher, payload):
        response = client.post("/api/sms-webhook", json=payload)

        assert response.status_code == 400
        assert response.json()["success"] is False
        dispatcher.handle_event.assert_not_awaited()

    def test_non_json_body(self, client):
        response = client.post("/api/sms-webhook", content=b"not json", headers={"Content-Type": "text/plain"})

        assert response.status_code == 400

    def test_missing_contact(self, client, dispatcher):
        dispatcher.handle_event.side_effect = InvalidEventError("Missing sender or content in received event")

        response = client.post("/api/sms-webhook", json=received_event(contact=None))

        assert response.status_code == 400

    def test_duplicate_is_acknowledged(self, client, dispatcher):
        dispatcher.handle_event.return_value = DispatchOutcome(status="duplicate", message="Duplicate event evt-1 ignored")

        response = client.post("/api/sms-webhook", json=received_event())

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Duplicate event evt-1 ignored"}

    def test_dispatcher_failure(self, client, dispatcher):
        dispatcher.handle_event.side_effect = RuntimeError("boom")

        response = client.post("/api/sms-webhook", json=received_event(), headers={"X-Request-ID": "req-123"})

        assert response.status_code == 500
        assert response.json()["correlation_id"] == "req-123"
        assert response.headers["X-Request-ID"] == "req-123"


class TestWebhookSignature:

    @pytest.fixture
    def signed_client(self, client):
        app.dependency_overrides[get_webhook_signing_key] = lambda: SIGNING_KEY
        return client

    def test_missing_token(self, signed_client, dispatcher):
        response = signed_client.post("/api/sms-webhook", json=received_event())

        assert response.status_code == 401
        dispatcher.handle_event.assert_not_awaited()

    def test_valid_token(self, signed_client):
        token = jwt.encode({"iss": "api.httpsms.com"}, SIGNING_KEY, algorithm="HS256")

        response = signed_client.post(
            "/api/sms-webhook",
            json=received_event(),
            headers={"Authorization": f"Bearer {token}"}
        )

        assert response.status_code == 200

    def test_token_signed_with_other_key(self, signed_client):
        token = jwt.encode({"iss": "api.httpsms.com"}, "some-other-signing-key", algorithm="HS256")

        response = signed_client.post(
            "/api/sms-webhook",
            json=received_event(),
            headers={"Authorization": f"Bearer {token}"}
        )

        assert response.status_code == 401


class TestEsp32Webhook:

    def test_reply_returned_in_payload(self, client, dispatcher):
        dispatcher.handle_event.return_value = DispatchOutcome(
            status="processed",
            message="SMS processed successfully",
            reply="Welcome! Your Algorand wallet has been created.\nAddress: ADDR-1",
            contained_password=True
        )

        response = client.post("/api/esp32-sms-webhook", json={
            "from": "+19912345678",
            "message": "create wallet password mypass123",
            "deviceId": "esp32-01",
            "messageId": "42"
        })

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["reply"].startswith("Welcome!")
        assert data["containedPassword"] is True
        assert data["security_warning"] == SECURITY_WARNING
        assert data["deviceId"] == "esp32-01"

        inbound = dispatcher.handle_event.await_args.args[0]
        assert inbound.event_id == "esp32-esp32-01-42"
        assert inbound.source == "esp32"
        assert dispatcher.handle_event.await_args.kwargs == {"deliver": False}

    def test_no_message_id_skips_dedup(self, client, dispatcher):
        response = client.post("/api/esp32-sms-webhook", json={"from": "+19912345678", "message": "balance"})

        assert response.status_code == 200
        assert "security_warning" not in response.json()["data"]
        assert dispatcher.handle_event.await_args.args[0].event_id is None

    @pytest.mark.parametrize("payload", [{"message": "balance"}, {"from": "+19912345678"}, {}])
    def test_missing_fields(self, client, payload):
        response = client.post("/api/esp32-sms-webhook", json=payload)

        assert response.status_code == 400


class TestEndToEnd:

    def test_esp32_password_flow(self, algorand_wallet, solana_wallet, clock):
        classifier = Mock()
        classifier.is_configured = True
        classifier.classify = AsyncMock(return_value=IntentResult(
            intent=IntentType.ONBOARD, params=IntentParams(), raw_message=""
        ))
        notifier = Mock()
        notifier.send = AsyncMock(return_value=NotifyResult(success=True))
        dispatcher = SmsDispatcher(
            classifier=classifier,
            wallets=WalletRegistry({Chain.ALGORAND: algorand_wallet, Chain.SOLANA: solana_wallet}),
            sessions=InMemorySessionStore(),
            processed_events=ProcessedEventStore(clock=clock),
            notifier=notifier,
            scheduler=Mock(),
            clock=clock
        )
        app.dependency_overrides[get_sms_dispatcher] = lambda: dispatcher
        client = TestClient(app)
        try:
            prompt = client.post("/api/esp32-sms-webhook", json={
                "from": "+19912345678", "message": "create wallet\r\n", "messageId": "1"
            }).json()["data"]
            created = client.post("/api/esp32-sms-webhook", json={
                "from": "+19912345678", "message": "hunter2\r\nOK", "messageId": "2"
            }).json()["data"]
            replayed = client.post("/api/esp32-sms-webhook", json={
                "from": "+19912345678", "message": "hunter2", "messageId": "2"
            }).json()
        finally:
            app.dependency_overrides.clear()

        assert prompt["containedPassword"] is False
        assert "Choose a password" in prompt["reply"]
        assert created["containedPassword"] is True
        assert created["reply"].startswith("Welcome! Your Algorand wallet has been created.")
        assert "data" not in replayed
        assert classifier.classify.await_count == 1
        notifier.send.assert_not_awaited()


class TestServiceEndpoints:

    def test_webhook_health(self, client):
        response = client.get("/api/webhook-health")

        assert response.status_code == 200
        config = response.json()["config"]
        assert set(config) >= {"httpsms_api_key", "gemini_api_key", "webhook_signing_key"}
        assert all(isinstance(value, bool) for value in config.values())

    def test_healthz(self, client):
        response = client.get("/healthz")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_metrics(self, client):
        client.get("/api/webhook-health")

        response = client.get("/metrics")

        assert response.status_code == 200
        assert response.json()["metrics"]["total_requests"] >= 1

    def test_security_headers(self, client):
        response = client.get("/healthz")

        assert response.headers["X-Content-Type-Options"] == "nosniff"
