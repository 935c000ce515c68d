"""
Tests for notification delivery.

Covers:
- Push batches (token resolution, rounds, best-effort failures)
- Call placement (errors propagate)
- Telnyx client request shapes (httpx.MockTransport)
- FCM transport delivery counting
- client_state encoding
"""
import asyncio
import base64
import json

import httpx
import pytest

from lifesignal.core.exceptions import CallPlacementError, ClientStateError
from lifesignal.models.schemas import ClientState
from lifesignal.services.notifications import NotificationDispatcher
from lifesignal.services.push import FcmPushTransport, PushNotification, is_invalid_token_response
from lifesignal.services.telephony import ALERT_SCRIPT, TelnyxClient

from helpers import RecordingPushTransport, RecordingTelephony


NOTIFICATION = PushNotification(title="Life Signal: missed check-in", body="Please check in.")


class TestSendPushBatch:
    """Tests for best-effort push batches."""

    @pytest.mark.unit
    def test_sends_one_message_per_round(self, dispatcher, push_transport, make_device):
        make_device("u1", "tok-1")
        make_device("u1", "tok-2")

        result = asyncio.run(dispatcher.send_push_batch(["u1"], NOTIFICATION, {"type": "t"}, 3))

        assert result.rounds == 3
        assert result.sent == 6
        assert len(push_transport.sent) == 3
        assert push_transport.sent[0]["tokens"] == ["tok-1", "tok-2"]

    @pytest.mark.unit
    def test_tokens_deduplicated_across_targets(self, dispatcher, push_transport, make_device):
        make_device("u1", "shared")
        make_device("u2", "shared")
        make_device("u2", "own")

        asyncio.run(dispatcher.send_push_batch(["u1", "u2", "u1"], NOTIFICATION, {}, 1))

        assert push_transport.sent[0]["tokens"] == ["shared", "own"]

    @pytest.mark.unit
    def test_no_tokens_sends_nothing(self, dispatcher, push_transport):
        result = asyncio.run(dispatcher.send_push_batch(["u1"], NOTIFICATION, {}, 2))

        assert result.tokens == 0
        assert not result.attempted
        assert push_transport.sent == []

    @pytest.mark.unit
    def test_transport_failure_is_swallowed(self, repository, make_device):
        make_device("u1", "tok-1")
        dispatcher = NotificationDispatcher(repository, push_transport=RecordingPushTransport(fail=True))

        result = asyncio.run(dispatcher.send_push_batch(["u1"], NOTIFICATION, {}, 2))

        assert result.rounds == 2
        assert result.failed == 2
        assert result.sent == 0

    @pytest.mark.unit
    def test_token_lookup_failure_is_swallowed(self, dispatcher, mock_supabase, push_transport):
        mock_supabase.failing_tables.add("devices")

        result = asyncio.run(dispatcher.send_push_batch(["u1"], NOTIFICATION, {}, 1))

        assert result.tokens == 0
        assert push_transport.sent == []

    @pytest.mark.unit
    def test_unconfigured_push_only_logs(self, repository, make_device, caplog):
        make_device("u1", "tok-1")
        dispatcher = NotificationDispatcher(repository)

        result = asyncio.run(dispatcher.send_push_batch(["u1"], NOTIFICATION, {}, 1))

        assert result.rounds == 0
        assert "Push not configured" in caplog.text


class TestPlaceCall:
    """Tests for must-confirm calls."""

    STATE = ClientState(main_user_uid="u1", reason="main_user_missed_checkin")

    @pytest.mark.unit
    def test_call_carries_encoded_client_state(self, dispatcher, telephony):
        call_id = asyncio.run(dispatcher.place_call("+15551230001", "+15550000000", "conn-123", self.STATE))

        assert call_id == "call-1"
        call = telephony.calls[0]
        assert call["to"] == "+15551230001"
        assert call["connection_id"] == "conn-123"
        assert call["client_state"].main_user_uid == "u1"

    @pytest.mark.unit
    def test_provider_rejection_propagates(self, repository):
        dispatcher = NotificationDispatcher(
            repository, telephony=RecordingTelephony(failing_numbers={"+15551230001"})
        )

        with pytest.raises(CallPlacementError):
            asyncio.run(dispatcher.place_call("+15551230001", "+15550000000", "conn-123", self.STATE))

    @pytest.mark.unit
    def test_missing_telephony_raises(self, repository):
        dispatcher = NotificationDispatcher(repository)

        with pytest.raises(CallPlacementError):
            asyncio.run(dispatcher.place_call("+15551230001", "+15550000000", "conn-123", self.STATE))


class TestTelnyxClient:
    """Tests for the Telnyx Call Control client."""

    @pytest.mark.unit
    def test_create_call_request(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"data": {"call_control_id": "v3:abc"}})

        client = TelnyxClient("KEY_TEST", transport=httpx.MockTransport(handler))

        call_id = asyncio.run(client.create_call("+15551230001", "+15550000000", "conn-123", "c3RhdGU="))

        assert call_id == "v3:abc"
        request = requests[0]
        assert request.url == "https://api.telnyx.com/v2/calls"
        assert request.headers["Authorization"] == "Bearer KEY_TEST"
        assert json.loads(request.content) == {
            "connection_id": "conn-123",
            "to": "+15551230001",
            "from": "+15550000000",
            "client_state": "c3RhdGU=",
        }

    @pytest.mark.unit
    def test_create_call_rejected(self):
        client = TelnyxClient(
            "KEY_TEST",
            transport=httpx.MockTransport(lambda request: httpx.Response(422, json={"errors": []}))
        )

        with pytest.raises(CallPlacementError) as exc_info:
            asyncio.run(client.create_call("+15551230001", "+15550000000", "conn-123", "x"))

        assert exc_info.value.details["provider_status"] == 422
        assert exc_info.value.details["to_phone"] == "********0001"

    @pytest.mark.unit
    def test_create_call_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = TelnyxClient("KEY_TEST", transport=httpx.MockTransport(handler))

        with pytest.raises(CallPlacementError):
            asyncio.run(client.create_call("+15551230001", "+15550000000", "conn-123", "x"))

    @pytest.mark.unit
    def test_speak_request(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"data": {"result": "ok"}})

        client = TelnyxClient("KEY_TEST", transport=httpx.MockTransport(handler))
        asyncio.run(client.speak("call-abc"))

        assert requests[0].url.path == "/v2/calls/call-abc/actions/speak"
        assert json.loads(requests[0].content) == {
            "language": "en-US",
            "voice": "female",
            "payload": ALERT_SCRIPT,
        }

    @pytest.mark.unit
    def test_speak_failure_raises(self):
        client = TelnyxClient("KEY_TEST", transport=httpx.MockTransport(lambda r: httpx.Response(500)))

        with pytest.raises(httpx.HTTPStatusError):
            asyncio.run(client.speak("call-abc"))

    @pytest.mark.unit
    def test_from_settings_requires_key(self, test_settings):
        assert TelnyxClient.from_settings(test_settings.model_copy(update={"telnyx_api_key": None})) is None
        assert TelnyxClient.from_settings(test_settings).api_key == "KEY_TEST"


class TestFcmPushTransport:
    """Tests for FCM HTTP v1 delivery."""

    SERVICE_ACCOUNT = {"project_id": "life-signal-test"}

    def _transport(self, handler) -> FcmPushTransport:
        transport = FcmPushTransport(self.SERVICE_ACCOUNT, transport=httpx.MockTransport(handler))
        transport._mint_access_token = lambda: "access-token"
        return transport

    @pytest.mark.unit
    def test_counts_successes_and_invalid_tokens(self):
        seen = []

        def handler(request):
            body = json.loads(request.content)
            seen.append(body["message"]["token"])
            if body["message"]["token"] == "dead":
                return httpx.Response(404, json={"error": {"status": "NOT_FOUND", "message": "Requested entity was not found."}})
            return httpx.Response(200, json={"name": "projects/x/messages/1"})

        transport = self._transport(handler)
        delivery = asyncio.run(transport.send(["ok-1", "dead", "ok-2"], NOTIFICATION, {"type": "t"}))

        assert seen == ["ok-1", "dead", "ok-2"]
        assert delivery.success_count == 2
        assert delivery.failure_count == 1
        assert delivery.invalid_tokens == ["dead"]

    @pytest.mark.unit
    def test_refreshes_token_once_on_unauthorized(self):
        auth_headers = []

        def handler(request):
            auth_headers.append(request.headers["Authorization"])
            if len(auth_headers) == 1:
                return httpx.Response(401)
            return httpx.Response(200, json={})

        transport = self._transport(handler)
        delivery = asyncio.run(transport.send(["tok"], NOTIFICATION, {}))

        assert delivery.success_count == 1
        assert len(auth_headers) == 2

    @pytest.mark.unit
    def test_message_payload(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            assert "/projects/life-signal-test/" in str(request.url)
            return httpx.Response(200, json={})

        asyncio.run(self._transport(handler).send(["tok"], NOTIFICATION, {"type": "t", "mainUserUid": "u1"}))

        assert bodies[0]["message"]["notification"] == {"title": NOTIFICATION.title, "body": NOTIFICATION.body}
        assert bodies[0]["message"]["data"] == {"type": "t", "mainUserUid": "u1"}

    @pytest.mark.unit
    def test_from_settings_without_credentials(self, test_settings):
        assert FcmPushTransport.from_settings(test_settings) is None
        bad = test_settings.model_copy(update={"firebase_service_account_json": "{not json"})
        assert FcmPushTransport.from_settings(bad) is None

    @pytest.mark.unit
    def test_invalid_token_markers(self):
        assert is_invalid_token_response('{"errorCode": "UNREGISTERED"}')
        assert not is_invalid_token_response('{"error": "quota exceeded"}')


class TestClientState:
    """Tests for the call correlation payload."""

    @pytest.mark.unit
    def test_encode_uses_camel_case_keys(self):
        state = ClientState(main_user_uid="u1", emergency_contact_uid="c1", reason="escalation")

        decoded = json.loads(base64.b64decode(state.encode()))

        assert decoded == {"mainUserUid": "u1", "emergencyContactUid": "c1", "reason": "escalation"}

    @pytest.mark.unit
    def test_decode_payload_from_provider(self):
        raw = base64.b64encode(json.dumps({"mainUserUid": "u1"}).encode()).decode()

        state = ClientState.decode(raw)

        assert state.main_user_uid == "u1"
        assert state.emergency_contact_uid is None

    @pytest.mark.unit
    @pytest.mark.parametrize("raw", [
        "not base64!!",
        base64.b64encode(b"not json").decode(),
        base64.b64encode(b"[1, 2]").decode(),
        base64.b64encode(json.dumps({"reason": "escalation"}).encode()).decode(),
        base64.b64encode(json.dumps({"mainUserUid": ""}).encode()).decode(),
    ])
    def test_malformed_payloads_raise(self, raw):
        with pytest.raises(ClientStateError):
            ClientState.decode(raw)
