"""Tests for the Graph API send client."""

import json

import httpx
import pytest

from omnidesk.adapters.meta_graph_client import MetaGraphClient
from omnidesk.infra.errors import ProviderError


def _client(handler):
    return MetaGraphClient(
        base_url="https://graph.test",
        api_version="v19.0",
        timeout=5,
        transport=httpx.MockTransport(handler),
    )


class TestSendPageMessage:

    @pytest.mark.asyncio
    async def test_posts_to_messenger_send_api(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"recipient_id": "PSID_1", "message_id": "m_abc"})

        message_id = await _client(handler).send_page_message("page-token", "PSID_1", "hello")

        assert message_id == "m_abc"
        assert seen["url"].startswith("https://graph.test/v19.0/me/messages")
        assert "access_token=page-token" in seen["url"]
        assert seen["body"] == {
            "recipient": {"id": "PSID_1"},
            "message": {"text": "hello"},
            "messaging_type": "RESPONSE",
        }

    @pytest.mark.asyncio
    async def test_error_payload_raises_provider_error(self):
        def handler(request):
            return httpx.Response(400, json={
                "error": {"message": "(#100) No matching user found", "code": 100, "type": "OAuthException"}
            })

        with pytest.raises(ProviderError) as exc_info:
            await _client(handler).send_page_message("page-token", "PSID_1", "hello", provider="instagram")

        error = exc_info.value
        assert error.message == "(#100) No matching user found"
        assert error.provider == "instagram"
        assert error.provider_status == 400
        assert error.provider_code == 100
        assert error.status_code == 502


class TestSendWhatsAppText:

    @pytest.mark.asyncio
    async def test_posts_to_phone_number_messages_with_bearer_token(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "messaging_product": "whatsapp",
                "contacts": [{"input": "923001234567", "wa_id": "923001234567"}],
                "messages": [{"id": "wamid.OUT"}],
            })

        message_id = await _client(handler).send_whatsapp_text("109876543210", "wa-token", "923001234567", "Hi")

        assert message_id == "wamid.OUT"
        assert seen["url"] == "https://graph.test/v19.0/109876543210/messages"
        assert seen["auth"] == "Bearer wa-token"
        assert seen["body"]["to"] == "923001234567"
        assert seen["body"]["text"]["body"] == "Hi"
        assert seen["body"]["messaging_product"] == "whatsapp"

    @pytest.mark.asyncio
    async def test_non_json_response_raises_provider_error(self):
        def handler(request):
            return httpx.Response(502, text="<html>Bad Gateway</html>")

        with pytest.raises(ProviderError) as exc_info:
            await _client(handler).send_whatsapp_text("1", "t", "2", "Hi")
        assert exc_info.value.provider_status == 502

    @pytest.mark.asyncio
    async def test_http_error_status_without_error_body_raises(self):
        def handler(request):
            return httpx.Response(500, json={})

        with pytest.raises(ProviderError):
            await _client(handler).send_whatsapp_text("1", "t", "2", "Hi")

    @pytest.mark.asyncio
    async def test_transport_failure_raises_provider_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ProviderError) as exc_info:
            await _client(handler).send_whatsapp_text("1", "t", "2", "Hi")
        assert exc_info.value.provider == "whatsapp"
