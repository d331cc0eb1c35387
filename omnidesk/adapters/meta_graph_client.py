"""Meta Graph API client for sending Messenger, Instagram and WhatsApp replies."""

import time
from typing import Any, Dict, Optional

import httpx

from omnidesk.infra.config import config
from omnidesk.infra.errors import ProviderError
from omnidesk.infra.logging import get_logger
from omnidesk.infra.metrics import provider_call_duration
from omnidesk.infra.timeout import PROVIDER_CALL_TIMEOUT

logger = get_logger(__name__)


class MetaGraphClient:
    """
    Thin async wrapper over the Graph API send endpoints.

    Every failure, whether an error payload, a non-2xx status, a body that is
    not JSON or a transport error, surfaces as ProviderError. No retries.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_version: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or config.META_GRAPH_API_BASE).rstrip("/")
        self.api_version = api_version or config.META_GRAPH_API_VERSION
        self.timeout = timeout if timeout is not None else PROVIDER_CALL_TIMEOUT
        self.transport = transport

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{self.api_version}/{path.lstrip('/')}"

    async def send_page_message(
        self,
        access_token: str,
        recipient_id: str,
        text: str,
        provider: str = "facebook",
    ) -> Optional[str]:
        """
        Send a text reply through the Messenger Send API.

        Instagram messaging goes through the same endpoint with the linked
        Facebook Page access token.

        Returns:
            The provider message id (mid)
        """
        data = await self._post(
            provider,
            self._url("me/messages"),
            json={
                "recipient": {"id": recipient_id},
                "message": {"text": text},
                "messaging_type": "RESPONSE",
            },
            params={"access_token": access_token},
        )
        return data.get("message_id")

    async def send_whatsapp_text(
        self,
        phone_number_id: str,
        access_token: str,
        wa_id: str,
        text: str,
    ) -> Optional[str]:
        """
        Send a text message through the WhatsApp Cloud API.

        Returns:
            The provider message id (wamid)
        """
        data = await self._post(
            "whatsapp",
            self._url(f"{phone_number_id}/messages"),
            json={
                "messaging_product": "whatsapp",
                "recipient_type": "individual",
                "to": wa_id,
                "type": "text",
                "text": {"preview_url": False, "body": text},
            },
            headers={"Authorization": f"Bearer {access_token}"},
        )
        messages = data.get("messages") or []
        return messages[0].get("id") if messages else None

    async def _post(
        self,
        provider: str,
        url: str,
        json: Dict[str, Any],
        params: Optional[Dict[str, str]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        start_time = time.time()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(url, json=json, params=params, headers=headers)
        except httpx.HTTPError as e:
            raise ProviderError(f"{provider} request failed: {e}", provider=provider) from e
        finally:
            provider_call_duration.labels(provider=provider).observe(time.time() - start_time)

        try:
            data = response.json()
        except ValueError:
            raise ProviderError(
                f"{provider} returned a non-JSON response ({response.status_code})",
                provider=provider,
                provider_status=response.status_code,
            )

        error = data.get("error") if isinstance(data, dict) else None
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            logger.warning(
                "Provider rejected send",
                extra={"provider": provider, "status_code": response.status_code, "error": message},
            )
            raise ProviderError(
                message or f"{provider} API error",
                provider=provider,
                provider_status=response.status_code,
                provider_code=error.get("code") if isinstance(error, dict) else None,
            )

        if response.status_code >= 400 or not isinstance(data, dict):
            raise ProviderError(
                f"{provider} API error ({response.status_code})",
                provider=provider,
                provider_status=response.status_code,
            )

        return data
