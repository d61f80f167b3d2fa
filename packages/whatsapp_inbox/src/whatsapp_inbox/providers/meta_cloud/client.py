"""
Meta Cloud API Client

Graph API calls made on behalf of a tenant:
- media: resolve a media id to its transient URL and download the bytes
- outbound: send text and media messages, upload media for sending

Every call uses the tenant's access token as a bearer credential and is
bounded by a timeout.
"""

import logging
from typing import Any

import httpx

from whatsapp_inbox.providers.base import ProviderError

logger = logging.getLogger(__name__)

GRAPH_API_BASE_URL = "https://graph.facebook.com"
DEFAULT_API_VERSION = "v23.0"

# Outbound media kinds accepted by the messages endpoint
SENDABLE_MEDIA_TYPES = ("image", "video", "audio", "document")
CAPTIONED_MEDIA_TYPES = ("image", "video", "document")


class MetaCloudClient:
    """
    Graph API client.

    The underlying httpx.AsyncClient is created lazily and reused; call
    close() (or use ``async with``) when done.
    """

    def __init__(
        self,
        base_url: str = GRAPH_API_BASE_URL,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "MetaCloudClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                follow_redirects=True,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _request(
        self,
        method: str,
        url: str,
        access_token: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """Authenticated request. Raises ProviderError on any failure."""
        client = await self._get_client()
        headers = {"Authorization": f"Bearer {access_token}"}

        try:
            response = await client.request(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning(f"Graph API request timed out: {e}")
            raise ProviderError(
                message=f"Request timed out after {self.timeout}s",
                code="TIMEOUT",
                retryable=True,
            )
        except httpx.RequestError as e:
            logger.error(f"HTTP request failed: {e}")
            raise ProviderError(
                message=f"HTTP request failed: {e}",
                code="HTTP_ERROR",
                retryable=True,
            )

        if response.status_code >= 400:
            error = self._error_details(response)
            raise ProviderError(
                message=error.get("message", f"HTTP {response.status_code}"),
                code=str(error.get("code", response.status_code)),
                details=error,
                retryable=response.status_code >= 500,
            )

        return response

    @staticmethod
    def _error_details(response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            return {}
        error = data.get("error") if isinstance(data, dict) else None
        return error if isinstance(error, dict) else {}

    @staticmethod
    def _json(response: httpx.Response, what: str) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            raise ProviderError(f"{what} response is not JSON", code="INVALID_RESPONSE")
        if not isinstance(data, dict):
            raise ProviderError(f"{what} response is not an object", code="INVALID_RESPONSE")
        return data

    # =========================================================================
    # Media
    # =========================================================================

    async def get_media_url(
        self,
        media_id: str,
        access_token: str,
        api_version: str = DEFAULT_API_VERSION,
    ) -> str:
        """
        Get the transient download URL for a media id.

        Returns:
            The ``url`` field of the media object

        Raises:
            ProviderError: request failed or the response has no URL
        """
        url = f"{self.base_url}/{api_version}/{media_id}"
        data = self._json(await self._request("GET", url, access_token), "Media info")

        media_url = data.get("url")
        if not media_url:
            raise ProviderError(
                "Media info response has no URL",
                code="INVALID_RESPONSE",
                details={"media_id": media_id},
            )

        logger.debug("Resolved media URL", extra={"media_id": media_id})
        return media_url

    async def download(self, url: str, access_token: str) -> tuple[bytes, str | None]:
        """
        Download media bytes from a URL returned by get_media_url.

        Returns:
            (content, content type header)
        """
        response = await self._request("GET", url, access_token)
        return response.content, response.headers.get("content-type")

    async def upload_media(
        self,
        phone_number_id: str,
        access_token: str,
        content: bytes,
        filename: str,
        mime_type: str,
        api_version: str = DEFAULT_API_VERSION,
    ) -> str:
        """
        Upload a file so it can be referenced by id in an outbound message.

        Returns:
            The media id assigned by WhatsApp
        """
        url = f"{self.base_url}/{api_version}/{phone_number_id}/media"
        response = await self._request(
            "POST",
            url,
            access_token,
            data={"messaging_product": "whatsapp", "type": mime_type},
            files={"file": (filename, content, mime_type)},
        )
        media_id = self._json(response, "Media upload").get("id")
        if not media_id:
            raise ProviderError("Media upload response has no id", code="INVALID_RESPONSE")

        logger.info("Uploaded media to WhatsApp", extra={"media_id": media_id, "size": len(content)})
        return str(media_id)

    # =========================================================================
    # Messages
    # =========================================================================

    async def _send(
        self,
        phone_number_id: str,
        access_token: str,
        message: dict[str, Any],
        api_version: str,
    ) -> str | None:
        """POST to the messages endpoint; returns the provider message id."""
        url = f"{self.base_url}/{api_version}/{phone_number_id}/messages"
        payload = {"messaging_product": "whatsapp", "recipient_type": "individual", **message}
        data = self._json(await self._request("POST", url, access_token, json=payload), "Send")

        messages = data.get("messages") or [{}]
        message_id = messages[0].get("id") if isinstance(messages[0], dict) else None

        logger.info(
            "Sent message via Meta API",
            extra={"to": message.get("to"), "type": message.get("type"), "message_id": message_id},
        )
        return message_id

    async def send_text(
        self,
        phone_number_id: str,
        access_token: str,
        to: str,
        text: str,
        api_version: str = DEFAULT_API_VERSION,
    ) -> str | None:
        """Send a text message. Returns the provider message id when given."""
        message = {"to": to, "type": "text", "text": {"preview_url": False, "body": text}}
        return await self._send(phone_number_id, access_token, message, api_version)

    async def send_media(
        self,
        phone_number_id: str,
        access_token: str,
        to: str,
        media_type: str,
        media_id: str,
        caption: str | None = None,
        filename: str | None = None,
        api_version: str = DEFAULT_API_VERSION,
    ) -> str | None:
        """
        Send a previously uploaded media object.

        Audio takes no caption; only documents carry a filename.
        """
        if media_type not in SENDABLE_MEDIA_TYPES:
            raise ProviderError(f"Unsupported media type: {media_type}", code="UNSUPPORTED_MEDIA_TYPE")

        body: dict[str, Any] = {"id": media_id}
        if caption and media_type in CAPTIONED_MEDIA_TYPES:
            body["caption"] = caption
        if filename and media_type == "document":
            body["filename"] = filename

        message = {"to": to, "type": media_type, media_type: body}
        return await self._send(phone_number_id, access_token, message, api_version)
