from typing import Any, List, Optional

import httpx

from constants import GATEWAY_API_KEY, GATEWAY_TIMEOUT, GATEWAY_URL
from errors import GatewayError
from logging_config import get_logger

logger = get_logger(__name__)


class MessagingGateway:
    """Async client for the WhatsApp HTTP API the relay sends through.

    Failures surface as GatewayError; nothing is retried here.
    """

    def __init__(
        self,
        base_url: str = GATEWAY_URL,
        api_key: Optional[str] = GATEWAY_API_KEY,
        timeout: float = GATEWAY_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"Accept": "application/json"}
        if api_key:
            headers["X-Api-Key"] = api_key
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )
        logger.info(f"Messaging gateway configured for {self.base_url}")

    async def aclose(self):
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            try:
                details = e.response.json()
            except ValueError:
                details = e.response.text or None
            logger.error(f"Gateway {method} {path} failed with status {status}: {details}")
            raise GatewayError(f"Gateway request failed with status {status}", status_code=status, details=details) from e
        except httpx.RequestError as e:
            logger.error(f"Gateway {method} {path} unreachable: {e}", exc_info=True)
            raise GatewayError(f"Gateway request failed: {e}") from e

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {"raw": response.text}

    async def list_sessions(self) -> List[dict]:
        return await self._request("GET", "/api/sessions")

    async def get_session_status(self, session_id: str) -> dict:
        return await self._request("GET", f"/api/sessions/{session_id}")

    async def get_chat_info(self, chat_id: str, session_id: str) -> dict:
        return await self._request("GET", "/api/contacts", params={"contactId": chat_id, "session": session_id})

    async def send_text(self, chat_id: str, text: str, session_id: str) -> dict:
        logger.debug(f"Sending text to {chat_id} via session {session_id}")
        return await self._request("POST", "/api/sendText", json={
            "chatId": chat_id,
            "text": text,
            "session": session_id,
        })

    async def send_buttons(
        self,
        chat_id: str,
        header: Optional[str],
        body: Optional[str],
        footer: Optional[str],
        buttons: Optional[list],
        session_id: str,
        header_image: Any = None,
    ) -> dict:
        payload = {
            "chatId": chat_id,
            "header": header,
            "body": body,
            "footer": footer,
            "buttons": buttons or [],
            "session": session_id,
        }
        if header_image:
            payload["headerImage"] = header_image
        logger.debug(f"Sending buttons to {chat_id} via session {session_id}")
        return await self._request("POST", "/api/sendButtons", json=payload)

    async def send_seen(self, chat_id: str, message_id: str, session_id: str, participant: Optional[str] = None) -> dict:
        payload = {"chatId": chat_id, "messageId": message_id, "session": session_id}
        if participant:
            payload["participant"] = participant
        return await self._request("POST", "/api/sendSeen", json=payload)

    async def start_typing(self, chat_id: str, session_id: str) -> dict:
        return await self._request("POST", "/api/startTyping", json={"chatId": chat_id, "session": session_id})

    async def stop_typing(self, chat_id: str, session_id: str) -> dict:
        return await self._request("POST", "/api/stopTyping", json={"chatId": chat_id, "session": session_id})
