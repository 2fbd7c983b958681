from __future__ import annotations

import json

import httpx
import pytest

from errors import GatewayError
from gateway import MessagingGateway

pytestmark = pytest.mark.anyio


def _gateway(handler, api_key: str | None = "secret") -> MessagingGateway:
    return MessagingGateway(base_url="http://waha.test/", api_key=api_key, timeout=5, transport=httpx.MockTransport(handler))


async def test_send_text_posts_payload_with_api_key() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json={"id": "true_123@c.us_ABC"})

    gateway = _gateway(handler)
    result = await gateway.send_text("123@c.us", "hi", "default")
    await gateway.aclose()

    assert result == {"id": "true_123@c.us_ABC"}
    request = seen[0]
    assert request.method == "POST"
    assert request.url == "http://waha.test/api/sendText"
    assert request.headers["X-Api-Key"] == "secret"
    assert json.loads(request.content) == {"chatId": "123@c.us", "text": "hi", "session": "default"}


async def test_send_buttons_includes_header_image_only_when_given() -> None:
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"id": "b1"})

    gateway = _gateway(handler)
    await gateway.send_buttons("c", "H", "B", "F", [{"type": "reply", "text": "ok"}], "s")
    await gateway.send_buttons("c", "H", "B", "F", None, "s", {"url": "https://x/y.png"})

    assert "headerImage" not in bodies[0]
    assert bodies[0]["buttons"] == [{"type": "reply", "text": "ok"}]
    assert bodies[1]["headerImage"] == {"url": "https://x/y.png"}
    assert bodies[1]["buttons"] == []


async def test_send_seen_and_typing_endpoints() -> None:
    paths: list[tuple[str, dict]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append((request.url.path, json.loads(request.content)))
        return httpx.Response(200)

    gateway = _gateway(handler, api_key=None)
    assert await gateway.send_seen("c", "m1", "s", "p@c.us") == {}
    await gateway.start_typing("c", "s")
    await gateway.stop_typing("c", "s")

    assert paths == [
        ("/api/sendSeen", {"chatId": "c", "messageId": "m1", "session": "s", "participant": "p@c.us"}),
        ("/api/startTyping", {"chatId": "c", "session": "s"}),
        ("/api/stopTyping", {"chatId": "c", "session": "s"}),
    ]


async def test_session_and_chat_queries() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/sessions":
            return httpx.Response(200, json=[{"name": "default", "status": "WORKING"}])
        if request.url.path == "/api/sessions/default":
            return httpx.Response(200, json={"name": "default", "status": "WORKING"})
        assert request.url.path == "/api/contacts"
        assert request.url.params["contactId"] == "123@c.us"
        assert request.url.params["session"] == "default"
        return httpx.Response(200, json={"id": "123@c.us", "name": "Ana"})

    gateway = _gateway(handler)

    assert await gateway.list_sessions() == [{"name": "default", "status": "WORKING"}]
    assert (await gateway.get_session_status("default"))["status"] == "WORKING"
    assert (await gateway.get_chat_info("123@c.us", "default"))["name"] == "Ana"


async def test_http_error_carries_structured_details() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(422, json={"message": "chat not found"})

    gateway = _gateway(handler)

    with pytest.raises(GatewayError) as excinfo:
        await gateway.send_text("c", "hi", "s")

    assert excinfo.value.status_code == 422
    assert excinfo.value.details == {"message": "chat not found"}


async def test_http_error_with_text_body() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="upstream exploded")

    gateway = _gateway(handler)

    with pytest.raises(GatewayError) as excinfo:
        await gateway.start_typing("c", "s")

    assert excinfo.value.details == "upstream exploded"


async def test_transport_error_has_no_details() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    gateway = _gateway(handler)

    with pytest.raises(GatewayError) as excinfo:
        await gateway.stop_typing("c", "s")

    assert excinfo.value.status_code is None
    assert excinfo.value.details is None
    assert "connection refused" in excinfo.value.message
