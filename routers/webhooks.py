from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import PlainTextResponse

from errors import GatewayError, ValidationError
from logging_config import get_logger
from schemas.stats import ConnectionStats, ConsistencyResponse
from schemas.webhooks import ProviderWebhook, WebhookAck

logger = get_logger(__name__)

webhooks_router = APIRouter(tags=["relay"])

MESSAGE_EVENTS = ("message", "message.any")
STATUS_EVENTS = ("message.ack",)
SESSION_EVENTS = ("session.status",)


def _chat_of(payload: dict):
    # For our own outbound messages the conversation is the recipient.
    if payload.get("fromMe"):
        return payload.get("to")
    return payload.get("from")


@webhooks_router.get("/", response_class=PlainTextResponse)
async def index():
    return "Chat relay is running"


@webhooks_router.post("/webhook", response_model=WebhookAck)
async def provider_webhook(webhook: ProviderWebhook, request: Request):
    multiplexer = request.app.state.multiplexer
    logger.info(f"Webhook received: event={webhook.event}, session={webhook.session}")

    try:
        if webhook.event in MESSAGE_EVENTS:
            room_id = await multiplexer.notify_new_message(webhook.session, _chat_of(webhook.payload), webhook.payload)
        elif webhook.event in STATUS_EVENTS:
            room_id = await multiplexer.notify_status_change(webhook.session, _chat_of(webhook.payload), webhook.payload)
        elif webhook.event in SESSION_EVENTS:
            room_id = await multiplexer.notify_status_change(webhook.session, None, webhook.payload)
        else:
            logger.debug(f"Webhook event {webhook.event} ignored")
            return WebhookAck(status="ignored", event=webhook.event)
    except ValidationError as e:
        logger.warning(f"Webhook rejected: {e.message}")
        raise HTTPException(status_code=400, detail=e.message)

    return WebhookAck(status="delivered", event=webhook.event, room_id=room_id)


@webhooks_router.get("/stats", response_model=ConnectionStats)
async def connection_stats(request: Request):
    return request.app.state.multiplexer.get_connection_stats()


@webhooks_router.get("/stats/transport", response_model=ConnectionStats)
async def transport_stats(request: Request):
    return request.app.state.multiplexer.get_transport_stats()


@webhooks_router.get("/stats/consistency", response_model=ConsistencyResponse)
async def stats_consistency(request: Request):
    return ConsistencyResponse(consistent=request.app.state.multiplexer.verify_consistency())


@webhooks_router.get("/sessions")
async def list_sessions(request: Request):
    try:
        return await request.app.state.multiplexer.gateway.list_sessions()
    except GatewayError as e:
        raise HTTPException(status_code=502, detail=e.details or e.message)


@webhooks_router.get("/sessions/{session_id}")
async def session_status(session_id: str, request: Request):
    try:
        return await request.app.state.multiplexer.gateway.get_session_status(session_id)
    except GatewayError as e:
        raise HTTPException(status_code=502, detail=e.details or e.message)


@webhooks_router.get("/sessions/{session_id}/chats/{chat_id}")
async def chat_info(session_id: str, chat_id: str, request: Request):
    try:
        return await request.app.state.multiplexer.gateway.get_chat_info(chat_id, session_id)
    except GatewayError as e:
        raise HTTPException(status_code=502, detail=e.details or e.message)
