from pydantic import BaseModel, ConfigDict
from typing import Optional


class ProviderWebhook(BaseModel):
    model_config = ConfigDict(extra="allow")

    event: str
    session: Optional[str] = None
    payload: dict = {}


class WebhookAck(BaseModel):
    status: str
    event: str
    room_id: Optional[str] = None
