from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from typing import Any, List, Optional


class ActionPayload(BaseModel):
    # Clients speak camelCase; unknown keys are kept so send-message can echo them.
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
        coerce_numbers_to_str=True,
    )


class JoinSessionAction(ActionPayload):
    session_id: Optional[str] = None
    chat_id: Optional[str] = None


class SendMessageAction(ActionPayload):
    session_id: Optional[str] = None
    chat_id: Optional[str] = None
    text: Optional[str] = None
    message_type: Optional[str] = None
    header: Optional[str] = None
    body: Optional[str] = None
    footer: Optional[str] = None
    buttons: Optional[List[Any]] = None
    header_image: Optional[Any] = None


class MarkAsSeenAction(ActionPayload):
    session_id: Optional[str] = None
    chat_id: Optional[str] = None
    message_id: Optional[str] = None
    participant: Optional[str] = None


class TypingAction(ActionPayload):
    session_id: Optional[str] = None
    chat_id: Optional[str] = None


class ClientFrame(BaseModel):
    event: str
    data: Optional[dict] = None
