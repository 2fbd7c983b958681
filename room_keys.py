from typing import Optional

from errors import ValidationError

ROOM_KEY = "{session_id}"  # session-wide room, e.g. status changes
CHAT_ROOM_KEY = "{session_id}-{chat_id}"  # one conversation within a session


def resolve_room(session_id: Optional[str], chat_id: Optional[str] = None) -> str:
    """Map (session, optional chat) to the broadcast room key.

    Client actions and provider webhooks both go through here so they land in
    the same room.
    """
    if not session_id:
        raise ValidationError("sessionId is required")
    if chat_id:
        return CHAT_ROOM_KEY.format(session_id=session_id, chat_id=chat_id)
    return ROOM_KEY.format(session_id=session_id)
