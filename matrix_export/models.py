"""Message records exchanged between the backend, the buffer and the sinks."""

from datetime import datetime
from typing import Any, Optional, Union

from pydantic import BaseModel

# Backend-assigned identity; Matrix event ids are strings
MessageId = Union[int, str]


class Channel(BaseModel):
    id: str
    name: str


class Sender(BaseModel):
    uid: str
    username: Optional[str] = None
    device_id: str = ""
    device_name: Optional[str] = None


class Attachment(BaseModel):
    path: str
    asset_type: str
    filename: Optional[str] = None
    title: Optional[str] = None


class RawContent(BaseModel):
    """Message content as delivered by the backend.

    ``type`` is one of ``text``, ``attachment``, ``reaction``, ``edit`` or
    ``delete``; anything else is carried through so that newer protocol
    kinds can be dropped instead of failing validation.
    """

    type: str
    body: Optional[str] = None
    reply_to: Optional[MessageId] = None
    attachment: Optional[Attachment] = None
    message_id: Optional[MessageId] = None  # edit target
    message_ids: list[MessageId] = []  # delete targets
    reacts_to: Optional[MessageId] = None


class RawMessage(BaseModel):
    id: MessageId
    sent_at: datetime
    sender: Sender
    revoked_device: Optional[bool] = None
    content: RawContent


class AttachmentRef(BaseModel):
    path: str
    asset_type: str


class CleanedMessage(BaseModel):
    """Flat record persisted by every sink, keyed by ``id``."""

    id: MessageId
    text: Optional[str] = None
    reply_to: Optional[MessageId] = None
    attachment: Optional[AttachmentRef] = None
    sent_at: datetime
    sender_uid: str
    sender_username: Optional[str] = None
    device_id: str
    device_name: Optional[str] = None
    revoked_device: Optional[bool] = None

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class Page(BaseModel):
    messages: list[RawMessage]
    cursor: Optional[str] = None
    last: bool
