from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class ContactIn(BaseModel):
    phone: str
    first_name: str = ""


class LocationIn(BaseModel):
    latitude: float
    longitude: float


class TextEventIn(BaseModel):
    """Inbound text message; contact or location replace text for shared payloads."""
    user_id: str
    chat_id: Optional[str] = Field(default=None)
    text: str = ""
    username: str = ""
    contact: Optional[ContactIn] = None
    location: Optional[LocationIn] = None
    reply_to_message_id: Optional[str] = None
    message_id: Optional[str] = None


class ButtonEventIn(BaseModel):
    """Inbound button press."""
    user_id: str
    chat_id: Optional[str] = Field(default=None)
    choice_id: str
    username: str = ""
    message_id: Optional[str] = None


class FileEventIn(BaseModel):
    """Inbound document; content is base64-encoded."""
    user_id: str
    chat_id: Optional[str] = Field(default=None)
    filename: str
    content_base64: str
    username: str = ""


class ChoiceOut(BaseModel):
    id: str
    label: str


class OutgoingMessageOut(BaseModel):
    message_id: str
    chat_id: str
    text: str
    kind: str
    choices: List[ChoiceOut] = Field(default_factory=list)
    filename: str = ""
    edited_id: str = ""


class EventResponse(BaseModel):
    """Messages for the event's own chat: earlier queued ones first, then this event's."""
    chat_id: str
    messages: List[OutgoingMessageOut]


class ProductOut(BaseModel):
    name: str
    price: float
    category: str
    description: str = ""
    stock: int = 0
    specs: Dict[str, str] = Field(default_factory=dict)


class CatalogInfoOut(BaseModel):
    source: str
    updated_at: Optional[float] = None
    total: int
    categories: Dict[str, int] = Field(default_factory=dict)


class HistoryEntryOut(BaseModel):
    id: str
    user_id: str
    username: str
    text: str
    response: str
    ts: float


class HistoryOut(BaseModel):
    user_id: str
    messages: List[HistoryEntryOut]


class AuditEntryOut(BaseModel):
    user_id: str
    action: str
    details: str = ""
    ts: float


class UploadResult(BaseModel):
    filename: str
    count: int
