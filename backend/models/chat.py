from pydantic import BaseModel, Field
from typing import List, Optional
from enum import Enum


class ChatRoomStatus(str, Enum):
    OPEN = "OPEN"
    WAITING = "WAITING"
    IN_PROGRESS = "IN_PROGRESS"
    CLOSED = "CLOSED"
    RESOLVED = "RESOLVED"


class ChatSenderType(str, Enum):
    CUSTOMER = "CUSTOMER"
    SUPPORT = "SUPPORT"


class ChatAttachment(BaseModel):
    file_url: str
    file_type: str
    file_name: str
    file_size: int = Field(..., ge=0)


class ChatRoomCreate(BaseModel):
    product_id: Optional[str] = None
    order_id: Optional[str] = None


class ChatMessageCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=5000)
    attachments: List[ChatAttachment] = []


class ChatAssign(BaseModel):
    support_staff_id: str


class ChatRating(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=1000)
