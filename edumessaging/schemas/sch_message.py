from pydantic import BaseModel, validator
from typing import Optional, List
from datetime import datetime
from edumessaging.models.mod_message import MessageType, MessageStatus, MessagePriority, SenderType

class MessageCreate(BaseModel):
    student_id: str
    student_name: str
    student_email: str
    student_phone: Optional[str] = None
    school_id: str
    school_name: str
    program_id: Optional[str] = None
    program_title: Optional[str] = None
    content: str
    priority: MessagePriority = MessagePriority.NORMAL
    new_thread: bool = False  # start a fresh conversation instead of continuing the existing one

class MessageReply(BaseModel):
    content: str
    sender: SenderType = SenderType.ADMIN

    @validator('sender')
    def validate_sender(cls, v):
        if v == SenderType.STUDENT:
            raise ValueError('Replies can only be sent by an admin or a school')
        return v

class MessageStatusUpdate(BaseModel):
    status: str

class MessageResponse(BaseModel):
    id: str
    conversation_id: str
    student_id: str
    student_name: str
    student_email: str
    student_phone: Optional[str]
    school_id: str
    school_name: str
    program_id: Optional[str]
    program_title: Optional[str]
    content: str
    message_type: MessageType
    priority: MessagePriority
    sender: SenderType
    status: MessageStatus
    parent_message_id: Optional[str]
    is_reply: bool
    has_replies: bool
    reply_count: int
    assigned_admin_id: Optional[str]
    sent_at: datetime
    read_at: Optional[datetime]
    replied_at: Optional[datetime]

    class Config:
        from_attributes = True

class CreateMessageResponse(BaseModel):
    message_id: str
    conversation_id: str
    message_type: MessageType
    status: MessageStatus
    sent_at: datetime

class ReplyResponse(BaseModel):
    reply_id: str
    conversation_id: str
    parent_message_id: str

class PageInfo(BaseModel):
    current_page: int
    page_size: int
    total_pages: int
    total_messages: int
    has_next: bool
    has_prev: bool

class StatusCount(BaseModel):
    status: str
    count: int

class SchoolStat(BaseModel):
    school_id: str
    school_name: Optional[str]
    message_count: int

class MessageStats(BaseModel):
    status_breakdown: List[StatusCount] = []
    top_schools: List[SchoolStat] = []
    total_messages: int = 0

class MessageListResponse(BaseModel):
    messages: List[MessageResponse]
    pagination: PageInfo
    stats: Optional[MessageStats] = None
    degraded: bool = False

class ConversationResponse(BaseModel):
    conversation_id: str
    messages: List[MessageResponse]
    message_count: int
    degraded: bool = False
