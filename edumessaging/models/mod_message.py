from pydantic import BaseModel
from typing import Optional
from datetime import datetime
from enum import Enum

class MessageType(str, Enum):
    INQUIRY = "inquiry"
    REPLY = "reply"
    FOLLOW_UP = "follow_up"

class MessageStatus(str, Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    REPLIED = "replied"

class MessagePriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"

class SenderType(str, Enum):
    STUDENT = "student"
    ADMIN = "admin"
    SCHOOL = "school"

# Forward order of the status lifecycle
STATUS_ORDER = {
    MessageStatus.SENT: 0,
    MessageStatus.DELIVERED: 1,
    MessageStatus.READ: 2,
    MessageStatus.REPLIED: 3,
}

class Message(BaseModel):
    id: str
    conversation_id: str
    student_id: str
    student_name: str
    student_email: str
    student_phone: Optional[str] = None
    school_id: str
    school_name: str
    program_id: Optional[str] = None
    program_title: Optional[str] = None
    content: str
    message_type: MessageType = MessageType.INQUIRY
    priority: MessagePriority = MessagePriority.NORMAL
    sender: SenderType
    status: MessageStatus = MessageStatus.SENT
    parent_message_id: Optional[str] = None  # None for thread-starting messages
    is_reply: bool = False
    has_replies: bool = False
    reply_count: int = 0
    assigned_admin_id: Optional[str] = None
    sent_at: datetime
    read_at: Optional[datetime] = None
    replied_at: Optional[datetime] = None
    is_deleted: bool = False

    class Config:
        from_attributes = True
