"""
Adapter between the legacy camelCase student-message payload and the
canonical snake_case schema.

Older clients post ``{userId, userEmail, userName, programId, programTitle,
schoolId, schoolName, message}`` (some send ``studentId`` instead of
``userId``) and expect ``{messageId, conversationId, sentAt}`` back. Only
this module knows those names; everything past the router works on
``MessageCreate`` and ``Message``.
"""
from typing import Optional
from pydantic import BaseModel, Field
from edumessaging.models.mod_message import Message, MessagePriority
from edumessaging.schemas.sch_message import MessageCreate

class LegacyStudentMessage(BaseModel):
    user_id: Optional[str] = Field(None, alias="userId")
    student_id: Optional[str] = Field(None, alias="studentId")
    user_email: Optional[str] = Field(None, alias="userEmail")
    user_name: Optional[str] = Field(None, alias="userName")
    user_phone: Optional[str] = Field(None, alias="userPhone")
    program_id: Optional[str] = Field(None, alias="programId")
    program_title: Optional[str] = Field(None, alias="programTitle")
    school_id: Optional[str] = Field(None, alias="schoolId")
    school_name: Optional[str] = Field(None, alias="schoolName")
    message: Optional[str] = None
    priority: MessagePriority = MessagePriority.NORMAL

    class Config:
        populate_by_name = True

def to_message_create(payload: LegacyStudentMessage) -> MessageCreate:
    """
    Map a legacy payload onto ``MessageCreate``.

    Missing values become empty strings so that the message validator
    reports every one of them in a single error.
    """
    return MessageCreate(
        student_id=payload.user_id or payload.student_id or "",
        student_name=payload.user_name or "",
        student_email=payload.user_email or "",
        student_phone=payload.user_phone,
        school_id=payload.school_id or "",
        school_name=payload.school_name or "",
        program_id=payload.program_id,
        program_title=payload.program_title,
        content=payload.message or "",
        priority=payload.priority
    )

def to_legacy_response(message: Message) -> dict:
    return {
        "messageId": message.id,
        "conversationId": message.conversation_id,
        "sentAt": message.sent_at.isoformat()
    }
