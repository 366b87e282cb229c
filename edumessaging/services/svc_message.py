import math
import uuid
from datetime import datetime, timezone
from typing import Optional

from azure.cosmos import ContainerProxy
from fastapi import HTTPException

from edumessaging.configuration.config import Config
from edumessaging.configuration.monitor import log_event, log_exception, log_metric, log_warning, start_span
from edumessaging.models.mod_auth import Actor, ActorRole
from edumessaging.models.mod_message import (
    Message, MessageType, MessageStatus, SenderType, STATUS_ORDER
)
from edumessaging.repositories.rep_message import MessageFilter, MessageRepository
from edumessaging.schemas.sch_message import (
    MessageCreate, MessageReply, MessageResponse, MessageListResponse, ConversationResponse,
    MessageStats, PageInfo, SchoolStat, StatusCount
)
from edumessaging.validators.val_errors import MessageNotFoundError, ServiceUnavailableError
from edumessaging.validators.val_message import MessageValidator

CONVERSATION_NAMESPACE = uuid.UUID("6f1c2a0e-3b8d-5e49-9a7c-1d2e3f405162")


def derive_conversation_id(student_id: str, school_id: str, program_id: Optional[str]) -> str:
    """Same (student, school, program) always maps to the same conversation."""
    key = "|".join([student_id, school_id, program_id or ""])
    return str(uuid.uuid5(CONVERSATION_NAMESPACE, key))


def mint_conversation_id(student_id: str, program_id: Optional[str], sent_at: datetime) -> str:
    """Fresh conversation id for a student explicitly starting a new thread."""
    return f"{student_id}_{program_id or 'general'}_{int(sent_at.timestamp() * 1000)}"


def to_response(message: Message) -> MessageResponse:
    return MessageResponse(**message.dict())


def build_page_info(page: int, limit: int, returned: int, total: int) -> PageInfo:
    skip = (page - 1) * limit
    return PageInfo(
        current_page=page,
        page_size=limit,
        total_pages=math.ceil(total / limit) if limit else 0,
        total_messages=total,
        has_next=skip + returned < total,
        has_prev=page > 1
    )


def _clamp_paging(page: int, limit: int):
    page = max(1, page)
    limit = min(max(1, limit), Config.MAX_PAGE_SIZE)
    return page, limit


class MessageService:
    @staticmethod
    def _degrade_or_raise(error: ServiceUnavailableError, operation: str, properties: dict):
        """
        Collection reads answer with an empty, flagged result when the store
        times out, unless DEGRADED_READS is turned off.
        """
        if not Config.DEGRADED_READS:
            raise error
        log_warning("Serving degraded read", dict(properties, operation=operation, error=error.detail))

    @staticmethod
    def _get_existing(db: ContainerProxy, message_id: str) -> Message:
        item = MessageRepository.find_by_id(db, message_id)
        if item is None:
            log_event("Message not found", {"message_id": message_id})
            raise MessageNotFoundError()
        return MessageRepository.to_model(item)

    @staticmethod
    def create_message(db: ContainerProxy, message: MessageCreate) -> Message:
        """Create a student inquiry, continuing the student's thread with the school and program"""
        try:
            with start_span("create_message", attributes={
                "student_id": message.student_id,
                "school_id": message.school_id
            }):
                log_event("Create message started", {
                    "student_id": message.student_id,
                    "school_id": message.school_id,
                    "program_id": message.program_id
                })

                # Validate business rules
                MessageValidator.validate_create_message(message)

                current_time = datetime.now(timezone.utc)
                student_id = message.student_id.strip()
                school_id = message.school_id.strip()
                program_id = message.program_id.strip() if message.program_id else None

                if message.new_thread:
                    conversation_id = mint_conversation_id(student_id, program_id, current_time)
                    message_type = MessageType.INQUIRY
                else:
                    conversation_id = derive_conversation_id(student_id, school_id, program_id)
                    if MessageRepository.conversation_exists(db, conversation_id):
                        message_type = MessageType.FOLLOW_UP
                    else:
                        message_type = MessageType.INQUIRY

                message_dict = {
                    "id": str(uuid.uuid4()),
                    "conversation_id": conversation_id,
                    "student_id": student_id,
                    "student_name": message.student_name.strip(),
                    "student_email": message.student_email.strip().lower(),
                    "student_phone": message.student_phone.strip() if message.student_phone else None,
                    "school_id": school_id,
                    "school_name": message.school_name.strip(),
                    "program_id": program_id,
                    "program_title": message.program_title.strip() if message.program_title else None,
                    "content": message.content.strip(),
                    "message_type": message_type.value,
                    "priority": message.priority.value,
                    "sender": SenderType.STUDENT.value,
                    "status": MessageStatus.SENT.value,
                    "parent_message_id": None,
                    "is_reply": False,
                    "has_replies": False,
                    "reply_count": 0,
                    "assigned_admin_id": None,
                    "sent_at": current_time.isoformat(),
                    "read_at": None,
                    "replied_at": None,
                    "is_deleted": False
                }

                MessageRepository.insert(db, message_dict)

                log_event("Message created successfully", {
                    "message_id": message_dict["id"],
                    "conversation_id": conversation_id,
                    "message_type": message_type.value
                })

                return MessageRepository.to_model(message_dict)
        except HTTPException:
            raise
        except Exception as e:
            log_exception(e, {
                "operation": "create_message",
                "student_id": message.student_id,
                "school_id": message.school_id
            })
            raise

    @staticmethod
    def reply_to_message(
        db: ContainerProxy,
        message_id: str,
        reply: MessageReply,
        actor: Actor
    ) -> Message:
        """Reply to a message as an admin or school, marking the original as replied"""
        try:
            with start_span("reply_to_message", attributes={
                "message_id": message_id,
                "actor_id": actor.id
            }):
                log_event("Reply to message started", {
                    "message_id": message_id,
                    "actor_id": actor.id,
                    "sender": reply.sender
                })

                MessageValidator.validate_reply(reply)

                item = MessageRepository.find_by_id(db, message_id)
                if item is None:
                    raise MessageNotFoundError("Original message not found")
                original = MessageRepository.to_model(item)

                MessageValidator.validate_school_access(actor, original.school_id)
                MessageValidator.validate_reply_sender(actor, reply.sender)

                current_time = datetime.now(timezone.utc)
                reply_dict = {
                    "id": str(uuid.uuid4()),
                    "conversation_id": original.conversation_id,
                    "student_id": original.student_id,
                    "student_name": original.student_name,
                    "student_email": original.student_email,
                    "student_phone": original.student_phone,
                    "school_id": original.school_id,
                    "school_name": original.school_name,
                    "program_id": original.program_id,
                    "program_title": original.program_title,
                    "content": reply.content.strip(),
                    "message_type": MessageType.REPLY.value,
                    "priority": original.priority.value,
                    "sender": reply.sender.value,
                    "status": MessageStatus.SENT.value,
                    "parent_message_id": original.id,
                    "is_reply": True,
                    "has_replies": False,
                    "reply_count": 0,
                    "assigned_admin_id": actor.id,
                    "sent_at": current_time.isoformat(),
                    "read_at": None,
                    "replied_at": None,
                    "is_deleted": False
                }

                if not MessageRepository.insert_reply(db, reply_dict, original.id, current_time.isoformat()):
                    # The original was deleted between the lookup and the batch
                    raise MessageNotFoundError("Original message not found")

                log_event("Reply created successfully", {
                    "reply_id": reply_dict["id"],
                    "parent_message_id": original.id,
                    "conversation_id": original.conversation_id
                })

                return MessageRepository.to_model(reply_dict)
        except HTTPException:
            raise
        except Exception as e:
            log_exception(e, {"operation": "reply_to_message", "message_id": message_id})
            raise

    @staticmethod
    def get_message(db: ContainerProxy, message_id: str, actor: Optional[Actor] = None) -> Message:
        """Get a specific message by ID"""
        with start_span("get_message", attributes={"message_id": message_id}):
            message = MessageService._get_existing(db, message_id)
            MessageValidator.validate_school_access(actor, message.school_id)
            return message

    @staticmethod
    def get_message_stats(db: ContainerProxy) -> MessageStats:
        """Counts per status and the schools receiving the most messages"""
        status_rows = MessageRepository.count_by_status(db)
        school_rows = MessageRepository.count_by_school(db)

        # sorted() is stable, so equal counts keep the store's order
        top_schools = sorted(school_rows, key=lambda row: -row["message_count"])[:Config.STATS_TOP_SCHOOLS]

        return MessageStats(
            status_breakdown=[
                StatusCount(status=str(row["status"]), count=row["count"]) for row in status_rows
            ],
            top_schools=[
                SchoolStat(
                    school_id=row["school_id"],
                    school_name=row.get("school_name"),
                    message_count=row["message_count"]
                )
                for row in top_schools
            ],
            total_messages=sum(row["count"] for row in status_rows)
        )

    @staticmethod
    def list_messages(
        db: ContainerProxy,
        status: Optional[str] = None,
        school_id: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = Config.DEFAULT_PAGE_SIZE,
        sort_by: str = "sent_at",
        sort_order: str = "desc"
    ) -> MessageListResponse:
        """Admin listing with filters, search, pagination and statistics"""
        page, limit = _clamp_paging(page, limit)
        properties = {"status": status, "school_id": school_id, "search": search, "page": page, "limit": limit}
        try:
            with start_span("list_messages", attributes={"page": page, "limit": limit}):
                log_event("Listing messages", properties)

                message_filter = MessageFilter()
                # Unknown status values are ignored rather than rejected
                if status in {s.value for s in MessageStatus}:
                    message_filter.equals("status", status)
                if school_id:
                    message_filter.equals("school_id", school_id)
                if search and search.strip():
                    message_filter.search(search.strip())

                skip = (page - 1) * limit
                try:
                    items = MessageRepository.find(
                        db,
                        message_filter,
                        sort_by=sort_by,
                        descending=sort_order.lower() != "asc",
                        skip=skip,
                        limit=limit
                    )
                    total = MessageRepository.count(db, message_filter)
                    stats = MessageService.get_message_stats(db)
                except ServiceUnavailableError as e:
                    MessageService._degrade_or_raise(e, "list_messages", properties)
                    return MessageListResponse(
                        messages=[],
                        pagination=build_page_info(page, limit, 0, 0),
                        stats=MessageStats(),
                        degraded=True
                    )

                messages = [to_response(MessageRepository.to_model(item)) for item in items]

                log_metric("messages_listed", len(messages), {"total": total, "page": page})

                return MessageListResponse(
                    messages=messages,
                    pagination=build_page_info(page, limit, len(messages), total),
                    stats=stats
                )
        except HTTPException:
            raise
        except Exception as e:
            log_exception(e, dict(properties, operation="list_messages"))
            raise

    @staticmethod
    def list_student_messages(
        db: ContainerProxy,
        student_id: str,
        page: int = 1,
        limit: int = 50,
        actor: Optional[Actor] = None
    ) -> MessageListResponse:
        """A student's messages, newest first; a school only sees those addressed to it"""
        page, limit = _clamp_paging(page, limit)
        properties = {"student_id": student_id, "page": page, "limit": limit}
        try:
            with start_span("list_student_messages", attributes=properties):
                log_event("Listing student messages", properties)

                message_filter = MessageFilter().equals("student_id", student_id)
                if actor is not None and actor.role == ActorRole.SCHOOL:
                    message_filter.equals("school_id", actor.school_id)
                skip = (page - 1) * limit
                try:
                    items = MessageRepository.find(db, message_filter, skip=skip, limit=limit)
                    total = MessageRepository.count(db, message_filter)
                except ServiceUnavailableError as e:
                    MessageService._degrade_or_raise(e, "list_student_messages", properties)
                    return MessageListResponse(
                        messages=[],
                        pagination=build_page_info(page, limit, 0, 0),
                        degraded=True
                    )

                messages = [to_response(MessageRepository.to_model(item)) for item in items]
                return MessageListResponse(
                    messages=messages,
                    pagination=build_page_info(page, limit, len(messages), total)
                )
        except HTTPException:
            raise
        except Exception as e:
            log_exception(e, dict(properties, operation="list_student_messages"))
            raise

    @staticmethod
    def get_conversation(
        db: ContainerProxy,
        conversation_id: str,
        actor: Optional[Actor] = None
    ) -> ConversationResponse:
        """Every message of a thread, oldest first"""
        try:
            with start_span("get_conversation", attributes={"conversation_id": conversation_id}):
                log_event("Retrieving conversation", {"conversation_id": conversation_id})

                try:
                    items = MessageRepository.find_conversation(db, conversation_id)
                except ServiceUnavailableError as e:
                    MessageService._degrade_or_raise(e, "get_conversation", {"conversation_id": conversation_id})
                    return ConversationResponse(
                        conversation_id=conversation_id,
                        messages=[],
                        message_count=0,
                        degraded=True
                    )

                if not items:
                    raise MessageNotFoundError("Conversation not found")

                models = [MessageRepository.to_model(item) for item in items]
                for model in models:
                    MessageValidator.validate_school_access(actor, model.school_id)
                messages = [to_response(model) for model in models]

                return ConversationResponse(
                    conversation_id=conversation_id,
                    messages=messages,
                    message_count=len(messages)
                )
        except HTTPException:
            raise
        except Exception as e:
            log_exception(e, {"operation": "get_conversation", "conversation_id": conversation_id})
            raise

    @staticmethod
    def _apply_status(db: ContainerProxy, existing: Message, new_status: MessageStatus) -> Message:
        changes = {"status": new_status.value}
        if new_status == MessageStatus.READ:
            changes["read_at"] = datetime.now(timezone.utc).isoformat()

        updated = MessageRepository.update_fields(db, existing.id, existing.conversation_id, changes)
        if updated is None:
            raise MessageNotFoundError()

        log_event("Message status updated", {
            "message_id": existing.id,
            "from": existing.status.value,
            "to": new_status.value
        })
        return MessageRepository.to_model(updated)

    @staticmethod
    def update_status(db: ContainerProxy, message_id: str, status: str, actor: Actor) -> Message:
        """Move a message along its status lifecycle"""
        try:
            with start_span("update_status", attributes={"message_id": message_id, "status": status}):
                log_event("Update status started", {"message_id": message_id, "status": status})

                new_status = MessageValidator.validate_status_value(status)
                existing = MessageService._get_existing(db, message_id)
                MessageValidator.validate_school_access(actor, existing.school_id)

                if new_status == existing.status:
                    return existing

                MessageValidator.validate_status_transition(existing.status, new_status)
                return MessageService._apply_status(db, existing, new_status)
        except HTTPException:
            raise
        except Exception as e:
            log_exception(e, {"operation": "update_status", "message_id": message_id})
            raise

    @staticmethod
    def mark_read(db: ContainerProxy, message_id: str, actor: Actor) -> Message:
        """Mark a message as read; messages already read or replied are left as they are"""
        try:
            with start_span("mark_read", attributes={"message_id": message_id}):
                existing = MessageService._get_existing(db, message_id)
                MessageValidator.validate_school_access(actor, existing.school_id)

                if STATUS_ORDER[existing.status] >= STATUS_ORDER[MessageStatus.READ]:
                    return existing
                return MessageService._apply_status(db, existing, MessageStatus.READ)
        except HTTPException:
            raise
        except Exception as e:
            log_exception(e, {"operation": "mark_read", "message_id": message_id})
            raise

    @staticmethod
    def reopen_message(db: ContainerProxy, message_id: str, actor: Actor) -> Message:
        """Move a replied message back to read so it shows up as awaiting an answer"""
        try:
            with start_span("reopen_message", attributes={"message_id": message_id}):
                existing = MessageService._get_existing(db, message_id)
                MessageValidator.validate_school_access(actor, existing.school_id)
                MessageValidator.validate_reopen(existing.status)

                updated = MessageRepository.update_fields(
                    db, existing.id, existing.conversation_id, {"status": MessageStatus.READ.value}
                )
                if updated is None:
                    raise MessageNotFoundError()

                log_event("Message reopened", {"message_id": message_id, "actor_id": actor.id})
                return MessageRepository.to_model(updated)
        except HTTPException:
            raise
        except Exception as e:
            log_exception(e, {"operation": "reopen_message", "message_id": message_id})
            raise

    @staticmethod
    def delete_message(db: ContainerProxy, message_id: str, actor: Actor) -> None:
        """Soft delete: the row stays in the store but disappears from every read"""
        try:
            with start_span("delete_message", attributes={"message_id": message_id}):
                existing = MessageService._get_existing(db, message_id)
                MessageValidator.validate_school_access(actor, existing.school_id)

                updated = MessageRepository.update_fields(
                    db, existing.id, existing.conversation_id, {"is_deleted": True}
                )
                if updated is None:
                    raise MessageNotFoundError()

                log_event("Message deleted", {"message_id": message_id, "actor_id": actor.id})
        except HTTPException:
            raise
        except Exception as e:
            log_exception(e, {"operation": "delete_message", "message_id": message_id})
            raise
