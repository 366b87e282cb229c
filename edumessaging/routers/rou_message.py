from fastapi import APIRouter, BackgroundTasks, Depends, Query
from azure.cosmos import ContainerProxy
from typing import Optional
from edumessaging.schemas.sch_message import (
    MessageCreate,
    MessageReply,
    MessageStatusUpdate,
    CreateMessageResponse,
    ReplyResponse
)
from edumessaging.schemas.sch_compat import LegacyStudentMessage, to_message_create, to_legacy_response
from edumessaging.schemas.sch_envelope import ApiResponse, ok
from edumessaging.services.svc_message import MessageService, to_response
from edumessaging.services.svc_school import SchoolService
from edumessaging.models.mod_auth import Actor, ActorRole
from edumessaging.models.mod_message import Message
from edumessaging.configuration.config import Config
from edumessaging.configuration.database import get_messages_container, get_schools_container
from edumessaging.dependencies.dep_auth import get_current_staff, get_current_admin, get_optional_actor

router = APIRouter(
    prefix="/messages",
    tags=["Messages"],
    responses={404: {"description": "Not found"}},
)

DEGRADED_MESSAGE = "Results may be incomplete, the message store did not answer in time"

def _schedule_school_enrichment(background_tasks: BackgroundTasks, schools_db: ContainerProxy, message: Message):
    background_tasks.add_task(
        SchoolService.enrich_school_task,
        schools_db,
        message.school_id,
        message.school_name,
        message.program_id
    )

def _created(message: Message) -> CreateMessageResponse:
    return CreateMessageResponse(
        message_id=message.id,
        conversation_id=message.conversation_id,
        message_type=message.message_type,
        status=message.status,
        sent_at=message.sent_at
    )

@router.post("", response_model=ApiResponse, status_code=201)
def create_message(
    message: MessageCreate,
    background_tasks: BackgroundTasks,
    db: ContainerProxy = Depends(get_messages_container),
    schools_db: ContainerProxy = Depends(get_schools_container)
):
    """
    Send a student inquiry about a school or program.

    - Continues the student's existing conversation with the school and program
      unless `new_thread` is set
    - The school record is created or updated in the background
    """
    created = MessageService.create_message(db, message)
    _schedule_school_enrichment(background_tasks, schools_db, created)
    return ok(_created(created), "Message sent successfully")

@router.post("/send-student-message", response_model=ApiResponse, status_code=201)
def send_student_message(
    payload: LegacyStudentMessage,
    background_tasks: BackgroundTasks,
    db: ContainerProxy = Depends(get_messages_container),
    schools_db: ContainerProxy = Depends(get_schools_container)
):
    """Older clients: camelCase body, camelCase `{messageId, conversationId, sentAt}` back."""
    created = MessageService.create_message(db, to_message_create(payload))
    _schedule_school_enrichment(background_tasks, schools_db, created)
    return ok(to_legacy_response(created), "Message sent successfully")

@router.get("/user/{student_id}", response_model=ApiResponse)
def get_student_messages(
    student_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=Config.MAX_PAGE_SIZE),
    db: ContainerProxy = Depends(get_messages_container),
    actor: Optional[Actor] = Depends(get_optional_actor)
):
    """
    A student's messages, newest first, for the dashboard chat.

    - School accounts only get the messages addressed to their school
    """
    result = MessageService.list_student_messages(db, student_id, page, limit, actor)
    return ok(result, DEGRADED_MESSAGE if result.degraded else None)

@router.get("/admin/all", response_model=ApiResponse)
def get_admin_messages(
    page: int = Query(1, ge=1),
    limit: int = Query(Config.DEFAULT_PAGE_SIZE, ge=1, le=Config.MAX_PAGE_SIZE),
    status: Optional[str] = None,
    school_id: Optional[str] = None,
    search: Optional[str] = None,
    sort_by: str = "sent_at",
    sort_order: str = "desc",
    db: ContainerProxy = Depends(get_messages_container),
    actor: Actor = Depends(get_current_staff)
):
    """
    Admin panel listing.

    - `status` outside the known values is ignored
    - `search` matches content, student name, school name and program title
    - School accounts only see their own school's messages
    """
    if actor.role == ActorRole.SCHOOL:
        school_id = actor.school_id
    result = MessageService.list_messages(
        db,
        status=status,
        school_id=school_id,
        search=search,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order
    )
    return ok(result, DEGRADED_MESSAGE if result.degraded else None)

@router.post("/admin/reply/{message_id}", response_model=ApiResponse, status_code=201)
def reply_to_message(
    message_id: str,
    reply: MessageReply,
    db: ContainerProxy = Depends(get_messages_container),
    actor: Actor = Depends(get_current_staff)
):
    """Reply as an admin or school; the original is marked replied in the same write."""
    created = MessageService.reply_to_message(db, message_id, reply, actor)
    return ok(
        ReplyResponse(
            reply_id=created.id,
            conversation_id=created.conversation_id,
            parent_message_id=created.parent_message_id
        ),
        "Reply sent successfully"
    )

@router.put("/admin/status/{message_id}", response_model=ApiResponse)
def update_message_status(
    message_id: str,
    update: MessageStatusUpdate,
    db: ContainerProxy = Depends(get_messages_container),
    actor: Actor = Depends(get_current_staff)
):
    """Move a message forward along sent → delivered → read → replied."""
    updated = MessageService.update_status(db, message_id, update.status, actor)
    return ok(to_response(updated), "Message status updated")

@router.patch("/admin/mark-read/{message_id}", response_model=ApiResponse)
def mark_message_read(
    message_id: str,
    db: ContainerProxy = Depends(get_messages_container),
    actor: Actor = Depends(get_current_staff)
):
    updated = MessageService.mark_read(db, message_id, actor)
    return ok(to_response(updated), "Message marked as read")

@router.post("/admin/reopen/{message_id}", response_model=ApiResponse)
def reopen_message(
    message_id: str,
    db: ContainerProxy = Depends(get_messages_container),
    actor: Actor = Depends(get_current_staff)
):
    """Send a replied message back to `read` so it is handled again."""
    updated = MessageService.reopen_message(db, message_id, actor)
    return ok(to_response(updated), "Message reopened")

@router.delete("/admin/{message_id}", response_model=ApiResponse)
def delete_message(
    message_id: str,
    db: ContainerProxy = Depends(get_messages_container),
    actor: Actor = Depends(get_current_admin)
):
    MessageService.delete_message(db, message_id, actor)
    return ok(message="Message deleted")

@router.get("/conversation/{conversation_id}", response_model=ApiResponse)
def get_conversation(
    conversation_id: str,
    db: ContainerProxy = Depends(get_messages_container),
    actor: Optional[Actor] = Depends(get_optional_actor)
):
    """The whole thread in reading order (oldest first). Schools get 403 on another school's thread."""
    result = MessageService.get_conversation(db, conversation_id, actor)
    return ok(result, DEGRADED_MESSAGE if result.degraded else None)

@router.get("/{message_id}", response_model=ApiResponse)
def get_message(
    message_id: str,
    db: ContainerProxy = Depends(get_messages_container),
    actor: Optional[Actor] = Depends(get_optional_actor)
):
    return ok(to_response(MessageService.get_message(db, message_id, actor)))
