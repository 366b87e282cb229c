from typing import Dict, List, Optional
from email_validator import validate_email, EmailNotValidError
from edumessaging.configuration.config import Config
from edumessaging.schemas.sch_message import MessageCreate, MessageReply
from edumessaging.models.mod_message import MessageStatus, SenderType, STATUS_ORDER
from edumessaging.models.mod_auth import Actor, ActorRole
from edumessaging.validators.val_errors import MessageValidationError, MessageForbiddenError

REQUIRED_CREATE_FIELDS = (
    "student_id",
    "student_name",
    "student_email",
    "school_id",
    "school_name",
    "content",
)

class MessageValidator:
    @staticmethod
    def _check_content(content: str, errors: List[Dict[str, str]]):
        if len(content) > Config.MESSAGE_MAX_LENGTH:
            errors.append({
                "field": "content",
                "error": f"must be at most {Config.MESSAGE_MAX_LENGTH} characters"
            })

    @staticmethod
    def validate_create_message(message: MessageCreate):
        """Validate a new student message, reporting every invalid field at once"""
        errors = []
        for field in REQUIRED_CREATE_FIELDS:
            value = getattr(message, field)
            if not isinstance(value, str) or not value.strip():
                errors.append({"field": field, "error": "is required"})

        if message.student_email.strip():
            try:
                validate_email(message.student_email.strip(), check_deliverability=False)
            except EmailNotValidError:
                errors.append({"field": "student_email", "error": "is not a valid email address"})

        if message.program_id is not None and not message.program_id.strip():
            errors.append({"field": "program_id", "error": "must not be blank when provided"})

        MessageValidator._check_content(message.content, errors)

        if errors:
            raise MessageValidationError("Missing or invalid required fields", errors)

    @staticmethod
    def validate_reply(reply: MessageReply):
        errors = []
        if not reply.content.strip():
            errors.append({"field": "content", "error": "is required"})
        MessageValidator._check_content(reply.content, errors)
        if errors:
            raise MessageValidationError("Invalid reply data", errors)

    @staticmethod
    def validate_status_value(status: str) -> MessageStatus:
        """Parse a status string, rejecting anything outside the known lifecycle"""
        try:
            return MessageStatus(status)
        except ValueError:
            raise MessageValidationError(
                "Invalid status",
                [{
                    "field": "status",
                    "error": f"must be one of {', '.join(s.value for s in MessageStatus)}"
                }]
            )

    @staticmethod
    def validate_status_transition(current: MessageStatus, new: MessageStatus):
        """Status only moves forward unless permissive transitions are configured"""
        if not Config.STRICT_STATUS_TRANSITIONS:
            return
        if STATUS_ORDER[new] < STATUS_ORDER[current]:
            raise MessageValidationError(
                "Invalid status transition",
                [{
                    "field": "status",
                    "error": f"cannot move from '{current.value}' back to '{new.value}'"
                }]
            )

    @staticmethod
    def validate_reopen(current: MessageStatus):
        if current != MessageStatus.REPLIED:
            raise MessageValidationError(
                "Only replied messages can be reopened",
                [{"field": "status", "error": f"is '{current.value}', expected 'replied'"}]
            )

    @staticmethod
    def validate_school_access(actor: Optional[Actor], message_school_id: str):
        """A school account may only act on messages addressed to that school"""
        if actor is None or actor.role != ActorRole.SCHOOL:
            return
        if actor.school_id != message_school_id:
            raise MessageForbiddenError(
                "You can only access messages sent to your own school"
            )

    @staticmethod
    def validate_reply_sender(actor: Actor, sender: SenderType):
        if actor.role == ActorRole.SCHOOL and sender != SenderType.SCHOOL:
            raise MessageForbiddenError(
                "School accounts can only reply as the school"
            )
