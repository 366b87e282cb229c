from collections import Counter
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from azure.cosmos import ContainerProxy
from azure.cosmos.exceptions import (
    CosmosBatchOperationError,
    CosmosClientTimeoutError,
    CosmosHttpResponseError,
    CosmosResourceNotFoundError,
)
from azure.core.exceptions import ServiceRequestError, ServiceResponseError

from edumessaging.configuration.config import Config
from edumessaging.configuration.monitor import log_warning
from edumessaging.models.mod_message import Message, MessageStatus
from edumessaging.validators.val_errors import ServiceUnavailableError

# Store responses that mean "try again later" rather than "bad request"
UNAVAILABLE_STATUS_CODES = (408, 429, 449, 503)
# Patch preconditions that failed because the target is gone or deleted
MISSING_STATUS_CODES = (404, 412)

NOT_DELETED = "c.is_deleted = false"
NOT_DELETED_PREDICATE = f"FROM c WHERE {NOT_DELETED}"

SORTABLE_FIELDS = {
    "sent_at", "read_at", "replied_at", "status", "priority", "message_type",
    "sender", "student_id", "student_name", "school_id", "school_name",
    "program_id", "program_title", "reply_count", "conversation_id",
}
SEARCH_FIELDS = ("content", "student_name", "school_name", "program_title")


@contextmanager
def store_call(operation: str):
    """Translate store timeouts and outages into ServiceUnavailableError."""
    try:
        yield
    except CosmosResourceNotFoundError:
        raise
    except CosmosClientTimeoutError as e:
        log_warning("Store operation timed out", {"operation": operation})
        raise ServiceUnavailableError(f"Message store timed out during {operation}") from e
    except (ServiceRequestError, ServiceResponseError) as e:
        log_warning("Store unreachable", {"operation": operation, "error": str(e)})
        raise ServiceUnavailableError() from e
    except CosmosHttpResponseError as e:
        if e.status_code in UNAVAILABLE_STATUS_CODES:
            log_warning("Store unavailable", {"operation": operation, "status_code": e.status_code})
            raise ServiceUnavailableError() from e
        raise


class MessageFilter:
    """Accumulates a parameterized WHERE clause; soft-deleted rows are always excluded."""

    def __init__(self):
        self.clauses: List[str] = [NOT_DELETED]
        self.parameters: List[Dict[str, Any]] = []

    def _param(self, name: str, value: Any) -> str:
        param = f"@{name}"
        self.parameters.append({"name": param, "value": value})
        return param

    def equals(self, field: str, value: Any) -> "MessageFilter":
        param = self._param(field, value)
        self.clauses.append(f"c.{field} = {param}")
        return self

    def search(self, text: str) -> "MessageFilter":
        param = self._param("search", text)
        matches = [f"CONTAINS(c.{field}, {param}, true)" for field in SEARCH_FIELDS]
        self.clauses.append("(" + " OR ".join(matches) + ")")
        return self

    def where(self) -> str:
        return " AND ".join(self.clauses)


class MessageRepository:
    @staticmethod
    def to_model(item: dict) -> Message:
        return Message(**item)

    @staticmethod
    def insert(db: ContainerProxy, document: dict) -> dict:
        with store_call("insert message"):
            return db.create_item(body=document, timeout=Config.STORE_WRITE_TIMEOUT)

    @staticmethod
    def find_by_id(db: ContainerProxy, message_id: str) -> Optional[dict]:
        query = f"SELECT * FROM c WHERE c.id = @id AND {NOT_DELETED}"
        with store_call("find message"):
            items = list(db.query_items(
                query=query,
                parameters=[{"name": "@id", "value": message_id}],
                enable_cross_partition_query=True,
                timeout=Config.STORE_READ_TIMEOUT
            ))
        return items[0] if items else None

    @staticmethod
    def find(
        db: ContainerProxy,
        message_filter: MessageFilter,
        sort_by: str = "sent_at",
        descending: bool = True,
        skip: int = 0,
        limit: int = 20
    ) -> List[dict]:
        if sort_by not in SORTABLE_FIELDS:
            sort_by = "sent_at"
        direction = "DESC" if descending else "ASC"
        query = (
            f"SELECT * FROM c WHERE {message_filter.where()} "
            f"ORDER BY c.{sort_by} {direction} "
            f"OFFSET {int(skip)} LIMIT {int(limit)}"
        )
        with store_call("find messages"):
            return list(db.query_items(
                query=query,
                parameters=message_filter.parameters,
                enable_cross_partition_query=True,
                timeout=Config.STORE_READ_TIMEOUT
            ))

    @staticmethod
    def count(db: ContainerProxy, message_filter: MessageFilter) -> int:
        query = f"SELECT VALUE COUNT(1) FROM c WHERE {message_filter.where()}"
        with store_call("count messages"):
            result = list(db.query_items(
                query=query,
                parameters=message_filter.parameters,
                enable_cross_partition_query=True,
                timeout=Config.STORE_READ_TIMEOUT
            ))
        return result[0] if result else 0

    # The Python SDK cannot run cross-partition GROUP BY, so the statistics
    # below are built from plain aggregates and a projection.

    @staticmethod
    def count_by_status(db: ContainerProxy) -> List[dict]:
        """One COUNT per known status; statuses with no messages are left out."""
        rows = []
        for status in MessageStatus:
            count = MessageRepository.count(db, MessageFilter().equals("status", status.value))
            if count:
                rows.append({"status": status.value, "count": count})
        return rows

    @staticmethod
    def count_by_school(db: ContainerProxy) -> List[dict]:
        """Message count per school, in the order schools are first returned by the store."""
        query = f"SELECT c.school_id, c.school_name FROM c WHERE {NOT_DELETED}"
        with store_call("count messages by school"):
            items = list(db.query_items(
                query=query,
                enable_cross_partition_query=True,
                timeout=Config.STORE_READ_TIMEOUT
            ))

        counts = Counter(item["school_id"] for item in items)
        names = {}
        for item in items:
            names.setdefault(item["school_id"], item.get("school_name"))
        return [
            {"school_id": school_id, "school_name": names[school_id], "message_count": count}
            for school_id, count in counts.items()
        ]

    @staticmethod
    def conversation_exists(db: ContainerProxy, conversation_id: str) -> bool:
        query = f"SELECT VALUE COUNT(1) FROM c WHERE c.conversation_id = @conversation_id AND {NOT_DELETED}"
        with store_call("check conversation"):
            result = list(db.query_items(
                query=query,
                parameters=[{"name": "@conversation_id", "value": conversation_id}],
                partition_key=conversation_id,
                timeout=Config.STORE_READ_TIMEOUT
            ))
        return bool(result and result[0])

    @staticmethod
    def find_conversation(db: ContainerProxy, conversation_id: str) -> List[dict]:
        query = (
            f"SELECT * FROM c WHERE c.conversation_id = @conversation_id AND {NOT_DELETED} "
            f"ORDER BY c.sent_at ASC"
        )
        with store_call("find conversation"):
            return list(db.query_items(
                query=query,
                parameters=[{"name": "@conversation_id", "value": conversation_id}],
                partition_key=conversation_id,
                timeout=Config.STORE_READ_TIMEOUT
            ))

    @staticmethod
    def update_fields(
        db: ContainerProxy,
        message_id: str,
        conversation_id: str,
        changes: Dict[str, Any]
    ) -> Optional[dict]:
        """
        Patch fields of a non-deleted message.

        Returns the updated document, or None when the message no longer
        exists or was deleted in the meantime.
        """
        operations = [
            {"op": "set", "path": f"/{field}", "value": value}
            for field, value in changes.items()
        ]
        try:
            with store_call("update message"):
                return db.patch_item(
                    item=message_id,
                    partition_key=conversation_id,
                    patch_operations=operations,
                    filter_predicate=NOT_DELETED_PREDICATE,
                    timeout=Config.STORE_WRITE_TIMEOUT
                )
        except CosmosHttpResponseError as e:
            if e.status_code in MISSING_STATUS_CODES:
                return None
            raise

    @staticmethod
    def insert_reply(db: ContainerProxy, reply_document: dict, parent_id: str, replied_at: str) -> bool:
        """
        Insert a reply and mark its parent as replied in one transactional batch.

        Both documents live in the conversation's partition, so the store
        applies both operations or neither. Returns False when the parent
        is missing or deleted, in which case nothing was written.
        """
        parent_operations = [
            {"op": "set", "path": "/status", "value": MessageStatus.REPLIED.value},
            {"op": "set", "path": "/replied_at", "value": replied_at},
            {"op": "set", "path": "/has_replies", "value": True},
            {"op": "incr", "path": "/reply_count", "value": 1},
        ]
        batch = [
            ("create", (reply_document,), {}),
            ("patch", (parent_id, parent_operations), {"filter_predicate": NOT_DELETED_PREDICATE}),
        ]
        try:
            with store_call("insert reply"):
                db.execute_item_batch(
                    batch_operations=batch,
                    partition_key=reply_document["conversation_id"],
                    timeout=Config.STORE_WRITE_TIMEOUT
                )
        except CosmosBatchOperationError as e:
            failed = e.operation_responses[e.error_index] if e.operation_responses else {}
            status_code = failed.get("statusCode", e.status_code)
            if e.error_index == 1 and status_code in MISSING_STATUS_CODES:
                return False
            if status_code in UNAVAILABLE_STATUS_CODES:
                raise ServiceUnavailableError() from e
            raise
        return True
