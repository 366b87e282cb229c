import pytest
from unittest.mock import MagicMock, patch
from fastapi.testclient import TestClient
from fastapi import FastAPI
from datetime import datetime, timezone

from azure.core.exceptions import ServiceRequestError

from edumessaging.routers.rou_message import router
from edumessaging.configuration.database import get_messages_container, get_schools_container
from edumessaging.configuration.config import Config
from edumessaging.configuration.handlers import register_exception_handlers
from edumessaging.dependencies.dep_auth import get_current_actor, get_optional_actor
from edumessaging.services.svc_message import MessageService, build_page_info, derive_conversation_id, to_response
from edumessaging.services.svc_school import SchoolService
from edumessaging.models.mod_auth import Actor, ActorRole
from edumessaging.models.mod_message import Message, MessageType, MessageStatus, SenderType
from edumessaging.schemas.sch_message import ConversationResponse, MessageListResponse, MessageStats
from edumessaging.validators.val_errors import MessageNotFoundError

mock_db = MagicMock()
mock_schools_db = MagicMock()
current_actor = {"actor": Actor(id="admin1", role=ActorRole.ADMIN), "viewer": None}

app = FastAPI()
register_exception_handlers(app)
app.include_router(router, prefix="/api")
app.dependency_overrides[get_messages_container] = lambda: mock_db
app.dependency_overrides[get_schools_container] = lambda: mock_schools_db
app.dependency_overrides[get_current_actor] = lambda: current_actor["actor"]
app.dependency_overrides[get_optional_actor] = lambda: current_actor["viewer"]

@pytest.fixture
def client():
    mock_db.reset_mock(return_value=True, side_effect=True)
    mock_schools_db.reset_mock(return_value=True, side_effect=True)
    current_actor["viewer"] = None
    current_actor["actor"] = Actor(id="admin1", role=ActorRole.ADMIN)
    return TestClient(app)

@pytest.fixture
def enrichment():
    with patch.object(SchoolService, 'enrich_school_task') as mock_enrich:
        yield mock_enrich

@pytest.fixture
def sample_message():
    return Message(
        id="message123",
        conversation_id=derive_conversation_id("S1", "SCH1", "P1"),
        student_id="S1",
        student_name="Sara Student",
        student_email="sara@example.com",
        school_id="SCH1",
        school_name="Nordic Academy",
        program_id="P1",
        program_title="Data Engineering",
        content="Hello",
        message_type=MessageType.INQUIRY,
        sender=SenderType.STUDENT,
        status=MessageStatus.SENT,
        sent_at=datetime.now(timezone.utc)
    )

@pytest.fixture
def create_payload():
    return {
        "student_id": "S1",
        "student_name": "Sara Student",
        "student_email": "sara@example.com",
        "school_id": "SCH1",
        "school_name": "Nordic Academy",
        "program_id": "P1",
        "program_title": "Data Engineering",
        "content": "Hello"
    }

def test_create_message(client, enrichment, create_payload):
    mock_db.query_items.return_value = [0]

    response = client.post("/api/messages", json=create_payload)

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["data"]["status"] == "sent"
    assert body["data"]["message_type"] == "inquiry"
    assert body["data"]["conversation_id"] == derive_conversation_id("S1", "SCH1", "P1")
    assert "timestamp" in body
    enrichment.assert_called_once_with(mock_schools_db, "SCH1", "Nordic Academy", "P1")

def test_create_message_missing_fields(client, enrichment):
    response = client.post("/api/messages", json={"student_id": "S1", "content": "Hello"})

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    fields = {error["field"] for error in body["error"]["fields"]}
    assert {"student_name", "student_email", "school_id", "school_name"} <= fields
    mock_db.create_item.assert_not_called()
    enrichment.assert_not_called()

def test_create_message_blank_fields(client, enrichment, create_payload):
    create_payload["student_name"] = " "
    create_payload["content"] = ""

    response = client.post("/api/messages", json=create_payload)

    assert response.status_code == 400
    fields = [error["field"] for error in response.json()["error"]["fields"]]
    assert fields == ["student_name", "content"]

def test_create_message_store_unavailable(client, enrichment, create_payload):
    mock_db.query_items.return_value = [0]
    mock_db.create_item.side_effect = ServiceRequestError("connection refused")

    response = client.post("/api/messages", json=create_payload)

    assert response.status_code == 503
    assert response.headers["Retry-After"] == "5"
    assert response.json()["success"] is False
    enrichment.assert_not_called()

def test_enrichment_failure_does_not_fail_create(client, create_payload):
    mock_db.query_items.return_value = [0]
    mock_schools_db.read_item.side_effect = ServiceRequestError("schools down")

    response = client.post("/api/messages", json=create_payload)

    assert response.status_code == 201
    assert mock_db.create_item.called

def test_send_student_message_legacy_payload(client, enrichment, sample_message):
    with patch.object(MessageService, 'create_message', return_value=sample_message) as mock_create:
        response = client.post(
            "/api/messages/send-student-message",
            json={
                "userId": "S1",
                "userEmail": "sara@example.com",
                "userName": "Sara Student",
                "programId": "P1",
                "programTitle": "Data Engineering",
                "schoolId": "SCH1",
                "schoolName": "Nordic Academy",
                "message": "Hello"
            }
        )

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["messageId"] == "message123"
    assert data["conversationId"] == sample_message.conversation_id
    created = mock_create.call_args[0][1]
    assert created.student_id == "S1"
    assert created.content == "Hello"

def test_get_student_messages(client, sample_message):
    mock_db.query_items.side_effect = [[sample_message.dict()], [1]]

    response = client.get("/api/messages/user/S1?page=1&limit=10")

    assert response.status_code == 200
    data = response.json()["data"]
    assert len(data["messages"]) == 1
    assert data["pagination"]["total_messages"] == 1
    assert data["degraded"] is False

def test_get_admin_messages_degraded(client):
    with patch.object(MessageService, 'list_messages') as mock_list:
        mock_list.return_value = MessageListResponse(
            messages=[],
            pagination=build_page_info(1, 20, 0, 0),
            stats=MessageStats(),
            degraded=True
        )

        response = client.get("/api/messages/admin/all")

    assert response.status_code == 200
    body = response.json()
    assert body["data"]["degraded"] is True
    assert "incomplete" in body["message"]

def test_school_admin_listing_scoped_to_school(client):
    current_actor["actor"] = Actor(id="school-user", role=ActorRole.SCHOOL, school_id="SCH1")
    # find, count, one COUNT per status, school projection
    mock_db.query_items.side_effect = [[], [0], [0], [0], [0], [0], []]

    response = client.get("/api/messages/admin/all?school_id=SCH9")

    assert response.status_code == 200
    find_kwargs = mock_db.query_items.call_args_list[0][1]
    assert {"name": "@school_id", "value": "SCH1"} in find_kwargs['parameters']

def test_admin_routes_reject_students(client):
    current_actor["actor"] = Actor(id="S1", role=ActorRole.STUDENT)

    response = client.get("/api/messages/admin/all")

    assert response.status_code == 403
    assert response.json()["success"] is False

def test_reply_then_original_is_replied(client, sample_message):
    original = sample_message.dict()
    original["sent_at"] = original["sent_at"].isoformat()
    mock_db.query_items.return_value = [original]

    response = client.post(
        "/api/messages/admin/reply/message123",
        json={"content": "We received your inquiry"}
    )

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["parent_message_id"] == "message123"
    assert data["conversation_id"] == sample_message.conversation_id
    assert data["reply_id"] != "message123"

    replied = dict(original, status="replied", reply_count=1, has_replies=True,
                   replied_at=datetime.now(timezone.utc).isoformat())
    mock_db.query_items.return_value = [replied]

    response = client.get("/api/messages/message123")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "replied"
    assert data["reply_count"] == 1

def test_reply_rejects_student_sender(client):
    response = client.post(
        "/api/messages/admin/reply/message123",
        json={"content": "Hi", "sender": "student"}
    )

    assert response.status_code == 400
    mock_db.execute_item_batch.assert_not_called()

def test_reply_to_missing_message(client):
    mock_db.query_items.return_value = []

    response = client.post("/api/messages/admin/reply/nonexistent", json={"content": "Hi"})

    assert response.status_code == 404
    assert response.json()["message"] == "Original message not found"

def test_reply_cross_school_forbidden(client, sample_message):
    current_actor["actor"] = Actor(id="school-user", role=ActorRole.SCHOOL, school_id="SCH2")
    original = sample_message.dict()
    original["sent_at"] = original["sent_at"].isoformat()
    mock_db.query_items.return_value = [original]

    response = client.post(
        "/api/messages/admin/reply/message123",
        json={"content": "Hi", "sender": "school"}
    )

    assert response.status_code == 403
    mock_db.execute_item_batch.assert_not_called()

def test_update_status_bogus(client):
    response = client.put("/api/messages/admin/status/message123", json={"status": "bogus"})

    assert response.status_code == 400
    body = response.json()
    assert body["message"] == "Invalid status"
    assert body["error"]["fields"][0]["field"] == "status"
    mock_db.patch_item.assert_not_called()

def test_update_status(client, sample_message):
    updated = sample_message.copy()
    updated.status = MessageStatus.DELIVERED
    with patch.object(MessageService, 'update_status', return_value=updated) as mock_update:
        response = client.put("/api/messages/admin/status/message123", json={"status": "delivered"})

    assert response.status_code == 200
    assert response.json()["data"]["status"] == "delivered"
    assert mock_update.call_args[0][2] == "delivered"

def test_mark_read(client, sample_message):
    updated = sample_message.copy()
    updated.status = MessageStatus.READ
    updated.read_at = datetime.now(timezone.utc)
    with patch.object(MessageService, 'mark_read', return_value=updated):
        response = client.patch("/api/messages/admin/mark-read/message123")

    assert response.status_code == 200
    assert response.json()["data"]["status"] == "read"
    assert response.json()["data"]["read_at"] is not None

def test_reopen(client, sample_message):
    updated = sample_message.copy()
    updated.status = MessageStatus.READ
    with patch.object(MessageService, 'reopen_message', return_value=updated):
        response = client.post("/api/messages/admin/reopen/message123")

    assert response.status_code == 200
    assert response.json()["message"] == "Message reopened"

def test_delete_requires_admin(client):
    current_actor["actor"] = Actor(id="school-user", role=ActorRole.SCHOOL, school_id="SCH1")

    with patch.object(MessageService, 'delete_message') as mock_delete:
        response = client.delete("/api/messages/admin/message123")

    assert response.status_code == 403
    assert not mock_delete.called

def test_delete_message(client):
    with patch.object(MessageService, 'delete_message', return_value=None) as mock_delete:
        response = client.delete("/api/messages/admin/message123")

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert mock_delete.called

def test_get_conversation(client, sample_message):
    conversation = ConversationResponse(
        conversation_id=sample_message.conversation_id,
        messages=[to_response(sample_message)],
        message_count=1
    )
    with patch.object(MessageService, 'get_conversation', return_value=conversation):
        response = client.get(f"/api/messages/conversation/{sample_message.conversation_id}")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["message_count"] == 1
    assert data["messages"][0]["id"] == "message123"
    assert response.json()["message"] is None

def test_get_conversation_not_found(client):
    with patch.object(MessageService, 'get_conversation', side_effect=MessageNotFoundError("Conversation not found")):
        response = client.get("/api/messages/conversation/missing")

    assert response.status_code == 404
    assert response.json()["message"] == "Conversation not found"

def test_unexpected_error_is_generic(sample_message):
    failing_client = TestClient(app, raise_server_exceptions=False)
    with patch.object(Config, "DEBUG", False), \
         patch.object(MessageService, "get_message", side_effect=RuntimeError("boom at line 42")):
        response = failing_client.get("/api/messages/message123")

    assert response.status_code == 500
    body = response.json()
    assert body["message"] == "Internal server error"
    assert "boom" not in response.text

def test_school_cannot_read_other_schools_conversation(client, sample_message):
    current_actor["viewer"] = Actor(id="school-user", role=ActorRole.SCHOOL, school_id="SCH2")
    mock_db.query_items.return_value = [sample_message.dict()]

    response = client.get(f"/api/messages/conversation/{sample_message.conversation_id}")

    assert response.status_code == 403
    assert response.json()["success"] is False
    assert response.json()["data"] is None

def test_school_reads_own_conversation(client, sample_message):
    current_actor["viewer"] = Actor(id="school-user", role=ActorRole.SCHOOL, school_id="SCH1")
    mock_db.query_items.return_value = [sample_message.dict()]

    response = client.get(f"/api/messages/conversation/{sample_message.conversation_id}")

    assert response.status_code == 200
    assert response.json()["data"]["message_count"] == 1

def test_school_cannot_read_other_schools_message(client, sample_message):
    current_actor["viewer"] = Actor(id="school-user", role=ActorRole.SCHOOL, school_id="SCH2")
    mock_db.query_items.return_value = [sample_message.dict()]

    response = client.get("/api/messages/message123")

    assert response.status_code == 403

def test_school_sees_only_its_messages_for_a_student(client):
    current_actor["viewer"] = Actor(id="school-user", role=ActorRole.SCHOOL, school_id="SCH2")
    mock_db.query_items.side_effect = [[], [0]]

    response = client.get("/api/messages/user/S1")

    assert response.status_code == 200
    find_kwargs = mock_db.query_items.call_args_list[0][1]
    assert {"name": "@school_id", "value": "SCH2"} in find_kwargs['parameters']
