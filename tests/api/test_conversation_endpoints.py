import pytest
from fastapi.testclient import TestClient

import api_server
from vidchat.services.chat_storage import Conversation
from vidchat.youtube.models import ChatMessage, ChatRole


class FakeConversationStore:
    def __init__(self, available=True):
        self.available = available
        self.saved_messages = []
        self.deleted = []
        self.list_calls = []

    async def save_conversation(self, user_id, video_id, video_title):
        return f"{user_id}-{video_id}" if self.available else None

    async def save_message(self, conversation_id, message):
        if not self.available or message.streaming:
            return False
        self.saved_messages.append((conversation_id, message))
        return True

    async def get_user_conversations(self, user_id, limit=50, page=1):
        self.list_calls.append((user_id, limit, page))
        return [
            Conversation(
                id="c1",
                user_id=user_id,
                video_id="v1",
                video_title="Demo",
                created_at="2024-01-01T00:00:00+00:00",
                last_updated_at="2024-01-02T00:00:00+00:00",
            )
        ]

    async def get_conversation_messages(self, conversation_id, limit=100, page=1):
        return [ChatMessage(id="m1", role=ChatRole.ASSISTANT, text="Hi", timestamp=1)]

    async def delete_conversation(self, conversation_id):
        self.deleted.append(conversation_id)
        return True

    async def health(self):
        return {"enabled": True, "status": "ok"}


@pytest.fixture()
def store(monkeypatch):
    fake = FakeConversationStore()
    monkeypatch.setattr(api_server, "conversation_store", fake)
    return fake


@pytest.fixture()
def client():
    return TestClient(api_server.app, raise_server_exceptions=False)


def test_save_conversation_returns_id(client, store):
    response = client.post("/api/conversations", json={"userId": "u1", "videoId": "v1", "videoTitle": "Demo"})

    assert response.status_code == 200
    assert response.json() == {"conversationId": "u1-v1", "saved": True}


def test_save_conversation_failure_does_not_error(client, monkeypatch):
    monkeypatch.setattr(api_server, "conversation_store", FakeConversationStore(available=False))

    response = client.post("/api/conversations", json={"userId": "u1", "videoId": "v1"})

    assert response.status_code == 200
    assert response.json() == {"conversationId": None, "saved": False}


def test_save_message_accepts_client_message_shape(client, store):
    message = {"id": "m1", "text": "Answer", "isAi": True, "timestamp": 1700000000, "isStreaming": False}

    response = client.post("/api/conversations/c1/messages", json={"message": message})

    assert response.json() == {"saved": True}
    conversation_id, saved = store.saved_messages[0]
    assert conversation_id == "c1"
    assert saved.role == ChatRole.ASSISTANT


def test_streaming_message_is_not_saved(client, store):
    message = {"id": "m1", "text": "Ans", "role": "model", "isStreaming": True}

    response = client.post("/api/conversations/c1/messages", json={"message": message})

    assert response.json() == {"saved": False}
    assert store.saved_messages == []


def test_save_message_rejects_unknown_role(client, store):
    response = client.post("/api/conversations/c1/messages", json={"message": {"id": "m1", "role": "narrator"}})

    assert response.status_code == 400


def test_list_conversations_requires_user(client, store):
    assert client.get("/api/conversations").status_code == 400

    response = client.get("/api/conversations", params={"userId": "u1", "limit": 10, "page": 2})

    assert response.status_code == 200
    assert response.json()["conversations"][0]["videoTitle"] == "Demo"
    assert store.list_calls == [("u1", 10, 2)]


def test_list_messages_and_delete(client, store):
    messages = client.get("/api/conversations/c1/messages").json()["messages"]
    deleted = client.delete("/api/conversations/c1").json()

    assert messages[0]["text"] == "Hi"
    assert messages[0]["role"] == "assistant"
    assert deleted == {"deleted": True}
    assert store.deleted == ["c1"]


def test_health_reports_components(client, store):
    payload = client.get("/health").json()

    assert payload["status"] == "ok"
    assert payload["storage"]["status"] == "ok"
    assert "transcripts" in payload
