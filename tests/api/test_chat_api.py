from conftest import FakeScenario
from app.services.realtime import CHAT_DELTA_EVENT, CHAT_FINAL_EVENT


def test_chat_requires_message(client, auth_headers) -> None:
    assert client.post("/chat", headers=auth_headers, json={}).status_code == 422
    assert client.post("/chat", headers=auth_headers, json={"message": ""}).status_code == 422


def test_blocking_chat_and_history(client, auth_headers, override_llm) -> None:
    fake = override_llm(reply="Protein alımın iyi görünüyor.")
    first = client.post("/chat", headers=auth_headers, json={"message": "Bugün nasılım?", "context": {"tab": "home"}})
    assert first.status_code == 200
    session_id = first.json()["session_id"]
    assert first.json()["reply"] == "Protein alımın iyi görünüyor."
    assert "Kullanıcı: Deniz" in fake.calls[0][1]["context"]

    second = client.post("/chat", headers=auth_headers, json={"message": "Ya yarın?", "session_id": session_id})
    assert second.json()["session_id"] == session_id

    sessions = client.get("/chat/sessions", headers=auth_headers).json()["items"]
    assert sessions[0]["id"] == session_id

    messages = client.get(f"/chat/sessions/{session_id}/messages", headers=auth_headers).json()["messages"]
    assert [item["role"] for item in messages] == ["user", "assistant", "user", "assistant"]
    assert messages[0]["context"] == {"tab": "home"}


def test_chat_errors(client, auth_headers, override_llm) -> None:
    override_llm(FakeScenario.UPSTREAM_ERROR)
    failed = client.post("/chat", headers=auth_headers, json={"message": "selam"})
    assert failed.status_code == 502

    missing = client.post("/chat", headers=auth_headers, json={"message": "selam", "session_id": "nope"})
    assert missing.status_code == 404
    assert client.get("/chat/sessions/nope/messages", headers=auth_headers).status_code == 404


def test_stream_chat_runs_in_background(client, auth_headers, override_llm, override_sink) -> None:
    override_llm(snapshots=["Mer", "Merhaba", "Merhaba!"])
    response = client.post("/chat/stream", headers=auth_headers, json={"message": "selam"})
    assert response.status_code == 202
    body = response.json()

    assert [payload["delta"] for payload in override_sink.named(CHAT_DELTA_EVENT)] == ["Mer", "haba", "!"]
    final = override_sink.named(CHAT_FINAL_EVENT)
    assert final == [{"chatId": body["session_id"], "messageId": body["message_id"], "content": "Merhaba!", "isFinal": True}]

    messages = client.get(f"/chat/sessions/{body['session_id']}/messages", headers=auth_headers).json()["messages"]
    assert messages[-1]["id"] == body["message_id"]
    assert messages[-1]["content"] == "Merhaba!"


def test_stream_refusal(client, auth_headers, override_llm, override_sink) -> None:
    fake = override_llm()
    response = client.post("/chat/stream", headers=auth_headers, json={"message": "Bana bir logo oluştur"})
    assert response.status_code == 202
    assert fake.calls == []
    assert override_sink.named(CHAT_DELTA_EVENT) == []
    assert override_sink.named(CHAT_FINAL_EVENT)[0]["content"].startswith("Ben bir FitCal AI")
