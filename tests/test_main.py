from fastapi.testclient import TestClient
import pytest

from reelfeed.services import assistant

def test_home_not_logged_in(client: TestClient):
    response = client.get("/")
    assert response.status_code == 200
    assert "Login with Google" in response.text

def test_login_redirect(client: TestClient):
    response = client.get("/login", follow_redirects=False)
    assert response.status_code == 307
    assert "/auth/callback" in response.headers["location"]

def test_auth_callback_mock(client: TestClient):
    response = client.get("/auth/callback?mock=true", follow_redirects=False)
    assert response.status_code == 307
    assert response.headers["location"] == "/"

    # TestClient keeps the session cookie
    response = client.get("/")
    assert "Welcome, Mock Viewer" in response.text
    assert "Logout" in response.text

def test_logout_clears_session(logged_in_client: TestClient):
    logged_in_client.get("/logout")
    assert "Login with Google" in logged_in_client.get("/").text

def test_feed_is_public(client: TestClient):
    response = client.get("/api/feed")
    assert response.status_code == 200
    data = response.json()
    assert {r["id"] for r in data} == {"reel_sunset", "reel_skate", "reel_recipe"}
    assert all(r["liked"] is False for r in data)

def test_recommended_feed_is_ranked(client: TestClient):
    data = client.get("/api/feed?mode=recommended").json()
    scores = [r["score"] for r in data]
    assert scores == sorted(scores, reverse=True)
    # 900 views outweigh three likes
    assert data[0]["id"] == "reel_skate"

def test_following_feed_requires_login(client: TestClient):
    client.cookies.clear()
    assert client.get("/api/feed?mode=following").status_code == 401

def test_following_feed(logged_in_client: TestClient):
    data = logged_in_client.get("/api/feed?mode=following").json()
    assert [r["id"] for r in data] == ["reel_sunset"]

def test_unknown_mode_is_rejected(client: TestClient):
    assert client.get("/api/feed?mode=trending").status_code == 422

def test_record_view(client: TestClient):
    assert client.post("/api/reels/reel_skate/view").json() == {"status": "counted"}
    data = client.get("/api/feed?mode=recommended").json()
    assert next(r for r in data if r["id"] == "reel_skate")["views"] == 901

def test_like_requires_login(client: TestClient):
    response = client.post("/api/reels/reel_skate/like")
    assert response.status_code == 401

def test_like_and_unlike(logged_in_client: TestClient):
    response = logged_in_client.post("/api/reels/reel_skate/like")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "applied"
    assert body["reel"]["liked"] is True
    assert body["reel"]["likes"] == 2

    again = logged_in_client.post("/api/reels/reel_skate/like").json()
    assert again["status"] == "unchanged"
    assert again["reel"]["likes"] == 2

    body = logged_in_client.delete("/api/reels/reel_skate/like").json()
    assert body["reel"]["liked"] is False
    assert body["reel"]["likes"] == 1

def test_favorite_share_repost(logged_in_client: TestClient):
    assert logged_in_client.post("/api/reels/reel_recipe/favorite").json()["reel"]["favorited"] is True
    assert logged_in_client.post("/api/reels/reel_recipe/share").json()["reel"]["shares"] == 2
    assert logged_in_client.post("/api/reels/reel_recipe/repost").json()["reel"]["reposts"] == 1
    assert logged_in_client.delete("/api/reels/reel_recipe/repost").json()["reel"]["reposts"] == 0

def test_action_on_missing_reel(logged_in_client: TestClient):
    assert logged_in_client.post("/api/reels/nope/like").status_code == 404

def test_comments(logged_in_client: TestClient):
    response = logged_in_client.post("/api/reels/reel_sunset/comments", json={"text": "love it"})
    assert response.status_code == 200
    assert response.json()["text"] == "love it"

    comments = logged_in_client.get("/api/reels/reel_sunset/comments").json()
    assert [c["text"] for c in comments] == ["love it"]
    assert logged_in_client.post("/api/reels/reel_sunset/comments", json={"text": " "}).status_code == 400

def test_comment_requires_login(client: TestClient):
    response = client.post("/api/reels/reel_sunset/comments", json={"text": "hi"})
    assert response.status_code == 401

def test_follow_and_unfollow(logged_in_client: TestClient):
    body = logged_in_client.post("/api/users/user_bruno/follow").json()
    assert body["following"] is True
    ids = [r["id"] for r in logged_in_client.get("/api/feed?mode=following").json()]
    assert set(ids) == {"reel_sunset", "reel_skate"}

    body = logged_in_client.delete("/api/users/user_ana/follow").json()
    assert body["following"] is False

def test_block_hides_author(logged_in_client: TestClient):
    assert logged_in_client.post("/api/users/user_bruno/block").json()["status"] == "applied"
    ids = {r["id"] for r in logged_in_client.get("/api/feed").json()}
    assert "reel_skate" not in ids
    logged_in_client.delete("/api/users/user_bruno/block")
    ids = {r["id"] for r in logged_in_client.get("/api/feed").json()}
    assert "reel_skate" in ids

def test_conversation_flow(logged_in_client: TestClient):
    conv_id = logged_in_client.post("/api/conversations/user_ana").json()["id"]
    assert conv_id == "mock_user_user_ana"

    response = logged_in_client.post(f"/api/conversations/{conv_id}/messages", json={"text": "hey ana"})
    assert response.status_code == 200

    conversations = logged_in_client.get("/api/conversations").json()
    assert conversations[0]["id"] == conv_id
    assert conversations[0]["last_message"] == "hey ana"

    data = logged_in_client.get(f"/api/conversations/{conv_id}/messages").json()
    assert [m["text"] for m in data["messages"]] == ["hey ana"]
    assert data["unread"] == 0
    assert logged_in_client.post(f"/api/conversations/{conv_id}/read").json() == {"marked": 0}

def test_conversation_requires_participant(logged_in_client: TestClient):
    assert logged_in_client.get("/api/conversations/user_ana_user_bruno/messages").status_code == 404
    assert logged_in_client.post("/api/conversations/mock_user").status_code == 400

def test_conversations_require_login(client: TestClient):
    assert client.get("/api/conversations").status_code == 401

def test_assistant_sessions(logged_in_client: TestClient):
    session = logged_in_client.post("/api/assistant/sessions", json={"title": "Captions"}).json()
    assert session["title"] == "Captions"
    sessions = logged_in_client.get("/api/assistant/sessions").json()
    assert [s["id"] for s in sessions] == [session["id"]]

    assert logged_in_client.delete(f"/api/assistant/sessions/{session['id']}").json() == {"status": "deleted"}
    assert logged_in_client.get("/api/assistant/sessions").json() == []

def test_assistant_without_keys(logged_in_client: TestClient, monkeypatch):
    monkeypatch.setattr(assistant.settings, "GEMINI_API_KEY", None)
    monkeypatch.setattr(assistant.settings, "OPENAI_API_KEY", None)
    session_id = logged_in_client.post("/api/assistant/sessions", json={}).json()["id"]
    response = logged_in_client.post(f"/api/assistant/sessions/{session_id}/messages", json={"text": "hi"})
    assert response.status_code == 503

def test_assistant_reply(logged_in_client: TestClient, monkeypatch):
    monkeypatch.setattr(assistant, "generate_reply", lambda history: f"echo {history[-1].content}")
    session_id = logged_in_client.post("/api/assistant/sessions", json={}).json()["id"]
    response = logged_in_client.post(f"/api/assistant/sessions/{session_id}/messages", json={"text": "hi"})
    assert response.json() == {"role": "assistant", "content": "echo hi"}

    history = logged_in_client.get(f"/api/assistant/sessions/{session_id}/messages").json()
    assert [m["role"] for m in history] == ["user", "assistant"]

def test_comment_like(logged_in_client: TestClient):
    comment_id = logged_in_client.post("/api/reels/reel_sunset/comments", json={"text": "ok"}).json()["id"]
    assert logged_in_client.post(f"/api/reels/reel_sunset/comments/{comment_id}/like").json()["liked"] is True
    comments = logged_in_client.get("/api/reels/reel_sunset/comments").json()
    assert comments[0]["likes_users"] == ["mock_user"]
    logged_in_client.delete(f"/api/reels/reel_sunset/comments/{comment_id}/like")
    assert logged_in_client.get("/api/reels/reel_sunset/comments").json()[0]["likes_users"] == []

def test_feed_card_labels(client: TestClient):
    card = next(r for r in client.get("/api/feed").json() if r["id"] == "reel_skate")
    assert card["views_label"] == "900"
    assert card["age"] == "5h"

def test_store_write_failures_are_bad_gateway(logged_in_client: TestClient, broken_store, caplog):
    broken_store._collection("conversations")["mock_user_user_ana"] = {"participants": ["mock_user", "user_ana"]}
    with caplog.at_level("ERROR"):
        assert logged_in_client.post("/api/conversations/user_bruno").status_code == 502
        response = logged_in_client.post("/api/conversations/mock_user_user_ana/messages", json={"text": "hi"})
        assert response.status_code == 502
        assert response.json() == {"detail": "Document store unavailable"}
        assert logged_in_client.post("/api/assistant/sessions", json={}).status_code == 502
    assert "Store error on POST /api/conversations/mock_user_user_ana/messages" in caplog.text

def test_store_read_failures_are_bad_gateway(logged_in_client: TestClient, broken_store):
    broken_store.fail_reads = True
    assert logged_in_client.get("/api/conversations/mock_user_user_ana/messages").status_code == 502
    assert logged_in_client.post("/api/conversations/mock_user_user_ana/read").status_code == 502

def test_assistant_store_failures_are_bad_gateway(logged_in_client: TestClient, broken_store, monkeypatch):
    monkeypatch.setattr(assistant, "generate_reply", lambda history: "reply")
    assert logged_in_client.post("/api/assistant/sessions/s1/messages", json={"text": "hi"}).status_code == 502
    assert logged_in_client.delete("/api/assistant/sessions/s1").status_code == 502

def test_report_reel(logged_in_client: TestClient):
    response = logged_in_client.post("/api/reels/reel_skate/report", json={"reason": "spam"})
    assert response.json() == {"status": "applied", "reel_id": "reel_skate"}
    assert logged_in_client.post("/api/reels/reel_skate/report", json={"reason": ""}).status_code == 400
    assert logged_in_client.post("/api/reels/nope/report", json={"reason": "spam"}).status_code == 404

def test_report_requires_login(client: TestClient):
    assert client.post("/api/reels/reel_skate/report", json={"reason": "spam"}).status_code == 401

def test_user_reels(client: TestClient):
    data = client.get("/api/users/user_ana/reels").json()
    assert [r["id"] for r in data] == ["reel_sunset"]
    assert client.get("/api/users/nobody/reels").json() == []

def test_hashtag_reels(client: TestClient):
    data = client.get("/api/hashtags/travel/reels").json()
    # Newest first
    assert [r["id"] for r in data] == ["reel_sunset", "reel_recipe"]

def test_delete_message_and_nickname(logged_in_client: TestClient):
    conv_id = logged_in_client.post("/api/conversations/user_ana").json()["id"]
    message_id = logged_in_client.post(f"/api/conversations/{conv_id}/messages", json={"text": "oops"}).json()["id"]
    response = logged_in_client.delete(f"/api/conversations/{conv_id}/messages/{message_id}")
    assert response.json() == {"status": "deleted"}
    assert logged_in_client.get(f"/api/conversations/{conv_id}/messages").json()["messages"] == []

    response = logged_in_client.put(f"/api/conversations/{conv_id}/nicknames/user_ana", json={"nickname": "Annie"})
    assert response.json() == {"user_id": "user_ana", "nickname": "Annie"}
    assert logged_in_client.get(f"/api/conversations/{conv_id}/nicknames/user_ana").json()["nickname"] == "Annie"
