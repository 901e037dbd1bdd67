import asyncio
import re

import pytest
from fastapi.testclient import TestClient

from fixtures.fakes import FakeRenderer
from typstchat.backends import ScriptedBackend, scripted_text, scripted_tool_call
from typstchat.encoder import FrameSequenceChecker, iter_frames
from typstchat.persistence import EntrySource, InMemoryTranscriptStore
from typstchat.server import create_app
from typstchat.turn import TurnEngine


def _make_client(scripts, renderer=None):
    store = InMemoryTranscriptStore()
    backend = ScriptedBackend(scripts)
    engine = TurnEngine(store, backend, renderer or FakeRenderer())
    return TestClient(create_app(engine=engine)), engine, backend


def _events(response):
    return list(iter_frames(response.text))


def test_health():
    client, _, _ = _make_client([])
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_chat_streams_event_frames():
    client, _, _ = _make_client(
        [
            scripted_text("Drafting.") + scripted_tool_call("= Poster", "A poster"),
            scripted_text(" Done."),
        ]
    )

    response = client.post(
        "/api/chat", json={"message": "Make a poster", "conversationId": "conv-1"}
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    events = _events(response)
    checker = FrameSequenceChecker()
    for event in events:
        checker.observe(event)
    assert checker.ok, checker.anomalies
    assert events[0].data == {"conversationId": "conv-1"}
    assert events[-1].wire_kind == "done"
    assert events[-1].data == {"message": "Drafting. Done."}
    result = next(e for e in events if e.wire_kind == "tool_result")
    assert result.data["output"]["pages"] == ["data:image/png;base64,cGFnZS0x"]


def test_chat_generates_conversation_id():
    client, _, _ = _make_client([scripted_text("Hi!")])

    response = client.post("/api/chat", json={"messages": [{"role": "user", "content": "Hello"}]})

    conversation_id = _events(response)[0].data["conversationId"]
    assert re.fullmatch(r"\d{4}-\d{2}-\d{2}_\d{2}-\d{2}-\d{2}_[a-z0-9]{6}", conversation_id)


def test_chat_uses_client_history_when_given():
    client, _, backend = _make_client([scripted_text("Sure.")])

    client.post(
        "/api/chat",
        json={
            "conversationId": "conv-1",
            "messages": [
                {"role": "user", "content": "Hi"},
                {"role": "assistant", "content": "Hello!"},
                {"role": "user", "content": "Make a poster"},
            ],
        },
    )

    assert [m.content for m in backend.calls[0].messages] == ["Hi", "Hello!", "Make a poster"]


def test_chat_derives_history_from_store():
    client, _, backend = _make_client([scripted_text("First reply."), scripted_text("Second reply.")])

    client.post("/api/chat", json={"message": "First", "conversationId": "conv-1"})
    client.post("/api/chat", json={"message": "Second", "conversationId": "conv-1"})

    assert [(m.role, m.content) for m in backend.calls[1].messages] == [
        ("user", "First"),
        ("assistant", "First reply."),
        ("user", "Second"),
    ]


@pytest.mark.parametrize(
    "body",
    [
        {},
        {"message": "   "},
        {"messages": [{"role": "assistant", "content": "Hello"}]},
    ],
)
def test_chat_requires_user_message(body):
    client, _, _ = _make_client([])
    response = client.post("/api/chat", json=body)
    assert response.status_code == 400


def test_chat_rejects_concurrent_turn(monkeypatch):
    client, engine, _ = _make_client([scripted_text("unused")])
    monkeypatch.setattr(engine, "is_busy", lambda conversation_id: True)

    response = client.post("/api/chat", json={"message": "Hi", "conversationId": "conv-1"})

    assert response.status_code == 409


def test_list_and_load_conversations():
    client, _, _ = _make_client(
        [
            scripted_tool_call("= Letter", "A letter"),
            scripted_text("Your letter is ready."),
            scripted_text("Typst is a typesetting system."),
        ]
    )
    client.post("/api/chat", json={"message": "Write a letter", "conversationId": "conv-1"})
    client.post("/api/chat", json={"message": "What is Typst?", "conversationId": "conv-2"})

    listing = client.get("/api/conversations").json()["conversations"]
    assert [c["id"] for c in listing] == ["conv-2", "conv-1"]
    assert listing[1]["title"] == "Write a letter"
    assert "latest_artifact" not in listing[0]

    assert [c["id"] for c in client.get("/api/conversations?limit=1&offset=1").json()["conversations"]] == [
        "conv-1"
    ]

    loaded = client.get("/api/conversations/conv-1").json()
    assert loaded["conversation"]["id"] == "conv-1"
    assert [m["role"] for m in loaded["messages"]] == ["user", "tool", "assistant"]
    assert loaded["messages"][1]["status"] == "success"
    assert loaded["artifact"]["code"] == "= Letter"
    assert loaded["artifact"]["pdfUrl"].startswith("data:application/pdf;base64,")

    again = client.get("/api/conversations/conv-1").json()
    assert again == loaded

    plain = client.get("/api/conversations/conv-2").json()
    assert plain["artifact"] is None


def test_load_unknown_conversation_returns_404():
    client, _, _ = _make_client([])
    response = client.get("/api/conversations/missing")
    assert response.status_code == 404


def test_load_attaches_pdf_only_when_cache_matches_replayed_artifact():
    client, engine, _ = _make_client([])
    store = engine.store

    async def seed():
        await store.append("conv-1", EntrySource.USER, {"role": "user", "content": "Poster"})
        await store.append(
            "conv-1",
            EntrySource.TOOL_CALL,
            {"tool": "render_typst", "input": {"code": "= B", "description": "b"}},
        )
        await store.append(
            "conv-1",
            EntrySource.TOOL_RESULT,
            {
                "tool": "render_typst",
                "success": True,
                "pageCount": 1,
                "error": None,
                "artifact": {"code": "= B", "pages": ["page-b"]},
            },
        )
        await store.set_latest_artifact("conv-1", "= A", ["page-a"], "data:application/pdf;base64,QQ==")

    asyncio.run(seed())
    stale = client.get("/api/conversations/conv-1").json()["artifact"]
    assert stale == {"code": "= B", "pages": ["page-b"]}

    asyncio.run(store.set_latest_artifact("conv-1", "= B", ["page-b"], "data:application/pdf;base64,Qg=="))
    current = client.get("/api/conversations/conv-1").json()["artifact"]
    assert current["pdfUrl"] == "data:application/pdf;base64,Qg=="
