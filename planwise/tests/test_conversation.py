"""Tests for brain.conversation (tool-calling loop and turn persistence)."""

import json
from datetime import UTC, datetime
from zoneinfo import ZoneInfo

import pytest
from brain.conversation import Conversation, build_messages
from brain.errors import NotFoundError, UpstreamServiceError, ValidationError
from brain.title_generator import TitleGenerator
from conftest import FakeChatClient, text_response, tool_call_response
from tools import discover_tools

DENVER = ZoneInfo("America/Denver")
NOW = datetime(2025, 11, 25, 16, 0, tzinfo=UTC)

DENTIST_ARGS = {
    "title": "Dentist",
    "start_time": "2025-11-25T14:00:00-07:00",
    "end_time": "2025-11-25T15:00:00-07:00",
}


@pytest.fixture(autouse=True)
def _tools():
    discover_tools()


def _conversation(conversation_store, event_store, responses, title_responses=None):
    title_generator = None
    if title_responses is not None:
        title_generator = TitleGenerator(FakeChatClient(title_responses))
    return Conversation(
        conversation_store,
        event_store,
        FakeChatClient(responses),
        title_generator=title_generator,
        tz=DENVER,
        clock=lambda: NOW,
    )


def _user(text):
    return [{"role": "user", "content": text}]


# --- run_tool_turn ---


@pytest.mark.asyncio
async def test_plain_text_reply(conversation_store, event_store):
    convo = _conversation(conversation_store, event_store, [text_response("Hi there!")])
    result = await convo.run_tool_turn(_user("hello"), "amy")

    assert result.reply_content == "Hi there!"
    assert result.event_created is None
    assert len(convo.client.calls) == 1
    first_call = convo.client.calls[0]
    assert first_call["messages"][0]["role"] == "system"
    assert "America/Denver" in first_call["messages"][0]["content"]
    assert {t["function"]["name"] for t in first_call["tools"]} >= {
        "create_event",
        "get_today_schedule",
    }


@pytest.mark.asyncio
async def test_create_event_then_follow_up(conversation_store, event_store):
    """Tool runs once, its result is sent back, the follow-up text is the reply."""
    convo = _conversation(
        conversation_store,
        event_store,
        [
            tool_call_response("create_event", DENTIST_ARGS, call_id="call_42"),
            text_response("Booked your dentist appointment at 2pm."),
        ],
    )
    result = await convo.run_tool_turn(_user("Dentist at 2pm today"), "amy")

    assert result.reply_content == "Booked your dentist appointment at 2pm."
    assert result.event_created.title == "Dentist"
    assert len(await event_store.list_for_owner("amy")) == 1

    followup = convo.client.calls[1]["messages"]
    assert followup[-2]["role"] == "assistant"
    assert followup[-2]["tool_calls"][0]["id"] == "call_42"
    tool_msg = followup[-1]
    assert tool_msg["role"] == "tool"
    assert tool_msg["tool_call_id"] == "call_42"
    assert tool_msg["name"] == "create_event"
    payload = json.loads(tool_msg["content"])
    assert payload["success"] is True
    assert payload["event"]["title"] == "Dentist"


@pytest.mark.asyncio
async def test_standup_fields_are_persisted(conversation_store, event_store):
    args = {
        "title": "Standup",
        "start_time": "2025-11-25T09:00:00-07:00",
        "end_time": "2025-11-25T09:15:00-07:00",
    }
    convo = _conversation(
        conversation_store,
        event_store,
        [tool_call_response("create_event", args), text_response("Standup added.")],
    )
    result = await convo.run_tool_turn(_user("standup at 9"), "amy")

    stored = (await event_store.list_for_owner("amy"))[0]
    assert stored.title == "Standup"
    assert stored.start_time.astimezone(DENVER).strftime("%H:%M") == "09:00"
    assert stored.interval.hours == 0.25
    assert result.event_created.id == stored.id
    assert result.reply_content


@pytest.mark.asyncio
async def test_follow_up_failure_keeps_single_event(conversation_store, event_store):
    """A failed second call yields the canned reply and never re-runs the tool."""
    convo = _conversation(
        conversation_store,
        event_store,
        [
            tool_call_response("create_event", DENTIST_ARGS),
            UpstreamServiceError(503, "overloaded"),
        ],
    )
    result = await convo.run_tool_turn(_user("Dentist at 2pm"), "amy")

    assert result.reply_content == "Event created successfully!"
    assert result.event_created is not None
    assert len(await event_store.list_for_owner("amy")) == 1
    assert len(convo.client.calls) == 2


@pytest.mark.asyncio
async def test_empty_follow_up_uses_fallback(conversation_store, event_store):
    convo = _conversation(
        conversation_store,
        event_store,
        [tool_call_response("get_today_schedule", "{}"), text_response("")],
    )
    result = await convo.run_tool_turn(_user("what's on today?"), "amy")
    assert result.reply_content == "Here's your schedule for today."


@pytest.mark.asyncio
async def test_today_schedule_result_is_sent_back(conversation_store, event_store):
    await _conversation(
        conversation_store,
        event_store,
        [tool_call_response("create_event", DENTIST_ARGS), text_response("ok")],
    ).run_tool_turn(_user("add dentist"), "amy")

    convo = _conversation(
        conversation_store,
        event_store,
        [
            tool_call_response("get_today_schedule", ""),
            text_response("You have a dentist appointment at 2pm."),
        ],
    )
    result = await convo.run_tool_turn(_user("what's on today?"), "amy")

    assert result.reply_content == "You have a dentist appointment at 2pm."
    assert result.event_created is None
    payload = json.loads(convo.client.calls[1]["messages"][-1]["content"])
    assert payload["count"] == 1
    assert payload["events"][0]["title"] == "Dentist"


@pytest.mark.asyncio
async def test_tool_error_becomes_reply_without_second_call(conversation_store, event_store):
    bad_args = {**DENTIST_ARGS, "end_time": "2025-11-25T13:00:00-07:00"}
    convo = _conversation(
        conversation_store,
        event_store,
        [tool_call_response("create_event", bad_args)],
    )
    result = await convo.run_tool_turn(_user("Dentist"), "amy")

    assert result.reply_content.startswith(
        "I tried to create the event but encountered an error:"
    )
    assert result.event_created is None
    assert len(convo.client.calls) == 1
    assert await event_store.list_for_owner("amy") == []


@pytest.mark.asyncio
async def test_malformed_arguments_are_a_tool_error(conversation_store, event_store):
    convo = _conversation(
        conversation_store,
        event_store,
        [tool_call_response("create_event", '{"title": "Dentist"')],
    )
    result = await convo.run_tool_turn(_user("Dentist"), "amy")
    assert "not valid JSON" in result.reply_content
    assert len(convo.client.calls) == 1


@pytest.mark.asyncio
async def test_unknown_tool_returns_first_content(conversation_store, event_store):
    convo = _conversation(
        conversation_store,
        event_store,
        [tool_call_response("send_email", {"to": "x"}, content="Let me handle that.")],
    )
    result = await convo.run_tool_turn(_user("email bob"), "amy")
    assert result.reply_content == "Let me handle that."
    assert len(convo.client.calls) == 1


@pytest.mark.asyncio
async def test_only_first_of_several_tool_calls_runs(conversation_store, event_store):
    second = {
        "id": "call_2",
        "type": "function",
        "function": {
            "name": "create_event",
            "arguments": json.dumps({**DENTIST_ARGS, "title": "Second"}),
        },
    }
    convo = _conversation(
        conversation_store,
        event_store,
        [
            tool_call_response("create_event", DENTIST_ARGS, extra_calls=[second]),
            text_response("Done."),
        ],
    )
    await convo.run_tool_turn(_user("two things"), "amy")

    titles = [e.title for e in await event_store.list_for_owner("amy")]
    assert titles == ["Dentist"]
    assert len(convo.client.calls[1]["messages"][-2]["tool_calls"]) == 1


@pytest.mark.asyncio
async def test_first_call_failure_propagates(conversation_store, event_store):
    convo = _conversation(
        conversation_store, event_store, [UpstreamServiceError(429, "slow down")]
    )
    with pytest.raises(UpstreamServiceError) as exc_info:
        await convo.run_tool_turn(_user("hi"), "amy")
    assert exc_info.value.status == 429
    assert exc_info.value.retryable is True


# --- handle ---


@pytest.mark.asyncio
async def test_handle_persists_turn_and_titles_conversation(conversation_store, event_store):
    conv = await conversation_store.create_conversation("amy")
    convo = _conversation(
        conversation_store,
        event_store,
        [
            tool_call_response("create_event", DENTIST_ARGS),
            text_response("Booked."),
        ],
        title_responses=[text_response('"Dentist Appointment"')],
    )
    turn = await convo.handle(conv.id, "amy", "Dentist at 2pm today")

    assert turn.user_message.content == "Dentist at 2pm today"
    assert turn.assistant_message.content == "Booked."
    assert turn.event_created.title == "Dentist"
    assert turn.title == "Dentist Appointment"

    stored = await conversation_store.list_messages(conv.id)
    assert [(m.role, m.content) for m in stored] == [
        ("user", "Dentist at 2pm today"),
        ("assistant", "Booked."),
    ]
    refreshed = await conversation_store.get_conversation(conv.id, "amy")
    assert refreshed.title == "Dentist Appointment"


@pytest.mark.asyncio
async def test_handle_sends_prior_history(conversation_store, event_store):
    conv = await conversation_store.create_conversation("amy", "Existing")
    await conversation_store.append_message(conv.id, "user", "hi")
    await conversation_store.append_message(conv.id, "assistant", "hello!")

    convo = _conversation(
        conversation_store, event_store, [text_response("Sure.")], title_responses=[]
    )
    turn = await convo.handle(conv.id, "amy", "and now?")

    sent = convo.client.calls[0]["messages"]
    assert [m["content"] for m in sent[1:]] == ["hi", "hello!", "and now?"]
    assert turn.title == "Existing"


@pytest.mark.asyncio
async def test_handle_skips_title_model_for_non_default_title(conversation_store, event_store):
    """Only the exact default title is replaced, so "new chat" costs no title call."""
    conv = await conversation_store.create_conversation("amy", "new chat")
    convo = _conversation(
        conversation_store, event_store, [text_response("Hi!")], title_responses=[]
    )
    turn = await convo.handle(conv.id, "amy", "hello")

    assert convo.title_generator.client.calls == []
    assert turn.title == "new chat"
    assert await conversation_store.set_title_if_default(conv.id, "Greeting") is False


@pytest.mark.asyncio
async def test_handle_upstream_failure_persists_nothing(conversation_store, event_store):
    conv = await conversation_store.create_conversation("amy")
    convo = _conversation(
        conversation_store, event_store, [UpstreamServiceError(500, "boom")]
    )
    with pytest.raises(UpstreamServiceError):
        await convo.handle(conv.id, "amy", "hello")
    assert await conversation_store.list_messages(conv.id) == []


@pytest.mark.asyncio
async def test_handle_title_failure_keeps_default(conversation_store, event_store):
    conv = await conversation_store.create_conversation("amy")
    convo = _conversation(
        conversation_store,
        event_store,
        [text_response("Hi!")],
        title_responses=[UpstreamServiceError(502, "bad gateway")],
    )
    turn = await convo.handle(conv.id, "amy", "hello")
    assert turn.title == "New chat"
    assert turn.assistant_message.content == "Hi!"


@pytest.mark.asyncio
async def test_handle_rejects_foreign_or_missing_conversation(conversation_store, event_store):
    conv = await conversation_store.create_conversation("amy")
    convo = _conversation(conversation_store, event_store, [])
    with pytest.raises(NotFoundError):
        await convo.handle(conv.id, "bob", "hello")
    with pytest.raises(NotFoundError):
        await convo.handle(9999, "amy", "hello")


@pytest.mark.asyncio
async def test_handle_rejects_empty_content(conversation_store, event_store):
    conv = await conversation_store.create_conversation("amy")
    convo = _conversation(conversation_store, event_store, [])
    with pytest.raises(ValidationError):
        await convo.handle(conv.id, "amy", "   ")


def test_build_messages_with_image():
    messages = build_messages([], "what is this?", image="data:image/png;base64,AAAA")
    parts = messages[0]["content"]
    assert parts[0] == {"type": "text", "text": "what is this?"}
    assert parts[1]["image_url"]["url"] == "data:image/png;base64,AAAA"
