"""
Pytest fixtures for Planwise tests.
Ensures the planwise directory is on sys.path when running from repo root.
"""

import copy
import json
import os
import sys
import tempfile
from datetime import UTC, datetime
from pathlib import Path
from zoneinfo import ZoneInfo

import pytest
import pytest_asyncio

# Set test env before any brain imports (so Settings and server use them)
os.environ.setdefault(
    "DB_PATH", os.path.join(tempfile.gettempdir(), "planwise_test.db")
)
os.environ.setdefault("TIMEZONE", "America/Denver")
os.environ.setdefault("AI_API_BASE", "")

# Allow imports of brain, scheduling, store, tools when running from repo root
_planwise = Path(__file__).resolve().parent.parent
if str(_planwise) not in sys.path:
    sys.path.insert(0, str(_planwise))

DENVER = ZoneInfo("America/Denver")


@pytest.fixture
def tz():
    return DENVER


@pytest.fixture
def fixed_now():
    """Tuesday 2025-11-25 09:00 in Denver."""
    return datetime(2025, 11, 25, 16, 0, tzinfo=UTC)


@pytest.fixture
def temp_db_path(tmp_path):
    """Temporary SQLite database path for tests."""
    return str(tmp_path / "test.db")


@pytest_asyncio.fixture
async def event_store(temp_db_path):
    from store.event_store import EventStore

    store = EventStore(temp_db_path)
    await store.initialize()
    yield store
    await store.close()


@pytest_asyncio.fixture
async def conversation_store(temp_db_path):
    from store.conversation_store import ConversationStore

    store = ConversationStore(temp_db_path)
    await store.initialize()
    yield store
    await store.close()


class FakeChatClient:
    """Scripted stand-in for ChatClient: pops one response per call."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls: list[dict] = []

    async def complete(self, messages, tools=None, model=None, temperature=None):
        self.calls.append({
            "messages": copy.deepcopy(messages),
            "tools": tools,
            "model": model,
        })
        if not self.responses:
            raise AssertionError("unexpected model call")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def text_response(content):
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def tool_call_response(name, arguments, call_id="call_1", content=None, extra_calls=()):
    calls = [
        {
            "id": call_id,
            "type": "function",
            "function": {
                "name": name,
                "arguments": arguments if isinstance(arguments, str) else json.dumps(arguments),
            },
        },
        *extra_calls,
    ]
    return {
        "choices": [
            {"message": {"role": "assistant", "content": content, "tool_calls": calls}}
        ]
    }


@pytest.fixture
def make_client():
    return FakeChatClient


@pytest.fixture
def responses():
    """Builders for chat-completion response dicts."""

    class _Builders:
        text = staticmethod(text_response)
        tool_call = staticmethod(tool_call_response)

    return _Builders
