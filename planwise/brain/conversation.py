"""
Conversation Orchestrator - The heart of Planwise chat.
Handles the full flow: history -> AI call -> (one tool call) -> AI call -> persist.

A turn is a small state machine:
    first response without tool calls          -> done, reply = content
    first response with a tool call            -> run the first call once,
                                                  send its result back,
                                                  reply = follow-up content
Only the first call of a multi-call response is executed.
"""

import json
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Callable

from store.conversation_store import ConversationStore
from store.event_store import EventStore
from store.models import (
    DEFAULT_CONVERSATION_TITLE,
    Event,
    Message,
    has_default_title,
)
from tools.base import (
    TOOL_REGISTRY,
    ToolContext,
    execute_tool,
    get_openai_tool_definitions,
)

from brain.config import settings
from brain.errors import (
    FollowupServiceError,
    NotFoundError,
    ToolExecutionError,
    UpstreamServiceError,
    ValidationError,
)
from brain.llm_client import ChatClient, first_message
from brain.system_prompt import build_system_prompt
from brain.title_generator import TitleGenerator


@dataclass
class ChatResult:
    reply_content: str
    event_created: Event | None = None

    def as_dict(self) -> dict:
        return {
            "replyContent": self.reply_content,
            "eventCreated": (
                self.event_created.model_dump(mode="json")
                if self.event_created
                else None
            ),
        }


@dataclass
class TurnResult:
    user_message: Message
    assistant_message: Message
    event_created: Event | None
    title: str


def build_messages(
    prior: list[Message], content: str, image: str | None = None
) -> list[dict]:
    """Stored history + the new user turn, in chat-completion format."""

    def _to_chat(role: str, text: str, image_ref: str | None) -> dict:
        if image_ref:
            return {
                "role": role,
                "content": [
                    {"type": "text", "text": text},
                    {"type": "image_url", "image_url": {"url": image_ref}},
                ],
            }
        return {"role": role, "content": text}

    messages = [_to_chat(m.role, m.content, m.image_ref) for m in prior]
    messages.append(_to_chat("user", content, image))
    return messages


class Conversation:
    def __init__(
        self,
        conversation_store: ConversationStore,
        event_store: EventStore,
        client: ChatClient,
        title_generator: TitleGenerator | None = None,
        registry: dict | None = None,
        tz=None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.conversation_store = conversation_store
        self.event_store = event_store
        self.client = client
        self.title_generator = title_generator
        self.registry = TOOL_REGISTRY if registry is None else registry
        self.tz = tz or settings.tz
        self.clock = clock or (lambda: datetime.now(UTC))

    async def handle(
        self,
        conversation_id: int,
        owner: str,
        content: str,
        image: str | None = None,
    ) -> TurnResult:
        """
        Process a user message in a stored conversation.
        Nothing is written if the first model call fails.
        """
        content = (content or "").strip()
        if not content:
            raise ValidationError("content is required")

        # 1. Ownership check + history
        convo = await self.conversation_store.get_conversation(
            conversation_id, owner
        )
        if convo is None:
            raise NotFoundError("conversation", conversation_id)
        prior = await self.conversation_store.list_messages(conversation_id)

        # 2. AI turn (may create an event)
        messages = build_messages(prior, content, image)
        result = await self.run_tool_turn(messages, owner)

        # 3. Persist both sides of the turn
        user_msg = await self.conversation_store.append_message(
            conversation_id, "user", content, image
        )
        assistant_msg = await self.conversation_store.append_message(
            conversation_id, "assistant", result.reply_content
        )

        # 4. Title from the first user message, else just bump updated_at
        title = convo.title
        is_first_user_message = not any(m.role == "user" for m in prior)
        renamed = False
        if (
            is_first_user_message
            and has_default_title(convo)
            and self.title_generator
        ):
            new_title = await self.title_generator.generate(content)
            if new_title != DEFAULT_CONVERSATION_TITLE:
                renamed = await self.conversation_store.set_title_if_default(
                    conversation_id, new_title
                )
            if renamed:
                title = new_title
        if not renamed:
            await self.conversation_store.touch(conversation_id)

        return TurnResult(
            user_message=user_msg,
            assistant_message=assistant_msg,
            event_created=result.event_created,
            title=title,
        )

    async def run_tool_turn(
        self, messages: list[dict], owner: str
    ) -> ChatResult:
        """
        One chat turn with at most one tool execution.
        Raises UpstreamServiceError only when the first model call fails.
        """
        messages = self._with_system_prompt(messages)
        tool_defs = get_openai_tool_definitions(self.registry)

        # First response: failures go straight to the caller
        response = await self.client.complete(messages, tools=tool_defs)
        assistant = first_message(response)
        reply = assistant.get("content") or ""
        tool_calls = assistant.get("tool_calls") or []

        if not tool_calls:
            print(f"  [AI] Text response (no tools called): {reply[:150]}")
            return ChatResult(reply)

        if len(tool_calls) > 1:
            print(
                f"  [AI] {len(tool_calls)} tool calls returned; "
                "only the first is executed."
            )
        call = tool_calls[0]
        function = call.get("function") or {}
        fn_name = function.get("name") or ""
        raw_args = function.get("arguments")

        if fn_name not in self.registry:
            print(f"  [AI] Unknown tool '{fn_name}' ignored.")
            return ChatResult(reply)

        info = self.registry[fn_name]
        print(f"  [Tool] {fn_name}({str(raw_args)[:500]})")

        # Execute exactly once
        try:
            result = await execute_tool(
                fn_name, raw_args, self._tool_context(owner), self.registry
            )
        except ToolExecutionError as e:
            print(f"  [Tool Error] {fn_name} -> {e.reason[:300]}")
            return ChatResult(
                f"I tried to {info['action']} but encountered an error: {e.reason}"
            )

        payload = json.dumps({"success": True, **result.data}, default=str)
        print(f"  [Tool Result] {fn_name} -> {payload[:300]}")

        followup_messages = [
            *messages,
            {**assistant, "role": "assistant", "tool_calls": [call]},
            {
                "role": "tool",
                "tool_call_id": call.get("id"),
                "name": fn_name,
                "content": payload,
            },
        ]

        # Follow-up: the side effect already happened, so never fail the turn here
        try:
            reply = await self._followup(followup_messages, tool_defs)
        except FollowupServiceError as e:
            print(f"  [AI] Follow-up failed ({e.status}); using canned reply.")
            reply = ""

        return ChatResult(
            reply or info["fallback_reply"], event_created=result.event
        )

    async def _followup(self, messages: list[dict], tool_defs: list[dict]) -> str:
        try:
            response = await self.client.complete(messages, tools=tool_defs)
        except UpstreamServiceError as e:
            raise FollowupServiceError(e.status, e.body) from e
        return first_message(response).get("content") or ""

    def _tool_context(self, owner: str) -> ToolContext:
        return ToolContext(
            owner=owner,
            event_store=self.event_store,
            tz=self.tz,
            today=self.clock().astimezone(self.tz).date(),
        )

    def _with_system_prompt(self, messages: list[dict]) -> list[dict]:
        if messages and messages[0].get("role") == "system":
            return list(messages)
        now = self.clock().astimezone(self.tz)
        offset = now.strftime("%z")
        system_prompt = build_system_prompt(
            current_datetime=now.strftime("%A, %B %d, %Y at %I:%M %p"),
            timezone_name=str(self.tz),
            utc_offset=f"{offset[:3]}:{offset[3:]}" if offset else "",
        )
        return [{"role": "system", "content": system_prompt}, *messages]
