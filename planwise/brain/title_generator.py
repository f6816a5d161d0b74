"""
Title Generator - short sidebar titles for new conversations.
Best-effort: any failure leaves the default title in place.
"""

from store.models import DEFAULT_CONVERSATION_TITLE

from brain.config import settings
from brain.llm_client import ChatClient, first_message

TITLE_PROMPT = """\
Given ONLY the user's first message, output a short, descriptive sidebar title.

Requirements:
- Max 30 characters (soft cap), 3-5 words
- Use title case (capitalize main words)
- Return ONLY the title text

First message:
{message}"""

MAX_TITLE_LENGTH = 28


def clean_title(raw: str | None) -> str:
    """Single line, trimmed, soft-capped; empty -> default title."""
    title = " ".join((raw or "").splitlines()).strip().strip('"').strip()
    if len(title) > MAX_TITLE_LENGTH:
        title = title[: MAX_TITLE_LENGTH - 1] + "…"
    return title or DEFAULT_CONVERSATION_TITLE


class TitleGenerator:
    def __init__(self, client: ChatClient, model: str | None = None):
        self.client = client
        self.model = model or settings.title_model

    async def generate(self, first_message_text: str) -> str:
        try:
            response = await self.client.complete(
                [
                    {
                        "role": "user",
                        "content": TITLE_PROMPT.format(message=first_message_text),
                    }
                ],
                model=self.model,
            )
        except Exception as e:
            print(f"[TitleGenerator] Error: {e}")
            return DEFAULT_CONVERSATION_TITLE
        return clean_title(first_message(response).get("content"))
