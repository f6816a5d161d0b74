"""
Chat Client - the one place Planwise talks to a language model.
Wraps litellm.acompletion and turns provider failures into
UpstreamServiceError with the status code and raw body preserved.
"""

import litellm

from brain.config import settings
from brain.errors import UpstreamServiceError


def _status_of(error: Exception) -> int:
    status = getattr(error, "status_code", None)
    if isinstance(status, int) and status > 0:
        return status
    if isinstance(error, TimeoutError):
        return 408
    return 502


def _body_of(error: Exception) -> str:
    response = getattr(error, "response", None)
    text = getattr(response, "text", None)
    if isinstance(text, str) and text:
        return text
    return getattr(error, "message", None) or str(error)


class ChatClient:
    def __init__(
        self,
        model: str | None = None,
        temperature: float | None = None,
        extra_kwargs: dict | None = None,
    ):
        self.model = model or settings.litellm_model
        self.temperature = (
            settings.ai_temperature if temperature is None else temperature
        )
        self.extra_kwargs = (
            settings.completion_kwargs if extra_kwargs is None else extra_kwargs
        )

        # Set API keys for LiteLLM
        if settings.openai_api_key:
            litellm.openai_key = settings.openai_api_key
        if settings.anthropic_api_key:
            litellm.anthropic_key = settings.anthropic_api_key

        # Silence litellm's verbose logging
        litellm.suppress_debug_info = True

    async def complete(
        self,
        messages: list[dict],
        tools: list[dict] | None = None,
        model: str | None = None,
        temperature: float | None = None,
    ) -> dict:
        """
        One chat completion. Returns the response as a plain dict:
        {"choices": [{"message": {"content": ..., "tool_calls": [...]}}]}
        """
        kwargs = {
            "model": model or self.model,
            "messages": messages,
            "temperature": self.temperature if temperature is None else temperature,
            **self.extra_kwargs,
        }
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"

        try:
            response = await litellm.acompletion(**kwargs)
        except Exception as e:
            status, body = _status_of(e), _body_of(e)
            print(f"  [AI] Upstream error {status}: {body[:300]}")
            raise UpstreamServiceError(status, body) from e

        return response.model_dump()


def first_message(response: dict) -> dict:
    """choices[0].message, or an empty dict when the response has none."""
    choices = response.get("choices") or []
    if not choices:
        return {}
    return choices[0].get("message") or {}
