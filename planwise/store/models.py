"""
Data models shared by the stores, the tools and the HTTP layer.
"""

from datetime import UTC, datetime
from typing import Literal

from pydantic import (
    BaseModel,
    ValidationInfo,
    field_validator,
    model_validator,
)
from pydantic import ValidationError as PydanticValidationError
from scheduling.interval import Interval, localize

from brain.errors import ValidationError

ANONYMOUS_OWNER = "anonymous"
DEFAULT_CONVERSATION_TITLE = "New chat"


class EventFields(BaseModel):
    """User-editable part of an event. Naive times are read in context["tz"]."""

    title: str
    description: str | None = None
    location: str | None = None
    start_time: datetime
    end_time: datetime
    all_day: bool = False

    model_config = {"extra": "ignore"}

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("title is required")
        return value

    @field_validator("description", "location")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            return None
        return value

    @field_validator("start_time", "end_time")
    @classmethod
    def _localize(cls, value: datetime, info: ValidationInfo) -> datetime:
        return localize(value, (info.context or {}).get("tz"))

    @model_validator(mode="after")
    def _end_after_start(self):
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self

    @property
    def interval(self) -> Interval:
        return Interval(self.start_time, self.end_time)


class Event(EventFields):
    id: int
    owner: str
    created_at: datetime
    updated_at: datetime
    external_id: str | None = None


def validate_event_fields(data: dict, tz=None) -> EventFields:
    """Validate a raw event body, raising our ValidationError with readable details."""
    try:
        return EventFields.model_validate(data, context={"tz": tz})
    except PydanticValidationError as e:
        details = _error_lines(e)
        raise ValidationError(
            f"Invalid event ({'; '.join(details)})", details=details
        ) from e


def _error_lines(e: PydanticValidationError) -> list[str]:
    return [
        f"{'.'.join(str(p) for p in err['loc']) or 'event'}: {err['msg']}"
        for err in e.errors()
    ]


class Conversation(BaseModel):
    id: int
    owner: str
    title: str
    created_at: datetime
    updated_at: datetime


class Message(BaseModel):
    id: int
    conversation_id: int
    role: Literal["user", "assistant", "tool"]
    content: str
    image_ref: str | None = None
    created_at: datetime


def utcnow() -> datetime:
    return datetime.now(UTC)


def has_default_title(conversation: Conversation) -> bool:
    """Exact match, the same rule ConversationStore.set_title_if_default applies."""
    return conversation.title == DEFAULT_CONVERSATION_TITLE
