"""
Calendar Tools - let the assistant read today's schedule and add events.
Both operate on the caller's own events only (ToolContext.owner).
"""

from pydantic import BaseModel, Field
from store.models import validate_event_fields

from tools.base import ToolContext, ToolResult, tool


class CreateEventArgs(BaseModel):
    title: str = Field(min_length=1, description="The title/name of the event")
    start_time: str = Field(
        description=(
            "Start date and time in ISO 8601 format including the user's "
            "UTC offset (e.g. 2025-11-15T14:00:00-07:00)."
        )
    )
    end_time: str = Field(
        description=(
            "End date and time in ISO 8601 format including the user's "
            "UTC offset (e.g. 2025-11-15T15:00:00-07:00)."
        )
    )
    description: str | None = Field(
        default=None, description="Optional detailed description of the event"
    )
    location: str | None = Field(
        default=None,
        description="Optional location where the event will take place",
    )
    all_day: bool = Field(
        default=False,
        description="Whether this is an all-day event. Default is false.",
    )

    model_config = {"extra": "forbid"}


class GetTodayScheduleArgs(BaseModel):
    model_config = {"extra": "forbid"}


@tool(
    description=(
        "Create a new calendar event for the user. Use this when the user asks "
        "to schedule, create, or add an event to their calendar."
    ),
    args_model=CreateEventArgs,
    action="create the event",
    fallback_reply="Event created successfully!",
)
async def create_event(context: ToolContext, args: CreateEventArgs) -> ToolResult:
    """Persist one new event owned by the caller."""
    fields = validate_event_fields(args.model_dump(), tz=context.tz)
    event = await context.event_store.create_event(context.owner, fields)
    return ToolResult(data={"event": event.model_dump(mode="json")}, event=event)


@tool(
    description=(
        "Get the user's schedule for today. Use this when the user asks about "
        "their schedule, what they have today, or their agenda for today."
    ),
    args_model=GetTodayScheduleArgs,
    action="fetch your schedule",
    fallback_reply="Here's your schedule for today.",
)
async def get_today_schedule(
    context: ToolContext, args: GetTodayScheduleArgs
) -> ToolResult:
    """The caller's events starting today in the configured timezone."""
    events = await context.event_store.list_for_owner_on_date(
        context.owner, context.today, context.tz
    )
    return ToolResult(
        data={
            "events": [e.model_dump(mode="json") for e in events],
            "count": len(events),
        }
    )
