"""
Planwise - FastAPI Server
Events, availability, schedule comparison, Google import and the AI chat
assistant. The caller is identified by the X-User-Email header
(authentication happens in front of this service).
"""

import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

import httpx
from fastapi import Body, FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from scheduling.availability import day_availability, parse_date
from scheduling.compare import compare_schedules, parse_extracted_events
from scheduling.interval import Interval, parse_timestamp
from scheduling.overlap import check_overlap
from store.conversation_store import ConversationStore
from store.event_store import EventStore, event_fields_from_google
from store.models import ANONYMOUS_OWNER, validate_event_fields
from tools import discover_tools
from tools.base import TOOL_REGISTRY

from brain.config import settings
from brain.conversation import Conversation
from brain.errors import NotFoundError, UpstreamServiceError, ValidationError
from brain.llm_client import ChatClient
from brain.schedule_extraction import ScheduleExtractor
from brain.title_generator import TitleGenerator
from brain.version import __version__

# --------------------------------------------------------------------------
# Globals (initialized on startup)
# --------------------------------------------------------------------------
conversation: Conversation | None = None
event_store: EventStore | None = None
conversation_store: ConversationStore | None = None
extractor: ScheduleExtractor | None = None
startup_time: float = 0


async def _check_ai_reachable() -> tuple[bool | None, str | None]:
    """
    One GET to the configured OpenAI-compatible endpoint.
    Returns (None, None) when no custom endpoint is configured.
    Timeout 3s so /health does not block long.
    """
    if not settings.ai_api_base:
        return None, None
    url = f"{settings.ai_api_base.rstrip('/')}/models"
    headers = {}
    if settings.ai_api_key:
        headers["Authorization"] = f"Bearer {settings.ai_api_key}"
    try:
        async with httpx.AsyncClient(timeout=3.0) as client:
            r = await client.get(url, headers=headers)
            if r.status_code == 200:
                return True, None
            return False, f"HTTP {r.status_code}"
    except httpx.TimeoutException:
        return False, "timeout"
    except httpx.HTTPError as e:
        return False, str(e)[:200]


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Startup and shutdown logic."""
    global conversation, event_store, conversation_store, extractor, startup_time
    startup_time = time.time()

    print("=" * 50)
    print("  Planwise starting up...")
    print(f"  AI Model: {settings.litellm_model}")
    print(f"  AI Endpoint: {settings.ai_api_base or '(provider default)'}")
    print(f"  Database: {settings.db_path}")
    print(f"  Timezone: {settings.timezone}")
    print("=" * 50)

    event_store = EventStore(settings.db_path)
    await event_store.initialize()

    conversation_store = ConversationStore(settings.db_path)
    await conversation_store.initialize()

    discover_tools()
    print(f"  Tools loaded: {', '.join(TOOL_REGISTRY.keys())}")

    client = ChatClient()
    extractor = ScheduleExtractor(client)
    conversation = Conversation(
        conversation_store=conversation_store,
        event_store=event_store,
        client=client,
        title_generator=TitleGenerator(client),
    )

    print("  Planwise is online.")
    print("=" * 50)

    yield

    # Shutdown
    await conversation_store.close()
    await event_store.close()
    print("Planwise shut down.")


# --------------------------------------------------------------------------
# FastAPI app
# --------------------------------------------------------------------------
app = FastAPI(
    title="Planwise",
    description="Calendar with availability, schedule comparison and an AI assistant",
    version=__version__,
    lifespan=lifespan,
)


@app.exception_handler(ValidationError)
async def _validation_error(_request: Request, exc: ValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": exc.message, "details": exc.details},
    )


@app.exception_handler(NotFoundError)
async def _not_found(_request: Request, exc: NotFoundError):
    return JSONResponse(
        status_code=404, content={"error": f"{exc.kind}_not_found"}
    )


@app.exception_handler(UpstreamServiceError)
async def _upstream_error(_request: Request, exc: UpstreamServiceError):
    # Passed through with the provider's body for debugging
    status = exc.status if 400 <= exc.status < 600 else 502
    return JSONResponse(
        status_code=status,
        content={
            "title": "Chat provider error",
            "detail": exc.body,
            "statusCode": exc.status,
            "retryable": exc.retryable,
        },
    )


def _owner(x_user_email: str | None) -> str:
    return (x_user_email or "").strip() or ANONYMOUS_OWNER


def _not_ready() -> JSONResponse:
    return JSONResponse(status_code=503, content={"error": "Not ready"})


# --------------------------------------------------------------------------
# Models
# --------------------------------------------------------------------------
class OverlapRequest(BaseModel):
    start_time: str
    end_time: str


class CompareRequest(BaseModel):
    date: str
    workStartHour: int = settings.work_start_hour
    workEndHour: int = settings.work_end_hour
    excludeAllDay: bool = True
    theirEvents: list[Any] = []
    # Defaults to the caller's stored events
    myEvents: list[dict] | None = None


class ExtractRequest(BaseModel):
    image: str
    # Day for entries the image does not date; defaults to today
    date: str | None = None


class ConversationCreate(BaseModel):
    title: str | None = None


class ConversationRename(BaseModel):
    title: str


class MessageCreate(BaseModel):
    content: str
    image: str | None = None


class ChatRequest(BaseModel):
    messages: list[dict]


class GoogleImportRequest(BaseModel):
    items: list[dict]


# --------------------------------------------------------------------------
# Health
# --------------------------------------------------------------------------
@app.get("/health")
async def health():
    """Health check endpoint. Includes AI endpoint reachability when configured."""
    uptime = time.time() - startup_time if startup_time else 0
    ai_ok, ai_err = await _check_ai_reachable()
    out = {
        "status": "online",
        "version": __version__,
        "model": settings.litellm_model,
        "timezone": settings.timezone,
        "uptime_seconds": round(uptime),
        "tools_loaded": list(TOOL_REGISTRY.keys()),
        "ai_reachable": ai_ok,
    }
    if ai_err:
        out["ai_error"] = ai_err
    return out


# --------------------------------------------------------------------------
# Events
# --------------------------------------------------------------------------
@app.get("/api/events")
async def list_events(x_user_email: str | None = Header(default=None)):
    if not event_store:
        return _not_ready()
    events = await event_store.list_for_owner(_owner(x_user_email))
    print(f"  [Events] Returning {len(events)} events for {_owner(x_user_email)}")
    return {"events": [e.model_dump(mode="json") for e in events]}


@app.post("/api/events", status_code=201)
async def create_event(
    body: dict = Body(...), x_user_email: str | None = Header(default=None)
):
    if not event_store:
        return _not_ready()
    fields = validate_event_fields(body, tz=settings.tz)
    event = await event_store.create_event(_owner(x_user_email), fields)
    return {"event": event.model_dump(mode="json")}


@app.post("/api/events/check-overlap")
async def events_check_overlap(
    req: OverlapRequest, x_user_email: str | None = Header(default=None)
):
    """Would a new event at this time collide with anything already on the calendar?"""
    if not event_store:
        return _not_ready()
    candidate = Interval(
        parse_timestamp(req.start_time, settings.tz),
        parse_timestamp(req.end_time, settings.tz),
    )
    existing = await event_store.list_for_owner(_owner(x_user_email))
    result = check_overlap(candidate, existing)
    return {
        "hasOverlap": result.has_overlap,
        "conflicts": [e.model_dump(mode="json") for e in result.conflicts],
    }


@app.get("/api/events/{event_id}")
async def get_event(event_id: int, x_user_email: str | None = Header(default=None)):
    if not event_store:
        return _not_ready()
    event = await event_store.get_event(event_id, _owner(x_user_email))
    if not event:
        raise NotFoundError("event", event_id)
    return {"event": event.model_dump(mode="json")}


@app.put("/api/events/{event_id}")
async def update_event(
    event_id: int,
    body: dict = Body(...),
    x_user_email: str | None = Header(default=None),
):
    if not event_store:
        return _not_ready()
    fields = validate_event_fields(body, tz=settings.tz)
    event = await event_store.update_event(event_id, _owner(x_user_email), fields)
    if not event:
        raise NotFoundError("event", event_id)
    return {"event": event.model_dump(mode="json")}


@app.delete("/api/events/{event_id}")
async def delete_event(event_id: int, x_user_email: str | None = Header(default=None)):
    if not event_store:
        return _not_ready()
    removed = await event_store.delete_event(event_id, _owner(x_user_email))
    if removed == 0:
        raise NotFoundError("event", event_id)
    return {"success": True, "message": "Event deleted"}


# --------------------------------------------------------------------------
# Availability & schedule comparison
# --------------------------------------------------------------------------
@app.get("/api/availability")
async def availability(
    date: str = Query(...),
    work_start_hour: int = Query(default=settings.work_start_hour),
    work_end_hour: int = Query(default=settings.work_end_hour),
    x_user_email: str | None = Header(default=None),
):
    """Free slots for one day of the caller's calendar."""
    if not event_store:
        return _not_ready()
    events = await event_store.list_for_owner(_owner(x_user_email))
    day = day_availability(
        events, parse_date(date), work_start_hour, work_end_hour, settings.tz
    )
    return {
        "date": day.date.isoformat(),
        "workStartHour": work_start_hour,
        "workEndHour": work_end_hour,
        "dayEvents": [e.model_dump(mode="json") for e in day.day_events],
        "freeSlots": [s.as_dict(settings.tz) for s in day.free_slots],
        "totalFreeHours": day.total_free_hours,
    }


@app.post("/api/schedule/extract")
async def schedule_extract(req: ExtractRequest):
    """Read events off a schedule image (data URL). Best-effort: may return []."""
    if not extractor:
        return _not_ready()
    if req.date:
        day = parse_date(req.date)
    else:
        day = datetime.now(settings.tz).date()
    extracted = await extractor.extract(req.image, day.isoformat())
    return {"success": True, "extractedEvents": extracted}


@app.post("/api/schedule/compare")
async def schedule_compare(
    req: CompareRequest, x_user_email: str | None = Header(default=None)
):
    """Common free time between my calendar and the (user-reviewed) extracted events."""
    if not event_store:
        return _not_ready()
    if req.myEvents is None:
        my_events = await event_store.list_for_owner(_owner(x_user_email))
    else:
        my_events = parse_extracted_events(req.myEvents, settings.tz)

    theirs = parse_extracted_events(req.theirEvents, settings.tz)
    slots = compare_schedules(
        my_events,
        theirs,
        req.date,
        req.workStartHour,
        req.workEndHour,
        settings.tz,
        exclude_all_day=req.excludeAllDay,
    )
    total = sum(s.hours for s in slots)
    print(
        f"  [Schedule] Compare {req.date}: {len(req.theirEvents)} extracted, "
        f"{len(slots)} free slots, {total:.2f}h"
    )
    return {
        "success": True,
        "extractedEvents": [e.model_dump(mode="json") for e in theirs],
        "freeSlots": [s.as_dict(settings.tz) for s in slots],
        "totalFreeHours": total,
    }


# --------------------------------------------------------------------------
# Google Calendar import
# --------------------------------------------------------------------------
@app.post("/api/google/import")
async def google_import(
    req: GoogleImportRequest, x_user_email: str | None = Header(default=None)
):
    """Upsert already-fetched Google Calendar events by their Google id."""
    if not event_store:
        return _not_ready()
    owner = _owner(x_user_email)
    imported = []
    skipped = []
    for item in req.items:
        google_id = item.get("id")
        try:
            if not google_id:
                raise ValueError("missing id")
            fields = event_fields_from_google(item, settings.tz)
        except (KeyError, TypeError, ValueError) as e:
            # Malformed items are reported, the rest still import
            skipped.append({"id": google_id, "reason": str(e)[:200]})
            continue
        event = await event_store.upsert_external(owner, google_id, fields)
        imported.append(event.model_dump(mode="json"))
    print(f"  [Events] Google import for {owner}: {len(imported)} ok, {len(skipped)} skipped")
    return {"imported": len(imported), "events": imported, "skipped": skipped}


# --------------------------------------------------------------------------
# Conversations
# --------------------------------------------------------------------------
@app.get("/api/conversations")
async def list_conversations(x_user_email: str | None = Header(default=None)):
    if not conversation_store:
        return _not_ready()
    rows = await conversation_store.list_conversations(_owner(x_user_email))
    return [c.model_dump(mode="json") for c in rows]


@app.post("/api/conversations", status_code=201)
async def create_conversation(
    req: ConversationCreate, x_user_email: str | None = Header(default=None)
):
    if not conversation_store:
        return _not_ready()
    convo = await conversation_store.create_conversation(
        _owner(x_user_email), req.title
    )
    return convo.model_dump(mode="json")


@app.patch("/api/conversations/{conversation_id}")
async def rename_conversation(
    conversation_id: int,
    req: ConversationRename,
    x_user_email: str | None = Header(default=None),
):
    if not conversation_store:
        return _not_ready()
    if not req.title.strip():
        raise ValidationError("title is required")
    convo = await conversation_store.rename_conversation(
        conversation_id, _owner(x_user_email), req.title
    )
    if not convo:
        raise NotFoundError("conversation", conversation_id)
    return convo.model_dump(mode="json")


@app.delete("/api/conversations/{conversation_id}")
async def delete_conversation(
    conversation_id: int, x_user_email: str | None = Header(default=None)
):
    if not conversation_store:
        return _not_ready()
    removed = await conversation_store.delete_conversation(
        conversation_id, _owner(x_user_email)
    )
    if removed == 0:
        raise NotFoundError("conversation", conversation_id)
    return {"success": True}


@app.get("/api/conversations/{conversation_id}/messages")
async def list_messages(
    conversation_id: int, x_user_email: str | None = Header(default=None)
):
    if not conversation_store:
        return _not_ready()
    convo = await conversation_store.get_conversation(
        conversation_id, _owner(x_user_email)
    )
    if not convo:
        raise NotFoundError("conversation", conversation_id)
    messages = await conversation_store.list_messages(conversation_id)
    return [m.model_dump(mode="json") for m in messages]


@app.post("/api/conversations/{conversation_id}/messages")
async def post_message(
    conversation_id: int,
    req: MessageCreate,
    x_user_email: str | None = Header(default=None),
):
    """Send a message; the assistant may read the schedule or create an event."""
    if not conversation:
        return _not_ready()
    turn = await conversation.handle(
        conversation_id, _owner(x_user_email), req.content, req.image
    )
    return {
        "userMessage": turn.user_message.model_dump(mode="json"),
        "assistantMessage": turn.assistant_message.model_dump(mode="json"),
        "eventCreated": (
            turn.event_created.model_dump(mode="json")
            if turn.event_created
            else None
        ),
        "title": turn.title,
    }


@app.post("/api/chat")
async def chat(req: ChatRequest, x_user_email: str | None = Header(default=None)):
    """
    Stateless chat with tools: POST {"messages": [...]} ->
    {"replyContent": "...", "eventCreated": {...} | null}
    """
    if not conversation:
        return _not_ready()
    if not req.messages:
        raise ValidationError("messages are required")
    result = await conversation.run_tool_turn(req.messages, _owner(x_user_email))
    return result.as_dict()


# --------------------------------------------------------------------------
# Run directly: python -m brain.server
# --------------------------------------------------------------------------
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "brain.server:app",
        host="0.0.0.0",
        port=settings.port,
        reload=True,
    )
