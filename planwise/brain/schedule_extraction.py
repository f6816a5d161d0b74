"""
Schedule Extractor - reads events off a photo/screenshot of someone's calendar.
Uses the vision model. Best-effort: anything unreadable yields [].
The output is raw and untrusted; scheduling.compare validates it.
"""

import json
import re

from brain.config import settings
from brain.llm_client import ChatClient, first_message

EXTRACTION_PROMPT = """\
Analyze this calendar/schedule image and extract ALL visible events or appointments.

For each event you find, provide:
- title: The event name/description
- startTime: Start time in HH:MM format (24-hour, e.g., "14:00")
- endTime: End time in HH:MM format (24-hour, e.g., "15:30")
- date: The date in YYYY-MM-DD format (e.g., "2025-11-18")

Return ONLY a valid JSON array. Example:
[
  {"title": "Team Meeting", "startTime": "09:00", "endTime": "10:00", "date": "2025-11-18"}
]

If you cannot see any events or the image is unclear, return an empty array: []

IMPORTANT: Return ONLY the JSON array, no markdown formatting, no explanations."""

_HHMM = re.compile(r"^\d{1,2}:\d{2}$")


def strip_code_fences(raw: str) -> str:
    """Remove ```json ... ``` wrappers models like to add."""
    raw = raw.strip()
    if raw.startswith("```"):
        raw = raw.split("\n", 1)[-1]  # remove ```json line
        raw = raw.rsplit("```", 1)[0]  # remove closing ```
    return raw.strip()


def to_raw_events(items: list, fallback_date: str) -> list[dict]:
    """
    {title, startTime, endTime, date} -> {title, start_time, end_time}.
    Entries without usable HH:MM times are passed through as-is so the
    comparison step reports them instead of hiding them.
    """
    events = []
    for item in items:
        if not isinstance(item, dict):
            continue
        day = item.get("date") or fallback_date
        start, end = str(item.get("startTime", "")), str(item.get("endTime", ""))
        events.append({
            "title": item.get("title") or "(untitled)",
            "start_time": f"{day}T{start.zfill(5)}:00" if _HHMM.match(start) else start,
            "end_time": f"{day}T{end.zfill(5)}:00" if _HHMM.match(end) else end,
        })
    return events


class ScheduleExtractor:
    def __init__(self, client: ChatClient, model: str | None = None):
        self.client = client
        self.model = model or settings.vision_model

    async def extract(self, image_data_url: str, fallback_date: str) -> list[dict]:
        try:
            response = await self.client.complete(
                [
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": EXTRACTION_PROMPT},
                            {"type": "image_url", "image_url": {"url": image_data_url}},
                        ],
                    }
                ],
                model=self.model,
                temperature=0.1,
            )
            raw = strip_code_fences(first_message(response).get("content") or "[]")
            parsed = json.loads(raw) if raw else []
        except json.JSONDecodeError:
            print(f"[ScheduleExtractor] Non-JSON response: {raw[:300]}")
            return []
        except Exception as e:
            print(f"[ScheduleExtractor] Error: {e}")
            return []

        if not isinstance(parsed, list):
            return []
        events = to_raw_events(parsed, fallback_date)
        print(f"  [ScheduleExtractor] Parsed {len(events)} events from image")
        return events
