"""
Event Store - calendar events per owner, in SQLite.
Times are stored as fixed-width UTC ISO strings so text order is time order.
"""

from datetime import UTC, date, datetime, time, timedelta, tzinfo

import aiosqlite

from store.models import ANONYMOUS_OWNER, Event, EventFields, utcnow

EVENT_COLUMNS = (
    "id, owner, title, description, location, start_time, end_time, "
    "all_day, external_id, created_at, updated_at"
)


def _to_db(value: datetime) -> str:
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def _row_to_event(row) -> Event:
    return Event(
        id=row[0],
        owner=row[1],
        title=row[2],
        description=row[3],
        location=row[4],
        start_time=datetime.fromisoformat(row[5]),
        end_time=datetime.fromisoformat(row[6]),
        all_day=bool(row[7]),
        external_id=row[8],
        created_at=datetime.fromisoformat(row[9]),
        updated_at=datetime.fromisoformat(row[10]),
    )


def _owner(owner: str | None) -> str:
    return owner or ANONYMOUS_OWNER


def event_fields_from_google(item: dict, tz: tzinfo) -> EventFields:
    """
    Map a Google Calendar API event resource to event fields.
    All-day events carry "date" instead of "dateTime" and become local midnights.
    """
    start_obj = item.get("start") or {}
    end_obj = item.get("end") or {}

    if "dateTime" in start_obj:
        start = datetime.fromisoformat(start_obj["dateTime"])
        end = datetime.fromisoformat(end_obj["dateTime"])
        all_day = False
    else:
        start = datetime.combine(
            date.fromisoformat(start_obj["date"]), time(0), tzinfo=tz
        )
        end = datetime.combine(
            date.fromisoformat(end_obj["date"]), time(0), tzinfo=tz
        )
        all_day = True

    return EventFields.model_validate(
        {
            "title": item.get("summary") or "(No title)",
            "description": item.get("description"),
            "location": item.get("location"),
            "start_time": start,
            "end_time": end,
            "all_day": all_day,
        },
        context={"tz": tz},
    )


class EventStore:
    def __init__(self, db_path: str):
        self.db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def initialize(self):
        """Create tables if they don't exist."""
        self._db = await aiosqlite.connect(self.db_path)
        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                owner TEXT NOT NULL,
                title TEXT NOT NULL,
                description TEXT,
                location TEXT,
                start_time TEXT NOT NULL,
                end_time TEXT NOT NULL,
                all_day INTEGER NOT NULL DEFAULT 0,
                external_id TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        await self._db.execute("""
            CREATE INDEX IF NOT EXISTS idx_events_owner_start
            ON events(owner, start_time)
        """)
        await self._db.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS idx_events_external
            ON events(owner, external_id)
        """)
        await self._db.commit()

    async def create_event(
        self,
        owner: str | None,
        fields: EventFields,
        external_id: str | None = None,
    ) -> Event:
        now = _to_db(utcnow())
        cursor = await self._db.execute(
            "INSERT INTO events (owner, title, description, location, start_time, "
            "end_time, all_day, external_id, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                _owner(owner),
                fields.title,
                fields.description,
                fields.location,
                _to_db(fields.start_time),
                _to_db(fields.end_time),
                int(fields.all_day),
                external_id,
                now,
                now,
            ),
        )
        await self._db.commit()
        event_id = cursor.lastrowid
        print(f"  [Events] Created #{event_id} '{fields.title}' for {_owner(owner)}")
        return await self.get_event(event_id, owner)

    async def get_event(self, event_id: int, owner: str | None) -> Event | None:
        cursor = await self._db.execute(
            f"SELECT {EVENT_COLUMNS} FROM events WHERE id = ? AND owner = ?",
            (event_id, _owner(owner)),
        )
        row = await cursor.fetchone()
        return _row_to_event(row) if row else None

    async def list_for_owner(self, owner: str | None) -> list[Event]:
        cursor = await self._db.execute(
            f"SELECT {EVENT_COLUMNS} FROM events WHERE owner = ? "
            "ORDER BY start_time ASC, id ASC",
            (_owner(owner),),
        )
        return [_row_to_event(r) for r in await cursor.fetchall()]

    async def list_for_owner_on_date(
        self, owner: str | None, day: date, tz: tzinfo
    ) -> list[Event]:
        """Events whose start falls on day in the civil timezone tz."""
        local_midnight = datetime.combine(day, time(0), tzinfo=tz)
        next_midnight = datetime.combine(
            day + timedelta(days=1), time(0), tzinfo=tz
        )
        cursor = await self._db.execute(
            f"SELECT {EVENT_COLUMNS} FROM events "
            "WHERE owner = ? AND start_time >= ? AND start_time < ? "
            "ORDER BY start_time ASC, id ASC",
            (_owner(owner), _to_db(local_midnight), _to_db(next_midnight)),
        )
        return [_row_to_event(r) for r in await cursor.fetchall()]

    async def update_event(
        self, event_id: int, owner: str | None, fields: EventFields
    ) -> Event | None:
        cursor = await self._db.execute(
            "UPDATE events SET title = ?, description = ?, location = ?, "
            "start_time = ?, end_time = ?, all_day = ?, updated_at = ? "
            "WHERE id = ? AND owner = ?",
            (
                fields.title,
                fields.description,
                fields.location,
                _to_db(fields.start_time),
                _to_db(fields.end_time),
                int(fields.all_day),
                _to_db(utcnow()),
                event_id,
                _owner(owner),
            ),
        )
        await self._db.commit()
        if cursor.rowcount == 0:
            return None
        return await self.get_event(event_id, owner)

    async def delete_event(self, event_id: int, owner: str | None) -> int:
        """Returns the number of rows removed (0 when missing or not owned)."""
        cursor = await self._db.execute(
            "DELETE FROM events WHERE id = ? AND owner = ?",
            (event_id, _owner(owner)),
        )
        await self._db.commit()
        return cursor.rowcount

    async def upsert_external(
        self, owner: str | None, external_id: str, fields: EventFields
    ) -> Event:
        """Insert or refresh an imported event, keyed by (owner, external_id)."""
        cursor = await self._db.execute(
            "SELECT id FROM events WHERE owner = ? AND external_id = ?",
            (_owner(owner), external_id),
        )
        existing = await cursor.fetchone()
        if existing:
            return await self.update_event(existing[0], owner, fields)
        return await self.create_event(owner, fields, external_id=external_id)

    async def close(self):
        if self._db:
            await self._db.close()
