"""Calendar store.

Keyed access to calendar entries. The materializer only uses ``upsert_by_key``,
``soft_delete_by_id`` and the two finders; ``record_manual_edit`` is the write
path for coach/athlete edits and is what moves an entry to MANUALLY_EDITED.
"""

from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session

from plan_engine.db.models import CalendarEntry, EntryEditState
from plan_engine.errors import NotFoundError, ValidationError

MANUALLY_EDITABLE_FIELDS = frozenset(
    {
        "date",
        "planned_start_time_local",
        "discipline",
        "title",
        "duration_minutes",
        "notes",
        "workout_detail",
        "status",
    }
)


def _assign(entry: CalendarEntry, fields: Mapping[str, Any]) -> bool:
    """Set only the attributes whose value differs. Returns True if anything changed."""
    changed = False
    for name, value in fields.items():
        if getattr(entry, name) != value:
            setattr(entry, name, value)
            changed = True
    return changed


class SqlCalendarStore:
    """Calendar store backed by the calendar_entries table."""

    def __init__(self, db: Session):
        self.db = db

    def find_by_source_ids(self, athlete_id: str, origin: str, source_ids: Iterable[str]) -> dict[str, CalendarEntry]:
        """Load entries (active and soft-deleted) for the given idempotency keys."""
        keys = list(source_ids)
        if not keys:
            return {}
        rows = self.db.execute(
            select(CalendarEntry).where(
                CalendarEntry.athlete_id == athlete_id,
                CalendarEntry.origin == origin,
                CalendarEntry.source_id.in_(keys),
            )
        ).scalars()
        return {row.source_id: row for row in rows}

    def find_active_by_origin(self, athlete_id: str, origin: str, source_prefix: str) -> list[CalendarEntry]:
        """Load active entries of an origin whose source_id starts with source_prefix."""
        return list(
            self.db.execute(
                select(CalendarEntry)
                .where(
                    CalendarEntry.athlete_id == athlete_id,
                    CalendarEntry.origin == origin,
                    CalendarEntry.source_id.startswith(source_prefix, autoescape=True),
                    CalendarEntry.deleted_at.is_(None),
                )
                .order_by(CalendarEntry.date, CalendarEntry.id)
            ).scalars()
        )

    def upsert_by_key(
        self,
        athlete_id: str,
        origin: str,
        source_id: str,
        create_fields: Mapping[str, Any],
        update_fields: Mapping[str, Any],
        preloaded: Mapping[str, CalendarEntry] | None = None,
    ) -> tuple[CalendarEntry, bool]:
        """Insert or update the entry for (athlete_id, origin, source_id).

        Args:
            athlete_id: Athlete owning the entry
            origin: Origin tag
            source_id: Idempotency key
            create_fields: Column values for a new entry
            update_fields: Column values applied to an existing entry
            preloaded: Entries already loaded by source_id (see find_by_source_ids).
                When given, a key missing from it is treated as new and no lookup runs.

        Returns:
            Tuple of (entry, created)

        Raises:
            sqlalchemy.exc.IntegrityError: If a concurrent writer inserted the same key first
        """
        if preloaded is not None:
            existing = preloaded.get(source_id)
        else:
            existing = self.db.execute(
                select(CalendarEntry).where(
                    CalendarEntry.athlete_id == athlete_id,
                    CalendarEntry.origin == origin,
                    CalendarEntry.source_id == source_id,
                )
            ).scalar_one_or_none()

        if existing is None:
            entry = CalendarEntry(athlete_id=athlete_id, origin=origin, source_id=source_id, **create_fields)
            self.db.add(entry)
            self.db.flush()
            return entry, True

        _assign(existing, update_fields)
        return existing, False

    def soft_delete_by_id(self, entry_id: str, actor: str | None, timestamp: datetime) -> bool:
        """Mark an entry deleted. Returns False if it is missing or already deleted."""
        entry = self.db.get(CalendarEntry, entry_id)
        if entry is None or entry.deleted_at is not None:
            return False
        entry.deleted_at = timestamp
        entry.deleted_by = actor
        return True

    def record_manual_edit(self, entry_id: str, actor: str, **changes: Any) -> CalendarEntry:
        """Apply a coach/athlete edit and hand content ownership to them.

        Raises:
            NotFoundError: If the entry does not exist
            ValidationError: If a non-editable field is passed
        """
        unknown = set(changes) - MANUALLY_EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}", code="INVALID_EDIT")

        entry = self.db.get(CalendarEntry, entry_id)
        if entry is None:
            raise NotFoundError("Calendar entry not found.", details={"entry_id": entry_id})

        _assign(entry, changes)
        entry.edit_state = EntryEditState.MANUALLY_EDITED
        self.db.flush()
        logger.info("Calendar entry manually edited", entry_id=entry_id, actor=actor, fields=sorted(changes))
        return entry
