"""Record store: entries, processing jobs and user preferences on top of SQLAlchemy."""

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from health_diary.models.entry import ALLOWED_TRANSITIONS, Entry
from health_diary.models.processing_job import ProcessingJob
from health_diary.models.user import DEFAULT_TONE, DEFAULT_TOPICS, User, UserTopic

STATUS_COLUMNS = {
    Entry: ("transcription_status", "analysis_status"),
    ProcessingJob: ("status",),
}


@dataclass
class UserPreferences:
    """Per-user analysis parameters."""

    user_id: str
    tone: str = DEFAULT_TONE
    topics: list[str] = field(default_factory=list)


class RecordStore:
    """Point lookups, filtered scans and single-row conditional updates.

    Every method opens its own unit of work unless a session is passed in via ``db``,
    in which case the caller owns the commit (see ``unit_of_work``).
    """

    def __init__(self, session_factory: Callable[[], Session], clock: Callable[[], datetime] = datetime.utcnow) -> None:
        self._session_factory = session_factory
        self._clock = clock

    @contextmanager
    def unit_of_work(self) -> Iterator[Session]:
        """Open a session that commits on success and rolls back on any exception."""
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    @contextmanager
    def _use(self, db: Session | None) -> Iterator[Session]:
        if db is not None:
            yield db
            return
        with self.unit_of_work() as own:
            yield own

    # --- Entries ---

    def create_entry(
        self,
        owner_id: str,
        audio_ref: str,
        occurred_at: datetime | None = None,
        db: Session | None = None,
    ) -> Entry:
        """Insert a new entry with both stages pending."""
        now = self._clock()
        entry = Entry(
            owner_id=owner_id,
            audio_ref=audio_ref,
            occurred_at=occurred_at or now,
            created_at=now,
            updated_at=now,
        )
        with self._use(db) as s:
            s.add(entry)
            s.flush()
        return entry

    def get_entry(self, entry_id: str, owner_id: str | None = None) -> Entry | None:
        """Get an entry by ID, optionally scoped to its owner."""
        with self.unit_of_work() as db:
            query = db.query(Entry).filter(Entry.id == entry_id)
            if owner_id is not None:
                query = query.filter(Entry.owner_id == owner_id)
            return query.first()

    def list_entries(self, owner_id: str, limit: int = 20, offset: int = 0) -> tuple[list[Entry], int]:
        """Get a page of an owner's entries, newest event first. Returns (items, total_count)."""
        with self.unit_of_work() as db:
            query = db.query(Entry).filter(Entry.owner_id == owner_id)
            total = query.count()
            items = (
                query.order_by(Entry.occurred_at.desc(), Entry.created_at.desc()).offset(offset).limit(limit).all()
            )
            return items, total

    def get_entries_by_status(
        self,
        transcription_status: str | None = None,
        analysis_status: str | None = None,
        with_transcript: bool = False,
    ) -> list[Entry]:
        """Scan entries matching the given stage statuses (no ordering guarantee)."""
        with self.unit_of_work() as db:
            query = db.query(Entry)
            if transcription_status is not None:
                query = query.filter(Entry.transcription_status == transcription_status)
            if analysis_status is not None:
                query = query.filter(Entry.analysis_status == analysis_status)
            if with_transcript:
                query = query.filter(Entry.transcript_ref.isnot(None))
            return query.all()

    def update_entry(
        self,
        entry_id: str,
        fields: dict[str, Any],
        expected: dict[str, Any] | None = None,
        db: Session | None = None,
    ) -> bool:
        """Apply ``fields`` to one entry in a single UPDATE.

        ``expected`` adds equality guards to the WHERE clause; returns False when no row
        matched (entry gone or another writer moved it first). ``updated_at`` is always bumped.
        """
        return self._update_row(Entry, entry_id, fields, expected, db)

    def claim_entry_stage(
        self,
        entry_id: str,
        stage: str,
        from_status: str,
        to_status: str,
        requires: dict[str, Any] | None = None,
        db: Session | None = None,
    ) -> bool:
        """Move one stage status from ``from_status`` to ``to_status`` if nobody else did.

        ``requires`` adds further equality guards, e.g. the other stage's status.
        """
        column = f"{stage}_status"
        expected = {**(requires or {}), column: from_status}
        return self.update_entry(entry_id, {column: to_status}, expected=expected, db=db)

    def delete_entry(self, entry_id: str, owner_id: str | None = None) -> Entry | None:
        """Delete an entry and its processing jobs. Returns the deleted entry, or None if absent."""
        with self.unit_of_work() as db:
            query = db.query(Entry).filter(Entry.id == entry_id)
            if owner_id is not None:
                query = query.filter(Entry.owner_id == owner_id)
            entry = query.first()
            if entry is None:
                return None
            db.query(ProcessingJob).filter(ProcessingJob.entry_id == entry_id).delete(synchronize_session=False)
            db.delete(entry)
            return entry

    # --- Processing jobs ---

    def create_job(self, fields: dict[str, Any], db: Session | None = None) -> ProcessingJob:
        """Insert a processing job row."""
        now = self._clock()
        job = ProcessingJob(created_at=now, updated_at=now, **fields)
        with self._use(db) as s:
            s.add(job)
            s.flush()
        return job

    def get_job(self, job_id: str) -> ProcessingJob | None:
        with self.unit_of_work() as db:
            return db.get(ProcessingJob, job_id)

    def update_job(
        self,
        job_id: str,
        fields: dict[str, Any],
        expected: dict[str, Any] | None = None,
        db: Session | None = None,
    ) -> bool:
        """Apply ``fields`` to one job in a single UPDATE; same contract as ``update_entry``."""
        return self._update_row(ProcessingJob, job_id, fields, expected, db)

    def get_jobs_by_status(self, job_type: str, status: str) -> list[ProcessingJob]:
        with self.unit_of_work() as db:
            return (
                db.query(ProcessingJob)
                .filter(ProcessingJob.job_type == job_type, ProcessingJob.status == status)
                .all()
            )

    def get_entry_jobs(self, entry_id: str) -> list[ProcessingJob]:
        with self.unit_of_work() as db:
            return (
                db.query(ProcessingJob)
                .filter(ProcessingJob.entry_id == entry_id)
                .order_by(ProcessingJob.created_at)
                .all()
            )

    def increment_poll_errors(self, job_id: str, error_message: str) -> int:
        """Count one failed status check on a job. Returns the new count."""
        with self.unit_of_work() as db:
            db.execute(
                update(ProcessingJob)
                .where(ProcessingJob.id == job_id)
                .values(
                    poll_error_count=ProcessingJob.poll_error_count + 1,
                    error_message=error_message,
                    updated_at=self._clock(),
                )
            )
            return db.execute(select(ProcessingJob.poll_error_count).where(ProcessingJob.id == job_id)).scalar_one()

    # --- Reporting ---

    def processing_stats(self, owner_id: str) -> list[dict[str, Any]]:
        """Entry counts grouped by (transcription_status, analysis_status)."""
        with self.unit_of_work() as db:
            rows = (
                db.query(Entry.transcription_status, Entry.analysis_status, func.count(Entry.id))
                .filter(Entry.owner_id == owner_id)
                .group_by(Entry.transcription_status, Entry.analysis_status)
                .all()
            )
            return [
                {"transcription_status": t_status, "analysis_status": a_status, "count": count}
                for t_status, a_status, count in rows
            ]

    def recent_jobs(self, owner_id: str, limit: int = 10) -> list[ProcessingJob]:
        with self.unit_of_work() as db:
            return (
                db.query(ProcessingJob)
                .join(Entry, ProcessingJob.entry_id == Entry.id)
                .filter(Entry.owner_id == owner_id)
                .order_by(ProcessingJob.updated_at.desc())
                .limit(limit)
                .all()
            )

    # --- Users ---

    def ensure_user(self, user_id: str, email: str | None = None, display_name: str | None = None) -> User:
        """Get the user's profile row, creating it with default preferences on first sight."""
        with self.unit_of_work() as db:
            user = db.get(User, user_id)
            if user is not None:
                return user
            now = self._clock()
            user = User(
                id=user_id,
                email=email,
                display_name=display_name,
                interaction_style=DEFAULT_TONE,
                created_at=now,
                updated_at=now,
            )
            db.add(user)
            for topic in DEFAULT_TOPICS:
                db.add(UserTopic(user_id=user_id, topic=topic, enabled=True, created_at=now))
            db.flush()
            return user

    def get_user_preferences(self, user_id: str) -> UserPreferences:
        """Load tone and enabled topics. Unknown users get the defaults' tone and no topics."""
        with self.unit_of_work() as db:
            user = db.get(User, user_id)
            topics = (
                db.query(UserTopic.topic)
                .filter(UserTopic.user_id == user_id, UserTopic.enabled.is_(True))
                .order_by(UserTopic.id)
                .all()
            )
            return UserPreferences(
                user_id=user_id,
                tone=user.interaction_style if user else DEFAULT_TONE,
                topics=[t for (t,) in topics],
            )

    def set_user_preferences(self, user_id: str, tone: str | None = None, topics: list[str] | None = None) -> None:
        """Update tone and/or replace the enabled topic set."""
        with self.unit_of_work() as db:
            now = self._clock()
            if tone is not None:
                db.query(User).filter(User.id == user_id).update({"interaction_style": tone, "updated_at": now})
            if topics is not None:
                existing = {t.topic: t for t in db.query(UserTopic).filter(UserTopic.user_id == user_id).all()}
                for name, row in existing.items():
                    row.enabled = name in topics
                for name in topics:
                    if name not in existing:
                        db.add(UserTopic(user_id=user_id, topic=name, enabled=True, created_at=now))

    # --- Internal ---

    def _update_row(
        self,
        model: type,
        row_id: str,
        fields: dict[str, Any],
        expected: dict[str, Any] | None,
        db: Session | None,
    ) -> bool:
        expected = expected or {}
        for column in STATUS_COLUMNS[model]:
            if column in fields and column in expected:
                if fields[column] not in ALLOWED_TRANSITIONS[expected[column]]:
                    raise ValueError(f"Illegal {column} transition {expected[column]} -> {fields[column]}")
        stmt = update(model).where(model.id == row_id)
        for column, value in expected.items():
            stmt = stmt.where(getattr(model, column).is_(None) if value is None else getattr(model, column) == value)
        stmt = stmt.values(**fields, updated_at=self._clock()).execution_options(synchronize_session=False)
        with self._use(db) as s:
            result = s.execute(stmt)
        return result.rowcount == 1
