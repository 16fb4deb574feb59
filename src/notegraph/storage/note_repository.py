"""Repository for note rows."""
import logging
import re
from typing import List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from notegraph.config import config
from notegraph.exceptions import (AlreadyExistsError, InvalidReferenceError,
                                  NoteNotFoundError)
from notegraph.models.db_models import DBNote
from notegraph.models.schema import (Note, NoteCreate, NoteReplace,
                                     ensure_timezone_aware, utc_now)
from notegraph.storage.base import Repository
from notegraph.storage.db_errors import (is_foreign_key_violation,
                                         is_unique_violation)
from notegraph.utils import escape_like_pattern

logger = logging.getLogger(__name__)


class NoteRepository(Repository[Note]):
    """Repository for note rows.

    Reads return None when the note does not exist; writes raise
    NoteNotFoundError. Constraint failures on write are translated into
    AlreadyExistsError (title taken in the collection, or uuid taken)
    and InvalidReferenceError (unknown collection or note type).
    """

    def __init__(self, session_factory: sessionmaker):
        super().__init__(session_factory)

    def create(self, params: NoteCreate, session: Optional[Session] = None) -> Note:
        """Insert a note row.

        Args:
            params: Creation parameters. A missing collection_id falls back
                to ``config.default_collection_id``.
            session: Caller's session; the row is flushed, not committed.

        Returns:
            The stored Note, with its new id and version 1.

        Raises:
            AlreadyExistsError: If the title is taken in the collection.
            InvalidReferenceError: If the collection or note type is unknown.
        """
        collection_id = params.collection_id or config.default_collection_id
        with self.session_scope(session) as s:
            now = utc_now()
            db_note = DBNote(
                uuid=params.uuid,
                title=params.title,
                body=params.body,
                description=params.description,
                collection_id=collection_id,
                note_type_id=params.note_type_id,
                is_template=params.is_template,
                version=1,
                created_at=now,
                updated_at=now,
            )
            s.add(db_note)
            self._flush(s, params.title, collection_id, params.note_type_id)
            return self._db_note_to_model(db_note)

    def update(self, params: NoteReplace, session: Optional[Session] = None) -> Note:
        """Overwrite a note row and bump its version.

        Args:
            params: Replacement values. ``collection_id`` and ``uuid`` of
                None keep the stored values.
            session: Caller's session; the row is flushed, not committed.

        Returns:
            The updated Note.

        Raises:
            NoteNotFoundError: If no note has ``params.id``.
            AlreadyExistsError: If the new title is taken in the collection.
            InvalidReferenceError: If the collection or note type is unknown.
        """
        with self.session_scope(session) as s:
            db_note = s.get(DBNote, params.id)
            if db_note is None:
                raise NoteNotFoundError(params.id)

            db_note.title = params.title
            db_note.body = params.body
            db_note.description = params.description
            db_note.note_type_id = params.note_type_id
            db_note.is_template = params.is_template
            if params.collection_id is not None:
                db_note.collection_id = params.collection_id
            if params.uuid is not None:
                db_note.uuid = params.uuid
            db_note.version = db_note.version + 1
            db_note.updated_at = utc_now()

            self._flush(s, params.title, db_note.collection_id, params.note_type_id)
            return self._db_note_to_model(db_note)

    def delete(self, note_id: int, session: Optional[Session] = None) -> None:
        """Delete a note row; derived rows go with it through ON DELETE rules.

        Raises:
            NoteNotFoundError: If no note has ``note_id``.
        """
        with self.session_scope(session) as s:
            result = s.execute(delete(DBNote).where(DBNote.id == note_id))
            if result.rowcount == 0:
                raise NoteNotFoundError(note_id)

    def get(self, note_id: int, session: Optional[Session] = None) -> Optional[Note]:
        """Get a note by its internal id."""
        with self.session_scope(session) as s:
            db_note = s.get(DBNote, note_id)
            return self._db_note_to_model(db_note) if db_note else None

    def get_by_uuid(self, note_uuid: str) -> Optional[Note]:
        """Get a note by its external identifier."""
        with self.session_factory() as session:
            db_note = session.scalar(select(DBNote).where(DBNote.uuid == note_uuid))
            return self._db_note_to_model(db_note) if db_note else None

    def get_by_title(self, title: str, collection_id: Optional[int] = None) -> Optional[Note]:
        """Get a note by title within one collection (default collection if omitted)."""
        collection_id = collection_id or config.default_collection_id
        with self.session_factory() as session:
            db_note = session.scalar(
                select(DBNote).where(
                    (DBNote.title == title) & (DBNote.collection_id == collection_id)
                )
            )
            return self._db_note_to_model(db_note) if db_note else None

    def get_by_title_global(self, title: str, session: Optional[Session] = None) -> Optional[Note]:
        """Get a note by exact title across all collections.

        Titles are only unique per collection; when several notes share
        the title, the one with the lowest id wins.
        """
        with self.session_scope(session) as s:
            db_note = s.scalar(
                select(DBNote).where(DBNote.title == title).order_by(DBNote.id).limit(1)
            )
            return self._db_note_to_model(db_note) if db_note else None

    def find_id_by_title_global(self, title: str, session: Optional[Session] = None) -> Optional[int]:
        """Like get_by_title_global, returning only the id."""
        with self.session_scope(session) as s:
            return s.scalar(
                select(DBNote.id).where(DBNote.title == title).order_by(DBNote.id).limit(1)
            )

    def exists(self, note_id: int, session: Optional[Session] = None) -> bool:
        """Check whether a note row exists."""
        with self.session_scope(session) as s:
            return s.scalar(select(DBNote.id).where(DBNote.id == note_id)) is not None

    def count(self, collection_id: Optional[int] = None) -> int:
        """Count notes, optionally within one collection."""
        with self.session_factory() as session:
            query = select(func.count(DBNote.id))
            if collection_id is not None:
                query = query.where(DBNote.collection_id == collection_id)
            return session.scalar(query) or 0

    def list_ids(self, collection_id: Optional[int] = None) -> List[int]:
        """List note ids in id order, optionally within one collection."""
        with self.session_factory() as session:
            query = select(DBNote.id).order_by(DBNote.id)
            if collection_id is not None:
                query = query.where(DBNote.collection_id == collection_id)
            return list(session.scalars(query).all())

    def next_untitled_title(
        self,
        collection_id: int,
        prefix: Optional[str] = None,
        session: Optional[Session] = None,
    ) -> str:
        """Next free "<prefix> N" title in a collection.

        N is one more than the highest number already used with the
        prefix in that collection, so it is stable across restarts and
        shared by every process using the database.
        """
        prefix = prefix or config.untitled_prefix
        pattern = re.compile(rf"^{re.escape(prefix)} (\d+)$")
        with self.session_scope(session) as s:
            titles = s.scalars(
                select(DBNote.title).where(
                    (DBNote.collection_id == collection_id)
                    & DBNote.title.like(f"{escape_like_pattern(prefix)} %", escape="\\")
                )
            ).all()
        highest = 0
        for title in titles:
            match = pattern.match(title)
            if match:
                highest = max(highest, int(match.group(1)))
        return f"{prefix} {highest + 1}"

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _flush(
        session: Session,
        title: str,
        collection_id: int,
        note_type_id: Optional[int],
    ) -> None:
        """Flush pending note changes, translating constraint failures."""
        try:
            session.flush()
        except IntegrityError as e:
            if is_unique_violation(e):
                logger.info(f"Note title '{title}' already exists in collection {collection_id}")
                raise AlreadyExistsError(
                    f"A note titled '{title}' already exists in collection {collection_id}",
                    title=title,
                    collection_id=collection_id,
                    original_error=e,
                ) from e
            if is_foreign_key_violation(e):
                raise InvalidReferenceError(
                    "Unknown collection or note type",
                    field="collection_id/note_type_id",
                    value=f"{collection_id}/{note_type_id}",
                    original_error=e,
                ) from e
            raise

    @staticmethod
    def _db_note_to_model(db_note: DBNote) -> Note:
        return Note(
            id=db_note.id,
            uuid=db_note.uuid,
            title=db_note.title,
            body=db_note.body,
            description=db_note.description,
            collection_id=db_note.collection_id,
            note_type_id=db_note.note_type_id,
            is_template=bool(db_note.is_template),
            version=db_note.version,
            created_at=ensure_timezone_aware(db_note.created_at),
            updated_at=ensure_timezone_aware(db_note.updated_at),
        )
