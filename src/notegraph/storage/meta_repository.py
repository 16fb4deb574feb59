"""Repository for note metadata entries."""
import logging
from typing import Dict, List, Mapping, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, sessionmaker

from notegraph.models.db_models import DBNoteMeta
from notegraph.models.schema import MetaEntry, utc_now
from notegraph.storage.base import Repository

logger = logging.getLogger(__name__)


class MetaRepository(Repository[MetaEntry]):
    """Repository for the ``note_meta`` key/value rows of notes."""

    def __init__(self, session_factory: sessionmaker):
        super().__init__(session_factory)

    def insert_many(
        self,
        note_id: int,
        entries: Mapping[str, Optional[str]],
        session: Optional[Session] = None,
    ) -> int:
        """Insert one row per key for a note.

        Returns:
            Number of rows inserted.
        """
        if not entries:
            return 0
        now = utc_now()
        with self.session_scope(session) as s:
            s.add_all(
                DBNoteMeta(
                    note_id=note_id, key=key, value=value, created_at=now, updated_at=now
                )
                for key, value in entries.items()
            )
            s.flush()
        return len(entries)

    def delete_for_note(self, note_id: int, session: Optional[Session] = None) -> int:
        """Delete every metadata row of a note.

        Returns:
            Number of rows deleted.
        """
        with self.session_scope(session) as s:
            result = s.execute(delete(DBNoteMeta).where(DBNoteMeta.note_id == note_id))
            return result.rowcount or 0

    def get_for_note(self, note_id: int) -> List[MetaEntry]:
        """Get the metadata rows of a note, ordered by key."""
        with self.session_factory() as session:
            rows = session.scalars(
                select(DBNoteMeta)
                .where(DBNoteMeta.note_id == note_id)
                .order_by(DBNoteMeta.key)
            ).all()
            return [self._to_model(row) for row in rows]

    def get_dict_for_note(self, note_id: int) -> Dict[str, Optional[str]]:
        """Get the metadata of a note as a key -> value mapping."""
        return {entry.key: entry.value for entry in self.get_for_note(note_id)}

    def find_by_key(self, key: str, value: Optional[str] = None) -> List[MetaEntry]:
        """Find metadata rows with ``key``, optionally with an exact value."""
        with self.session_factory() as session:
            query = select(DBNoteMeta).where(DBNoteMeta.key == key)
            if value is not None:
                query = query.where(DBNoteMeta.value == value)
            rows = session.scalars(query.order_by(DBNoteMeta.note_id)).all()
            return [self._to_model(row) for row in rows]

    def distinct_keys(self) -> List[str]:
        """All metadata keys in use, sorted."""
        with self.session_factory() as session:
            return list(
                session.scalars(
                    select(DBNoteMeta.key).distinct().order_by(DBNoteMeta.key)
                ).all()
            )

    @staticmethod
    def _to_model(row: DBNoteMeta) -> MetaEntry:
        return MetaEntry(note_id=row.note_id, key=row.key, value=row.value)
