"""Repository for tag storage and retrieval."""
import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy import delete, exists, func, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session, sessionmaker

from notegraph.models.db_models import DBTag, note_tags
from notegraph.models.schema import Tag
from notegraph.storage.base import Repository

logger = logging.getLogger(__name__)


class TagRepository(Repository[Tag]):
    """Repository for tags and their association with notes.

    Tag rows are shared by every note using the name and are never
    removed when the last note stops using them; see delete_unused.
    """

    def __init__(self, session_factory: sessionmaker):
        super().__init__(session_factory)

    def get_or_create(self, tag_name: str, session: Optional[Session] = None) -> Tag:
        """Get an existing tag or create a new one.

        A concurrent insert of the same name is treated as "already
        exists": the insert is ignored and the existing row returned.

        Args:
            tag_name: The name of the tag.
            session: Caller's session; nothing is committed when given.

        Returns:
            The Tag, with its id.
        """
        with self.session_scope(session) as s:
            db_tag = s.scalar(select(DBTag).where(DBTag.name == tag_name))
            if db_tag is None:
                s.execute(
                    sqlite_insert(DBTag)
                    .values(name=tag_name)
                    .on_conflict_do_nothing(index_elements=["name"])
                )
                db_tag = s.scalar(select(DBTag).where(DBTag.name == tag_name))
            return Tag(id=db_tag.id, name=db_tag.name)

    def add_to_note(
        self, note_id: int, tag_names: Iterable[str], session: Optional[Session] = None
    ) -> List[Tag]:
        """Associate a note with each named tag, creating tags as needed.

        Returns:
            The tags now associated with the note through this call.
        """
        added: List[Tag] = []
        with self.session_scope(session) as s:
            for name in tag_names:
                tag = self.get_or_create(name, session=s)
                s.execute(
                    sqlite_insert(note_tags)
                    .values(note_id=note_id, tag_id=tag.id)
                    .on_conflict_do_nothing()
                )
                added.append(tag)
        return added

    def delete_for_note(self, note_id: int, session: Optional[Session] = None) -> int:
        """Remove every tag association of a note (tag rows are kept).

        Returns:
            Number of associations removed.
        """
        with self.session_scope(session) as s:
            result = s.execute(delete(note_tags).where(note_tags.c.note_id == note_id))
            return result.rowcount or 0

    def get(self, tag_name: str) -> Optional[Tag]:
        """Get a tag by name.

        Returns:
            The Tag object if found, None otherwise.
        """
        with self.session_factory() as session:
            db_tag = session.scalar(select(DBTag).where(DBTag.name == tag_name))
            if not db_tag:
                return None
            return Tag(id=db_tag.id, name=db_tag.name)

    def get_all(self) -> List[Tag]:
        """Get all tags, ordered by name."""
        with self.session_factory() as session:
            db_tags = session.scalars(select(DBTag).order_by(DBTag.name)).all()
            return [Tag(id=tag.id, name=tag.name) for tag in db_tags]

    def get_for_note(self, note_id: int, session: Optional[Session] = None) -> List[Tag]:
        """Get the tags of a note, ordered by name."""
        with self.session_scope(session) as s:
            db_tags = s.scalars(
                select(DBTag)
                .join(note_tags, DBTag.id == note_tags.c.tag_id)
                .where(note_tags.c.note_id == note_id)
                .order_by(DBTag.name)
            ).all()
            return [Tag(id=tag.id, name=tag.name) for tag in db_tags]

    def get_with_counts(self) -> Dict[str, int]:
        """Get all tags with their usage counts.

        Returns:
            Dictionary mapping tag names to their note counts.
        """
        with self.session_factory() as session:
            result = session.execute(
                select(DBTag.name, func.count(note_tags.c.note_id))
                .select_from(DBTag)
                .outerjoin(note_tags, DBTag.id == note_tags.c.tag_id)
                .group_by(DBTag.name)
            ).all()

            return {name: count for name, count in result}

    def find_note_ids_by_tag(self, tag_name: str) -> List[int]:
        """Find all note IDs that have a specific tag."""
        with self.session_factory() as session:
            result = session.execute(
                select(note_tags.c.note_id)
                .select_from(note_tags)
                .join(DBTag, note_tags.c.tag_id == DBTag.id)
                .where(DBTag.name == tag_name)
                .order_by(note_tags.c.note_id)
            ).all()

            return [row[0] for row in result]

    def find_note_ids_by_tags(self, tag_names: List[str], match_all: bool = False) -> List[int]:
        """Find note IDs that have any or all of the specified tags.

        Args:
            tag_names: List of tag names.
            match_all: If True, only return notes that have ALL tags.
                      If False, return notes that have ANY of the tags.

        Returns:
            List of note IDs in ascending order.
        """
        names = list(dict.fromkeys(tag_names))
        if not names:
            return []

        with self.session_factory() as session:
            query = (
                select(note_tags.c.note_id)
                .select_from(note_tags)
                .join(DBTag, note_tags.c.tag_id == DBTag.id)
                .where(DBTag.name.in_(names))
                .group_by(note_tags.c.note_id)
                .order_by(note_tags.c.note_id)
            )
            if match_all:
                query = query.having(func.count(DBTag.id) == len(names))
            return [row[0] for row in session.execute(query).all()]

    def delete_unused(self) -> int:
        """Delete tags that no note uses.

        Returns:
            Number of tags deleted.
        """
        with self.session_scope() as session:
            result = session.execute(
                delete(DBTag).where(
                    ~exists().where(note_tags.c.tag_id == DBTag.id)
                )
            )
            count = result.rowcount or 0
        if count:
            logger.info(f"Deleted {count} unused tags")
        return count
