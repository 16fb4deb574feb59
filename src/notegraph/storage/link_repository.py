"""Repository for references between notes and their resolution state."""
import logging
from typing import List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from notegraph.config import config
from notegraph.exceptions import (InvalidReferenceError, LinkAlreadyExistsError,
                                  LinkNotFoundError, LinkStateError)
from notegraph.models.db_models import DBLink, DBNote
from notegraph.models.schema import Link, LinkState, ensure_timezone_aware, utc_now
from notegraph.storage.base import Repository
from notegraph.storage.db_errors import (is_foreign_key_violation,
                                         is_unique_violation)
from notegraph.utils import escape_like_pattern

logger = logging.getLogger(__name__)


class LinkRepository(Repository[Link]):
    """Repository for the ``notes_links`` table.

    Links are created either resolved (the target note is known) or
    pending (only the target title is known). The only transitions are
    pending -> resolved and pending -> broken; nothing ever returns a
    link to pending.
    """

    def __init__(self, session_factory: sessionmaker):
        super().__init__(session_factory)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_resolved(
        self,
        source_id: int,
        target_id: int,
        display_text: Optional[str] = None,
        is_embed: bool = False,
        session: Optional[Session] = None,
    ) -> Link:
        """Create a link whose target note is known.

        Args:
            source_id: ID of the note containing the reference.
            target_id: ID of the referenced note.
            display_text: Alias shown instead of the target title.
            is_embed: Whether the reference embeds the target.
            session: Caller's session; the row is flushed, not committed.

        Returns:
            The created Link.

        Raises:
            LinkAlreadyExistsError: If the same reference already exists.
            InvalidReferenceError: If either note does not exist.
        """
        with self.session_scope(session) as s:
            db_link = DBLink(
                src_id=source_id,
                dest_id=target_id,
                dest_title=None,
                display_text=display_text,
                is_embed=is_embed,
                state=LinkState.RESOLVED.value,
            )
            self._insert(s, db_link)
            return self._db_link_to_model(db_link)

    def create_pending(
        self,
        source_id: int,
        target_title: str,
        display_text: Optional[str] = None,
        is_embed: bool = False,
        session: Optional[Session] = None,
    ) -> Link:
        """Create a link to a title that has no note yet.

        Args:
            source_id: ID of the note containing the reference.
            target_title: The referenced title, kept until resolution.
            display_text: Alias shown instead of the target title.
            is_embed: Whether the reference embeds the target.
            session: Caller's session; the row is flushed, not committed.

        Returns:
            The created Link in PENDING state.
        """
        with self.session_scope(session) as s:
            db_link = DBLink(
                src_id=source_id,
                dest_id=None,
                dest_title=target_title,
                display_text=display_text,
                is_embed=is_embed,
                state=LinkState.PENDING.value,
            )
            self._insert(s, db_link)
            return self._db_link_to_model(db_link)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def resolve(self, link_id: int, target_id: int, session: Optional[Session] = None) -> Link:
        """Move a pending link to RESOLVED.

        Sets the target note id and clears the stored title.

        Raises:
            LinkNotFoundError: If the link does not exist.
            LinkStateError: If the link is not pending.
            InvalidReferenceError: If the target note does not exist.
            LinkAlreadyExistsError: If the source already has a resolved link
                to the target with the same display text and embed flag.
        """
        with self.session_scope(session) as s:
            db_link = self._get_for_transition(s, link_id, LinkState.RESOLVED)
            if s.get(DBNote, target_id) is None:
                raise InvalidReferenceError(
                    f"Cannot resolve link {link_id} to missing note {target_id}",
                    field="target_id",
                    value=target_id,
                )
            duplicate = self.find_resolved(
                db_link.src_id, target_id, db_link.display_text, bool(db_link.is_embed), session=s
            )
            if duplicate is not None:
                raise LinkAlreadyExistsError(
                    f"Note {db_link.src_id} already links to note {target_id} as link {duplicate.id}",
                    source_id=db_link.src_id,
                    target=target_id,
                )
            db_link.dest_id = target_id
            db_link.dest_title = None
            db_link.state = LinkState.RESOLVED.value
            db_link.updated_at = utc_now()
            self._flush(s, db_link.src_id, target_id)
            return self._db_link_to_model(db_link)

    def mark_broken(self, link_id: int, session: Optional[Session] = None) -> Link:
        """Move a pending link to BROKEN, keeping its target title.

        Raises:
            LinkNotFoundError: If the link does not exist.
            LinkStateError: If the link is not pending.
        """
        with self.session_scope(session) as s:
            db_link = self._get_for_transition(s, link_id, LinkState.BROKEN)
            db_link.state = LinkState.BROKEN.value
            db_link.updated_at = utc_now()
            s.flush()
            return self._db_link_to_model(db_link)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, link_id: int, session: Optional[Session] = None) -> Optional[Link]:
        """Get a link by id."""
        with self.session_scope(session) as s:
            db_link = s.get(DBLink, link_id)
            return self._db_link_to_model(db_link) if db_link else None

    def list_all(self) -> List[Link]:
        """Get every link in id order."""
        return self._list(select(DBLink))

    def list_pending(self, limit: Optional[int] = None, session: Optional[Session] = None) -> List[Link]:
        """Get pending links in id order, at most ``limit`` of them.

        ``limit`` defaults to ``config.pending_sweep_limit``.
        """
        limit = limit or config.pending_sweep_limit
        query = select(DBLink).where(DBLink.state == LinkState.PENDING.value).limit(limit)
        return self._list(query, session)

    def find_pending_by_title(self, title: str, session: Optional[Session] = None) -> List[Link]:
        """Get pending links whose target title is exactly ``title``."""
        return self._list(
            select(DBLink).where(
                (DBLink.state == LinkState.PENDING.value)
                & DBLink.dest_id.is_(None)
                & (DBLink.dest_title == title)
            ),
            session,
        )

    def find_resolved(
        self,
        source_id: int,
        target_id: int,
        display_text: Optional[str],
        is_embed: bool,
        session: Optional[Session] = None,
    ) -> Optional[Link]:
        """Get the resolved link from a source to a target with this display text and embed flag."""
        display_match = (
            DBLink.display_text.is_(None)
            if display_text is None
            else DBLink.display_text == display_text
        )
        with self.session_scope(session) as s:
            db_link = s.scalar(
                select(DBLink)
                .where(
                    (DBLink.src_id == source_id)
                    & (DBLink.dest_id == target_id)
                    & (DBLink.state == LinkState.RESOLVED.value)
                    & (DBLink.is_embed == is_embed)
                    & display_match
                )
                .order_by(DBLink.id)
                .limit(1)
            )
            return self._db_link_to_model(db_link) if db_link else None

    def count_pending(self) -> int:
        """Count pending links."""
        return self._count(DBLink.state == LinkState.PENDING.value)

    def list_broken(self) -> List[Link]:
        """Get broken links in id order."""
        return self._list(select(DBLink).where(DBLink.state == LinkState.BROKEN.value))

    def count_broken(self) -> int:
        """Count broken links."""
        return self._count(DBLink.state == LinkState.BROKEN.value)

    def list_orphaned(self) -> List[Link]:
        """Get resolved links whose target note has since been deleted.

        Deleting a note sets ``dest_id`` to NULL on links pointing at it
        and leaves their state untouched.
        """
        return self._list(
            select(DBLink).where(
                (DBLink.state == LinkState.RESOLVED.value) & DBLink.dest_id.is_(None)
            )
        )

    def list_outgoing(self, source_id: int) -> List[Link]:
        """Get all links whose source is ``source_id``, in every state."""
        return self._list(select(DBLink).where(DBLink.src_id == source_id))

    def list_incoming(self, target_id: int) -> List[Link]:
        """Get resolved links pointing at ``target_id`` (backlinks)."""
        return self._list(select(DBLink).where(DBLink.dest_id == target_id))

    def search_by_display_text(self, pattern: str) -> List[Link]:
        """Get links whose display text contains ``pattern``.

        LIKE wildcards in ``pattern`` are matched literally.
        """
        like = f"%{escape_like_pattern(pattern)}%"
        return self._list(
            select(DBLink).where(DBLink.display_text.like(like, escape="\\"))
        )

    def delete(self, link_id: int, session: Optional[Session] = None) -> None:
        """Delete one link.

        Raises:
            LinkNotFoundError: If the link does not exist.
        """
        with self.session_scope(session) as s:
            result = s.execute(delete(DBLink).where(DBLink.id == link_id))
            if result.rowcount == 0:
                raise LinkNotFoundError(link_id)

    def delete_by_source(self, source_id: int, session: Optional[Session] = None) -> int:
        """Delete every link whose source is ``source_id``.

        Returns:
            Number of links deleted.
        """
        with self.session_scope(session) as s:
            result = s.execute(delete(DBLink).where(DBLink.src_id == source_id))
            return result.rowcount or 0

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _list(self, query, session: Optional[Session] = None) -> List[Link]:
        query = query.order_by(DBLink.id)
        with self.session_scope(session) as s:
            return [self._db_link_to_model(db_link) for db_link in s.scalars(query).all()]

    def _count(self, condition) -> int:
        with self.session_factory() as session:
            return session.scalar(select(func.count(DBLink.id)).where(condition)) or 0

    @staticmethod
    def _get_for_transition(session: Session, link_id: int, requested: LinkState) -> DBLink:
        db_link = session.get(DBLink, link_id)
        if db_link is None:
            raise LinkNotFoundError(link_id)
        if db_link.state != LinkState.PENDING.value:
            raise LinkStateError(
                f"Link {link_id} is {db_link.state}; only pending links can become {requested.value}",
                link_id=link_id,
                current_state=db_link.state,
                requested_state=requested.value,
            )
        return db_link

    def _insert(self, session: Session, db_link: DBLink) -> None:
        session.add(db_link)
        self._flush(session, db_link.src_id, db_link.dest_id or db_link.dest_title)

    @staticmethod
    def _flush(session: Session, source_id: int, target) -> None:
        try:
            session.flush()
        except IntegrityError as e:
            if is_unique_violation(e):
                raise LinkAlreadyExistsError(
                    f"Duplicate link {source_id} -> {target}",
                    source_id=source_id,
                    target=target,
                    original_error=e,
                ) from e
            if is_foreign_key_violation(e):
                raise InvalidReferenceError(
                    f"Unknown note in link {source_id} -> {target}",
                    field="note_id",
                    original_error=e,
                ) from e
            raise

    @staticmethod
    def _db_link_to_model(db_link: DBLink) -> Link:
        return Link(
            id=db_link.id,
            source_id=db_link.src_id,
            target_id=db_link.dest_id,
            target_title=db_link.dest_title,
            display_text=db_link.display_text,
            is_embed=bool(db_link.is_embed),
            state=LinkState(db_link.state),
            created_at=ensure_timezone_aware(db_link.created_at),
            updated_at=ensure_timezone_aware(db_link.updated_at),
        )
