"""Service layer for link resolution."""
import logging
from typing import Any, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from notegraph.config import config
from notegraph.exceptions import InternalError, NoteNotFoundError
from notegraph.models.db_models import get_session_factory, init_db
from notegraph.models.schema import Link, SweepResult
from notegraph.observability import timed_operation
from notegraph.storage.link_repository import LinkRepository
from notegraph.storage.note_repository import NoteRepository

logger = logging.getLogger(__name__)


class LinkService:
    """Drives pending links towards resolution.

    The repository only knows the legal transitions; this service
    decides when to apply them. Nothing here runs on its own schedule:
    callers invoke resolve_backlinks after a note appears under a new
    title, or sweep_pending periodically.
    """

    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        engine: Optional[Any] = None,
    ):
        """Initialize the service.

        Args:
            session_factory: Session factory shared with other services.
            engine: Engine to build a session factory from when
                session_factory is None. Created from config if both are None.
        """
        if session_factory is None:
            session_factory = get_session_factory(engine or init_db())
        self.session_factory = session_factory
        self.links = LinkRepository(session_factory)
        self.notes = NoteRepository(session_factory)

    def resolve_link(self, link_id: int, target_id: int) -> Link:
        """Resolve one pending link to a note, in its own transaction."""
        with timed_operation("resolve_link", link_id=link_id, target_id=target_id):
            link = self._in_transaction(
                "resolve_link", lambda s: self.links.resolve(link_id, target_id, session=s)
            )
        logger.info(f"Resolved link {link_id} to note {target_id}")
        return link

    def mark_broken(self, link_id: int) -> Link:
        """Give up on one pending link, in its own transaction."""
        with timed_operation("mark_link_broken", link_id=link_id):
            link = self._in_transaction(
                "mark_link_broken", lambda s: self.links.mark_broken(link_id, session=s)
            )
        logger.info(f"Marked link {link_id} broken (target '{link.target_title}')")
        return link

    def resolve_backlinks(self, note_id: int, session: Optional[Session] = None) -> List[Link]:
        """Resolve every pending link whose target title is this note's title.

        Args:
            note_id: The note that pending links may now point at.
            session: Caller's session. A new transaction is used if None.

        Returns:
            The links that were resolved.

        Raises:
            NoteNotFoundError: If the note does not exist.
        """
        def _resolve(s: Session) -> List[Link]:
            note = self.notes.get(note_id, session=s)
            if note is None:
                raise NoteNotFoundError(note_id)
            if self.notes.find_id_by_title_global(note.title, session=s) != note_id:
                logger.debug(f"Note {note_id} does not own title '{note.title}', leaving links pending")
                return []
            pending = self.links.find_pending_by_title(note.title, session=s)
            resolved = [self._resolve_or_drop(s, link, note_id) for link in pending]
            return [link for link in resolved if link is not None]

        if session is not None:
            resolved = _resolve(session)
        else:
            with timed_operation("resolve_backlinks", note_id=note_id) as op:
                resolved = self._in_transaction("resolve_backlinks", _resolve)
                op["resolved"] = len(resolved)

        if resolved:
            logger.info(f"Resolved {len(resolved)} pending links to note {note_id}")
        return resolved

    def sweep_pending(
        self, limit: Optional[int] = None, mark_unmatched_broken: bool = False
    ) -> SweepResult:
        """Resolve pending links whose target title now exists.

        Examines at most ``limit`` pending links (default
        ``config.pending_sweep_limit``) in id order, in one transaction.

        Args:
            limit: Maximum number of pending links to examine.
            mark_unmatched_broken: Mark links whose title still matches no
                note as BROKEN instead of leaving them pending.

        Returns:
            Counts of examined, resolved and merged links. A pending link
            whose resolution would duplicate an existing resolved link is
            deleted and counted as merged.
        """
        limit = limit or config.pending_sweep_limit

        def _sweep(s: Session) -> SweepResult:
            result = SweepResult()
            for link in self.links.list_pending(limit=limit, session=s):
                result.examined += 1
                target_id = self.notes.find_id_by_title_global(link.target_title, session=s)
                if target_id is None:
                    if mark_unmatched_broken:
                        self.links.mark_broken(link.id, session=s)
                elif self._resolve_or_drop(s, link, target_id) is not None:
                    result.resolved += 1
                    result.resolved_link_ids.append(link.id)
                else:
                    result.merged += 1
            return result

        with timed_operation("sweep_pending_links", limit=limit) as op:
            result = self._in_transaction("sweep_pending_links", _sweep)
            op["examined"] = result.examined
            op["resolved"] = result.resolved
            op["merged"] = result.merged

        logger.info(
            f"Pending link sweep: examined {result.examined}, resolved {result.resolved}, "
            f"merged {result.merged}"
        )
        return result

    def _resolve_or_drop(self, s: Session, link: Link, target_id: int) -> Optional[Link]:
        """Resolve a pending link, or delete it if the source already has the same resolved link.

        Returns the resolved link, or None if the pending link was deleted.
        """
        existing = self.links.find_resolved(
            link.source_id, target_id, link.display_text, link.is_embed, session=s
        )
        if existing is not None:
            self.links.delete(link.id, session=s)
            logger.info(
                f"Dropped pending link {link.id}: duplicate of resolved link {existing.id}"
            )
            return None
        return self.links.resolve(link.id, target_id, session=s)

    def _in_transaction(self, operation: str, work):
        try:
            with self.session_factory() as session, session.begin():
                return work(session)
        except SQLAlchemyError as e:
            logger.error(f"{operation} failed: {e}")
            raise InternalError(
                f"Storage failure during {operation}", operation=operation, original_error=e
            ) from e
