"""Service layer for note mutations and the data derived from note bodies.

Every create and replace parses the note body and rebuilds the note's
links, tag associations and metadata inside the same transaction as
the note row itself. Either all of it commits or none of it does.
"""
import logging
import threading
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from notegraph.config import config
from notegraph.exceptions import (AlreadyExistsError, ErrorCode, InternalError,
                                  NotegraphError, NoteNotFoundError,
                                  OperationCancelledError)
from notegraph.models.db_models import (DBLink, get_session_factory, init_db,
                                        note_tags)
from notegraph.models.schema import (ChangeEvent, ChangeKind, Link, Note,
                                     NoteCreate, NoteRelationships,
                                     NoteReplace, Tag)
from notegraph.observability import timed_operation
from notegraph.services.link_service import LinkService
from notegraph.services.notifier import ChangeNotifier, NullNotifier, dispatch
from notegraph.services.tag_merger import merge_tags
from notegraph.storage.link_repository import LinkRepository
from notegraph.storage.markdown_parser import ContentParser, WikiLink
from notegraph.storage.meta_repository import MetaRepository
from notegraph.storage.note_repository import NoteRepository
from notegraph.storage.tag_repository import TagRepository
from notegraph.utils import truncate

logger = logging.getLogger(__name__)

# Attempts at claiming an "Untitled N" title before giving up
_UNTITLED_ATTEMPTS = 3


class NoteSyncService:
    """Creates, replaces and deletes notes together with their derived rows."""

    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        engine: Optional[Any] = None,
        parser: Optional[ContentParser] = None,
        notifier: Optional[ChangeNotifier] = None,
        auto_resolve_backlinks: Optional[bool] = None,
    ):
        """Initialize the service.

        Args:
            session_factory: Session factory for all repositories.
            engine: Engine to build a session factory from when
                session_factory is None. Created from config if both are None.
            parser: Body parser. Defaults to one using ``config.tag_keys``.
            notifier: Receives an event after each committed mutation.
            auto_resolve_backlinks: Resolve pending links to a note's title
                after create/replace. Defaults to
                ``config.auto_resolve_backlinks``.
        """
        if session_factory is None:
            session_factory = get_session_factory(engine or init_db())
        self.session_factory = session_factory
        self.parser = parser or ContentParser(tag_keys=config.tag_keys)
        self.notifier: ChangeNotifier = notifier or NullNotifier()
        self.auto_resolve_backlinks = (
            config.auto_resolve_backlinks
            if auto_resolve_backlinks is None
            else auto_resolve_backlinks
        )

        self.notes = NoteRepository(session_factory)
        self.links = LinkRepository(session_factory)
        self.tags = TagRepository(session_factory)
        self.meta = MetaRepository(session_factory)
        self.link_service = LinkService(session_factory=session_factory)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create_note(
        self, params: NoteCreate, cancel_event: Optional[threading.Event] = None
    ) -> int:
        """Create a note and derive its links, tags and metadata.

        Args:
            params: Creation parameters.
            cancel_event: Checked between steps and before commit; when
                set, the transaction is rolled back.

        Returns:
            The new note's id.

        Raises:
            AlreadyExistsError: If the title is taken in the collection.
            InvalidReferenceError: If the collection or note type is unknown.
            ParseFailureError: If the body's front-matter is malformed.
            OperationCancelledError: If cancel_event was set before commit.
            InternalError: On any other storage failure.
        """
        operation = "create_note"
        with timed_operation(operation, title=truncate(params.title)) as op:
            def _create(session: Session) -> Note:
                note = self.notes.create(params, session=session)
                self._derive(session, note.id, params.body, operation, cancel_event)
                return note

            note = self._run(operation, _create, cancel_event)
            op["note_id"] = note.id

        logger.info(f"Created note {note.id} '{truncate(note.title)}' in collection {note.collection_id}")
        self._after_commit(note.id, ChangeKind.CREATED)
        return note.id

    def replace_note(
        self, params: NoteReplace, cancel_event: Optional[threading.Event] = None
    ) -> Note:
        """Fully replace a note and rebuild its derived rows from the new body.

        All links from the note, its tag associations and its metadata
        are deleted and re-derived; the note's version is incremented.

        Args:
            params: Replacement values, addressed by ``params.id``.
            cancel_event: Checked between steps and before commit.

        Returns:
            The stored note after the replace.

        Raises:
            NoteNotFoundError: If the note does not exist.
            AlreadyExistsError: If the new title is taken in the collection.
            InvalidReferenceError: If the collection or note type is unknown.
            ParseFailureError: If the body's front-matter is malformed.
            OperationCancelledError: If cancel_event was set before commit.
            InternalError: On any other storage failure.
        """
        operation = "replace_note"
        with timed_operation(operation, note_id=params.id) as op:
            def _replace(session: Session) -> Note:
                if not self.notes.exists(params.id, session=session):
                    raise NoteNotFoundError(params.id)
                removed_links = self.links.delete_by_source(params.id, session=session)
                removed_tags = self.tags.delete_for_note(params.id, session=session)
                removed_meta = self.meta.delete_for_note(params.id, session=session)
                logger.debug(
                    f"Cleared derived rows of note {params.id}: {removed_links} links, "
                    f"{removed_tags} tags, {removed_meta} metadata"
                )
                self._check_cancelled(cancel_event, operation, params.id)
                note = self.notes.update(params, session=session)
                self._derive(session, note.id, params.body, operation, cancel_event)
                return note

            note = self._run(operation, _replace, cancel_event, params.id)
            op["version"] = note.version

        logger.info(f"Replaced note {note.id} '{truncate(note.title)}' (version {note.version})")
        self._after_commit(note.id, ChangeKind.UPDATED)
        return note

    def delete_note(
        self, note_id: int, cancel_event: Optional[threading.Event] = None
    ) -> None:
        """Delete a note; its links, tag associations and metadata go with it.

        Links from other notes to this one keep their rows with the
        target cleared (see LinkRepository.list_orphaned).

        Raises:
            NoteNotFoundError: If the note does not exist.
            OperationCancelledError: If cancel_event was set before commit.
            InternalError: On any other storage failure.
        """
        operation = "delete_note"
        with timed_operation(operation, note_id=note_id):
            self._run(
                operation,
                lambda session: self.notes.delete(note_id, session=session),
                cancel_event,
                note_id,
                error_code=ErrorCode.STORAGE_DELETE_FAILED,
            )

        logger.info(f"Deleted note {note_id}")
        self._after_commit(note_id, ChangeKind.DELETED, resolve_backlinks=False)

    def new_note(
        self,
        collection_id: Optional[int] = None,
        template_note_id: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> int:
        """Create an "Untitled N" note, optionally copying a template.

        N is derived from the titles already stored in the collection.
        If another writer claims the same title first, the next number
        is tried.

        Args:
            collection_id: Target collection (default collection if None).
            template_note_id: Note whose body and note type are copied.
            cancel_event: Passed through to create_note.

        Returns:
            The new note's id.

        Raises:
            NoteNotFoundError: If the template note does not exist.
        """
        collection_id = collection_id or config.default_collection_id
        body: Optional[str] = None
        note_type_id: Optional[int] = None
        if template_note_id is not None:
            template = self.notes.get(template_note_id)
            if template is None:
                raise NoteNotFoundError(template_note_id)
            body = template.body
            note_type_id = template.note_type_id

        attempt = 0
        while True:
            attempt += 1
            title = self.notes.next_untitled_title(collection_id)
            try:
                return self.create_note(
                    NoteCreate(
                        title=title,
                        body=body,
                        collection_id=collection_id,
                        note_type_id=note_type_id,
                    ),
                    cancel_event=cancel_event,
                )
            except AlreadyExistsError as e:
                if e.code != ErrorCode.NOTE_ALREADY_EXISTS or attempt >= _UNTITLED_ATTEMPTS:
                    raise
                logger.debug(f"Title '{title}' was taken concurrently, retrying")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_note(self, note_id: int) -> Optional[Note]:
        """Get a note by id, or None."""
        return self.notes.get(note_id)

    def get_note_by_uuid(self, note_uuid: str) -> Optional[Note]:
        """Get a note by external identifier, or None."""
        return self.notes.get_by_uuid(note_uuid)

    def get_note_by_title(self, title: str) -> Optional[Note]:
        """Get the note a reference to ``title`` would resolve to, or None."""
        return self.notes.get_by_title_global(title)

    def get_note_meta(self, note_id: int) -> Dict[str, Optional[str]]:
        """Get a note's metadata as a key -> value mapping.

        Raises:
            NoteNotFoundError: If the note does not exist.
        """
        self._require_note(note_id)
        return self.meta.get_dict_for_note(note_id)

    def get_note_tags(self, note_id: int) -> List[Tag]:
        """Get a note's tags, ordered by name.

        Raises:
            NoteNotFoundError: If the note does not exist.
        """
        self._require_note(note_id)
        return self.tags.get_for_note(note_id)

    def get_outgoing_links(self, note_id: int) -> List[Link]:
        """Get links from a note in every state."""
        return self.links.list_outgoing(note_id)

    def get_backlinks(self, note_id: int) -> List[Link]:
        """Get resolved links pointing at a note."""
        return self.links.list_incoming(note_id)

    def get_note_relationships(self, note_id: int) -> NoteRelationships:
        """Get the ids of linked notes (both directions) and of tags.

        Raises:
            NoteNotFoundError: If the note does not exist.
        """
        with self.session_factory() as session:
            if not self.notes.exists(note_id, session=session):
                raise NoteNotFoundError(note_id)
            outgoing = session.scalars(
                select(DBLink.dest_id)
                .where((DBLink.src_id == note_id) & DBLink.dest_id.is_not(None))
                .distinct()
                .order_by(DBLink.dest_id)
            ).all()
            incoming = session.scalars(
                select(DBLink.src_id)
                .where(DBLink.dest_id == note_id)
                .distinct()
                .order_by(DBLink.src_id)
            ).all()
            tag_ids = session.scalars(
                select(note_tags.c.tag_id)
                .where(note_tags.c.note_id == note_id)
                .order_by(note_tags.c.tag_id)
            ).all()
        return NoteRelationships(
            note_id=note_id,
            outgoing_note_ids=list(outgoing),
            incoming_note_ids=list(incoming),
            tag_ids=list(tag_ids),
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _run(
        self,
        operation: str,
        work,
        cancel_event: Optional[threading.Event],
        note_id: Optional[int] = None,
        error_code: ErrorCode = ErrorCode.STORAGE_WRITE_FAILED,
    ):
        """Run ``work(session)`` in one transaction, committing only if it returns.

        Domain errors propagate unchanged; other storage errors become
        InternalError with the original exception chained.
        """
        try:
            with self.session_factory() as session, session.begin():
                self._check_cancelled(cancel_event, operation, note_id)
                result = work(session)
                self._check_cancelled(cancel_event, operation, note_id)
                return result
        except OperationCancelledError:
            logger.info(f"{operation} cancelled, transaction rolled back")
            raise
        except NotegraphError as e:
            logger.warning(f"{operation} failed: {e}")
            raise
        except SQLAlchemyError as e:
            logger.error(f"{operation} failed with storage error: {e}")
            raise InternalError(
                f"Storage failure during {operation}",
                operation=operation,
                code=error_code,
                original_error=e,
            ) from e

    def _derive(
        self,
        session: Session,
        note_id: int,
        body: Optional[str],
        operation: str,
        cancel_event: Optional[threading.Event],
    ) -> None:
        """Parse ``body`` and insert its links, tags and metadata for the note."""
        if not body or not body.strip():
            return

        result = self.parser.parse(body)
        self._check_cancelled(cancel_event, operation, note_id)

        link_count = self._insert_references(session, note_id, result.references)
        self._check_cancelled(cancel_event, operation, note_id)

        tag_names = merge_tags(result.tags, result.frontmatter_tags)
        self.tags.add_to_note(note_id, sorted(tag_names), session=session)
        self._check_cancelled(cancel_event, operation, note_id)

        entries = self.parser.metadata_entries(result)
        self.meta.insert_many(note_id, entries, session=session)

        logger.debug(
            f"Derived for note {note_id}: {link_count} links, "
            f"{len(tag_names)} tags, {len(entries)} metadata"
        )

    def _insert_references(
        self, session: Session, source_id: int, references: Sequence[WikiLink]
    ) -> int:
        """Insert one link per distinct reference.

        A reference whose title matches a note (lowest id across
        collections) becomes a resolved link; any other reference is
        stored as a pending link keeping the title.
        """
        seen = set()
        count = 0
        for ref in references:
            target_id = self.notes.find_id_by_title_global(ref.target, session=session)
            key = (target_id if target_id is not None else ref.target, ref.display_text, ref.embed)
            if key in seen:
                continue
            seen.add(key)
            if target_id is not None:
                self.links.create_resolved(
                    source_id, target_id, ref.display_text, ref.embed, session=session
                )
            else:
                self.links.create_pending(
                    source_id, ref.target, ref.display_text, ref.embed, session=session
                )
            count += 1
        return count

    def _after_commit(
        self, note_id: int, kind: ChangeKind, resolve_backlinks: bool = True
    ) -> None:
        """Post-commit side effects. Failures are logged, never raised."""
        if resolve_backlinks and self.auto_resolve_backlinks:
            try:
                self.link_service.resolve_backlinks(note_id)
            except Exception as e:
                logger.warning(f"Backlink resolution failed for note {note_id}: {e}")
        dispatch(self.notifier, ChangeEvent(note_id=note_id, kind=kind))

    def _require_note(self, note_id: int) -> None:
        if not self.notes.exists(note_id):
            raise NoteNotFoundError(note_id)

    @staticmethod
    def _check_cancelled(
        cancel_event: Optional[threading.Event], operation: str, note_id: Optional[int] = None
    ) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelledError(operation, note_id)
