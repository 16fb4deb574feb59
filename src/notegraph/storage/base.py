"""Base repository for notegraph storage."""
from contextlib import contextmanager
from typing import Generic, Iterator, Optional, TypeVar

from sqlalchemy.orm import Session, sessionmaker

T = TypeVar("T")


class Repository(Generic[T]):
    """Common plumbing for repositories backed by a session factory.

    Every public method takes an optional ``session``. When one is given
    the method runs inside the caller's transaction and never commits;
    otherwise it opens its own session and commits on success.
    """

    def __init__(self, session_factory: sessionmaker):
        """Initialize the repository.

        Args:
            session_factory: SQLAlchemy session factory for database operations.
        """
        self.session_factory = session_factory

    @contextmanager
    def session_scope(self, session: Optional[Session] = None) -> Iterator[Session]:
        """Yield the caller's session, or a fresh one wrapped in a transaction."""
        if session is not None:
            yield session
            return
        with self.session_factory() as own_session, own_session.begin():
            yield own_session
