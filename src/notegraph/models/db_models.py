"""SQLAlchemy database models for notegraph."""
import logging
from typing import Optional

from sqlalchemy import (Boolean, CheckConstraint, Column, DateTime, ForeignKey,
                        Integer, String, Table, Text, UniqueConstraint,
                        create_engine, event, select)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from notegraph.config import config
from notegraph.models.schema import LinkState, utc_now

logger = logging.getLogger(__name__)

# Create base class for SQLAlchemy models
Base = declarative_base()

DEFAULT_COLLECTION_ID = 1

# Association table for tags and notes
note_tags = Table(
    "note_tags",
    Base.metadata,
    Column("note_id", Integer, ForeignKey("notes.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)


class DBCollection(Base):
    """Database model for a collection (folder) of notes."""
    __tablename__ = "collections"
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    parent_id = Column(Integer, ForeignKey("collections.id", ondelete="CASCADE"), nullable=True)
    path = Column(String(1024), unique=True, nullable=False)
    description = Column(Text, nullable=True)
    position = Column(Integer, default=0, nullable=False)
    is_system = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    def __repr__(self) -> str:
        """Return string representation of collection."""
        return f"<Collection(id={self.id}, path='{self.path}')>"


class DBNoteType(Base):
    """Database model for a note type."""
    __tablename__ = "note_types"
    id = Column(Integer, primary_key=True, autoincrement=True)
    type = Column(String(100), unique=True, nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    icon = Column(String(100), nullable=True)
    color = Column(String(50), nullable=True)
    is_system = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    def __repr__(self) -> str:
        """Return string representation of note type."""
        return f"<NoteType(id={self.id}, type='{self.type}')>"


class DBNote(Base):
    """Database model for a note."""
    __tablename__ = "notes"
    id = Column(Integer, primary_key=True, autoincrement=True)
    uuid = Column(String(36), unique=True, nullable=False)
    title = Column(String(512), nullable=False, index=True)
    body = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    collection_id = Column(
        Integer,
        ForeignKey("collections.id", ondelete="CASCADE"),
        nullable=False,
        default=DEFAULT_COLLECTION_ID,
        index=True,
    )
    note_type_id = Column(
        Integer, ForeignKey("note_types.id", ondelete="SET NULL"), nullable=True
    )
    is_template = Column(Boolean, default=False, nullable=False)
    version = Column(Integer, default=1, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    # Relationships (rows are removed by the database's ON DELETE rules)
    tags = relationship(
        "DBTag", secondary=note_tags, back_populates="notes", passive_deletes=True
    )
    meta_entries = relationship(
        "DBNoteMeta", back_populates="note", passive_deletes=True
    )
    outgoing_links = relationship(
        "DBLink",
        foreign_keys="DBLink.src_id",
        back_populates="source",
        passive_deletes=True,
    )
    incoming_links = relationship(
        "DBLink",
        foreign_keys="DBLink.dest_id",
        back_populates="target",
        passive_deletes=True,
    )

    __table_args__ = (
        UniqueConstraint("collection_id", "title", name="unique_title_per_collection"),
    )

    def __repr__(self) -> str:
        """Return string representation of note."""
        return f"<Note(id={self.id}, title='{self.title}', version={self.version})>"


class DBTag(Base):
    """Database model for a tag."""
    __tablename__ = "tags"
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), unique=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    notes = relationship(
        "DBNote", secondary=note_tags, back_populates="tags", passive_deletes=True
    )

    def __repr__(self) -> str:
        """Return string representation of tag."""
        return f"<Tag(id={self.id}, name='{self.name}')>"


class DBNoteMeta(Base):
    """Database model for one front-matter key/value pair of a note."""
    __tablename__ = "note_meta"
    id = Column(Integer, primary_key=True, autoincrement=True)
    note_id = Column(
        Integer, ForeignKey("notes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    key = Column(String(255), nullable=False)
    value = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    note = relationship("DBNote", back_populates="meta_entries")

    __table_args__ = (
        UniqueConstraint("note_id", "key", name="unique_meta_key_per_note"),
    )

    def __repr__(self) -> str:
        """Return string representation of a metadata entry."""
        return f"<NoteMeta(note_id={self.note_id}, key='{self.key}')>"


class DBLink(Base):
    """Database model for a reference from one note to another.

    ``state`` follows LinkState: pending links have no dest_id and keep
    dest_title, resolved links have dest_id and no dest_title, broken
    links have no dest_id and keep dest_title.
    """
    __tablename__ = "notes_links"
    id = Column(Integer, primary_key=True, autoincrement=True)
    src_id = Column(
        Integer, ForeignKey("notes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    dest_id = Column(
        Integer, ForeignKey("notes.id", ondelete="SET NULL"), nullable=True, index=True
    )
    dest_title = Column(String(512), nullable=True, index=True)
    display_text = Column(Text, nullable=True)
    is_embed = Column(Boolean, default=False, nullable=False)
    state = Column(String(16), default=LinkState.PENDING.value, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    source = relationship(
        "DBNote", foreign_keys=[src_id], back_populates="outgoing_links"
    )
    target = relationship(
        "DBNote", foreign_keys=[dest_id], back_populates="incoming_links"
    )

    __table_args__ = (
        UniqueConstraint(
            "src_id", "dest_id", "display_text", "is_embed", name="unique_link"
        ),
        CheckConstraint(
            "state IN ('pending', 'resolved', 'broken')", name="valid_link_state"
        ),
    )

    def __repr__(self) -> str:
        """Return string representation of link."""
        return (
            f"<Link(id={self.id}, src={self.src_id}, dest={self.dest_id}, "
            f"title='{self.dest_title}', state='{self.state}')>"
        )


def _is_memory_url(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///:memory:")


def init_db(db_url: Optional[str] = None) -> Engine:
    """Create an engine, create the schema and seed the default collection.

    Every connection gets ``PRAGMA foreign_keys=ON`` so the ON DELETE
    rules above are enforced by SQLite. File databases additionally use
    WAL journaling with NORMAL synchronous mode and a bounded QueuePool;
    in-memory databases share a single connection through StaticPool.

    Args:
        db_url: SQLAlchemy URL. Defaults to ``config.get_db_url()``.

    Returns:
        The configured Engine.
    """
    url = db_url or config.get_db_url()
    in_memory = _is_memory_url(url)

    if in_memory:
        engine = create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        # SQLite is single-writer, so a small pool is ideal
        engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=5,
            max_overflow=10,
            pool_timeout=30,
            pool_recycle=3600,
            pool_pre_ping=True,
        )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        if not in_memory:
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA cache_size=-64000")  # 64MB cache
        cursor.close()

    Base.metadata.create_all(engine)
    _seed_default_collection(engine)

    logger.info(f"Database initialized at {engine.url}")
    return engine


def _seed_default_collection(engine: Engine) -> None:
    """Insert the system collection notes fall back to, if it is missing."""
    factory = sessionmaker(bind=engine)
    with factory() as session:
        existing = session.scalar(
            select(DBCollection.id).where(DBCollection.id == DEFAULT_COLLECTION_ID)
        )
        if existing is None:
            session.add(
                DBCollection(
                    id=DEFAULT_COLLECTION_ID,
                    name="Default",
                    path="default",
                    is_system=True,
                )
            )
            session.commit()
            logger.debug("Seeded default collection")


def get_session_factory(engine: Optional[Engine] = None) -> sessionmaker:
    """Get a session factory for the database."""
    if engine is None:
        engine = init_db()
    return sessionmaker(bind=engine, expire_on_commit=False)
