"""SQLAlchemy database models for the spaces structured store."""
import datetime
from typing import Optional

from sqlalchemy import (Column, DateTime, ForeignKey, Integer, String, Text,
                        UniqueConstraint, create_engine, event, text)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from noteplan_mcp.config import config
from noteplan_mcp.models.schema import NoteType

Base = declarative_base()

# Space note filenames are namespaced like NotePlan's cloud store
SPACE_FILENAME_PREFIX = "%%NotePlanCloud%%"


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class DBSpace(Base):
    """Database model for a space."""
    __tablename__ = "spaces"
    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False, index=True)
    created_at = Column(DateTime, default=_now, nullable=False)

    notes = relationship("DBSpaceNote", back_populates="space", cascade="all, delete-orphan")
    folders = relationship("DBSpaceFolder", back_populates="space", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<Space(id='{self.id}', name='{self.name}')>"


class DBSpaceNote(Base):
    """Database model for a note stored in a space."""
    __tablename__ = "space_notes"
    id = Column(String(64), primary_key=True, index=True)
    space_id = Column(String(64), ForeignKey("spaces.id"), nullable=False, index=True)
    title = Column(String(500), nullable=False, index=True)
    content = Column(Text, nullable=False, default="")
    note_type = Column(String(20), default=NoteType.NOTE.value, nullable=False, index=True)
    folder = Column(String(1000), nullable=True, index=True)
    filename = Column(String(1000), nullable=False, unique=True)
    date = Column(String(8), nullable=True, index=True)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, nullable=False)

    space = relationship("DBSpace", back_populates="notes")

    def __repr__(self) -> str:
        return f"<SpaceNote(id='{self.id}', title='{self.title}')>"


class DBSpaceFolder(Base):
    """Database model for a folder inside a space."""
    __tablename__ = "space_folders"
    id = Column(Integer, primary_key=True, autoincrement=True)
    space_id = Column(String(64), ForeignKey("spaces.id"), nullable=False, index=True)
    path = Column(String(1000), nullable=False)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False)

    space = relationship("DBSpace", back_populates="folders")

    # Path uniqueness is scoped per space
    __table_args__ = (UniqueConstraint("space_id", "path", name="uix_space_folder_path"),)

    def __repr__(self) -> str:
        return f"<SpaceFolder(space='{self.space_id}', path='{self.path}')>"


def space_note_filename(space_id: str, note_id: str) -> str:
    return f"{SPACE_FILENAME_PREFIX}/{space_id}/{note_id}"


def init_db(db_url: Optional[str] = None, in_memory: bool = False):
    """Create an engine with hardened SQLite settings and initialize the schema.

    Args:
        db_url: SQLAlchemy URL. Defaults to the configured database path.
        in_memory: Use a single shared in-memory connection (tests, ephemeral runs).
    """
    if in_memory:
        engine = create_engine(
            "sqlite://",
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        engine = create_engine(
            db_url or config.get_db_url(),
            poolclass=QueuePool,
            pool_size=5,
            max_overflow=10,
            pool_timeout=30,
            pool_pre_ping=True,
        )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)
    init_fts5(engine)
    return engine


def init_fts5(engine) -> None:
    """Create the FTS5 mirror of space_notes plus its sync triggers."""
    with engine.connect() as conn:
        conn.execute(text("""
            CREATE VIRTUAL TABLE IF NOT EXISTS space_notes_fts USING fts5(
                id UNINDEXED,
                title,
                content,
                content='space_notes',
                content_rowid='rowid'
            )
        """))
        conn.execute(text("""
            CREATE TRIGGER IF NOT EXISTS space_notes_ai AFTER INSERT ON space_notes BEGIN
                INSERT INTO space_notes_fts(rowid, id, title, content)
                VALUES (NEW.rowid, NEW.id, NEW.title, NEW.content);
            END
        """))
        conn.execute(text("""
            CREATE TRIGGER IF NOT EXISTS space_notes_ad AFTER DELETE ON space_notes BEGIN
                INSERT INTO space_notes_fts(space_notes_fts, rowid, id, title, content)
                VALUES ('delete', OLD.rowid, OLD.id, OLD.title, OLD.content);
            END
        """))
        conn.execute(text("""
            CREATE TRIGGER IF NOT EXISTS space_notes_au AFTER UPDATE ON space_notes BEGIN
                INSERT INTO space_notes_fts(space_notes_fts, rowid, id, title, content)
                VALUES ('delete', OLD.rowid, OLD.id, OLD.title, OLD.content);
                INSERT INTO space_notes_fts(rowid, id, title, content)
                VALUES (NEW.rowid, NEW.id, NEW.title, NEW.content);
            END
        """))
        conn.commit()


def rebuild_fts_index(engine) -> int:
    """Rebuild the FTS5 index from space_notes. Returns the indexed row count."""
    with engine.connect() as conn:
        conn.execute(text("INSERT INTO space_notes_fts(space_notes_fts) VALUES('rebuild')"))
        conn.commit()
        count = conn.execute(text("SELECT COUNT(*) FROM space_notes")).scalar()
    return count


def get_session_factory(engine):
    """Get a session factory bound to ``engine``."""
    return sessionmaker(bind=engine, expire_on_commit=False)
