"""SQLAlchemy database models."""

from typing import AsyncGenerator

from sqlalchemy import Boolean, Integer, String
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from rteimages.config import get_settings

SOFTREF_KEY = "rtehtmlarea_images"
FILE_TABLE = "sys_file"


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""

    pass


class ReferenceIndexEntry(Base):
    """Soft reference from a rich-text field to a managed file."""

    __tablename__ = "sys_refindex"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tablename: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    recuid: Mapped[int] = mapped_column(Integer, nullable=False)
    field: Mapped[str] = mapped_column(String(64), nullable=False)
    softref_key: Mapped[str] = mapped_column(String(64), nullable=False, default=SOFTREF_KEY)
    ref_table: Mapped[str] = mapped_column(String(255), nullable=False, default=FILE_TABLE)
    ref_uid: Mapped[int] = mapped_column(Integer, nullable=False, index=True)


class StoredFile(Base):
    """A file registered in the local file store."""

    __tablename__ = FILE_TABLE

    uid: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    storage: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    identifier: Mapped[str] = mapped_column(String(1000), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    extension: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    mime_type: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    width: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    height: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Set on processed variants, points at the original file
    original_uid: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


# Database engine and session factory
_engine = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


async def init_db() -> None:
    """Initialize the database and create tables."""
    global _engine, _session_factory

    settings = get_settings()

    _engine = create_async_engine(
        settings.database_url,
        echo=settings.debug,
    )

    _session_factory = async_sessionmaker(
        _engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    # Create tables
    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close the database connection."""
    global _engine, _session_factory

    if _engine:
        await _engine.dispose()
        _engine = None
        _session_factory = None


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get a database session."""
    if _session_factory is None:
        await init_db()

    assert _session_factory is not None

    async with _session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
