"""Shared fixtures: an in-memory file store and a request environment."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from rteimages.models.db import Base
from rteimages.services.environment import EnvironmentInfo
from rteimages.services.storage import FileDoesNotExist, FolderDoesNotExist, ProcessingUnavailable

JPEG_BYTES = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00\x01\x01\x00\x00\x01\x00\x01\x00\x00" + b"\x00" * 64
PNG_BYTES = b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR" + b"\x00" * 64


@dataclass
class FakeFile:
    uid: int
    identifier: str
    public_url: str | None
    properties: dict[str, Any] = field(default_factory=dict)
    is_public: bool = True
    store: "FakeFileStore | None" = None

    async def process(self, context: str, instructions: dict[str, Any]) -> "FakeFile":
        assert self.store is not None
        self.store.process_calls.append((self.uid, context, instructions))
        if self.store.fail_processing:
            raise ProcessingUnavailable("engine down")
        width, height = instructions["width"], instructions["height"]
        stem = Path(self.identifier).stem
        return FakeFile(
            uid=10000 + self.uid,
            identifier=f"/_processed_/a/b/csm_{stem}_{width}x{height}.jpg",
            public_url=f"/fileadmin/_processed_/a/b/csm_{stem}_{width}x{height}.jpg",
            properties={"width": width, "height": height, "original": self.uid},
            store=self.store,
        )


@dataclass
class FakeFolder:
    store: "FakeFileStore"
    identifier: str

    async def add_file(self, local_path: Path, filename: str) -> FakeFile:
        # The temp file must still exist while the store copies it
        assert local_path.exists()
        self.store.imported_paths.append(local_path)
        self.store.imported_contents.append(local_path.read_bytes())
        return self.store.add(f"{self.identifier.split(':', 1)[-1]}{filename}", width=640, height=480)


class FakeFileStore:
    """Dictionary backed store implementing the file store protocol."""

    def __init__(self) -> None:
        self.files: dict[int, FakeFile] = {}
        self.process_calls: list[tuple[int, str, dict[str, Any]]] = []
        self.imported_paths: list[Path] = []
        self.imported_contents: list[bytes] = []
        self.fail_processing = False
        self.missing_folders: set[str] = set()
        self._next_uid = 1

    def add(
        self,
        identifier: str,
        uid: int | None = None,
        width: int = 800,
        height: int = 600,
        public: bool = True,
        **properties: Any,
    ) -> FakeFile:
        if uid is None:
            uid = self._next_uid
        self._next_uid = max(self._next_uid, uid + 1)
        file = FakeFile(
            uid=uid,
            identifier=identifier,
            public_url=f"/fileadmin{identifier}" if public else None,
            properties={
                "width": width,
                "height": height,
                "extension": Path(identifier).suffix.lstrip("."),
                **properties,
            },
            is_public=public,
            store=self,
        )
        self.files[uid] = file
        return file

    async def get_file_by_uid(self, uid: int) -> FakeFile:
        if uid not in self.files:
            raise FileDoesNotExist(f"No file with uid {uid}")
        return self.files[uid]

    async def get_file_by_path(self, path: str) -> FakeFile:
        wanted = "/" + path.lstrip("/").removeprefix("fileadmin/")
        for file in self.files.values():
            if file.identifier == wanted:
                return file
        raise FileDoesNotExist(f"No file at {path}")

    async def get_folder(self, identifier: str) -> FakeFolder:
        if identifier in self.missing_folders:
            raise FolderDoesNotExist(identifier)
        return FakeFolder(self, identifier)


@pytest.fixture
def store() -> FakeFileStore:
    return FakeFileStore()


@pytest.fixture
def public_root(tmp_path: Path) -> Path:
    root = tmp_path / "public"
    (root / "fileadmin" / "user_upload").mkdir(parents=True)
    (root / "fileadmin" / "user_upload" / "photo.jpg").write_bytes(JPEG_BYTES)
    return root


@pytest.fixture
def env(public_root: Path) -> EnvironmentInfo:
    return EnvironmentInfo(
        site_url="https://mysite.com/",
        request_host="https://mysite.com",
        public_path=str(public_root),
        is_backend_request=True,
        user="editor",
    )


@pytest_asyncio.fixture
async def session() -> AsyncSession:
    """In-memory database with the index tables and a tt_content table."""
    engine = create_async_engine("sqlite+aiosqlite://")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        await conn.execute(text("CREATE TABLE tt_content (uid INTEGER PRIMARY KEY, bodytext TEXT)"))
        await conn.execute(text("CREATE TABLE pages (uid INTEGER PRIMARY KEY, description TEXT)"))

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as db_session:
        yield db_session
    await engine.dispose()
