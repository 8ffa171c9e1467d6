"""File store contract and a local implementation backed by sys_file."""

import asyncio
import hashlib
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any, Protocol
from urllib.parse import quote

import filetype
from PIL import Image, ImageOps
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rteimages.models.db import StoredFile

logger = logging.getLogger(__name__)

CROP_SCALE_MASK = "Image.CropScaleMask"
DEFAULT_STORAGE = 1


class FileStoreError(Exception):
    """Base error raised by file store implementations."""


class FileDoesNotExist(FileStoreError):
    pass


class FolderDoesNotExist(FileStoreError):
    pass


class ProcessingUnavailable(FileStoreError):
    """The store cannot produce the requested processed variant."""


class FileHandle(Protocol):
    """A file known to the store."""

    @property
    def uid(self) -> int: ...

    @property
    def identifier(self) -> str: ...

    @property
    def properties(self) -> dict[str, Any]: ...

    @property
    def public_url(self) -> str | None: ...

    @property
    def is_public(self) -> bool: ...

    async def process(self, context: str, instructions: dict[str, Any]) -> "FileHandle": ...


class Folder(Protocol):
    @property
    def identifier(self) -> str: ...

    async def add_file(self, local_path: Path, filename: str) -> FileHandle: ...


class FileStore(Protocol):
    async def get_file_by_uid(self, uid: int) -> FileHandle: ...

    async def get_file_by_path(self, path: str) -> FileHandle: ...

    async def get_folder(self, identifier: str) -> Folder: ...


def split_combined_identifier(value: str) -> tuple[int, str]:
    """Split "1:/path/file.jpg" into (1, "/path/file.jpg")."""
    storage, sep, identifier = value.partition(":")
    if sep and storage.isdigit():
        return int(storage), "/" + identifier.lstrip("/")
    return DEFAULT_STORAGE, "/" + value.lstrip("/")


@dataclass
class LocalFile:
    """A sys_file row together with the store that owns it."""

    store: "LocalFileStore"
    record: StoredFile

    @property
    def uid(self) -> int:
        return self.record.uid

    @property
    def identifier(self) -> str:
        return self.record.identifier

    @property
    def properties(self) -> dict[str, Any]:
        return {
            "uid": self.record.uid,
            "name": self.record.name,
            "extension": self.record.extension,
            "mime_type": self.record.mime_type,
            "size": self.record.size,
            "width": self.record.width,
            "height": self.record.height,
            "original": self.record.original_uid,
        }

    @property
    def is_public(self) -> bool:
        return self.record.is_public

    @property
    def public_url(self) -> str | None:
        if not self.record.is_public:
            return None
        return self.store.public_url_for(self.record.identifier)

    async def process(self, context: str, instructions: dict[str, Any]) -> "LocalFile":
        return await self.store.process_file(self, context, instructions)


@dataclass
class LocalFolder:
    store: "LocalFileStore"
    identifier: str

    async def add_file(self, local_path: Path, filename: str) -> LocalFile:
        return await self.store.add_file(self.identifier, local_path, filename)


def _read_dimensions(path: Path) -> tuple[int, int]:
    try:
        with Image.open(path) as img:
            return img.size
    except Exception:
        return 0, 0


def _crop_scale(source: Path, target: Path, width: int, height: int) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    with Image.open(source) as img:
        result = ImageOps.fit(img, (width, height))
        result.save(target)


class LocalFileStore:
    """File store over the public directory and the sys_file table."""

    def __init__(self, session: AsyncSession, public_path: str, storage_base: str = "fileadmin") -> None:
        self.session = session
        self.public_path = Path(public_path)
        self.storage_base = storage_base.strip("/")

    @property
    def root(self) -> Path:
        return self.public_path / self.storage_base

    def public_url_for(self, identifier: str) -> str:
        return quote(f"/{self.storage_base}{identifier}")

    def _absolute(self, identifier: str) -> Path:
        return self.root / identifier.lstrip("/")

    async def get_file_by_uid(self, uid: int) -> LocalFile:
        record = await self.session.get(StoredFile, uid)
        if record is None:
            raise FileDoesNotExist(f"No file with uid {uid}")
        return LocalFile(self, record)

    async def get_file_by_path(self, path: str) -> LocalFile:
        """Look up a file by combined identifier or by public path."""
        if ":" in path.split("/", 1)[0]:
            storage, identifier = split_combined_identifier(path)
        else:
            relative = path.lstrip("/")
            prefix = self.storage_base + "/"
            if relative.startswith(prefix):
                relative = relative[len(prefix) :]
            storage, identifier = DEFAULT_STORAGE, "/" + relative

        result = await self.session.execute(
            select(StoredFile).where(StoredFile.storage == storage, StoredFile.identifier == identifier)
        )
        record = result.scalars().first()
        if record is None:
            raise FileDoesNotExist(f"No file at {path}")
        return LocalFile(self, record)

    async def get_folder(self, identifier: str) -> LocalFolder:
        storage, folder = split_combined_identifier(identifier)
        if storage != DEFAULT_STORAGE:
            raise FolderDoesNotExist(f"Unknown storage {storage}")
        folder = folder.rstrip("/") + "/"
        self._absolute(folder).mkdir(parents=True, exist_ok=True)
        return LocalFolder(self, folder)

    async def add_file(self, folder: str, local_path: Path, filename: str) -> LocalFile:
        """Copy a local file into a folder and register it."""
        name = PurePosixPath(filename).name
        stem, suffix = PurePosixPath(name).stem, PurePosixPath(name).suffix
        target = self._absolute(folder + name)
        counter = 0
        while target.exists():
            counter += 1
            name = f"{stem}_{counter:02d}{suffix}"
            target = self._absolute(folder + name)

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, shutil.copyfile, local_path, target)
        width, height = await loop.run_in_executor(None, _read_dimensions, target)
        kind = filetype.guess(str(target))

        record = StoredFile(
            storage=DEFAULT_STORAGE,
            identifier=folder + name,
            name=name,
            extension=suffix.lstrip(".").lower(),
            mime_type=kind.mime if kind else "",
            size=target.stat().st_size,
            width=width,
            height=height,
        )
        self.session.add(record)
        await self.session.flush()
        await self.session.refresh(record)
        logger.info("Added file %s as uid %d", record.identifier, record.uid)
        return LocalFile(self, record)

    async def process_file(self, file: LocalFile, context: str, instructions: dict[str, Any]) -> LocalFile:
        """Create (or reuse) a crop-scale-mask variant of a file."""
        if context != CROP_SCALE_MASK:
            raise ProcessingUnavailable(f"Unsupported processing context {context}")

        width = int(instructions.get("width", 0))
        height = int(instructions.get("height", 0))
        if width <= 0 or height <= 0:
            raise ProcessingUnavailable("Processing needs positive width and height")

        key_source = f"{file.uid}:{sorted(instructions.items())}"
        key = hashlib.sha256(key_source.encode()).hexdigest()[:10]
        stem = PurePosixPath(file.record.name).stem
        extension = file.record.extension or "jpg"
        identifier = f"/_processed_/{key[0]}/{key[1]}/csm_{stem}_{key}.{extension}"

        result = await self.session.execute(select(StoredFile).where(StoredFile.identifier == identifier))
        existing = result.scalars().first()
        if existing is not None:
            return LocalFile(self, existing)

        source = self._absolute(file.identifier)
        target = self._absolute(identifier)
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, _crop_scale, source, target, width, height)
        except OSError as e:
            raise ProcessingUnavailable(f"Could not process {file.identifier}: {e}") from e

        record = StoredFile(
            storage=file.record.storage,
            identifier=identifier,
            name=target.name,
            extension=extension,
            mime_type=file.record.mime_type,
            size=target.stat().st_size,
            width=width,
            height=height,
            original_uid=file.uid,
            is_public=file.record.is_public,
        )
        self.session.add(record)
        await self.session.flush()
        await self.session.refresh(record)
        return LocalFile(self, record)
