"""Resolving image references to files in the managed store."""

import hashlib
import logging
import tempfile
import time
from pathlib import Path, PurePosixPath
from typing import Any
from urllib.parse import unquote, urlsplit

from rteimages.services.environment import EnvironmentInfo
from rteimages.services.fetcher import ExternalImageFetcher
from rteimages.services.security import SecurityValidator, sanitize_url_for_log
from rteimages.services.storage import CROP_SCALE_MASK, FileHandle, FileStore, FileStoreError

logger = logging.getLogger(__name__)

DEFAULT_IMPORT_FOLDER = "1:/_temp_/"


class ImageFileResolver:
    """Looks up, processes and imports files. Every failure returns None."""

    def __init__(
        self,
        store: FileStore,
        env: EnvironmentInfo,
        security: SecurityValidator | None = None,
        fetcher: ExternalImageFetcher | None = None,
    ) -> None:
        self.store = store
        self.env = env
        self.security = security or SecurityValidator()
        self.fetcher = fetcher or ExternalImageFetcher(self.security)

    async def resolve_by_uid(self, uid: int) -> FileHandle | None:
        if uid <= 0:
            return None
        try:
            return await self.store.get_file_by_uid(uid)
        except FileStoreError as e:
            logger.warning("File uid %d could not be resolved: %s", uid, e)
            return None

    async def resolve_by_path(self, path: str) -> FileHandle | None:
        """Resolve a path below the public root, refusing anything that escapes it."""
        path = path.strip()
        if not path:
            return None

        if self.security.validate_local_path(path, self.env.public_path) is None:
            logger.warning("Rejected local image path: %s", path)
            return None

        try:
            return await self.store.get_file_by_path(path)
        except FileStoreError as e:
            logger.warning("File at %s could not be resolved: %s", path, e)
            return None

    async def process_image(
        self,
        file: FileHandle,
        width: int,
        height: int,
        options: dict[str, Any] | None = None,
    ) -> FileHandle | None:
        if width <= 0 or height <= 0:
            return None

        instructions = {"width": width, "height": height, **(options or {})}
        try:
            return await file.process(CROP_SCALE_MASK, instructions)
        except Exception as e:
            logger.error("Processing file %d to %dx%d failed: %s", file.uid, width, height, e)
            return None

    def _import_filename(self, url: str) -> str:
        basename = PurePosixPath(unquote(urlsplit(url).path)).name
        extension = PurePosixPath(basename).suffix.lstrip(".").lower()
        if not self.security.is_allowed_extension(extension):
            extension = "jpg"
        digest = hashlib.sha256(f"{url}{time.time()}".encode()).hexdigest()[:12]
        return f"external_{digest}.{extension}"

    async def import_external_image(self, url: str, target_folder: str = DEFAULT_IMPORT_FOLDER) -> FileHandle | None:
        """
        Download an external image and add it to a store folder.

        The bytes go through a temporary directory that is removed on every
        exit path before this returns.
        """
        content = await self.fetcher.fetch(url)
        if content is None:
            return None

        filename = self._import_filename(url)
        try:
            folder = await self.store.get_folder(target_folder)
            with tempfile.TemporaryDirectory(prefix="rte_img_") as tmpdir:
                temp_path = Path(tmpdir) / filename
                temp_path.write_bytes(content)
                file = await folder.add_file(temp_path, filename)
        except Exception as e:
            logger.error("Importing %s into %s failed: %s", sanitize_url_for_log(url), target_folder, e)
            return None

        logger.info("Imported external image %s as file %d", sanitize_url_for_log(url), file.uid)
        return file

    async def file_exists(self, uid: int) -> bool:
        return await self.resolve_by_uid(uid) is not None
