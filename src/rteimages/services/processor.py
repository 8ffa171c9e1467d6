"""Normalizing images in rich-text HTML when content is saved."""

import logging
from urllib.parse import unquote

from rteimages.models.content import ReferenceConfig
from rteimages.services.builder import FILE_UID_ATTRIBUTE, ImageTagBuilder
from rteimages.services.environment import EnvironmentInfo
from rteimages.services.parser import ImageTagParser
from rteimages.services.resolver import DEFAULT_IMPORT_FOLDER, ImageFileResolver
from rteimages.services.storage import FileHandle

logger = logging.getLogger(__name__)

Attributes = dict[str, str | int]


class RteImageProcessor:
    """
    Rewrites each img tag so it points at a correctly sized managed file.

    Existing files get a processed variant matching the size chosen in the
    editor, external images are imported into the store, and local URLs are
    linked to their file uid. Running it on its own output changes nothing.
    """

    def __init__(
        self,
        resolver: ImageFileResolver,
        config: ReferenceConfig | None = None,
        import_folder: str = DEFAULT_IMPORT_FOLDER,
        parser: ImageTagParser | None = None,
        builder: ImageTagBuilder | None = None,
    ) -> None:
        self.resolver = resolver
        self.config = config or ReferenceConfig()
        self.import_folder = import_folder
        self.parser = parser or ImageTagParser()
        self.builder = builder or ImageTagBuilder()

    async def transform(self, html: str, env: EnvironmentInfo) -> str:
        if not env.is_backend_request:
            return html

        segments = self.parser.split_by_image_tags(html)
        if len(segments) <= 1:
            return html

        site_path = self.parser.calculate_site_path(env.site_url, env.request_host)
        for i in range(1, len(segments), 2):
            segments[i] = await self._transform_tag(segments[i], env, site_path)
        return "".join(segments)

    async def _transform_tag(self, tag: str, env: EnvironmentInfo, site_path: str) -> str:
        attributes: Attributes = dict(self.parser.extract_attributes(tag))
        src = str(attributes.get("src", "")).strip()
        if not src:
            return tag

        absolute_url = self.parser.normalize_image_src(src, env.site_url, site_path)
        raw_uid = str(attributes.get(FILE_UID_ATTRIBUTE, "")).strip()
        original = await self.resolver.resolve_by_uid(int(raw_uid)) if raw_uid.isdigit() else None

        width = self.parser.get_dimension(attributes, "width")
        height = self.parser.get_dimension(attributes, "height")

        if original is not None:
            width = width or int(original.properties.get("width") or 0)
            height = height or int(original.properties.get("height") or 0)
            attributes = await self._process_existing(attributes, original, absolute_url, width, height, env)
        elif self.resolver.fetcher.is_external_url(absolute_url) and not absolute_url.startswith(env.site_url):
            imported = await self._import_external(attributes, absolute_url, width, height, env)
            if imported is None:
                return tag
            attributes = imported
        elif env.site_url and absolute_url.startswith(env.site_url):
            attributes = await self._link_local(attributes, absolute_url, env)

        attributes["src"] = self.builder.make_relative_src(str(attributes.get("src", src)), env.site_url)
        return self.builder.build(attributes)

    async def _process_existing(
        self,
        attributes: Attributes,
        original: FileHandle,
        absolute_url: str,
        width: int,
        height: int,
        env: EnvironmentInfo,
    ) -> Attributes:
        public_url = original.public_url or ""
        if absolute_url in (env.site_url.rstrip("/") + public_url, public_url):
            return attributes
        if width <= 0 or height <= 0:
            return attributes

        processed = await self.resolver.process_image(original, width, height)
        if processed is None or not processed.public_url:
            return attributes
        return self.builder.with_processed_image(
            attributes,
            int(processed.properties.get("width") or width),
            int(processed.properties.get("height") or height),
            processed.public_url,
        )

    async def _import_external(
        self, attributes: Attributes, url: str, width: int, height: int, env: EnvironmentInfo
    ) -> Attributes | None:
        if not self.config.fetch_external_images or not env.user:
            return None

        imported = await self.resolver.import_external_image(url, self.import_folder)
        if imported is None:
            return None

        width = width or int(imported.properties.get("width") or 0)
        height = height or int(imported.properties.get("height") or 0)
        processed = await self.resolver.process_image(imported, width, height)
        if processed is not None and processed.public_url:
            return self.builder.with_processed_image(
                attributes,
                int(processed.properties.get("width") or width),
                int(processed.properties.get("height") or height),
                processed.public_url,
                imported.uid,
            )

        updated = dict(attributes)
        updated["src"] = imported.public_url or url
        updated[FILE_UID_ATTRIBUTE] = imported.uid
        return updated

    async def _link_local(self, attributes: Attributes, url: str, env: EnvironmentInfo) -> Attributes:
        path = unquote(url[len(env.site_url) :])
        file = await self.resolver.resolve_by_path(path)
        if file is None:
            return attributes

        updated = dict(attributes)
        original_uid = file.properties.get("original")
        updated[FILE_UID_ATTRIBUTE] = int(original_uid) if original_uid else file.uid
        return updated
