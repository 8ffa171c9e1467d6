"""Resolving rich-text images into presentation data for public pages."""

import html as html_lib
import json
import logging
import re
from typing import Any

from jinja2 import Environment, PackageLoader, select_autoescape

from rteimages.models.content import ImageRenderingDto, LinkConfiguration, RenderOptions
from rteimages.services.builder import FILE_UID_ATTRIBUTE
from rteimages.services.parser import ImageTagParser
from rteimages.services.resolver import ImageFileResolver
from rteimages.services.storage import FileHandle
from rteimages.services.validator import collapse_nested_links

logger = logging.getLogger(__name__)

QUALITY_MULTIPLIERS: dict[str, float] = {
    "none": 1.0,
    "low": 0.9,
    "standard": 1.0,
    "retina": 2.0,
    "ultra": 3.0,
    "print": 6.0,
}

ALLOWED_LINK_PROTOCOLS = ("http:", "https:", "mailto:", "tel:", "t3:")
POPUP_LINK_CLASS = "popup-link"

_SAFE_DATA_IMAGE_RE = re.compile(r"^data:image/(?:png|jpeg|gif|webp)[;,]", re.IGNORECASE)

_IMG = r"""<img(?=[\s/>])(?:[^>"']|"[^"]*"|'[^']*')*>"""
_IMAGE_BLOCK_RE = re.compile(
    r"(?P<figure><figure\b[^>]*>)\s*"
    rf"(?:(?P<figure_anchor><a\b[^>]*>)\s*(?P<figure_linked>{_IMG})\s*</a>|(?P<figure_img>{_IMG}))\s*"
    r"(?:<figcaption\b[^>]*>(?P<caption>.*?)</figcaption>)?\s*</figure>"
    rf"|(?P<anchor><a\b[^>]*>)\s*(?P<linked>{_IMG})\s*</a>|(?P<bare>{_IMG})",
    re.IGNORECASE | re.DOTALL,
)
_TAG_RE = re.compile(r"<[^>]+>")


def is_allowed_link_url(url: str) -> bool:
    """Accept web, mail, phone and page links, and relative paths. Reject other schemes."""
    url = url.strip()
    if not url:
        return False
    lowered = url.lower()
    if lowered.startswith(ALLOWED_LINK_PROTOCOLS):
        return True
    if url.startswith(("/", "#", "?")):
        return True

    colon = url.find(":")
    if colon == -1:
        return True
    # "path/to:file" is a relative path, not a scheme
    slash = url.find("/")
    return slash != -1 and slash < colon


def get_quality_multiplier(quality: str | None) -> float:
    if not quality:
        return 1.0
    multiplier = QUALITY_MULTIPLIERS.get(quality.lower())
    if multiplier is None:
        logger.warning("Invalid image quality %r, using standard", quality)
        return 1.0
    return multiplier


def _capped(size: int, multiplier: float, original: int) -> int:
    """Scale a display size for processing, never beyond the original."""
    scaled = round(size * multiplier)
    return min(scaled, original) if original > 0 else scaled


def _popup_config(value: str | None) -> dict[str, Any] | None:
    """Decode the data-popup JSON written on rendered popup links."""
    if not value:
        return None
    try:
        config = json.loads(value)
    except ValueError:
        logger.warning("Ignoring malformed popup configuration")
        return None
    return config if isinstance(config, dict) else None


def _override(attributes: dict[str, str], name: str) -> str | None:
    """Value of data-<name>-override: "true" means use the attribute itself."""
    override = attributes.get(f"data-{name}-override")
    if override is None:
        return None
    if override == "true":
        return attributes.get(name, "")
    return override


class ImageRenderingResolver:
    """Turns img attributes into validated ImageRenderingDto objects."""

    def __init__(self, resolver: ImageFileResolver, parser: ImageTagParser | None = None) -> None:
        self.resolver = resolver
        self.parser = parser or ImageTagParser()

    def is_no_scale(self, attributes: dict[str, str], options: RenderOptions) -> bool:
        if attributes.get("data-quality", "").lower() == "none":
            return True
        no_scale = attributes.get("data-noscale")
        if no_scale is not None:
            return no_scale.lower() not in ("false", "0")
        return options.no_scale

    def should_skip_processing(
        self, file: FileHandle, width: int, height: int, no_scale: bool, options: RenderOptions
    ) -> bool:
        properties = file.properties
        if str(properties.get("extension", "")).lower() == "svg" or properties.get("mime_type") == "image/svg+xml":
            return True
        if no_scale:
            return True
        if width == int(properties.get("width") or 0) and height == int(properties.get("height") or 0):
            max_size = options.max_file_size_for_auto
            if max_size > 0 and int(properties.get("size") or 0) > max_size:
                return False
            return True
        return False

    def build_link(self, link_attributes: dict[str, str] | None) -> LinkConfiguration | None:
        if not link_attributes:
            return None
        href = link_attributes.get("href", "")
        if not is_allowed_link_url(href):
            logger.warning("Dropping image link with disallowed URL: %s", href[:100])
            return None
        css_class = link_attributes.get("class") or None
        popup_config = link_attributes.get("data-popup")
        is_popup = popup_config is not None or POPUP_LINK_CLASS in (css_class or "").split()
        return LinkConfiguration(
            url=href.strip(),
            target=link_attributes.get("target") or None,
            css_class=css_class,
            is_popup=is_popup,
            js_config=_popup_config(popup_config) if is_popup else None,
        )

    def _html_attributes(self, attributes: dict[str, str], options: RenderOptions) -> dict[str, str]:
        html_attributes = {name: attributes[name] for name in ("class", "id") if attributes.get(name)}
        if options.lazy_loading:
            html_attributes["loading"] = options.lazy_loading
        return html_attributes

    def _caption(self, attributes: dict[str, str]) -> str | None:
        caption = attributes.get("data-caption", "").strip()
        return html_lib.escape(caption) if caption else None

    async def resolve(
        self,
        attributes: dict[str, str],
        options: RenderOptions | None = None,
        link_attributes: dict[str, str] | None = None,
        figure_class: str | None = None,
    ) -> ImageRenderingDto | None:
        options = options or RenderOptions()
        raw_uid = attributes.get(FILE_UID_ATTRIBUTE, "").strip()
        if not raw_uid.isdigit() or int(raw_uid) <= 0:
            return self.resolve_external(attributes, options, link_attributes, figure_class)

        file = await self.resolver.resolve_by_uid(int(raw_uid))
        if file is None:
            return None
        if not file.is_public or not file.public_url:
            logger.warning("File %d is not publicly accessible", file.uid)
            return None

        properties = file.properties
        width = self.parser.get_dimension(attributes, "width") or int(properties.get("width") or 0)
        height = self.parser.get_dimension(attributes, "height") or int(properties.get("height") or 0)

        src = file.public_url
        no_scale = self.is_no_scale(attributes, options)
        if not self.should_skip_processing(file, width, height, no_scale, options):
            multiplier = get_quality_multiplier(attributes.get("data-quality"))
            processing_width = _capped(width, multiplier, int(properties.get("width") or 0))
            processing_height = _capped(height, multiplier, int(properties.get("height") or 0))
            processed = await self.resolver.process_image(file, processing_width, processing_height)
            if processed is not None and processed.public_url:
                src = processed.public_url

        link = self.build_link(link_attributes)
        if link is None and (attributes.get("data-htmlarea-zoom") or attributes.get("data-htmlarea-clickenlarge")):
            link = LinkConfiguration(
                url=file.public_url,
                target="_blank",
                css_class=POPUP_LINK_CLASS,
                is_popup=True,
                js_config=options.popup,
            )

        alt = _override(attributes, "alt")
        if alt is None:
            alt = attributes.get("alt") or str(properties.get("alternative") or "")
        title = _override(attributes, "title")
        if title is None:
            title = attributes.get("title") or properties.get("title") or None

        return ImageRenderingDto(
            src=src,
            width=width,
            height=height,
            alt=alt,
            title=title,
            html_attributes=self._html_attributes(attributes, options),
            caption=self._caption(attributes),
            link=link,
            is_magic_image=True,
            figure_class=figure_class,
        )

    def resolve_external(
        self,
        attributes: dict[str, str],
        options: RenderOptions,
        link_attributes: dict[str, str] | None = None,
        figure_class: str | None = None,
    ) -> ImageRenderingDto | None:
        """DTO for an image that is not in the file store."""
        src = attributes.get("src", "").strip()
        if not src:
            return None

        lowered = src.lower()
        if lowered.startswith("data:"):
            if not _SAFE_DATA_IMAGE_RE.match(src):
                logger.warning("Rejected inline image data of unsupported type")
                return None
        elif not lowered.startswith(("http://", "https://")):
            if not is_allowed_link_url(src):
                logger.warning("Rejected image src with disallowed scheme: %s", src[:100])
                return None
            if not src.startswith("/"):
                src = "/" + src

        return ImageRenderingDto(
            src=src,
            width=self.parser.get_dimension(attributes, "width"),
            height=self.parser.get_dimension(attributes, "height"),
            alt=attributes.get("alt", ""),
            title=attributes.get("title") or None,
            html_attributes=self._html_attributes(attributes, options),
            caption=self._caption(attributes),
            link=self.build_link(link_attributes),
            is_magic_image=False,
            figure_class=figure_class,
        )


_templates = Environment(
    loader=PackageLoader("rteimages", "templates"),
    autoescape=select_autoescape(["html"]),
)


class ImageRenderer:
    """Renders ImageRenderingDto objects to HTML."""

    def render(self, dto: ImageRenderingDto) -> str:
        return _templates.get_template("image.html").render(dto=dto)


class ContentRenderer:
    """Renders every image of a rich-text field for public output."""

    def __init__(
        self,
        resolver: ImageRenderingResolver,
        renderer: ImageRenderer | None = None,
        options: RenderOptions | None = None,
    ) -> None:
        self.resolver = resolver
        self.renderer = renderer or ImageRenderer()
        self.options = options or RenderOptions()

    async def render(self, html: str) -> str:
        """
        Replace each image (with its link and figure, if any) by its rendered form.

        Redundant nested anchors are collapsed first, so an image is never
        wrapped twice. Images that fail to resolve are left as they are.
        """
        html = collapse_nested_links(html, parser=self.resolver.parser)
        parts: list[str] = []
        position = 0

        for match in _IMAGE_BLOCK_RE.finditer(html):
            parts.append(html[position : match.start()])
            position = match.end()
            parts.append(await self._render_block(match) or match.group(0))

        parts.append(html[position:])
        return "".join(parts)

    async def _render_block(self, match: re.Match[str]) -> str | None:
        parser = self.resolver.parser
        anchor = match.group("figure_anchor") or match.group("anchor")
        tag = match.group("figure_linked") or match.group("figure_img") or match.group("linked") or match.group("bare")
        attributes = parser.extract_attributes(tag)
        if not attributes:
            return None
        link_attributes: dict[str, Any] | None = parser.extract_attributes(anchor, name="a") if anchor else None

        figure_class = None
        if match.group("figure"):
            # figcaption is the visible caption, so it wins over data-caption
            caption = html_lib.unescape(_TAG_RE.sub("", match.group("caption") or "")).strip()
            if caption:
                attributes["data-caption"] = caption
            classes = parser.extract_attributes(match.group("figure"), name="figure").get("class", "").split()
            figure_class = " ".join(name for name in classes if name != "image") or None

        dto = await self.resolver.resolve(attributes, self.options, link_attributes, figure_class)
        return self.renderer.render(dto) if dto is not None else None
