"""Locating and reading <img> tags inside rich-text HTML."""

import re
from html.parser import HTMLParser

# Quoted attribute values may contain ">" so they are matched as whole units.
IMG_TAG_RE = re.compile(r"""(<img(?=[\s/>])(?:[^>"']|"[^"]*"|'[^']*')*>)""", re.IGNORECASE)

_LEADING_INT_RE = re.compile(r"^\s*(\d+)")


class TagAttributeCollector(HTMLParser):
    """Collects the attributes of the first tag of a given name fed to it."""

    def __init__(self, tag: str = "img") -> None:
        super().__init__(convert_charrefs=True)
        self.tag = tag
        self.attributes: dict[str, str] | None = None

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if tag != self.tag or self.attributes is not None:
            return
        collected: dict[str, str] = {}
        for name, value in attrs:
            # First occurrence wins, as in browsers
            collected.setdefault(name, value if value is not None else "")
        self.attributes = collected


class ImageTagParser:
    """Splits HTML around img tags and reads their attributes."""

    def split_by_image_tags(self, html: str) -> list[str]:
        """
        Split HTML into alternating text and img-tag segments.

        Odd positions hold the original img tags byte for byte. Joining the
        segments gives back the input unchanged.
        """
        return IMG_TAG_RE.split(html)

    def extract_attributes(self, tag: str, name: str = "img") -> dict[str, str]:
        """Return the attributes of an img (or other named) tag, or {} when it can't be read."""
        if not tag or "<" not in tag:
            return {}

        collector = TagAttributeCollector(name)
        try:
            collector.feed(tag)
            collector.close()
        except Exception:
            return {}

        return collector.attributes or {}

    def get_dimension(self, attributes: dict[str, str | int], dimension: str) -> int:
        """
        Return the pixel width or height of an image.

        A width/height declaration in the style attribute wins over the plain
        attribute, since inline CSS reflects the most recent resize in the editor.
        """
        style = str(attributes.get("style") or "")
        if style:
            pattern = rf"(?<![\w-]){re.escape(dimension)}\s*:\s*(\d+)\s*px"
            match = re.search(pattern, style, re.IGNORECASE)
            if match:
                return int(match.group(1))

        value = attributes.get(dimension)
        if value is None or value == "":
            return 0
        if isinstance(value, int):
            return value
        match = _LEADING_INT_RE.match(value)
        return int(match.group(1)) if match else 0

    def normalize_image_src(self, src: str, site_url: str, site_path: str) -> str:
        """Turn a src carrying the site's sub-path into an absolute URL."""
        src = src.strip()
        if site_path and src.startswith(site_path):
            return site_url + src[len(site_path) :]
        return src

    def calculate_site_path(self, site_url: str, request_host: str) -> str:
        """Return the path the site is installed under, e.g. "/~user/"."""
        if not request_host:
            return ""
        return site_url.replace(request_host, "")
