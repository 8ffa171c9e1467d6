"""Serializing image attributes back into <img> tags."""

import html
import re

FILE_UID_ATTRIBUTE = "data-htmlarea-file-uid"

_SIZE_PROPERTIES = frozenset({"width", "height"})

_TAG_OPEN_RE = re.compile(r"<img\b", re.IGNORECASE)
_ATTRIBUTE_TOKEN_RE = re.compile(r"""(?P<name>[^\s=/>]+)(?:(?P<sep>\s*=\s*)(?P<value>"[^"]*"|'[^']*'|[^\s>]+))?""")


def strip_size_declarations(style: str) -> str:
    """Remove width/height declarations, keeping max-width, border and the like."""
    kept = []
    for declaration in style.split(";"):
        name, sep, _ = declaration.partition(":")
        if not declaration.strip():
            continue
        if sep and name.strip().lower() in _SIZE_PROPERTIES:
            continue
        kept.append(declaration.strip())
    return "; ".join(kept) + (";" if kept else "")


def find_attribute(tag: str, name: str) -> re.Match[str] | None:
    """
    Locate an attribute token in an img tag by walking its attributes in order.

    Quoted values are consumed whole, so text such as alt="see src=x" never
    matches a lookup for src.
    """
    opening = _TAG_OPEN_RE.match(tag)
    if opening is None:
        return None

    pos = opening.end()
    while pos < len(tag):
        char = tag[pos]
        if char == ">":
            return None
        token = _ATTRIBUTE_TOKEN_RE.match(tag, pos) if not (char.isspace() or char == "/") else None
        if token is None:
            pos += 1
            continue
        if token.group("name").lower() == name:
            return token
        pos = token.end()
    return None


class ImageTagBuilder:
    """Builds img tags from attribute mappings."""

    def build(self, attributes: dict[str, str | int]) -> str:
        """
        Serialize attributes as a self-closing img tag.

        alt is always present. Sizes belong in the width/height attributes, so
        they are removed from style, and a style left empty is dropped.
        """
        attrs = dict(attributes)
        attrs.setdefault("alt", "")

        if "style" in attrs:
            style = strip_size_declarations(str(attrs["style"]))
            if style.strip():
                attrs["style"] = style
            else:
                del attrs["style"]

        rendered = " ".join(f'{name}="{html.escape(str(value), quote=True)}"' for name, value in attrs.items())
        return f"<img {rendered} />"

    def with_processed_image(
        self,
        attributes: dict[str, str | int],
        width: int,
        height: int,
        src: str,
        file_uid: int | None = None,
    ) -> dict[str, str | int]:
        """Return a copy of attributes pointing at a processed image."""
        updated = dict(attributes)
        updated["width"] = width
        updated["height"] = height
        updated["src"] = src
        if file_uid is not None:
            updated[FILE_UID_ATTRIBUTE] = file_uid
        return updated

    def make_relative_src(self, src: str, site_url: str) -> str:
        if site_url and src.startswith(site_url):
            return src[len(site_url) :]
        return src

    def replace_src(self, tag: str, src: str) -> str:
        """
        Point an existing tag at a new src without touching the rest of it.

        A tag without a src gets one inserted right after "<img".
        """
        escaped = html.escape(src, quote=True)
        token = find_attribute(tag, "src")
        if token is None:
            return re.sub(r"^<img\s*", lambda _: f'<img src="{escaped}" ', tag, count=1, flags=re.IGNORECASE)

        value = token.group("value") or ""
        quote = "'" if value.startswith("'") else '"'
        sep = token.group("sep") or "="
        return f"{tag[: token.start()]}{token.group('name')}{sep}{quote}{escaped}{quote}{tag[token.end() :]}"
