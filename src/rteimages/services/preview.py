"""Editor preview of rich-text fields with image reference warnings."""

import html as html_lib
import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from html.parser import HTMLParser

from jinja2 import Environment, PackageLoader, select_autoescape

from rteimages.models.validation import ValidationIssue, ValidationIssueType
from rteimages.services.validator import RteImageReferenceValidator

logger = logging.getLogger(__name__)

DEFAULT_PREVIEW_LENGTH = 1500
ALLOWED_PREVIEW_TAGS = frozenset({"img", "p"})
VOID_TAGS = frozenset({"area", "base", "br", "col", "embed", "hr", "img", "input", "link", "meta", "source", "wbr"})
_DROP_CONTENT_TAGS = frozenset({"script", "style"})

# C0 controls other than tab, LF and CR, plus noncharacters and lone surrogates
_INVALID_CHARS_RE = re.compile("[\x00-\x08\x0b\x0c\x0e-\x1f\x7f\ufffe\uffff\ud800-\udfff]")

ISSUE_LABELS: dict[ValidationIssueType, str] = {
    ValidationIssueType.ORPHANED_FILE_UID: "orphaned file reference(s)",
    ValidationIssueType.SRC_MISMATCH: "outdated src path(s)",
    ValidationIssueType.PROCESSED_IMAGE_SRC: "processed image URL(s)",
    ValidationIssueType.MISSING_FILE_UID: "missing file UID(s)",
    ValidationIssueType.BROKEN_SRC: "broken src attribute(s)",
    ValidationIssueType.NESTED_LINK_WRAPPER: "nested link wrapper(s)",
}


@dataclass
class TextNode:
    text: str


@dataclass
class ElementNode:
    tag: str
    start_tag: str
    children: list["Node"] = field(default_factory=list)
    self_closing: bool = False


Node = TextNode | ElementNode


class _TreeBuilder(HTMLParser):
    """Builds a lightweight node tree, keeping start tags verbatim."""

    def __init__(self, allowed_tags: frozenset[str] | None = None) -> None:
        super().__init__(convert_charrefs=True)
        self.allowed_tags = allowed_tags
        self.root = ElementNode(tag="", start_tag="")
        self._stack: list[ElementNode] = [self.root]
        self._dropping = 0

    def _keep(self, tag: str) -> bool:
        return self.allowed_tags is None or tag in self.allowed_tags

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if tag in _DROP_CONTENT_TAGS and self.allowed_tags is not None:
            self._dropping += 1
            return
        if self._dropping or not self._keep(tag):
            return
        node = ElementNode(tag=tag, start_tag=self.get_starttag_text() or f"<{tag}>")
        self._stack[-1].children.append(node)
        if tag not in VOID_TAGS:
            self._stack.append(node)

    def handle_startendtag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if self._dropping or not self._keep(tag):
            return
        self._stack[-1].children.append(
            ElementNode(tag=tag, start_tag=self.get_starttag_text() or f"<{tag} />", self_closing=True)
        )

    def handle_endtag(self, tag: str) -> None:
        if tag in _DROP_CONTENT_TAGS and self.allowed_tags is not None:
            self._dropping = max(0, self._dropping - 1)
            return
        if self._dropping or not self._keep(tag) or tag in VOID_TAGS:
            return
        for depth in range(len(self._stack) - 1, 0, -1):
            if self._stack[depth].tag == tag:
                del self._stack[depth:]
                break

    def handle_data(self, data: str) -> None:
        if not self._dropping:
            self._stack[-1].children.append(TextNode(data))


def parse_fragment(html: str, allowed_tags: frozenset[str] | None = None) -> ElementNode:
    builder = _TreeBuilder(allowed_tags)
    builder.feed(html)
    builder.close()
    return builder.root


def serialize(node: Node) -> str:
    if isinstance(node, TextNode):
        return html_lib.escape(node.text, quote=False)
    inner = "".join(serialize(child) for child in node.children)
    if not node.tag:
        return inner
    if node.self_closing or node.tag in VOID_TAGS:
        return node.start_tag
    return f"{node.start_tag}{inner}</{node.tag}>"


def sanitize_text(text: str) -> str:
    """Replace control characters and invalid code points with U+FFFD."""
    return _INVALID_CHARS_RE.sub("\ufffd", text)


def strip_tags(html: str, allowed_tags: frozenset[str] = ALLOWED_PREVIEW_TAGS) -> str:
    """Remove all tags except the allowed ones, keeping their text."""
    return serialize(parse_fragment(html, allowed_tags))


def _truncate_node(node: Node, remaining: int) -> tuple[Node | None, int]:
    """
    Copy node keeping at most `remaining` characters of text.

    Returns the pruned copy (None once the budget is gone) and the budget left.
    A budget of -1 marks that the cut already happened.
    """
    if remaining < 0:
        return None, remaining

    if isinstance(node, TextNode):
        if len(node.text) <= remaining:
            return TextNode(node.text), remaining - len(node.text)
        return TextNode(node.text[:remaining] + "..."), -1

    copy = ElementNode(tag=node.tag, start_tag=node.start_tag, self_closing=node.self_closing)
    for child in node.children:
        pruned, remaining = _truncate_node(child, remaining)
        if pruned is not None:
            copy.children.append(pruned)
        if remaining < 0:
            break
    return copy, remaining


def truncate(html: str, length: int = DEFAULT_PREVIEW_LENGTH) -> str:
    """Shorten html to `length` characters of text, keeping the markup well formed."""
    root = parse_fragment(html)
    pruned, _ = _truncate_node(root, length)
    return serialize(pruned) if pruned is not None else ""


def summarize_issues(issues: list[ValidationIssue]) -> str:
    counts = Counter(issue.type for issue in issues)
    return ", ".join(f"{counts[t]} {label}" for t, label in ISSUE_LABELS.items() if counts[t])


_templates = Environment(
    loader=PackageLoader("rteimages", "templates"),
    autoescape=select_autoescape(["html"]),
)


class PreviewRenderer:
    """Renders the backend preview of one rich-text field."""

    def __init__(self, validator: RteImageReferenceValidator, length: int = DEFAULT_PREVIEW_LENGTH) -> None:
        self.validator = validator
        self.length = length

    def render_warning(self, issues: list[ValidationIssue]) -> str:
        if not issues:
            return ""
        template = _templates.get_template("issue_callout.html")
        return template.render(summary=summarize_issues(issues))

    async def render(self, html: str, table: str, uid: int, field: str) -> str:
        """Return the callout (if any) followed by the truncated preview."""
        try:
            issues = await self.validator.validate_html(html, table, uid, field)
        except Exception:
            logger.exception("Preview validation of %s:%d failed", table, uid)
            issues = []

        content = truncate(strip_tags(sanitize_text(html)), self.length)
        return self.render_warning(issues) + content
