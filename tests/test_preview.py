"""Tests for the backend preview."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from rteimages.models.validation import ValidationIssue, ValidationIssueType
from rteimages.services.preview import (
    PreviewRenderer,
    sanitize_text,
    strip_tags,
    summarize_issues,
    truncate,
)
from rteimages.services.resolver import ImageFileResolver
from rteimages.services.validator import RteImageReferenceValidator


def issue(issue_type: ValidationIssueType) -> ValidationIssue:
    return ValidationIssue(
        type=issue_type,
        table="tt_content",
        uid=1,
        field="bodytext",
        file_uid=None,
        current_src=None,
        expected_src=None,
        img_index=0,
    )


class TestSanitizeText:
    def test_replaces_control_characters(self):
        assert sanitize_text("a\x00b\x1fc") == "a\ufffdb\ufffdc"

    def test_keeps_whitespace(self):
        assert sanitize_text("line\tone\r\nline two") == "line\tone\r\nline two"

    def test_replaces_noncharacters(self):
        assert sanitize_text("x\ufffey") == "x\ufffdy"


class TestStripTags:
    def test_keeps_paragraphs_and_images(self):
        html = '<div><p>Hi <b>there</b></p><img src="a.jpg" alt="x"></div>'
        assert strip_tags(html) == '<p>Hi there</p><img src="a.jpg" alt="x">'

    def test_drops_script_content(self):
        assert strip_tags("<p>ok</p><script>alert(1)</script><style>p{}</style>") == "<p>ok</p>"

    def test_escapes_text(self):
        assert strip_tags("<p>Tom &amp; Jerry &lt;3</p>") == "<p>Tom &amp; Jerry &lt;3</p>"


class TestTruncate:
    def test_short_content_unchanged(self):
        assert truncate("<p>Hello</p>", 5) == "<p>Hello</p>"

    def test_cuts_text_and_closes_tags(self):
        assert truncate("<p>Hello world</p><p>Second</p>", 5) == "<p>Hello...</p>"

    def test_counts_text_across_elements(self):
        assert truncate("<p>abc</p><p>defgh</p>", 5) == "<p>abc</p><p>de...</p>"

    def test_images_do_not_count(self):
        html = '<p><img src="a.jpg">abc</p>'
        assert truncate(html, 3) == html

    def test_default_length(self):
        text = "x" * 2000
        assert truncate(f"<p>{text}</p>") == f"<p>{'x' * 1500}...</p>"


class TestSummarizeIssues:
    def test_counts_per_type(self):
        issues = [
            issue(ValidationIssueType.ORPHANED_FILE_UID),
            issue(ValidationIssueType.ORPHANED_FILE_UID),
            issue(ValidationIssueType.BROKEN_SRC),
        ]
        assert summarize_issues(issues) == "2 orphaned file reference(s), 1 broken src attribute(s)"

    def test_all_types_have_labels(self):
        issues = [issue(t) for t in ValidationIssueType]
        summary = summarize_issues(issues)
        for label in (
            "orphaned file reference(s)",
            "outdated src path(s)",
            "processed image URL(s)",
            "missing file UID(s)",
            "broken src attribute(s)",
            "nested link wrapper(s)",
        ):
            assert f"1 {label}" in summary


class TestPreviewRenderer:
    """Tests for PreviewRenderer."""

    @pytest.fixture
    def renderer(self, store, env) -> PreviewRenderer:
        return PreviewRenderer(RteImageReferenceValidator(ImageFileResolver(store, env)))

    @pytest.mark.asyncio
    async def test_clean_content_has_no_callout(self, renderer, store):
        store.add("/photo.jpg", uid=5)
        html = '<p>Text <img src="/fileadmin/photo.jpg" data-htmlarea-file-uid="5"></p>'
        result = await renderer.render(html, "tt_content", 1, "bodytext")
        assert "callout" not in result
        assert result == html

    @pytest.mark.asyncio
    async def test_callout_precedes_preview(self, renderer):
        html = '<p>Text <img src="/old.jpg" data-htmlarea-file-uid="999"></p>'
        result = await renderer.render(html, "tt_content", 1, "bodytext")
        assert result.startswith('<div class="callout callout-warning">')
        assert "1 orphaned file reference(s)." in result
        assert "rteimages validate --fix" in result
        assert result.endswith(html)

    @pytest.mark.asyncio
    async def test_preview_is_sanitized_and_truncated(self, store, env):
        renderer = PreviewRenderer(RteImageReferenceValidator(ImageFileResolver(store, env)), length=4)
        result = await renderer.render("<h1>Head\x00line</h1><p>more</p>", "tt_content", 1, "bodytext")
        assert result == "Head..."

    @pytest.mark.asyncio
    async def test_validation_failure_still_renders(self):
        validator = MagicMock(spec=RteImageReferenceValidator)
        validator.validate_html = AsyncMock(side_effect=RuntimeError("boom"))
        result = await PreviewRenderer(validator).render("<p>hello</p>", "tt_content", 1, "bodytext")
        assert result == "<p>hello</p>"

    def test_no_warning_without_issues(self, renderer):
        assert renderer.render_warning([]) == ""
