"""Finding and repairing broken image references in rich-text fields."""

import logging
import re
from collections import defaultdict
from collections.abc import Sequence

from rteimages.models.content import ReferenceConfig
from rteimages.models.validation import ValidationIssue, ValidationIssueType, ValidationResult
from rteimages.services.builder import FILE_UID_ATTRIBUTE, ImageTagBuilder
from rteimages.services.parser import ImageTagParser
from rteimages.services.repository import ContentRepository, RecordField
from rteimages.services.resolver import ImageFileResolver

logger = logging.getLogger(__name__)

# Two or more anchors opened back to back right before an image
_NESTED_ANCHORS_BEFORE_RE = re.compile(r"<a\b[^>]*>\s*<a\b[^>]*>\s*$", re.IGNORECASE)

_NESTED_LINK_RE = re.compile(
    r"""(?P<outer><a\b[^>]*>)(?P<inner>(?:\s*<a\b[^>]*>)+)\s*"""
    r"""(?P<img><img(?=[\s/>])(?:[^>"']|"[^"]*"|'[^']*')*>)(?P<closes>(?:\s*</a>)+)""",
    re.IGNORECASE,
)
_ANCHOR_OPEN_RE = re.compile(r"<a\b", re.IGNORECASE)
_ANCHOR_CLOSE_RE = re.compile(r"\s*</a>", re.IGNORECASE)


def collapse_nested_links(html: str, file_uids: set[int] | None = None, parser: ImageTagParser | None = None) -> str:
    """
    Reduce <a><a><img></a></a> to a single anchor around the image.

    The outermost anchor's attributes are kept. With file_uids set only
    images with those uids are touched.
    """
    parser = parser or ImageTagParser()

    def replace(match: re.Match[str]) -> str:
        img = match.group("img")
        if file_uids is not None:
            raw_uid = parser.extract_attributes(img).get(FILE_UID_ATTRIBUTE, "")
            if not raw_uid.isdigit() or int(raw_uid) not in file_uids:
                return match.group(0)

        needed = len(_ANCHOR_OPEN_RE.findall(match.group("inner"))) + 1
        closes = _ANCHOR_CLOSE_RE.findall(match.group("closes"))
        if len(closes) < needed:
            return match.group(0)
        return f"{match.group('outer')}{img}</a>{''.join(closes[needed:])}"

    return _NESTED_LINK_RE.sub(replace, html)


class RteImageReferenceValidator:
    """
    Classifies the images of rich-text fields against the file store.

    Scanning never writes. Fixes are a separate pass over a finished result.
    """

    def __init__(
        self,
        resolver: ImageFileResolver,
        repository: ContentRepository | None = None,
        config: ReferenceConfig | None = None,
        parser: ImageTagParser | None = None,
        builder: ImageTagBuilder | None = None,
    ) -> None:
        self.resolver = resolver
        self.repository = repository
        self.config = config or ReferenceConfig()
        self.parser = parser or ImageTagParser()
        self.builder = builder or ImageTagBuilder()

    def _require_repository(self) -> ContentRepository:
        if self.repository is None:
            raise RuntimeError("A content repository is required to scan stored records")
        return self.repository

    def is_processed_src(self, src: str) -> bool:
        return any(marker in src for marker in self.config.processed_markers)

    async def validate(self, limit_to_table: str | None = None) -> ValidationResult:
        """Scan every field referencing images, optionally limited to one table."""
        repository = self._require_repository()
        result = ValidationResult()

        for record in await repository.find_referencing_fields(limit_to_table):
            if not self.config.is_field_enabled(record.table, record.field):
                continue
            try:
                html = await repository.fetch_field_value(record)
                if not html:
                    continue
                result.increment_scanned_records()
                for issue in await self.validate_html(html, record.table, record.uid, record.field, result):
                    result.add_issue(issue)
            except Exception:
                logger.exception("Validation of %s failed", record.key)

        return result

    async def validate_html(
        self,
        html: str,
        table: str,
        uid: int,
        field: str,
        result: ValidationResult | None = None,
    ) -> list[ValidationIssue]:
        """Classify each image in one field value. Counts images on result if given."""
        segments = self.parser.split_by_image_tags(html)
        issues: list[ValidationIssue] = []
        img_index = 0

        for i in range(1, len(segments), 2):
            if result is not None:
                result.increment_scanned_images()

            attributes = self.parser.extract_attributes(segments[i])
            if attributes:
                preceding = "".join(segments[:i])
                issue = await self.detect_issue(attributes, table, uid, field, img_index, preceding)
                if issue is not None:
                    issues.append(issue)
            img_index += 1

        return issues

    async def detect_issue(
        self,
        attributes: dict[str, str],
        table: str,
        uid: int,
        field: str,
        img_index: int,
        preceding_html: str = "",
    ) -> ValidationIssue | None:
        """Return the single most relevant issue for one image, if any."""
        src = attributes.get("src")
        raw_uid = attributes.get(FILE_UID_ATTRIBUTE, "").strip()

        def issue(
            issue_type: ValidationIssueType,
            file_uid: int | None,
            expected: str | None = None,
            current: str | None = src,
        ) -> ValidationIssue:
            return ValidationIssue(
                type=issue_type,
                table=table,
                uid=uid,
                field=field,
                file_uid=file_uid,
                current_src=current,
                expected_src=expected,
                img_index=img_index,
            )

        if not raw_uid:
            return issue(ValidationIssueType.MISSING_FILE_UID, None)

        file_uid = int(raw_uid) if raw_uid.isdigit() else 0
        file = await self.resolver.resolve_by_uid(file_uid)
        if file is None:
            if not src:
                return issue(ValidationIssueType.BROKEN_SRC, file_uid)
            return issue(ValidationIssueType.ORPHANED_FILE_UID, file_uid)

        public_url = file.public_url
        if not public_url:
            return None

        if src and self.is_processed_src(src):
            return issue(ValidationIssueType.PROCESSED_IMAGE_SRC, file_uid, public_url)

        if src and src != public_url:
            return issue(ValidationIssueType.SRC_MISMATCH, file_uid, public_url)

        if not src:
            return issue(ValidationIssueType.BROKEN_SRC, file_uid, public_url)

        if _NESTED_ANCHORS_BEFORE_RE.search(preceding_html):
            return issue(ValidationIssueType.NESTED_LINK_WRAPPER, file_uid, current=None)

        return None

    def apply_fixes(self, html: str, issues: Sequence[ValidationIssue]) -> str:
        """Rewrite one field value so the given issues are resolved."""
        nested_uids = {
            issue.file_uid
            for issue in issues
            if issue.type is ValidationIssueType.NESTED_LINK_WRAPPER and issue.file_uid is not None
        }
        if nested_uids:
            html = self.collapse_nested_links(html, nested_uids)

        fix_map = {
            issue.file_uid: issue.expected_src
            for issue in issues
            if issue.is_fixable() and issue.file_uid is not None and issue.expected_src
        }
        if not fix_map:
            return html

        segments = self.parser.split_by_image_tags(html)
        for i in range(1, len(segments), 2):
            raw_uid = self.parser.extract_attributes(segments[i]).get(FILE_UID_ATTRIBUTE, "")
            if raw_uid.isdigit() and int(raw_uid) in fix_map:
                segments[i] = self.builder.replace_src(segments[i], fix_map[int(raw_uid)])
        return "".join(segments)

    def collapse_nested_links(self, html: str, file_uids: set[int] | None = None) -> str:
        return collapse_nested_links(html, file_uids, self.parser)

    async def fix(self, result: ValidationResult) -> int:
        """Apply all repairable issues, one rewrite per field. Returns the records updated."""
        repository = self._require_repository()

        grouped: dict[RecordField, list[ValidationIssue]] = defaultdict(list)
        for issue in result.repairable_issues:
            grouped[RecordField(issue.table, issue.uid, issue.field)].append(issue)

        updated = 0
        for record, issues in grouped.items():
            try:
                html = await repository.fetch_field_value(record)
                if not html:
                    continue
                fixed = self.apply_fixes(html, issues)
                if fixed != html:
                    await repository.write_field_value(record, fixed)
                    updated += 1
            except Exception:
                logger.exception("Fixing %s failed", record.key)

        logger.info("Fixed %d record(s)", updated)
        return updated
