"""Keeping stored image src values in step with file moves and renames."""

import logging

from rteimages.models.validation import ValidationIssueType, ValidationResult
from rteimages.services.builder import FILE_UID_ATTRIBUTE, ImageTagBuilder
from rteimages.services.parser import ImageTagParser
from rteimages.services.repository import ContentRepository
from rteimages.services.storage import FileHandle
from rteimages.services.validator import RteImageReferenceValidator

logger = logging.getLogger(__name__)


class ReferenceUpdater:
    """Rewrites image src attributes after the file store changes."""

    def __init__(
        self,
        repository: ContentRepository,
        parser: ImageTagParser | None = None,
        builder: ImageTagBuilder | None = None,
    ) -> None:
        self.repository = repository
        self.parser = parser or ImageTagParser()
        self.builder = builder or ImageTagBuilder()

    def replace_file_src(self, html: str, file_uid: int, public_url: str) -> tuple[str, int]:
        """Point every image of file_uid at public_url. Returns (html, tags changed)."""
        segments = self.parser.split_by_image_tags(html)
        changed = 0
        for i in range(1, len(segments), 2):
            attributes = self.parser.extract_attributes(segments[i])
            if attributes.get(FILE_UID_ATTRIBUTE, "").strip() != str(file_uid):
                continue
            if attributes.get("src") == public_url:
                continue
            segments[i] = self.builder.replace_src(segments[i], public_url)
            changed += 1
        return "".join(segments), changed

    async def update_references(self, file: FileHandle) -> int:
        """Update every record referencing a moved or renamed file."""
        public_url = file.public_url
        if file.uid <= 0 or not public_url:
            logger.debug("Skipping reference update for file %s without public URL", file.uid)
            return 0

        updated = 0
        for record in await self.repository.find_referencing_fields(file_uid=file.uid):
            html = await self.repository.fetch_field_value(record)
            if not html:
                continue
            new_html, changed = self.replace_file_src(html, file.uid, public_url)
            if changed:
                await self.repository.write_field_value(record, new_html)
                updated += 1

        logger.info("Updated %d record(s) referencing file %d", updated, file.uid)
        return updated

    # Move and rename both change the public URL and need the same handling
    handle_file_moved = update_references
    handle_file_renamed = update_references

    async def upgrade_processed_src(
        self, validator: RteImageReferenceValidator, limit_to_table: str | None = None
    ) -> int:
        """Repoint images stored with processed rendition URLs to their originals."""
        result = await validator.validate(limit_to_table)
        processed = ValidationResult()
        for issue in result.issues:
            if issue.type is ValidationIssueType.PROCESSED_IMAGE_SRC:
                processed.add_issue(issue)

        if not processed.has_issues:
            logger.info("No processed image URLs found")
            return 0
        return await validator.fix(processed)
