"""Data model for image reference validation findings."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ValidationIssueType(str, Enum):
    """Kinds of broken image references. Values are part of the report format."""

    PROCESSED_IMAGE_SRC = "processed_image_src"
    SRC_MISMATCH = "src_mismatch"
    MISSING_FILE_UID = "missing_file_uid"
    ORPHANED_FILE_UID = "orphaned_file_uid"
    BROKEN_SRC = "broken_src"
    NESTED_LINK_WRAPPER = "nested_link_wrapper"


@dataclass(frozen=True)
class ValidationIssue:
    """A single problem found in one image tag of one record field."""

    type: ValidationIssueType
    table: str
    uid: int
    field: str
    file_uid: int | None
    current_src: str | None
    expected_src: str | None
    img_index: int

    def is_fixable(self) -> bool:
        """Every issue except a missing file uid can be repaired."""
        return self.type is not ValidationIssueType.MISSING_FILE_UID

    def is_repairable(self) -> bool:
        """Fixable and a fix pass has something to write: a new src or a collapsed link."""
        if not self.is_fixable():
            return False
        return self.expected_src is not None or self.type is ValidationIssueType.NESTED_LINK_WRAPPER

    @property
    def record_key(self) -> str:
        return f"{self.table}:{self.uid}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "table": self.table,
            "uid": self.uid,
            "field": self.field,
            "fileUid": self.file_uid,
            "currentSrc": self.current_src,
            "expectedSrc": self.expected_src,
            "fixable": self.is_fixable(),
        }


@dataclass
class ValidationResult:
    """Issues and counters accumulated over one scan."""

    issues: list[ValidationIssue] = field(default_factory=list)
    scanned_records: int = 0
    scanned_images: int = 0
    _affected: set[str] = field(default_factory=set, repr=False)

    def add_issue(self, issue: ValidationIssue) -> None:
        self.issues.append(issue)
        self._affected.add(issue.record_key)

    def increment_scanned_records(self) -> None:
        self.scanned_records += 1

    def increment_scanned_images(self) -> None:
        self.scanned_images += 1

    @property
    def has_issues(self) -> bool:
        return bool(self.issues)

    @property
    def fixable_issues(self) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.is_fixable()]

    @property
    def repairable_issues(self) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.is_repairable()]

    @property
    def affected_records(self) -> int:
        """Number of distinct records with at least one issue."""
        return len(self._affected)

    def merge(self, other: "ValidationResult") -> "ValidationResult":
        """Combine two partial results, e.g. from scans of disjoint tables."""
        merged = ValidationResult(
            issues=[*self.issues, *other.issues],
            scanned_records=self.scanned_records + other.scanned_records,
            scanned_images=self.scanned_images + other.scanned_images,
        )
        merged._affected = self._affected | other._affected
        return merged

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the report format used by the CLI and admin API."""
        return {
            "scannedRecords": self.scanned_records,
            "scannedImages": self.scanned_images,
            "issueCount": len(self.issues),
            "affectedRecords": self.affected_records,
            "issues": [issue.to_dict() for issue in self.issues],
        }
