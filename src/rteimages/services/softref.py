"""Soft reference extraction from rich-text image tags."""

import hashlib
from dataclasses import dataclass

from rteimages.models.db import FILE_TABLE
from rteimages.services.builder import FILE_UID_ATTRIBUTE, find_attribute
from rteimages.services.parser import ImageTagParser


@dataclass(frozen=True)
class SoftReference:
    """One image's pointer to a managed file."""

    token_id: str
    match_string: str
    file_uid: int

    @property
    def record_ref(self) -> str:
        return f"{FILE_TABLE}:{self.file_uid}"

    @property
    def substitution(self) -> dict[str, str]:
        return {
            "type": "db",
            "recordRef": self.record_ref,
            "tokenID": self.token_id,
            "tokenValue": str(self.file_uid),
        }


@dataclass(frozen=True)
class SoftReferenceResult:
    content: str  # input with each uid attribute replaced by a {softref:token} marker
    references: list[SoftReference]


def _token_id(seed: str, index: int) -> str:
    return hashlib.md5(f"{seed}:{index}".encode()).hexdigest()


def extract_file_references(html: str, seed: str = "", parser: ImageTagParser | None = None) -> SoftReferenceResult:
    """Find every image carrying a file uid and mark it with a token."""
    parser = parser or ImageTagParser()
    segments = parser.split_by_image_tags(html)
    references: list[SoftReference] = []

    for i in range(1, len(segments), 2):
        tag = segments[i]
        attributes = parser.extract_attributes(tag)
        raw_uid = attributes.get(FILE_UID_ATTRIBUTE, "")
        if not raw_uid.isdigit() or int(raw_uid) <= 0:
            continue

        reference = SoftReference(
            token_id=_token_id(seed, i),
            match_string=tag,
            file_uid=int(raw_uid),
        )
        references.append(reference)
        token = find_attribute(tag, FILE_UID_ATTRIBUTE)
        if token is not None:
            segments[i] = f"{tag[: token.start()]}{{softref:{reference.token_id}}}{tag[token.end() :]}"

    return SoftReferenceResult(content="".join(segments), references=references)
