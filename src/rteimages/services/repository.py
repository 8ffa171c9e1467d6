"""Database access to rich-text fields and the reference index."""

import re
from dataclasses import dataclass

from sqlalchemy import column, delete, select, table, update
from sqlalchemy.ext.asyncio import AsyncSession

from rteimages.models.db import FILE_TABLE, SOFTREF_KEY, ReferenceIndexEntry
from rteimages.services.softref import extract_file_references

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _check_identifier(name: str) -> str:
    if not _IDENTIFIER_RE.match(name):
        raise ValueError(f"Invalid table or field name: {name!r}")
    return name


@dataclass(frozen=True)
class RecordField:
    """A rich-text field of one record."""

    table: str
    uid: int
    field: str

    @property
    def key(self) -> str:
        return f"{self.table}:{self.uid}:{self.field}"


class ContentRepository:
    """Reads and writes rich-text field values of host tables."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def find_referencing_fields(
        self,
        limit_to_table: str | None = None,
        file_uid: int | None = None,
    ) -> list[RecordField]:
        """Return the distinct fields that hold image soft references."""
        query = (
            select(ReferenceIndexEntry.tablename, ReferenceIndexEntry.recuid, ReferenceIndexEntry.field)
            .where(
                ReferenceIndexEntry.softref_key == SOFTREF_KEY,
                ReferenceIndexEntry.ref_table == FILE_TABLE,
            )
            .group_by(ReferenceIndexEntry.tablename, ReferenceIndexEntry.recuid, ReferenceIndexEntry.field)
            .order_by(ReferenceIndexEntry.tablename, ReferenceIndexEntry.recuid, ReferenceIndexEntry.field)
        )
        if limit_to_table:
            query = query.where(ReferenceIndexEntry.tablename == limit_to_table)
        if file_uid is not None:
            query = query.where(ReferenceIndexEntry.ref_uid == file_uid)

        result = await self.session.execute(query)
        return [RecordField(table=row[0], uid=row[1], field=row[2]) for row in result.all()]

    async def fetch_field_value(self, record: RecordField) -> str | None:
        field = column(_check_identifier(record.field))
        source = table(_check_identifier(record.table), column("uid"), field)
        result = await self.session.execute(select(field).select_from(source).where(source.c.uid == record.uid))
        value = result.scalar_one_or_none()
        return None if value is None else str(value)

    async def write_field_value(self, record: RecordField, value: str) -> None:
        target = table(_check_identifier(record.table), column("uid"), column(_check_identifier(record.field)))
        await self.session.execute(update(target).where(target.c.uid == record.uid).values({record.field: value}))
        await self.sync_reference_index(record, value)

    async def sync_reference_index(self, record: RecordField, html: str) -> int:
        """Replace the index rows of one field with the references found in html."""
        await self.session.execute(
            delete(ReferenceIndexEntry).where(
                ReferenceIndexEntry.tablename == record.table,
                ReferenceIndexEntry.recuid == record.uid,
                ReferenceIndexEntry.field == record.field,
                ReferenceIndexEntry.softref_key == SOFTREF_KEY,
            )
        )

        references = extract_file_references(html, seed=record.key).references
        for reference in references:
            self.session.add(
                ReferenceIndexEntry(
                    tablename=record.table,
                    recuid=record.uid,
                    field=record.field,
                    softref_key=SOFTREF_KEY,
                    ref_table=FILE_TABLE,
                    ref_uid=reference.file_uid,
                )
            )
        await self.session.flush()
        return len(references)
