"""Pydantic models for configuration and rendering data."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TablesConfig(BaseModel):
    """Which tables take part in scans."""

    include: list[str] = Field(default_factory=list)  # empty means all
    exclude: list[str] = Field(default_factory=list)


class ReferenceConfig(BaseModel):
    """Table/field configuration, validated once when loaded."""

    tables: TablesConfig = Field(default_factory=TablesConfig)
    rte_fields: dict[str, list[str]] = Field(default_factory=dict)
    processed_markers: list[str] = Field(default_factory=lambda: ["/_processed_/"])
    fetch_external_images: bool = True

    model_config = ConfigDict(extra="forbid")

    @field_validator("processed_markers")
    @classmethod
    def _drop_blank_markers(cls, value: list[str]) -> list[str]:
        return [m for m in value if m.strip()]

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ReferenceConfig":
        """Create a ReferenceConfig from a parsed YAML mapping; an empty file yields the defaults."""
        if data is None:
            return cls()
        return cls(**data)

    def is_table_enabled(self, table: str) -> bool:
        """Check if a table is covered by scans."""
        if table in self.tables.exclude:
            return False
        if self.tables.include:
            return table in self.tables.include
        return True

    def is_field_enabled(self, table: str, field: str) -> bool:
        """Check a table and, when rte_fields lists the table, one of its fields."""
        if not self.is_table_enabled(table):
            return False
        fields = self.rte_fields.get(table)
        return fields is None or field in fields


class LinkConfiguration(BaseModel):
    """An anchor wrapped around a rendered image. Built only from a validated url."""

    url: str
    target: str | None = None
    css_class: str | None = None
    is_popup: bool = False
    js_config: dict[str, Any] | None = None

    model_config = ConfigDict(frozen=True)


class ImageRenderingDto(BaseModel):
    """Everything needed to present one image, after all validation has passed."""

    src: str
    width: int
    height: int
    alt: str = ""
    title: str | None = None
    html_attributes: dict[str, str] = Field(default_factory=dict)
    caption: str | None = None  # already escaped
    link: LinkConfiguration | None = None
    is_magic_image: bool = True
    figure_class: str | None = None

    model_config = ConfigDict(frozen=True)


class RenderOptions(BaseModel):
    """Per-call rendering options."""

    no_scale: bool = False
    max_file_size_for_auto: int = 0
    lazy_loading: str | None = None
    popup: dict[str, Any] | None = None
