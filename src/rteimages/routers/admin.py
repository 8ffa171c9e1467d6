"""Admin routes for validating and repairing image references."""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from rteimages.config import get_settings
from rteimages.dependencies import (
    DbSession,
    ReferenceConfigDep,
    SettingsDep,
    create_content_renderer,
    create_processor,
    create_reference_updater,
    create_resolver,
    create_validator,
)
from rteimages.services.environment import EnvironmentInfo
from rteimages.services.preview import PreviewRenderer
from rteimages.services.repository import ContentRepository, RecordField

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


# Pydantic models for request/response
class FixRequest(BaseModel):
    """Request body for repairing references."""

    confirm: bool = False
    table: str | None = None


class FixResponse(BaseModel):
    """Response body for a fix run."""

    dry_run: bool
    fixable_issues: int
    updated_records: int
    report: dict[str, Any]


class PreviewRequest(BaseModel):
    """Request body for a field preview."""

    html: str
    table: str = "tt_content"
    uid: int = 0
    field: str = "bodytext"


class HtmlRequest(BaseModel):
    html: str


class TransformRequest(BaseModel):
    """Request body for save-time processing. With save, the result is stored on the record."""

    html: str
    save: bool = False
    table: str = "tt_content"
    uid: int = 0
    field: str = "bodytext"


class UpgradeRequest(BaseModel):
    table: str | None = None


class HtmlResponse(BaseModel):
    html: str


# Dependency for getting the current admin user
async def get_current_admin(request: Request) -> str:
    """
    Get the current admin user from session.

    Raises HTTPException 401 if not authenticated.
    Raises HTTPException 403 if not an admin.
    """
    settings = get_settings()

    # Dev mode auth bypass (requires both flags)
    if settings.debug and settings.dev_skip_auth:
        logger.warning("Auth bypassed - returning dev-admin user")
        return "dev-admin"

    user = request.session.get("user") if "session" in request.scope else None

    if user is None:
        raise HTTPException(status_code=401, detail="Not authenticated")

    if user["login"] not in settings.admin_users_list:
        raise HTTPException(status_code=403, detail="Not authorized")

    return user["login"]


AdminUser = Annotated[str, Depends(get_current_admin)]


@router.get("/images/validate")
async def validate_images(
    admin: AdminUser,
    session: DbSession,
    settings: SettingsDep,
    config: ReferenceConfigDep,
    table: str | None = None,
) -> dict[str, Any]:
    """Scan stored content and report broken image references."""
    validator = create_validator(session, settings, config)
    result = await validator.validate(table)
    return result.to_dict()


@router.post("/images/fix")
async def fix_images(
    admin: AdminUser,
    session: DbSession,
    settings: SettingsDep,
    config: ReferenceConfigDep,
    request_data: FixRequest,
) -> FixResponse:
    """Repair fixable references. Without confirm this only reports."""
    validator = create_validator(session, settings, config)
    result = await validator.validate(request_data.table)
    fixable = len(result.repairable_issues)

    updated = 0
    if request_data.confirm and fixable:
        logger.info("Admin %s fixing %d image reference issue(s)", admin, fixable)
        updated = await validator.fix(result)

    return FixResponse(
        dry_run=not request_data.confirm,
        fixable_issues=fixable,
        updated_records=updated,
        report=result.to_dict(),
    )


@router.post("/images/preview")
async def preview_field(
    admin: AdminUser,
    session: DbSession,
    settings: SettingsDep,
    config: ReferenceConfigDep,
    request_data: PreviewRequest,
) -> HtmlResponse:
    """Render the backend preview of a rich-text value."""
    renderer = PreviewRenderer(create_validator(session, settings, config))
    html = await renderer.render(request_data.html, request_data.table, request_data.uid, request_data.field)
    return HtmlResponse(html=html)


@router.post("/images/transform")
async def transform_field(
    admin: AdminUser,
    session: DbSession,
    settings: SettingsDep,
    config: ReferenceConfigDep,
    request_data: TransformRequest,
) -> HtmlResponse:
    """Run save-time processing on a rich-text value as the current admin."""
    env = EnvironmentInfo.from_settings(settings, is_backend_request=True, user=admin)
    processor = create_processor(session, settings, config, env)
    html = await processor.transform(request_data.html, env)

    if request_data.save:
        record = RecordField(request_data.table, request_data.uid, request_data.field)
        repository = ContentRepository(session)
        try:
            current = await repository.fetch_field_value(record)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        if current is None:
            raise HTTPException(status_code=404, detail="Record not found")
        await repository.write_field_value(record, html)
        logger.info("Admin %s saved processed %s", admin, record.key)

    return HtmlResponse(html=html)


@router.post("/images/render")
async def render_field(
    admin: AdminUser,
    session: DbSession,
    settings: SettingsDep,
    request_data: HtmlRequest,
) -> HtmlResponse:
    """Render a rich-text value the way public pages show it."""
    html = await create_content_renderer(session, settings).render(request_data.html)
    return HtmlResponse(html=html)


@router.post("/images/upgrade-processed")
async def upgrade_processed(
    admin: AdminUser,
    session: DbSession,
    settings: SettingsDep,
    config: ReferenceConfigDep,
    request_data: UpgradeRequest,
) -> dict[str, int]:
    """Repoint processed rendition URLs to their originals."""
    validator = create_validator(session, settings, config)
    updated = await create_reference_updater(session).upgrade_processed_src(validator, request_data.table)
    return {"updated_records": updated}


@router.post("/files/{file_uid}/references")
async def update_file_references(
    admin: AdminUser,
    session: DbSession,
    settings: SettingsDep,
    file_uid: int,
) -> dict[str, int]:
    """Rewrite the src of every image pointing at a file after it was moved or renamed."""
    file = await create_resolver(session, settings).resolve_by_uid(file_uid)
    if file is None:
        raise HTTPException(status_code=404, detail="File not found")
    updated = await create_reference_updater(session).handle_file_moved(file)
    return {"updated_records": updated}
