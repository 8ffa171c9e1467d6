"""FastAPI dependency injection utilities and service wiring."""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from rteimages.config import Settings, get_reference_config, get_settings
from rteimages.models.content import ReferenceConfig, RenderOptions
from rteimages.models.db import get_db_session
from rteimages.services.environment import EnvironmentInfo
from rteimages.services.processor import RteImageProcessor
from rteimages.services.references import ReferenceUpdater
from rteimages.services.rendering import ContentRenderer, ImageRenderingResolver
from rteimages.services.repository import ContentRepository
from rteimages.services.resolver import ImageFileResolver
from rteimages.services.storage import LocalFileStore
from rteimages.services.validator import RteImageReferenceValidator

# Type aliases for common dependencies
SettingsDep = Annotated[Settings, Depends(get_settings)]
ReferenceConfigDep = Annotated[ReferenceConfig, Depends(get_reference_config)]
DbSession = Annotated[AsyncSession, Depends(get_db_session)]


def create_resolver(session: AsyncSession, settings: Settings, env: EnvironmentInfo | None = None) -> ImageFileResolver:
    """Build a resolver over the local file store."""
    env = env or EnvironmentInfo.from_settings(settings)
    store = LocalFileStore(session, env.public_path, settings.storage_base_path)
    return ImageFileResolver(store, env)


def create_validator(
    session: AsyncSession,
    settings: Settings,
    config: ReferenceConfig,
) -> RteImageReferenceValidator:
    """Build a validator reading records and files from one session."""
    return RteImageReferenceValidator(
        resolver=create_resolver(session, settings),
        repository=ContentRepository(session),
        config=config,
    )


def create_processor(
    session: AsyncSession,
    settings: Settings,
    config: ReferenceConfig,
    env: EnvironmentInfo,
) -> RteImageProcessor:
    """Build the save-time processor; imports land in the configured folder."""
    return RteImageProcessor(
        create_resolver(session, settings, env),
        config=config,
        import_folder=settings.import_folder,
    )


def render_options(settings: Settings) -> RenderOptions:
    return RenderOptions(
        max_file_size_for_auto=settings.max_file_size_for_auto,
        lazy_loading=settings.lazy_loading or None,
        popup=settings.popup_config or None,
    )


def create_content_renderer(session: AsyncSession, settings: Settings) -> ContentRenderer:
    """Build the public renderer with options taken from settings."""
    resolver = ImageRenderingResolver(create_resolver(session, settings))
    return ContentRenderer(resolver, options=render_options(settings))


def create_reference_updater(session: AsyncSession) -> ReferenceUpdater:
    return ReferenceUpdater(ContentRepository(session))
