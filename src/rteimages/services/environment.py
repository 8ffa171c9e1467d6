"""Request-scoped environment passed into the image services."""

from dataclasses import dataclass

from rteimages.config import Settings


@dataclass(frozen=True)
class EnvironmentInfo:
    """Site and request details for one invocation."""

    site_url: str
    request_host: str
    public_path: str
    is_backend_request: bool = False
    user: str | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        is_backend_request: bool = False,
        user: str | None = None,
    ) -> "EnvironmentInfo":
        return cls(
            site_url=settings.site_url,
            request_host=settings.request_host,
            public_path=settings.resolved_public_path,
            is_backend_request=is_backend_request,
            user=user,
        )
