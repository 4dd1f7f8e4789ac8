from app.db import get_db
from app.services.social.platform_client import MetaPlatformClient


def get_platform_client() -> MetaPlatformClient:
    """Graph API client for route handlers.

    Overridden in tests through ``app.dependency_overrides``.
    """
    return MetaPlatformClient()


__all__ = ["get_db", "get_platform_client"]
