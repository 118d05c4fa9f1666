"""
Authentication Service Factory

Usage:
    from app.services.auth import get_auth_service

    approver_id = get_auth_service().resolve_user_id(request.headers.get("x-user-id"))

Environment Switching:
    - ENV_MODE=development -> MockAuthService (DEFAULT_ADMIN_ID fallback)
    - ENV_MODE=staging/production -> HeaderAuthService (header required)

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from functools import lru_cache

from app.core.config import get_settings
from app.services.auth.base import BaseAuthService
from app.services.auth.header import HeaderAuthService
from app.services.auth.mock import MockAuthService

logger = logging.getLogger(__name__)


@lru_cache()
def get_auth_service() -> BaseAuthService:
    """
    Get the configured authentication service instance.

    Returns:
        BaseAuthService: Configured auth service instance
    """
    settings = get_settings()

    if settings.is_development:
        logger.info("Auth Service: Using MockAuthService (development mode)")
        return MockAuthService(settings.default_admin_id)

    logger.info(
        f"Auth Service: Using HeaderAuthService "
        f"({settings.env_mode.value} mode, header {settings.auth_header_name})"
    )
    return HeaderAuthService(settings.auth_header_name)


def reset_auth_service() -> None:
    get_auth_service.cache_clear()
    logger.debug("Auth service cache cleared")


__all__ = [
    "get_auth_service",
    "reset_auth_service",
    "BaseAuthService",
    "MockAuthService",
    "HeaderAuthService",
]
