"""
Mock Authentication

Development stand-in: any header value is accepted as the user id and a
missing header resolves to DEFAULT_ADMIN_ID, so the admin panel works
without a gateway in front of the API.

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from typing import Optional

from app.services.auth.base import BaseAuthService

logger = logging.getLogger(__name__)


class MockAuthService(BaseAuthService):

    def __init__(self, default_user_id: str):
        self.default_user_id = default_user_id
        logger.info(f"MockAuthService initialized (default user: {default_user_id})")

    @property
    def provider_name(self) -> str:
        return "mock"

    def resolve_user_id(self, header_value: Optional[str]) -> str:
        if header_value and header_value.strip():
            return header_value.strip()
        logger.debug(f"Auth: no identity header, using {self.default_user_id}")
        return self.default_user_id
