"""
Gateway Header Authentication

Production implementation. The API gateway authenticates the session and
forwards the user id in a header (AUTH_HEADER_NAME, default x-user-id);
requests without it are refused.

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from typing import Optional

from app.core.exceptions import AuthenticationError
from app.services.auth.base import BaseAuthService

logger = logging.getLogger(__name__)


class HeaderAuthService(BaseAuthService):

    def __init__(self, header_name: str):
        self.header_name = header_name

    @property
    def provider_name(self) -> str:
        return "header"

    def resolve_user_id(self, header_value: Optional[str]) -> str:
        if not header_value or not header_value.strip():
            logger.warning(f"Auth: request without {self.header_name} header refused")
            raise AuthenticationError(
                "Authentication required",
                {"header": self.header_name},
            )
        return header_value.strip()
