"""
Authentication Abstract Base Class

Supplies the acting user's id for approved_by / rejected_by / user_id
fields. Session management itself happens upstream (API gateway or the
mobile client's auth provider); this service only resolves an identity
from what the request carries.

Implementations:
    - MockAuthService: development, falls back to DEFAULT_ADMIN_ID
    - HeaderAuthService: trusts the gateway-provided user header

Author: Khalil Bannouri
Version: 1.0.0
"""

from abc import ABC, abstractmethod
from typing import Optional


class BaseAuthService(ABC):
    """Abstract base class for authentication collaborators."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        pass

    @abstractmethod
    def resolve_user_id(self, header_value: Optional[str]) -> str:
        """
        Return the acting user id.

        Args:
            header_value: Value of the AUTH_HEADER_NAME request header

        Raises:
            AuthenticationError: No usable identity
        """
        pass

    def optional_user_id(self, header_value: Optional[str]) -> Optional[str]:
        """Like resolve_user_id, but anonymous callers get None."""
        if not header_value or not header_value.strip():
            return None
        return self.resolve_user_id(header_value)
