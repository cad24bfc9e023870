"""FastAPI dependency injection functions."""

import logging
import secrets
from typing import Annotated

from fastapi import Depends, Header

from src.api.middleware.error_handler import AuthenticationError
from src.core.config import get_settings

logger = logging.getLogger(__name__)


async def require_admin_api_key(
    x_api_key: Annotated[str, Header(description="Admin API key")] = "",
) -> None:
    """Require the admin API key in the X-API-Key header.

    Product edits are the only admin surface, so a shared key is enough.

    Raises:
        AuthenticationError: If the key is missing or wrong, or no key is configured.
    """
    expected = get_settings().admin_api_key
    if not expected:
        logger.warning("ADMIN_API_KEY not configured, rejecting admin request")
        raise AuthenticationError("Admin API is not configured")

    if not x_api_key or not secrets.compare_digest(x_api_key, expected):
        raise AuthenticationError("Invalid API key")


# Type alias for dependency injection
AdminKey = Annotated[None, Depends(require_admin_api_key)]
