"""Unit tests for FastAPI dependency injection functions."""

from unittest.mock import MagicMock, patch

import pytest

from src.api.deps import require_admin_api_key
from src.api.middleware.error_handler import AuthenticationError


def _settings(admin_api_key: str) -> MagicMock:
    settings = MagicMock()
    settings.admin_api_key = admin_api_key
    return settings


class TestRequireAdminApiKey:
    """Tests for require_admin_api_key dependency."""

    @pytest.mark.asyncio
    @patch("src.api.deps.get_settings", return_value=_settings("s3cret"))
    async def test_accepts_matching_key(self, mock_settings) -> None:
        """Test that the configured key passes."""
        assert await require_admin_api_key(x_api_key="s3cret") is None

    @pytest.mark.asyncio
    @patch("src.api.deps.get_settings", return_value=_settings("s3cret"))
    async def test_rejects_wrong_key(self, mock_settings) -> None:
        """Test that another key is rejected with 401."""
        with pytest.raises(AuthenticationError) as exc_info:
            await require_admin_api_key(x_api_key="guess")

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    @patch("src.api.deps.get_settings", return_value=_settings("s3cret"))
    async def test_rejects_missing_key(self, mock_settings) -> None:
        """Test that an absent header is rejected."""
        with pytest.raises(AuthenticationError):
            await require_admin_api_key(x_api_key="")

    @pytest.mark.asyncio
    @patch("src.api.deps.get_settings", return_value=_settings(""))
    async def test_unconfigured_key_rejects_everything(self, mock_settings) -> None:
        """Test that an empty ADMIN_API_KEY disables the admin surface."""
        with pytest.raises(AuthenticationError):
            await require_admin_api_key(x_api_key="")
