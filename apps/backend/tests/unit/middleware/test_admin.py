"""Admin key dependency: rejection paths and caller attribution."""
import pytest
from unittest.mock import MagicMock, patch
import os

from fastapi import HTTPException


@pytest.fixture(autouse=True)
def mock_settings():
    with patch.dict(os.environ, {"ADMIN_API_KEYS": "test-admin-key-1234"}):
        from src.core.config import get_settings
        get_settings.cache_clear()
        yield
        get_settings.cache_clear()


@pytest.fixture
def mock_request():
    request = MagicMock()
    request.headers = {}
    request.client = MagicMock()
    request.client.host = "127.0.0.1"
    return request


class TestRequireAdminKey:
    @pytest.mark.asyncio
    async def test_missing_key_returns_401(self, mock_request):
        from src.middleware.admin import require_admin_key

        with pytest.raises(HTTPException) as exc:
            await require_admin_key(mock_request, None)

        assert exc.value.status_code == 401
        assert "Missing" in exc.value.detail

    @pytest.mark.asyncio
    async def test_wrong_key_returns_401(self, mock_request):
        from src.middleware.admin import require_admin_key

        with pytest.raises(HTTPException) as exc:
            await require_admin_key(mock_request, "nope")

        assert exc.value.status_code == 401

    @pytest.mark.asyncio
    async def test_valid_key_returns_context(self, mock_request):
        from src.middleware.admin import require_admin_key

        ctx = await require_admin_key(mock_request, "test-admin-key-1234")

        assert ctx.created_by == "1234"
        assert ctx.ip_address == "127.0.0.1"

    @pytest.mark.asyncio
    async def test_forwarded_for_takes_precedence(self, mock_request):
        from src.middleware.admin import require_admin_key

        mock_request.headers = {"X-Forwarded-For": "203.0.113.9, 10.0.0.1"}

        ctx = await require_admin_key(mock_request, "test-admin-key-1234")

        assert ctx.ip_address == "203.0.113.9"
