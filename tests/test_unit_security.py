"""
Tests for admin basic-auth.

Tests cover:
- Credential checks against ADMIN_USERNAMES / ADMIN_PASSWORD
- Optional admin detection for read-only endpoints
- require_admin rejecting missing or wrong credentials
"""

import pytest
from fastapi.security import HTTPBasicCredentials

from app.core.errors import UnauthorizedError
from app.core.observability import get_user_id, set_user_id
from app.core.security import get_optional_admin, is_admin, require_admin


def _creds(username: str, password: str) -> HTTPBasicCredentials:
    return HTTPBasicCredentials(username=username, password=password)


class TestIsAdmin:
    def test_configured_admin_with_password(self):
        assert is_admin(_creds("admin", "test-admin-password"))
        assert is_admin(_creds("curator", "test-admin-password"))

    def test_wrong_password(self):
        assert not is_admin(_creds("admin", "test-admin-passwor"))

    def test_unknown_username(self):
        assert not is_admin(_creds("visitor", "test-admin-password"))

    def test_no_credentials(self):
        assert not is_admin(None)

    def test_no_admin_without_password(self, settings_override):
        settings_override(admin_password=None)
        assert not is_admin(_creds("admin", ""))


class TestDependencies:
    @pytest.mark.anyio
    async def test_optional_admin_returns_username_and_sets_context(self):
        set_user_id("")

        assert await get_optional_admin(_creds("admin", "test-admin-password")) == "admin"
        assert get_user_id() == "admin"

    @pytest.mark.anyio
    async def test_optional_admin_is_none_for_visitors(self):
        assert await get_optional_admin(None) is None
        assert await get_optional_admin(_creds("admin", "wrong")) is None

    @pytest.mark.anyio
    async def test_require_admin_accepts_admin(self):
        assert await require_admin(_creds("curator", "test-admin-password")) == "curator"

    @pytest.mark.anyio
    async def test_require_admin_rejects_missing_credentials(self):
        with pytest.raises(UnauthorizedError):
            await require_admin(None)

    @pytest.mark.anyio
    async def test_require_admin_rejects_wrong_credentials(self, caplog):
        with pytest.raises(UnauthorizedError):
            await require_admin(_creds("mallory", "test-admin-password"))

        assert "Rejected admin credentials" in caplog.text
