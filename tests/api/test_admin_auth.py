from unittest.mock import patch

import pytest
from fastapi import HTTPException

from blog_automation.api.dependencies import verify_admin_token, verify_automation_token


@pytest.mark.asyncio
async def test_verify_admin_token_missing_header():
    """Test authentication fails when Authorization header is missing."""
    with pytest.raises(HTTPException) as exc_info:
        await verify_admin_token(authorization=None)

    assert exc_info.value.status_code == 401
    assert "Missing Authorization header" in exc_info.value.detail


@pytest.mark.asyncio
async def test_verify_admin_token_invalid_format():
    """Test authentication fails when Authorization header has invalid format."""
    with pytest.raises(HTTPException) as exc_info:
        await verify_admin_token(authorization="Token abc")

    assert exc_info.value.status_code == 401
    assert "Invalid Authorization format" in exc_info.value.detail


@pytest.mark.asyncio
async def test_verify_admin_token_not_configured():
    """Test admin endpoints stay closed when no token is configured."""
    with patch("blog_automation.api.dependencies.config") as mock_config:
        mock_config.api.admin_token = ""

        with pytest.raises(HTTPException) as exc_info:
            await verify_admin_token(authorization="Bearer anything")

        assert exc_info.value.status_code == 401
        assert "Admin access is not configured" in exc_info.value.detail


@pytest.mark.asyncio
async def test_verify_admin_token_invalid_token():
    """Test authentication fails when token is invalid."""
    with patch("blog_automation.api.dependencies.config") as mock_config:
        mock_config.api.admin_token = "correct-token"

        with pytest.raises(HTTPException) as exc_info:
            await verify_admin_token(authorization="Bearer wrong-token")

        assert exc_info.value.status_code == 401
        assert "Invalid authentication token" in exc_info.value.detail


@pytest.mark.asyncio
async def test_verify_admin_token_success():
    """Test authentication succeeds with valid token."""
    with patch("blog_automation.api.dependencies.config") as mock_config:
        mock_config.api.admin_token = "correct-token"

        result = await verify_admin_token(authorization="Bearer correct-token")

        assert result is None


@pytest.mark.asyncio
async def test_verify_admin_token_with_bearer_prefixed_config():
    """Test authentication when the configured token carries a Bearer prefix."""
    with patch("blog_automation.api.dependencies.config") as mock_config:
        mock_config.api.admin_token = "Bearer correct-token"

        result = await verify_admin_token(authorization="Bearer correct-token")

        assert result is None


@pytest.mark.asyncio
async def test_verify_automation_token_accepts_api_key_or_admin():
    """Test trigger access takes the automation key or the admin token."""
    with patch("blog_automation.api.dependencies.config") as mock_config:
        mock_config.api.admin_token = "admin-token"
        mock_config.api.automation_api_key = "automation-key"

        assert await verify_automation_token(authorization="Bearer automation-key") is None
        assert await verify_automation_token(authorization="Bearer admin-token") is None
        with pytest.raises(HTTPException) as exc_info:
            await verify_automation_token(authorization="Bearer other")

        assert exc_info.value.status_code == 401


@pytest.mark.asyncio
async def test_verify_automation_token_not_configured():
    """Test trigger access stays closed when no token is configured."""
    with patch("blog_automation.api.dependencies.config") as mock_config:
        mock_config.api.admin_token = ""
        mock_config.api.automation_api_key = ""

        with pytest.raises(HTTPException) as exc_info:
            await verify_automation_token(authorization="Bearer anything")

        assert "Automation access is not configured" in exc_info.value.detail
