from unittest.mock import AsyncMock

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from fastapi.testclient import TestClient

from app.dependencies.auth import get_current_user, role_required
from app.main import create_app
from app.tickets.models import Actor, Role

TECHNICIAN = Actor(id="tech-1", name="Ana", role=Role.TECHNICIAN, sector_ids=("sector-a",))


@pytest.mark.asyncio
async def test_role_required_allows_authorized_user():
    dependency = role_required(Role.ADMIN, Role.MANAGER)
    user = Actor(id="manager-1", name="Maria", role=Role.MANAGER)
    result = await dependency(user)  # type: ignore[arg-type]
    assert result.id == "manager-1"


@pytest.mark.asyncio
async def test_role_required_rejects_unauthorized_user():
    dependency = role_required(Role.ADMIN)
    with pytest.raises(HTTPException) as exc:
        await dependency(TECHNICIAN)  # type: ignore[arg-type]

    assert exc.value.status_code == 403
    assert exc.value.detail == "Insufficient permissions"


@pytest.mark.asyncio
async def test_bearer_token_resolves_to_directory_user():
    users = AsyncMock()
    users.get = AsyncMock(return_value=TECHNICIAN)
    credentials = HTTPAuthorizationCredentials(scheme="Bearer", credentials="tech-1")

    assert await get_current_user(credentials, users) == TECHNICIAN
    users.get.assert_awaited_once_with("tech-1")


@pytest.mark.asyncio
async def test_missing_or_unknown_token_is_unauthorized():
    users = AsyncMock()
    users.get = AsyncMock(return_value=None)

    with pytest.raises(HTTPException) as missing:
        await get_current_user(None, users)
    assert missing.value.status_code == 401

    with pytest.raises(HTTPException) as unknown:
        await get_current_user(HTTPAuthorizationCredentials(scheme="Bearer", credentials="ghost"), users)
    assert unknown.value.status_code == 401


def test_secure_ping_uses_the_user_directory():
    app = create_app()
    users = AsyncMock()
    users.get = AsyncMock(side_effect=lambda user_id: TECHNICIAN if user_id == "tech-1" else None)
    app.state.users = users
    client = TestClient(app)

    response = client.get("/ping/secure", headers={"Authorization": "Bearer tech-1"})
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "user": "tech-1", "role": "tecnico"}

    assert client.get("/ping/secure").status_code == 401
    assert client.get("/ping/secure", headers={"Authorization": "Bearer ghost"}).status_code == 401
