"""Tests for auth dependencies — get_current_user edge cases."""

import uuid
from datetime import datetime, timedelta, timezone

from httpx import AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession

from vistream.auth.jwt import create_access_token, decode_token
from vistream.config import settings
from vistream.models.user import User

from tests.factories import create_user

PROTECTED = "/api/payments/latest"


class TestTokens:
    def test_access_token_claims(self):
        payload = decode_token(create_access_token({"sub": "user-abc"}))

        assert payload["sub"] == "user-abc"
        assert payload["type"] == "access"
        assert "exp" in payload and "iat" in payload


class TestGetCurrentUser:
    """Exercised through a protected payments route."""

    async def test_expired_token_rejected(self, client: AsyncClient, test_user: User):
        token = create_access_token({"sub": str(test_user.id)}, expires_delta=timedelta(seconds=-1))

        response = await client.get(PROTECTED, headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401

    async def test_invalid_token_format(self, client: AsyncClient):
        response = await client.get(PROTECTED, headers={"Authorization": "Bearer not.a.valid.jwt"})
        assert response.status_code == 401

    async def test_refresh_token_type_rejected(self, client: AsyncClient, test_user: User):
        token = jwt.encode(
            {
                "sub": str(test_user.id),
                "type": "refresh",
                "exp": datetime.now(timezone.utc) + timedelta(minutes=5),
            },
            settings.jwt_secret_key,
            algorithm=settings.jwt_algorithm,
        )

        response = await client.get(PROTECTED, headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401

    async def test_nonexistent_user_id_rejected(self, client: AsyncClient):
        token = create_access_token({"sub": str(uuid.uuid4())})

        response = await client.get(PROTECTED, headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401

    async def test_non_uuid_subject_rejected(self, client: AsyncClient):
        token = create_access_token({"sub": "legacy-42"})

        response = await client.get(PROTECTED, headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401

    async def test_inactive_user_rejected(self, client: AsyncClient, db_session: AsyncSession):
        user = await create_user(db_session)
        user.is_active = False
        await db_session.flush()
        token = create_access_token({"sub": str(user.id)})

        response = await client.get(PROTECTED, headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
