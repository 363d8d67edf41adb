"""
Session Token Tests
===================

Tests for app/auth/session.py: expiry parsing, issuing, verification and
revocation of Pahiram session tokens.
"""

from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi import HTTPException

from app.auth.session import TokenIssuer, extract_token_from_header, hash_token
from app.db.models import ApcisTokenRecord, PersonalAccessToken, User, utcnow
from app.exceptions import InvalidSessionToken, MalformedRemoteToken
from app.models import ApcisCourse, ApcisUser
from app.users import RoleDefaultsPolicy, UserRepository

from conftest import count_rows


FUTURE = datetime(2030, 1, 1, 12, 0, 0)


@pytest.fixture
def issuer(db_session, settings):
    return TokenIssuer(db_session, settings)


@pytest.fixture
async def user(db_session):
    repo = UserRepository(db_session)
    course = await repo.find_or_create_course(
        ApcisCourse(course="Bachelor of Science in Information Technology", course_acronym="BSIT")
    )
    user = await repo.find_or_create_user(
        ApcisUser(
            apc_id="2022-100001",
            first_name="Maria",
            last_name="Santos",
            email="msantos@student.apc.edu.ph",
        ),
        course,
        RoleDefaultsPolicy(),
    )
    await db_session.commit()
    return user


class TestParseExpiresAt:

    @pytest.mark.asyncio
    async def test_parses_apcis_format(self, issuer):
        assert issuer.parse_expires_at("2030-01-01 12:00:00") == FUTURE

    @pytest.mark.asyncio
    async def test_converts_from_apcis_timezone(self, db_session, settings):
        manila = settings.model_copy(update={"APCIS_TIMEZONE": "Asia/Manila"})
        issuer = TokenIssuer(db_session, manila)

        assert issuer.parse_expires_at("2030-01-01 12:00:00") == datetime(2030, 1, 1, 4, 0, 0)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", ["not-a-date", "2030-01-01T12:00:00Z", "", None, 1893499200])
    async def test_rejects_unparseable_values(self, issuer, raw):
        with pytest.raises(MalformedRemoteToken):
            issuer.parse_expires_at(raw)


class TestIssueSessionToken:

    @pytest.mark.asyncio
    async def test_token_claims_follow_apcis_expiry(self, issuer, user, settings):
        token = await issuer.issue_session_token(user, FUTURE)

        claims = jwt.decode(
            token,
            settings.SESSION_JWT_SECRET,
            algorithms=[settings.SESSION_JWT_ALGORITHM],
            issuer=settings.SESSION_JWT_ISSUER,
        )
        assert claims["sub"] == str(user.id)
        assert claims["exp"] == int(FUTURE.replace(tzinfo=timezone.utc).timestamp())
        assert claims["jti"]

    @pytest.mark.asyncio
    async def test_only_hash_is_stored(self, issuer, user, db_session):
        token = await issuer.issue_session_token(user, FUTURE)
        await db_session.commit()

        rows = (await db_session.execute(
            PersonalAccessToken.__table__.select()
        )).mappings().all()
        assert len(rows) == 1
        row = rows[0]
        assert row["token_hash"] == hash_token(token)
        assert token not in row.values()
        assert row["expires_at"] == FUTURE
        assert row["name"] == "Pahiram-Token"

    @pytest.mark.asyncio
    async def test_every_login_gets_a_distinct_token(self, issuer, user, db_session):
        first = await issuer.issue_session_token(user, FUTURE)
        second = await issuer.issue_session_token(user, FUTURE)

        assert first != second
        assert await count_rows(db_session, PersonalAccessToken, user_id=user.id) == 2

    @pytest.mark.asyncio
    async def test_persist_remote_token(self, issuer, user, db_session):
        record = await issuer.persist_remote_token(user.id, "apcis-access-token-1", FUTURE)

        assert record.id is not None
        assert record.token == "apcis-access-token-1"
        assert record.expires_at == FUTURE
        assert await count_rows(db_session, ApcisTokenRecord, user_id=user.id) == 1


class TestAuthenticate:

    @pytest.mark.asyncio
    async def test_valid_token_resolves_row(self, issuer, user):
        token = await issuer.issue_session_token(user, FUTURE)

        row = await issuer.authenticate(token)

        assert row.user_id == user.id
        assert row.last_used_at is not None

    @pytest.mark.asyncio
    async def test_wrong_signature_is_rejected(self, issuer, user, settings):
        token = await issuer.issue_session_token(user, FUTURE)
        claims = jwt.decode(token, options={"verify_signature": False})
        forged = jwt.encode(claims, "another-secret-0123456789abcdef-xyz", algorithm="HS256")

        with pytest.raises(InvalidSessionToken, match="Invalid token"):
            await issuer.authenticate(forged)

    @pytest.mark.asyncio
    async def test_garbage_is_rejected(self, issuer):
        with pytest.raises(InvalidSessionToken, match="Invalid token"):
            await issuer.authenticate("not.a.jwt")

    @pytest.mark.asyncio
    async def test_expired_token_is_rejected(self, issuer, user):
        token = await issuer.issue_session_token(user, utcnow() - timedelta(minutes=5))

        with pytest.raises(InvalidSessionToken, match="expired"):
            await issuer.authenticate(token)

    @pytest.mark.asyncio
    async def test_revoked_token_is_rejected(self, issuer, user, db_session):
        token = await issuer.issue_session_token(user, FUTURE)
        row = await issuer.authenticate(token)

        await issuer.revoke(row)
        await db_session.commit()

        with pytest.raises(InvalidSessionToken, match="revoked"):
            await issuer.authenticate(token)


class TestRevokeAll:

    @pytest.mark.asyncio
    async def test_removes_only_that_users_tokens(self, issuer, user, db_session):
        other = User(
            apc_id="2022-100002",
            first_name="Pedro",
            last_name="Reyes",
            email="preyes@student.apc.edu.ph",
            user_role_id=user.user_role_id,
        )
        db_session.add(other)
        await db_session.flush()

        for _ in range(3):
            await issuer.issue_session_token(user, FUTURE)
        for i in range(2):
            await issuer.persist_remote_token(user.id, f"apcis-{i}", FUTURE)
        await issuer.issue_session_token(other, FUTURE)
        await issuer.persist_remote_token(other.id, "apcis-other", FUTURE)
        await db_session.commit()

        removed = await issuer.revoke_all(user.id)
        await db_session.commit()

        assert removed == {"session_tokens": 3, "apcis_tokens": 2}
        assert await count_rows(db_session, PersonalAccessToken, user_id=user.id) == 0
        assert await count_rows(db_session, ApcisTokenRecord, user_id=user.id) == 0
        assert await count_rows(db_session, PersonalAccessToken, user_id=other.id) == 1
        assert await count_rows(db_session, ApcisTokenRecord, user_id=other.id) == 1


class TestExtractTokenFromHeader:

    def test_valid_bearer_header(self):
        assert extract_token_from_header("Bearer abc.def.ghi") == "abc.def.ghi"

    def test_missing_header(self):
        with pytest.raises(HTTPException) as exc_info:
            extract_token_from_header(None)
        assert exc_info.value.status_code == 401
        assert "Missing" in exc_info.value.detail

    @pytest.mark.parametrize("header", ["Basic abc", "Bearer", "Bearer a b"])
    def test_malformed_header(self, header):
        with pytest.raises(HTTPException) as exc_info:
            extract_token_from_header(header)
        assert exc_info.value.status_code == 401


class TestUtcNow:

    def test_is_naive_utc(self):
        before = datetime.now(timezone.utc).replace(tzinfo=None)
        now = utcnow()
        after = datetime.now(timezone.utc).replace(tzinfo=None)

        assert now.tzinfo is None
        assert before <= now <= after
