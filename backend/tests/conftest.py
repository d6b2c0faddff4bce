import os
from datetime import timedelta

os.environ.setdefault("TID_DATABASE_URL", "sqlite+aiosqlite:///./.trustlessid-test.db")

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import update  # noqa: E402

from trustlessid.database import build_engine, build_sessionmaker, create_tables, get_db  # noqa: E402
from trustlessid.main import app  # noqa: E402
from trustlessid.models import CREDENTIAL_ACTIVE, Credential, User, VerificationRequest, utcnow  # noqa: E402
from trustlessid.tokens.service import TokenService, get_token_service  # noqa: E402

TEST_SECRET = "test-signing-secret-0123456789abcdef"
VERIFIER_NAME = "Acme Bank"
VERIFIER_DOMAIN = "acme.example"


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'trustlessid.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_sessionmaker(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def tokens():
    return TokenService(TEST_SECRET)


@pytest.fixture
async def client(session_factory, tokens):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_token_service] = lambda: tokens
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
async def holder(session_factory):
    async with session_factory() as session:
        user = User(email="holder@trustlessid.com", name="Alex Thompson", verified=True)
        session.add(user)
        await session.commit()
        return user


@pytest.fixture
def make_credential(session_factory, holder):
    """Insert a credential issued ``age_days`` ago and return it."""
    counter = iter(range(1, 10_000))

    async def _make(
        status: str = CREDENTIAL_ACTIVE,
        verification_count: int = 3,
        age_days: int = 10,
        credential_type: str = "identity",
    ) -> Credential:
        issued_at = utcnow() - timedelta(days=age_days, minutes=5)
        async with session_factory() as session:
            credential = Credential(
                user_id=holder.id,
                hash=f"sha256:{next(counter):064x}",
                type=credential_type,
                status=status,
                issued_at=issued_at,
                expires_at=issued_at + timedelta(days=365),
                verification_count=verification_count,
            )
            session.add(credential)
            await session.commit()
            return credential

    return _make


async def in_session(session_factory, fn, *args, **kwargs):
    """Run one service call in its own session, the way a request handler does."""
    async with session_factory() as session:
        return await fn(session, *args, **kwargs)


async def fetch(session_factory, model, ident):
    async with session_factory() as session:
        return await session.get(model, ident)


async def expire_now(session_factory, request_id, seconds_ago: int = 1):
    """Push a verification request's expiry into the past."""
    async with session_factory() as session:
        await session.execute(
            update(VerificationRequest)
            .where(VerificationRequest.id == request_id)
            .values(expires_at=utcnow() - timedelta(seconds=seconds_ago))
        )
        await session.commit()
