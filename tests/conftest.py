from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Callable

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from libs.common.config import get_settings
from libs.common.datetime_utils import get_clock
from libs.db.base import Base
from libs.db.session import get_async_db
from services.ledger_service import models as _ledger_models  # noqa: F401
from services.ledger_service.chain_client import ChainClient, get_chain_client
from services.orders_service import models as _orders_models  # noqa: F401
from tests.factories import FIXED_NOW

settings = get_settings()


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """
    A fresh SQLite file per test. File-backed (not :memory:) so concurrent
    sessions see one database through separate connections.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'marketplace.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker:
    return async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> Callable[[], datetime]:
    return lambda: FIXED_NOW


def _db_override(session_factory):
    async def _get_db():
        async with session_factory() as session:
            yield session

    return _get_db


@pytest_asyncio.fixture
async def orders_client(session_factory, clock) -> AsyncGenerator[AsyncClient, None]:
    """
    AsyncClient bound to the orders service app. Every request gets its own
    session on the test database, like production.
    """
    from services.orders_service.app.main import app

    app.dependency_overrides[get_async_db] = _db_override(session_factory)
    app.dependency_overrides[get_clock] = lambda: clock

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def ledger_client(session_factory, clock) -> AsyncGenerator[AsyncClient, None]:
    from services.ledger_service.app.main import app

    app.dependency_overrides[get_async_db] = _db_override(session_factory)
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_chain_client] = lambda: None

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


def make_token(user_id: str, role: str = "authenticated") -> str:
    now = datetime.now(timezone.utc)
    claims = {
        "sub": user_id,
        "role": role,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=10)).timestamp()),
    }
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


@pytest.fixture
def auth_headers() -> Callable[..., dict]:
    """
    Build bearer headers for a user id: ``auth_headers("buyer-1")``.
    Tokens are real HS256 JWTs so the auth dependency runs unmodified.
    """

    def _headers(user_id: str, role: str = "authenticated") -> dict:
        return {"Authorization": f"Bearer {make_token(user_id, role)}"}

    return _headers


@pytest.fixture
def service_headers() -> dict:
    return {"Authorization": f"Bearer {make_token('service:orders', 'service_role')}"}


# ---------------------------------------------------------------------------
# Chain service
# ---------------------------------------------------------------------------


class ChainStub:
    """In-process chain service behind httpx.MockTransport."""

    def __init__(self):
        self.transfers: dict[str, dict] = {}
        self.withdrawal_response = (
            200,
            {"transaction_hash": "0xwithdrawal", "status": "submitted"},
        )
        self.unreachable = False
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.unreachable:
            raise httpx.ConnectError("chain service down", request=request)

        path = request.url.path
        if request.method == "GET" and path.startswith("/transfers/"):
            transaction_hash = path.rsplit("/", 1)[-1]
            if transaction_hash not in self.transfers:
                return httpx.Response(404, json={"message": "Transfer not found"})
            return httpx.Response(200, json=self.transfers[transaction_hash])
        if request.method == "POST" and path == "/withdrawals":
            status_code, body = self.withdrawal_response
            return httpx.Response(status_code, json=body)
        return httpx.Response(404, json={"message": "Unknown endpoint"})

    def client(self) -> ChainClient:
        return ChainClient(
            "http://chain.test",
            api_key="chain-key",
            transport=httpx.MockTransport(self.handler),
        )


@pytest.fixture
def chain_stub() -> ChainStub:
    return ChainStub()


@pytest.fixture
def chained_ledger_client(ledger_client, chain_stub) -> AsyncClient:
    """Ledger client whose routes talk to ``chain_stub``."""
    from services.ledger_service.app.main import app

    app.dependency_overrides[get_chain_client] = chain_stub.client
    return ledger_client
