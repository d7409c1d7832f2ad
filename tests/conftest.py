import time

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct, encode_typed_data
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from invite_markets.api.dependencies import get_notifier, get_verifier
from invite_markets.config import settings
from invite_markets.database import get_db
from invite_markets.main import app
from invite_markets.models import Base
from invite_markets.services.authenticity import OwnershipVerifier, build_typed_data
from invite_markets.services.ledger import TransactionLedger
from invite_markets.services.listing_store import ListingStore

CHAIN_ID = settings.chain_id

# Well-known throwaway keys; never fund these
SELLER_KEY = "0x" + "11" * 32
OTHER_KEY = "0x" + "22" * 32
SELLER = Account.from_key(SELLER_KEY).address.lower()
OTHER = Account.from_key(OTHER_KEY).address.lower()
BUYER = "0x" + "b" * 40


def now_ms() -> int:
    return int(time.time() * 1000)


def sign_typed(key: str, primary_type: str, message: dict, nonce: int, chain_id: int = CHAIN_ID) -> str:
    typed = build_typed_data(primary_type, {**message, "nonce": nonce}, chain_id)
    signed = Account.sign_message(encode_typed_data(full_message=typed), key)
    return "0x" + bytes(signed.signature).hex()


def sign_text(key: str, text: str) -> str:
    signed = Account.sign_message(encode_defunct(text=text), key)
    return "0x" + bytes(signed.signature).hex()


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def session_factory():
    """In-memory SQLite shared by every session of one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    yield factory
    await engine.dispose()


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def store(db_session):
    return ListingStore(db_session, CHAIN_ID)


@pytest.fixture
def ledger(db_session):
    return TransactionLedger(db_session, CHAIN_ID)


@pytest.fixture
def verifier():
    return OwnershipVerifier(rpc=None)


@pytest.fixture
async def client(session_factory, verifier):
    """API client over the test database with external services removed."""

    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_verifier] = lambda: verifier
    app.dependency_overrides[get_notifier] = lambda: None
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def make_listing(store: ListingStore, **overrides):
    fields = dict(
        listing_type="invite_link",
        invite_url="https://example.com/invite/secret",
        price_micro_usdc=5_000_000,
        seller_address=SELLER,
        app_id="ethos",
        app_name=None,
        max_uses=1,
        purchase_count=0,
        status="active",
    )
    fields.update(overrides)
    return await store.create(**fields)

