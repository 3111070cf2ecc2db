"""pytest fixtures for MIDI indexer tests.

Provides:
- engine: Function-scoped SQLite (aiosqlite) database with all tables created
- uow_factory: Function-scoped UnitOfWork factory bound to that database
- chain: In-memory stand-in for MidiContractClient
- gateway: Fake metadata gateway served through httpx.MockTransport
- resolver / retry_queue / pipeline: Real services wired to the fakes above
"""

import os

# Settings are built in several tests; keep them out of production validation
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from typing import Any, AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlmodel import SQLModel

from midi_indexer import models  # noqa: F401
from midi_indexer.core.database import create_engine
from midi_indexer.services.blockchain.midi_contract import MintTransfer
from midi_indexer.services.indexing.pipeline import IndexingPipeline
from midi_indexer.services.metadata.resolver import MetadataResolver
from midi_indexer.services.retry_queue import RetryPolicy, RetryQueue
from midi_indexer.uow import create_uow_factory

GATEWAY_URL = "https://gateway.test/ipfs/"
OPERATOR = "0x1234567890123456789012345678901234567890"


class FakeMidiChain:
    """In-memory chain: token counter, mint history and TransferSingle logs."""

    def __init__(self, current_token_id: int = 0, head: int = 100):
        self.current = current_token_id
        self.head = head
        self.operators: dict[int, str] = {}
        self.transfers: list[MintTransfer] = []
        self.uris: dict[int, str] = {}
        self.uri_error: Exception | None = None
        self.mint_scan_error: Exception | None = None
        self.mint_scans = 0
        self.log_requests: list[tuple[int, int]] = []

    async def current_token_id(self) -> int:
        return self.current

    async def token_uri(self, token_id: int) -> str:
        if self.uri_error is not None:
            raise self.uri_error
        return self.uris.get(token_id, f"ipfs://bafymidi/{token_id}.json")

    async def get_block_number(self) -> int:
        return self.head

    async def fetch_mint_transfers(
        self, from_block: int, to_block: int, batch_size: int = 1000
    ) -> list[MintTransfer]:
        self.log_requests.append((from_block, to_block))
        return [t for t in self.transfers if from_block <= t.block_number <= to_block]

    async def fetch_mint_operators(self, from_block: int, batch_size: int = 1000) -> dict[int, str]:
        self.mint_scans += 1
        if self.mint_scan_error is not None:
            raise self.mint_scan_error
        return dict(self.operators)


class FakeGateway:
    """Serves metadata documents keyed by the token id in the request path."""

    def __init__(self):
        self.documents: dict[int, Any] = {}
        self.statuses: dict[int, int] = {}
        self.raw: dict[int, bytes] = {}
        self.unreachable: set[int] = set()
        self.requests: list[str] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(str(request.url))
        token_id = int(request.url.path.rsplit("/", 1)[-1].removesuffix(".json"))

        if token_id in self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)
        if token_id in self.statuses:
            return httpx.Response(self.statuses[token_id], text="gateway error")
        if token_id in self.raw:
            return httpx.Response(200, content=self.raw[token_id])
        if token_id not in self.documents:
            return httpx.Response(404, text="not found")
        return httpx.Response(200, json=self.documents[token_id])


def midi_metadata(token_id: int, device: str | None = "TR-808", manufacturer: str | None = "Roland"):
    """Build a metadata document as served by the gateway."""
    properties: dict[str, Any] = {}
    if device is not None:
        properties["device"] = device
    if manufacturer is not None:
        properties["manufacturer"] = manufacturer
    return {
        "name": f"MIDI #{token_id}",
        "description": "Recorded MIDI sequence",
        "properties": properties,
    }


@pytest.fixture
def make_metadata():
    """Factory for gateway metadata documents."""
    return midi_metadata


@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Provide a fresh SQLite database per test.

    A file database (not :memory:) so every pooled connection sees the same tables.
    """
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'indexer.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def uow_factory(session_factory):
    """Provide function-scoped UnitOfWork factory."""
    return create_uow_factory(session_factory)


@pytest.fixture
def chain() -> FakeMidiChain:
    return FakeMidiChain()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest_asyncio.fixture
async def resolver(chain, gateway) -> AsyncGenerator[MetadataResolver, None]:
    client = httpx.AsyncClient(transport=httpx.MockTransport(gateway.handler))
    resolver = MetadataResolver(chain=chain, gateway_url=GATEWAY_URL, client=client)
    yield resolver
    await resolver.aclose()


@pytest.fixture
def retry_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, backoff_base_seconds=60, backoff_max_seconds=600)


@pytest.fixture
def retry_queue(uow_factory, retry_policy) -> RetryQueue:
    return RetryQueue(uow_factory, retry_policy)


@pytest.fixture
def pipeline(resolver, uow_factory, retry_queue) -> IndexingPipeline:
    return IndexingPipeline(resolver, uow_factory, retry_queue)
