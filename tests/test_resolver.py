"""Metadata resolver tests.

Tests cover:
- ipfs:// rewriting to the configured gateway
- Successful fetch returns the document unchanged
- fetch-not-ok, fetch-failed and parse-error classification
- Chain errors while reading uri(id) propagate unchanged
"""

import pytest

from midi_indexer.services.exceptions import (
    BlockchainConnectionError,
    FailureReason,
    ResolutionError,
)
from midi_indexer.services.metadata.resolver import rewrite_uri


def test_rewrite_uri_ipfs_scheme():
    assert (
        rewrite_uri("ipfs://bafymidi/1.json", "https://nftstorage.link/ipfs/")
        == "https://nftstorage.link/ipfs/bafymidi/1.json"
    )


def test_rewrite_uri_adds_missing_slash():
    assert (
        rewrite_uri("ipfs://bafymidi/1.json", "https://nftstorage.link/ipfs")
        == "https://nftstorage.link/ipfs/bafymidi/1.json"
    )


def test_rewrite_uri_leaves_http_untouched():
    uri = "https://example.org/midi/1.json"
    assert rewrite_uri(uri, "https://nftstorage.link/ipfs/") == uri


@pytest.mark.asyncio
async def test_resolve_returns_document(resolver, gateway, make_metadata):
    """Test resolve() against a healthy gateway.

    Scenario:
    1. uri(7) returns ipfs://bafymidi/7.json
    2. Gateway serves the document
    3. Document is returned unchanged and the gateway URL was requested
    """
    document = make_metadata(7)
    document["properties"]["bpm"] = 120
    gateway.documents[7] = document

    metadata = await resolver.resolve(7)

    assert metadata == document
    assert gateway.requests == ["https://gateway.test/ipfs/bafymidi/7.json"]


@pytest.mark.asyncio
async def test_resolve_non_ipfs_uri(resolver, chain, gateway, make_metadata):
    chain.uris[3] = "https://gateway.test/static/3.json"
    gateway.documents[3] = make_metadata(3)

    await resolver.resolve(3)

    assert gateway.requests == ["https://gateway.test/static/3.json"]


@pytest.mark.asyncio
async def test_resolve_fetch_not_ok(resolver, gateway):
    gateway.statuses[5] = 502

    with pytest.raises(ResolutionError) as exc_info:
        await resolver.resolve(5)

    assert exc_info.value.reason == FailureReason.FETCH_NOT_OK
    assert exc_info.value.token_id == 5
    assert "502" in str(exc_info.value)
    assert str(exc_info.value).startswith("fetch-not-ok: token 5")


@pytest.mark.asyncio
async def test_resolve_missing_document_is_fetch_not_ok(resolver):
    with pytest.raises(ResolutionError) as exc_info:
        await resolver.resolve(9)

    assert exc_info.value.reason == FailureReason.FETCH_NOT_OK


@pytest.mark.asyncio
async def test_resolve_fetch_failed(resolver, gateway):
    gateway.unreachable.add(4)

    with pytest.raises(ResolutionError) as exc_info:
        await resolver.resolve(4)

    assert exc_info.value.reason == FailureReason.FETCH_FAILED


@pytest.mark.asyncio
async def test_resolve_invalid_json(resolver, gateway):
    gateway.raw[6] = b"<html>not json</html>"

    with pytest.raises(ResolutionError) as exc_info:
        await resolver.resolve(6)

    assert exc_info.value.reason == FailureReason.PARSE_ERROR


@pytest.mark.asyncio
async def test_resolve_json_array_is_parse_error(resolver, gateway):
    gateway.documents[8] = [1, 2, 3]

    with pytest.raises(ResolutionError) as exc_info:
        await resolver.resolve(8)

    assert exc_info.value.reason == FailureReason.PARSE_ERROR
    assert "list" in str(exc_info.value)


@pytest.mark.asyncio
async def test_resolve_chain_error_propagates(resolver, chain, gateway):
    chain.uri_error = BlockchainConnectionError("uri(2) failed: timeout")

    with pytest.raises(BlockchainConnectionError):
        await resolver.resolve(2)

    assert gateway.requests == []
