"""Metadata resolver: token id -> metadata document.

Reads the token URI from the contract, rewrites ``ipfs://`` to an HTTP gateway and
fetches the JSON document. No retries here; failed tokens go to the retry queue.
"""

from typing import Any, Protocol

import httpx
import structlog

from midi_indexer.services.exceptions import FailureReason, ResolutionError

logger = structlog.get_logger()

IPFS_SCHEME = "ipfs://"


class TokenUriSource(Protocol):
    async def token_uri(self, token_id: int) -> str: ...


def rewrite_uri(uri: str, gateway_url: str) -> str:
    """Rewrite an ``ipfs://`` URI to a fetchable gateway URL.

    Args:
        uri: URI as returned by the contract
        gateway_url: Gateway prefix ending in ``/ipfs/`` (e.g. "https://nftstorage.link/ipfs/")

    Returns:
        Gateway URL for IPFS URIs; any other URI unchanged

    Example:
        >>> rewrite_uri("ipfs://bafy.../1.json", "https://nftstorage.link/ipfs/")
        'https://nftstorage.link/ipfs/bafy.../1.json'
    """
    if uri.startswith(IPFS_SCHEME):
        if not gateway_url.endswith("/"):
            gateway_url += "/"
        return gateway_url + uri[len(IPFS_SCHEME) :]
    return uri


class MetadataResolver:
    """Resolves token metadata from chain state and the metadata gateway."""

    def __init__(
        self,
        chain: TokenUriSource,
        gateway_url: str = "https://nftstorage.link/ipfs/",
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize resolver.

        Args:
            chain: Source of token URIs (the MIDI contract client)
            gateway_url: IPFS gateway prefix
            timeout: HTTP timeout in seconds, used when no client is injected
            client: Shared httpx client; the resolver owns a new one if omitted
        """
        self.chain = chain
        self.gateway_url = gateway_url
        self.client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def resolve(self, token_id: int) -> dict[str, Any]:
        """Fetch and parse the metadata document for a token.

        Args:
            token_id: On-chain token id

        Returns:
            Parsed metadata document, unchanged

        Raises:
            ResolutionError: fetch-not-ok (non-2xx), fetch-failed (transport),
                parse-error (body is not a JSON object)
            BlockchainConnectionError: Reading the token URI from the contract failed
        """
        uri = await self.chain.token_uri(token_id)
        url = rewrite_uri(uri, self.gateway_url)

        try:
            response = await self.client.get(url)
        except httpx.HTTPError as e:
            logger.warning(
                "metadata.fetch_failed",
                token_id=token_id,
                url=url,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise ResolutionError(token_id, FailureReason.FETCH_FAILED, f"{url}: {e}") from e

        if not response.is_success:
            logger.warning(
                "metadata.fetch_not_ok",
                token_id=token_id,
                url=url,
                status_code=response.status_code,
            )
            raise ResolutionError(
                token_id,
                FailureReason.FETCH_NOT_OK,
                f"{url} returned {response.status_code}",
            )

        try:
            metadata = response.json()
        except ValueError as e:
            raise ResolutionError(token_id, FailureReason.PARSE_ERROR, f"{url}: {e}") from e

        if not isinstance(metadata, dict):
            raise ResolutionError(
                token_id,
                FailureReason.PARSE_ERROR,
                f"{url}: expected a JSON object, got {type(metadata).__name__}",
            )

        logger.debug("metadata.resolved", token_id=token_id, url=url)
        return metadata
