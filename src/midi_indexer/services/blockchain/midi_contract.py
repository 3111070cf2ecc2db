"""MIDI contract client.

Read-only access to the ERC-1155 MIDI contract:
1. ``currentTokenId()`` - highest minted token id
2. ``uri(id)`` - metadata location for a token
3. ``TransferSingle`` logs with ``from == 0x0`` - mint events, live and historical

web3.py's HTTP provider is synchronous; every RPC call runs in a worker thread so
a slow node only stalls the coroutine waiting on it.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Sequence

import structlog
from web3 import Web3
from web3.exceptions import BadFunctionCallOutput, ContractLogicError

from midi_indexer.abi import get_contract_abi
from midi_indexer.core.config import Settings
from midi_indexer.services.exceptions import BlockchainConnectionError, ContractNotFoundError

logger = structlog.get_logger()

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


@dataclass(frozen=True)
class MintTransfer:
    """Decoded ``TransferSingle`` log."""

    operator: str
    from_address: str
    to_address: str
    token_id: int
    value: int
    block_number: int
    tx_hash: str
    log_index: int


def is_mint(transfer: MintTransfer) -> bool:
    """A transfer out of the zero address is a mint."""
    return transfer.from_address.lower() == ZERO_ADDRESS


def _to_hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    return str(value)


def decode_transfer(event: Any) -> MintTransfer:
    """Convert a web3 ``EventData`` for ``TransferSingle`` into a MintTransfer."""
    args = event["args"]
    return MintTransfer(
        operator=args["operator"],
        from_address=args["from"],
        to_address=args["to"],
        token_id=int(args["id"]),
        value=int(args["value"]),
        block_number=event["blockNumber"],
        tx_hash=_to_hex(event["transactionHash"]),
        log_index=event["logIndex"],
    )


class MidiContractClient:
    """Chain collaborator used by the resolver, the listener and the sweep."""

    def __init__(
        self,
        w3: Web3,
        contract_address: str,
        retry_delays: Sequence[float] = (1, 2, 4),
    ):
        """Initialize client with blockchain connection.

        Args:
            w3: Web3 instance for RPC calls
            contract_address: MIDI contract address
            retry_delays: Back-off delays (seconds) for retried read calls
        """
        self.w3 = w3
        self.contract_address = Web3.to_checksum_address(contract_address)
        self.retry_delays = tuple(retry_delays)

        self.contract = self.w3.eth.contract(
            address=self.contract_address, abi=get_contract_abi()
        )

        logger.info("midi_contract.initialized", contract_address=self.contract_address)

    @classmethod
    def from_settings(cls, settings: Settings) -> "MidiContractClient":
        w3 = Web3(Web3.HTTPProvider(settings.provider_endpoint))
        return cls(w3=w3, contract_address=settings.midi_contract_address)

    async def _call(self, fn: Callable[[], Any]) -> Any:
        return await asyncio.to_thread(fn)

    async def _call_with_retry(self, call_name: str, fn: Callable[[], Any]) -> Any:
        """Run a read call, retrying RPC failures with exponential backoff.

        Raises:
            ContractNotFoundError: Contract missing or function not in its ABI (not retried)
            BlockchainConnectionError: RPC still failing after all retries
        """
        max_retries = len(self.retry_delays)

        for attempt in range(max_retries):
            try:
                return await self._call(fn)

            except (BadFunctionCallOutput, ContractLogicError) as e:
                logger.error(
                    "midi_contract.contract_error",
                    call=call_name,
                    error=str(e),
                    error_type=type(e).__name__,
                    contract_address=self.contract_address,
                )
                raise ContractNotFoundError(
                    f"Contract not found at {self.contract_address} or {call_name} missing"
                ) from e

            except Exception as e:
                if attempt < max_retries - 1:
                    delay = self.retry_delays[attempt]
                    logger.warning(
                        "midi_contract.rpc_error_retry",
                        call=call_name,
                        error=str(e),
                        error_type=type(e).__name__,
                        attempt=attempt + 1,
                        retry_in_seconds=delay,
                    )
                    await asyncio.sleep(delay)
                else:
                    logger.error(
                        "midi_contract.rpc_error_exhausted",
                        call=call_name,
                        error=str(e),
                        error_type=type(e).__name__,
                        attempts=max_retries,
                    )
                    raise BlockchainConnectionError(
                        f"{call_name} failed after {max_retries} attempts: {e}"
                    ) from e

        raise BlockchainConnectionError(f"{call_name} was not attempted")

    async def current_token_id(self) -> int:
        """Query the contract's ``currentTokenId`` counter.

        Returns:
            Highest minted token id; ids ``1..current`` are expected to exist
        """
        current = await self._call_with_retry(
            "currentTokenId()", lambda: self.contract.functions.currentTokenId().call()
        )
        logger.debug("midi_contract.current_token_id", current_token_id=current)
        return int(current)

    async def token_uri(self, token_id: int) -> str:
        """Read the metadata URI for a token. Single attempt; callers own retries."""
        try:
            return await self._call(lambda: self.contract.functions.uri(token_id).call())
        except (BadFunctionCallOutput, ContractLogicError) as e:
            raise ContractNotFoundError(f"uri({token_id}) reverted: {e}") from e
        except Exception as e:
            raise BlockchainConnectionError(f"uri({token_id}) failed: {e}") from e

    async def get_block_number(self) -> int:
        return await self._call_with_retry("eth_blockNumber", lambda: self.w3.eth.block_number)

    async def fetch_mint_transfers(
        self,
        from_block: int,
        to_block: int,
        batch_size: int = 1000,
    ) -> list[MintTransfer]:
        """Fetch mint ``TransferSingle`` logs with pagination.

        The ``from`` topic is filtered to the zero address on the node side.

        Args:
            from_block: Starting block number (inclusive)
            to_block: Ending block number (inclusive)
            batch_size: Maximum number of blocks per eth_getLogs request

        Returns:
            Decoded transfers in chain order
        """
        transfer_event = self.contract.events.TransferSingle
        transfers: list[MintTransfer] = []
        current_block = from_block

        while current_block <= to_block:
            chunk_end = min(current_block + batch_size - 1, to_block)

            logger.debug(
                "midi_contract.get_logs",
                from_block=current_block,
                to_block=chunk_end,
            )

            start = current_block
            events = await self._call_with_retry(
                "eth_getLogs",
                lambda: transfer_event.get_logs(
                    argument_filters={"from": ZERO_ADDRESS},
                    from_block=start,
                    to_block=chunk_end,
                ),
            )
            transfers.extend(decode_transfer(event) for event in events)

            current_block = chunk_end + 1

        return transfers

    async def fetch_mint_operators(
        self, from_block: int, batch_size: int = 1000
    ) -> dict[int, str]:
        """Scan the mint history and map each token id to its minting operator.

        Args:
            from_block: Block the contract was deployed at (scan start)
            batch_size: Maximum number of blocks per eth_getLogs request

        Returns:
            ``{token_id: operator}`` using the first mint seen for each id
        """
        head = await self.get_block_number()
        transfers = await self.fetch_mint_transfers(from_block, head, batch_size)

        operators: dict[int, str] = {}
        for transfer in transfers:
            if is_mint(transfer):
                operators.setdefault(transfer.token_id, transfer.operator)

        logger.info(
            "midi_contract.mint_history_scanned",
            from_block=from_block,
            to_block=head,
            mint_count=len(operators),
        )
        return operators
