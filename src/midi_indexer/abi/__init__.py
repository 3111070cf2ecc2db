"""Contract ABI utilities.

ABIs are stored as JSON files in this directory and loaded at runtime.
"""

import json
from pathlib import Path


def get_contract_abi(contract_name: str = "MIDI") -> list[dict]:
    """Load contract ABI from package resources.

    Only the fragments the indexer calls are kept: ``currentTokenId()``,
    ``uri(uint256)`` and the ERC-1155 ``TransferSingle`` event.

    Args:
        contract_name: Name of the contract (default: "MIDI")

    Returns:
        ABI as list of function/event descriptors

    Raises:
        FileNotFoundError: If ABI file doesn't exist for the specified contract
    """
    abi_path = Path(__file__).parent / f"{contract_name}.json"

    if not abi_path.exists():
        raise FileNotFoundError(f"ABI file not found: {abi_path}")

    with open(abi_path) as f:
        return json.load(f)
