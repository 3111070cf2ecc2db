"""Service error hierarchy for metadata resolution, indexing and chain access.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors
- TransientError: Retryable errors (network, RPC, database hiccups)
- PermanentError: Errors that will not go away by retrying the same call
- IndexingError: A failed indexing attempt, carrying a machine-readable reason
"""

from enum import Enum


class FailureReason(str, Enum):
    """Reason codes for a failed indexing attempt."""

    FETCH_NOT_OK = "fetch-not-ok"
    FETCH_FAILED = "fetch-failed"
    PARSE_ERROR = "parse-error"
    MISSING_DEVICE = "missing-device"
    DEVICE_CREATE_FAILED = "device-create-failed"
    TOKEN_WRITE_FAILED = "token-write-failed"


class ServiceError(Exception):
    """Base exception for all service errors."""

    pass


class TransientError(ServiceError):
    """Transient error that may succeed on retry.

    Examples:
    - RPC timeouts
    - Gateway unavailable (5xx)
    - Database connection drops
    """

    pass


class PermanentError(ServiceError):
    """Permanent error that will not succeed on retry.

    Examples:
    - Contract missing at the configured address
    - Invalid configuration
    """

    pass


class ConfigurationError(PermanentError):
    """Required configuration is missing or invalid."""

    pass


# Indexing errors
class IndexingError(ServiceError):
    """Base exception for a failed resolve/index attempt.

    Attributes:
        token_id: On-chain token id being indexed
        reason: Machine-readable failure code
        detail: Human-readable context (upstream status, database message, ...)
    """

    def __init__(self, token_id: int, reason: FailureReason, detail: str = ""):
        self.token_id = token_id
        self.reason = reason
        self.detail = detail
        message = f"{reason.value}: token {token_id}"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class ResolutionError(IndexingError):
    """Metadata could not be fetched or parsed."""

    pass


class RecordIndexError(IndexingError):
    """Metadata was fetched but the token could not be persisted."""

    @property
    def is_malformed_upstream(self) -> bool:
        """True when the failure stems from the metadata document, not infrastructure."""
        return self.reason == FailureReason.MISSING_DEVICE


# Blockchain-specific errors
class BlockchainConnectionError(TransientError):
    """Failed to reach the blockchain RPC endpoint."""

    pass


class ContractNotFoundError(PermanentError):
    """Smart contract not found at specified address."""

    pass
