"""Record indexer: metadata + creator -> persisted device and token rows."""

from typing import Any

import structlog
from sqlalchemy.exc import SQLAlchemyError

from midi_indexer.services.exceptions import FailureReason, RecordIndexError
from midi_indexer.uow import UnitOfWork

logger = structlog.get_logger()


def _db_error_detail(error: SQLAlchemyError) -> str:
    """Surface the driver's detail and message for a database error."""
    orig = getattr(error, "orig", None)
    if orig is None:
        return str(error)
    diag = getattr(orig, "diag", None)
    detail = getattr(diag, "message_detail", None) if diag is not None else None
    message = str(orig).strip()
    return f"{detail} {message}" if detail else message


def extract_device(metadata: dict[str, Any]) -> tuple[str | None, str]:
    """Return ``(device, manufacturer)`` from ``metadata.properties``.

    Device is None when absent, empty, or not a string. Manufacturer defaults to "".
    """
    properties = metadata.get("properties")
    if not isinstance(properties, dict):
        return None, ""

    device = properties.get("device")
    if not isinstance(device, str) or not device:
        device = None

    manufacturer = properties.get("manufacturer")
    if not isinstance(manufacturer, str):
        manufacturer = ""

    return device, manufacturer


class RecordIndexer:
    """Normalizes metadata into a Device row and writes the token record.

    Both writes go through the caller's unit of work, so they commit or roll back
    together. A token never references a device that was not persisted.
    """

    async def index(
        self,
        uow: UnitOfWork,
        token_id: int,
        metadata: dict[str, Any],
        creator: str,
    ) -> bool:
        """Persist a token from resolved metadata.

        Args:
            uow: Unit of work providing the transaction
            token_id: On-chain token id
            metadata: Resolved metadata document
            creator: Minting operator address

        Returns:
            True if the token row was created, False if it already existed

        Raises:
            RecordIndexError: missing-device, device-create-failed or token-write-failed
        """
        device_name, manufacturer = extract_device(metadata)
        if device_name is None:
            raise RecordIndexError(
                token_id,
                FailureReason.MISSING_DEVICE,
                "no metadata.properties.device property",
            )

        try:
            device = await uow.devices.get_by_name(device_name)
            if device is None:
                device = await uow.devices.get_or_create(device_name, manufacturer)
                logger.info(
                    "indexer.device_created",
                    device_id=device.id,
                    device=device_name,
                    manufacturer=manufacturer,
                )
        except (SQLAlchemyError, LookupError) as e:
            detail = _db_error_detail(e) if isinstance(e, SQLAlchemyError) else str(e)
            raise RecordIndexError(
                token_id,
                FailureReason.DEVICE_CREATE_FAILED,
                f"{manufacturer}: {device_name}: {detail}",
            ) from e

        try:
            created = await uow.midi.create(
                token_id=token_id,
                metadata=metadata,
                device_id=device.id,  # type: ignore[arg-type]
                created_by=creator,
            )
        except SQLAlchemyError as e:
            raise RecordIndexError(
                token_id,
                FailureReason.TOKEN_WRITE_FAILED,
                _db_error_detail(e),
            ) from e

        if created:
            logger.info("indexer.token_written", token_id=token_id, device_id=device.id)
        else:
            logger.info("indexer.token_already_indexed", token_id=token_id)
        return created
