"""
Transaction Builder - constructs message publication transactions.

Turns an application payload into unsigned transactions bound to a fee payer.
Pure construction: no network access.
"""

import struct
from typing import List, Optional

import structlog
from solders import system_program

from relayer.config import RelayConfig, get_config
from relayer.core.errors import InvalidInputError, TransactionBuildError
from relayer.core.types import (
    AccountRef,
    FreshnessToken,
    Operation,
    UnsignedTransaction,
    is_valid_address,
    to_pubkey,
)

logger = structlog.get_logger(__name__)

SYSTEM_PROGRAM_ID = str(system_program.ID)
POST_MESSAGE = 0x01


def encode_post_message(payload: bytes, nonce: int, consistency_level: int) -> bytes:
    """Encode post-message data: tag | nonce | payload length | payload | consistency."""
    return (
        struct.pack("<BI", POST_MESSAGE, nonce)
        + struct.pack("<I", len(payload))
        + payload
        + struct.pack("<B", consistency_level)
    )


class TransactionBuilder:
    """
    Builds unsigned message publication transactions.

    Each payload becomes one transaction: an optional bridge fee transfer
    followed by the post-message operation. The returned list shape leaves
    room for chains that need several transactions per message.
    """

    def __init__(self, config: Optional[RelayConfig] = None):
        """
        Initialize the transaction builder.

        Args:
            config: Relay configuration
        """
        self.config = config or get_config()

    def validate(self, payload: bytes, destination: str) -> None:
        """
        Check the caller-supplied inputs.

        Raises:
            InvalidInputError: If the payload is empty or the destination malformed
        """
        if not isinstance(payload, (bytes, bytearray)) or len(payload) == 0:
            raise InvalidInputError("Payload must be non-empty bytes")
        if not is_valid_address(destination):
            raise InvalidInputError(f"Malformed destination address: {destination!r}")

    def build(
        self,
        payload: bytes,
        fee_payer: str,
        destination: str,
        nonce: Optional[int] = None,
        consistency_level: Optional[int] = None,
        freshness_token: Optional[FreshnessToken] = None,
    ) -> List[UnsignedTransaction]:
        """
        Build the transactions publishing a payload.

        Args:
            payload: Message bytes (non-empty)
            fee_payer: Address paying fees; also the message emitter
            destination: Destination address (base58)
            nonce: Message nonce (defaults to config.message_nonce)
            consistency_level: Finality level (defaults to config.consistency_level)
            freshness_token: Token to embed, if the caller already has one

        Returns:
            Ordered unsigned transactions

        Raises:
            InvalidInputError: If the payload is empty or an address is malformed
            TransactionBuildError: If the fee configuration is incomplete
        """
        self.validate(payload, destination)
        if not is_valid_address(fee_payer):
            raise InvalidInputError(f"Malformed fee payer address: {fee_payer!r}")

        nonce = self.config.message_nonce if nonce is None else nonce
        consistency_level = (
            self.config.consistency_level if consistency_level is None else consistency_level
        )
        if not 0 <= nonce <= 0xFFFFFFFF:
            raise InvalidInputError(f"Nonce out of range: {nonce}")
        if not 0 <= consistency_level <= 0xFF:
            raise InvalidInputError(f"Consistency level out of range: {consistency_level}")

        operations = []

        if self.config.message_fee_lamports > 0:
            collector = self.config.fee_collector
            if not collector or not is_valid_address(collector):
                raise TransactionBuildError("Message fee configured without a valid fee collector")
            operations.append(Operation.from_instruction(system_program.transfer(
                system_program.TransferParams(
                    from_pubkey=to_pubkey(fee_payer),
                    to_pubkey=to_pubkey(collector),
                    lamports=self.config.message_fee_lamports,
                )
            )))

        operations.append(Operation(
            program_id=self.config.bridge_program_id,
            accounts=(
                AccountRef(fee_payer, is_signer=True, is_writable=True),
                AccountRef(destination),
            ),
            data=encode_post_message(bytes(payload), nonce, consistency_level),
        ))

        tx = UnsignedTransaction(
            operations=tuple(operations),
            fee_payer=fee_payer,
            freshness_token=freshness_token,
        )

        logger.debug(
            "message_transaction_built",
            payload_size=len(payload),
            operations=len(operations),
            nonce=nonce,
            consistency_level=consistency_level,
        )
        return [tx]
