"""Typed decoding of ERC-20 ``Transfer`` logs."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional

from app.schemas.chain import LogEntry, TransactionReceipt

# keccak256("Transfer(address,address,uint256)")
TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"

_WORD_RE = re.compile(r"0x[0-9a-fA-F]{64}")
_ADDRESS_PADDING = "0" * 24


@dataclass(frozen=True)
class TransferEvent:
    token_address: str
    sender: str
    recipient: str
    amount: int
    log_index: Optional[int] = None


def _word(value: str) -> Optional[str]:
    if not isinstance(value, str) or not _WORD_RE.fullmatch(value):
        return None
    return value[2:].lower()


def _address_from_topic(topic: str) -> Optional[str]:
    word = _word(topic)
    if word is None or not word.startswith(_ADDRESS_PADDING):
        return None
    return "0x" + word[len(_ADDRESS_PADDING):]


def decode_transfer(log: LogEntry) -> Optional[TransferEvent]:
    """Decode ``log`` as an ERC-20 transfer, or return ``None``.

    The standard event indexes ``from`` and ``to``, so a well-formed log has
    exactly three topics and a single 32-byte data word holding the value.
    ERC-721 transfers share the signature but index the token id as a fourth
    topic; they are rejected by the topic count.
    """

    if len(log.topics) != 3 or (log.topics[0] or "").lower() != TRANSFER_TOPIC:
        return None
    sender = _address_from_topic(log.topics[1])
    recipient = _address_from_topic(log.topics[2])
    value = _word(log.data)
    if sender is None or recipient is None or value is None:
        return None
    return TransferEvent(
        token_address=log.address.lower(),
        sender=sender,
        recipient=recipient,
        amount=int(value, 16),
        log_index=log.log_index,
    )


def find_token_transfers(
    receipt: TransactionReceipt, token_address: str
) -> List[TransferEvent]:
    """Return the transfers in ``receipt`` emitted by ``token_address`` only."""

    token = token_address.lower()
    transfers: List[TransferEvent] = []
    for log in receipt.logs:
        if log.address.lower() != token:
            continue
        event = decode_transfer(log)
        if event is not None:
            transfers.append(event)
    return transfers
