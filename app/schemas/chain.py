from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _hex_quantity(value):
    if isinstance(value, str):
        return int(value, 16)
    return value


class LogEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    address: str
    topics: List[str] = Field(default_factory=list)
    data: str = "0x"
    log_index: Optional[int] = Field(default=None, alias="logIndex")

    @field_validator("log_index", mode="before")
    def _parse_log_index(cls, value):
        return _hex_quantity(value)


class TransactionReceipt(BaseModel):
    """Subset of ``eth_getTransactionReceipt`` the verifier relies on."""

    model_config = ConfigDict(populate_by_name=True)

    transaction_hash: str = Field(alias="transactionHash")
    status: Literal["success", "failure"]
    block_number: int = Field(alias="blockNumber")
    logs: List[LogEntry] = Field(default_factory=list)

    @field_validator("block_number", mode="before")
    def _parse_block_number(cls, value):
        return _hex_quantity(value)

    @field_validator("status", mode="before")
    def _decode_status(cls, value):
        # Post-Byzantium receipts report 0x1 for success and 0x0 for revert.
        if value in ("0x1", 1):
            return "success"
        if value in ("0x0", 0):
            return "failure"
        return value

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


class VerificationResult(BaseModel):
    tx_hash: str
    network: str
    token_address: str
    sender: str
    recipient: str
    amount: int
    block_number: int
