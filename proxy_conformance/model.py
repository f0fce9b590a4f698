"""
Values observed from the proxy: receipts, log entries, deployed contracts.
"""

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Tuple

from eth_utils import to_checksum_address
from hexbytes import HexBytes


def _hexbytes(value) -> Optional[HexBytes]:
    if value is None or value == "":
        return None
    return HexBytes(value)


def _int(value) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, str):
        return int(value, 16)
    return int(value)


def _address(value) -> Optional[str]:
    if not value:
        return None
    return to_checksum_address(value)


@dataclass(frozen=True)
class LogEntry:
    address: str
    topics: Tuple[HexBytes, ...]
    data: HexBytes
    block_number: Optional[int] = None
    block_hash: Optional[HexBytes] = None
    transaction_hash: Optional[HexBytes] = None
    transaction_index: Optional[int] = None
    log_index: Optional[int] = None

    @classmethod
    def from_rpc(cls, log: Mapping[str, Any]) -> "LogEntry":
        return cls(
            address=_address(log.get("address")),
            topics=tuple(HexBytes(t) for t in log.get("topics") or ()),
            data=HexBytes(log.get("data") or b""),
            block_number=_int(log.get("blockNumber")),
            block_hash=_hexbytes(log.get("blockHash")),
            transaction_hash=_hexbytes(log.get("transactionHash")),
            transaction_index=_int(log.get("transactionIndex")),
            log_index=_int(log.get("logIndex")),
        )


@dataclass(frozen=True)
class Receipt:
    transaction_hash: HexBytes
    contract_address: Optional[str]
    logs: Tuple[LogEntry, ...]
    status: Optional[int] = None
    block_number: Optional[int] = None
    block_hash: Optional[HexBytes] = None
    transaction_index: Optional[int] = None
    from_address: Optional[str] = None
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_rpc(cls, receipt: Mapping[str, Any]) -> "Receipt":
        return cls(
            transaction_hash=HexBytes(receipt["transactionHash"]),
            contract_address=_address(receipt.get("contractAddress")),
            logs=tuple(LogEntry.from_rpc(lg) for lg in receipt.get("logs") or ()),
            status=_int(receipt.get("status")),
            block_number=_int(receipt.get("blockNumber")),
            block_hash=_hexbytes(receipt.get("blockHash")),
            transaction_index=_int(receipt.get("transactionIndex")),
            from_address=_address(receipt.get("from")),
            raw=dict(receipt),
        )

    @property
    def succeeded(self) -> bool:
        # proxies that do not report status are taken at their word
        return self.status is None or self.status == 1


@dataclass(frozen=True)
class DeployedContract:
    address: str
    deploy_tx_hash: HexBytes
