"""
One authenticated connection to one proxy endpoint.

The proxy holds the signing identity: eth_accounts returns the identity the
endpoint acts as, and eth_sendTransaction is signed proxy-side. Index 0 of
eth_accounts is the session's default "from" address.

Every call blocks until it is complete from the caller's point of view. A send
is complete once its receipt is obtainable; the receipt wait is bounded by
receipt_timeout and never retried past the bound.
"""

import json
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterable, List, Optional, Sequence

import requests
from eth_abi import encode as abi_encode
from eth_utils import add_0x_prefix, to_checksum_address
from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import TransactionNotFound, Web3Exception, Web3RPCError

from . import config
from .abi import find_constructor, find_function, parse_abi
from .errors import (
    CallFailedError,
    DeploymentMismatchError,
    NoAccountError,
    ProxyConnectionError,
    ReceiptTimeoutError,
    TransactionRejectedError,
)
from .fixtures import ContractFixture
from .model import DeployedContract, LogEntry, Receipt
from .reporting import dump_receipt, log


def _hash_str(tx_hash) -> str:
    if isinstance(tx_hash, (bytes, bytearray)):
        return HexBytes(tx_hash).to_0x_hex()
    return add_0x_prefix(tx_hash)


class Session:
    def __init__(self, endpoint: str, w3: Web3,
                 receipt_timeout: float = config.RECEIPT_TIMEOUT,
                 poll_interval: float = config.TX_POLL_INTERVAL,
                 artifact_dir=None,
                 http_session: Optional[requests.Session] = None):
        self.endpoint = endpoint
        self.w3 = w3
        self.receipt_timeout = receipt_timeout
        self.poll_interval = poll_interval
        self.artifact_dir = artifact_dir
        self._http_session = http_session
        self._identity: Optional[str] = None
        self._contracts: Dict[str, Any] = {}
        self.closed = False

    @classmethod
    def connect(cls, endpoint: str, request_timeout: float = config.REQUEST_TIMEOUT, **kwargs) -> "Session":
        http_session = requests.Session()
        provider = Web3.HTTPProvider(
            endpoint,
            request_kwargs={"timeout": request_timeout},
            session=http_session,
            # a failing request is a finding, not something to paper over
            exception_retry_configuration=None,
        )
        w3 = Web3(provider)
        try:
            w3.net.version
        except (OSError, json.JSONDecodeError) as e:
            # unreachable, or something answering that is not a JSON-RPC endpoint
            http_session.close()
            raise ProxyConnectionError(endpoint, str(e)) from e
        except Web3Exception as e:
            # the endpoint answered; it just does not implement net_version
            log(f"{endpoint} rejected net_version: {e}", "WARN")
        return cls(endpoint, w3, http_session=http_session, **kwargs)

    # -------------------------
    # lifecycle
    # -------------------------
    def close(self):
        if self.closed:
            return
        self.closed = True
        if self._http_session is not None:
            self._http_session.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def __repr__(self):
        return f"Session({self.endpoint!r}, identity={self._identity!r})"

    @contextmanager
    def _rpc(self, what: str):
        try:
            yield
        except (OSError, json.JSONDecodeError) as e:
            raise ProxyConnectionError(self.endpoint, f"{what}: {e}") from e
        except Web3Exception as e:
            raise CallFailedError(f"{what} failed on {self.endpoint}: {e}") from e

    # -------------------------
    # identity
    # -------------------------
    def default_identity(self) -> str:
        if self._identity is None:
            try:
                with self._rpc("eth_accounts"):
                    accounts = self.w3.eth.accounts
            except CallFailedError as e:
                raise NoAccountError(f"{self.endpoint} did not return accounts: {e}") from e
            if not accounts or not accounts[0]:
                raise NoAccountError(f"{self.endpoint} exposes no account")
            self._identity = to_checksum_address(accounts[0])
        return self._identity

    @property
    def identity(self) -> str:
        return self.default_identity()

    # -------------------------
    # transactions
    # -------------------------
    def _send_transaction(self, tx: Dict[str, Any]) -> str:
        """
        eth_sendTransaction as a raw request, so web3 does not try to fill
        gas / fee / chainId defaults the proxy may not implement.
        """
        method = "eth_sendTransaction"
        try:
            response = self.w3.provider.make_request(method, [tx])
        except (OSError, json.JSONDecodeError) as e:
            raise ProxyConnectionError(self.endpoint, f"{method}: {e}") from e
        if response.get("error"):
            raise TransactionRejectedError(f"{self.endpoint} rejected {method}: {response['error']}")
        result = response.get("result")
        if not result:
            raise TransactionRejectedError(f"{self.endpoint} returned no transaction hash for {method}")
        return _hash_str(result)

    def get_transaction_receipt(self, tx_hash) -> Optional[Receipt]:
        """The receipt for tx_hash, or None while the proxy has not processed it."""
        tx_hash = _hash_str(tx_hash)
        try:
            raw = self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        except Web3RPCError:
            # some proxies answer with an error rather than null until the tx is committed
            return None
        except (OSError, json.JSONDecodeError) as e:
            raise ProxyConnectionError(self.endpoint, f"eth_getTransactionReceipt: {e}") from e
        if not raw:
            return None
        return Receipt.from_rpc(raw)

    def wait_for_receipt(self, tx_hash) -> Receipt:
        tx_hash = _hash_str(tx_hash)
        start = time.monotonic()
        while True:
            receipt = self.get_transaction_receipt(tx_hash)
            if receipt is not None:
                dump_receipt(self.artifact_dir, tx_hash, receipt.raw)
                return receipt
            if time.monotonic() - start > self.receipt_timeout:
                raise ReceiptTimeoutError(tx_hash, self.receipt_timeout)
            time.sleep(self.poll_interval)

    def deploy(self, fixture: ContractFixture, constructor_args: Sequence[Any] = ()) -> DeployedContract:
        ctor = find_constructor(fixture.entries)
        if len(constructor_args) != len(ctor.inputs):
            raise ValueError(f"{fixture.name} constructor takes {len(ctor.inputs)} arguments, got {len(constructor_args)}")
        encoded_args = abi_encode([p.type for p in ctor.inputs], list(constructor_args))
        data = HexBytes(bytes(fixture.deploy_bytecode) + encoded_args)

        tx_hash = self._send_transaction({"from": self.identity, "data": data.to_0x_hex()})
        receipt = self.wait_for_receipt(tx_hash)
        if not receipt.succeeded:
            raise TransactionRejectedError(f"deployment of {fixture.name} failed (status={receipt.status})", tx_hash)
        if not receipt.contract_address:
            raise DeploymentMismatchError(f"receipt of deployment {tx_hash} carries no contractAddress")
        return DeployedContract(address=receipt.contract_address, deploy_tx_hash=HexBytes(tx_hash))

    def _function(self, address: str, abi: Iterable[Dict[str, Any]], function_name: str, args):
        address = to_checksum_address(address)
        contract = self._contracts.get(address)
        if contract is None:
            contract = self._contracts[address] = self.w3.eth.contract(address=address, abi=list(abi))
        return contract.get_function_by_name(function_name)(*args)

    def call(self, address: str, abi: Iterable[Dict[str, Any]], function_name: str, *args):
        """
        Invoke a read-only function. Multi-output functions return a tuple.
        """
        abi = list(abi)
        fn_abi = find_function(parse_abi(abi), function_name)
        if not fn_abi.constant:
            raise ValueError(f"{function_name} mutates state; use send()")
        with self._rpc(f"eth_call {function_name}"):
            result = self._function(address, abi, function_name, args).call({"from": self.identity})
        if len(fn_abi.outputs) > 1:
            return tuple(result)
        return result

    def send(self, address: str, abi: Iterable[Dict[str, Any]], function_name: str, *args) -> str:
        """
        Invoke a state-mutating function and wait for its receipt.
        Raises TransactionRejectedError if the proxy refuses it or the receipt reports failure.
        """
        abi = list(abi)
        fn_abi = find_function(parse_abi(abi), function_name)
        if fn_abi.constant:
            raise ValueError(f"{function_name} is read-only; use call()")
        data = self._function(address, abi, function_name, args)._encode_transaction_data()

        tx_hash = self._send_transaction({"from": self.identity, "to": to_checksum_address(address), "data": data})
        receipt = self.wait_for_receipt(tx_hash)
        if not receipt.succeeded:
            raise TransactionRejectedError(f"{function_name} reverted (status={receipt.status})", tx_hash)
        return tx_hash

    # -------------------------
    # chain reads
    # -------------------------
    def get_code(self, address: str) -> HexBytes:
        with self._rpc("eth_getCode"):
            return HexBytes(self.w3.eth.get_code(to_checksum_address(address)))

    def get_transaction(self, tx_hash):
        with self._rpc("eth_getTransactionByHash"):
            return self.w3.eth.get_transaction(_hash_str(tx_hash))

    def get_block(self, block_number: int, full_transactions: bool = False):
        with self._rpc("eth_getBlockByNumber"):
            return self.w3.eth.get_block(block_number, full_transactions)

    def block_number(self) -> int:
        with self._rpc("eth_blockNumber"):
            return self.w3.eth.block_number

    def get_logs(self, filter_params: Dict[str, Any]) -> List[LogEntry]:
        with self._rpc("eth_getLogs"):
            raw = self.w3.eth.get_logs(filter_params)
        return [LogEntry.from_rpc(entry) for entry in raw]

    def new_filter(self, filter_params: Dict[str, Any]) -> str:
        """eth_newFilter; returns the filter id the proxy assigned."""
        with self._rpc("eth_newFilter"):
            log_filter = self.w3.eth.filter(filter_params)
        return log_filter.filter_id

    def uninstall_filter(self, filter_id: str) -> bool:
        with self._rpc("eth_uninstallFilter"):
            return bool(self.w3.eth.uninstall_filter(filter_id))


def connect(endpoint: str, **kwargs) -> Session:
    return Session.connect(endpoint, **kwargs)
