"""
In-memory stand-ins for two proxy sessions over one shared ledger.

FakeLedger executes the Ballot and Instructor contracts in Python and records
transactions, blocks and receipts the way a proxy would report them.
FakeSession exposes the same surface the scenarios use on a real Session.
"""

import itertools
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Dict, List, Optional

import pytest
from eth_abi import encode as abi_encode
from eth_utils import keccak, to_checksum_address
from hexbytes import HexBytes

from proxy_conformance.errors import CallFailedError, TransactionRejectedError
from proxy_conformance.fixtures import SETTER_EVENT_SIGNATURE
from proxy_conformance.model import DeployedContract, LogEntry, Receipt

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

IDENTITY_A = to_checksum_address("0x" + "a1" * 20)
IDENTITY_B = to_checksum_address("0x" + "b2" * 20)


class Revert(Exception):
    pass


class BallotState:
    def __init__(self, sender: str, proposal_names):
        self.chairperson = sender
        self.proposals = [[bytes(n), 0] for n in proposal_names]
        self.voters: Dict[str, list] = {}
        self._voter(sender)[0] = 1

    def _voter(self, addr: str) -> list:
        # weight, voted, delegate, vote
        return self.voters.setdefault(addr.lower(), [0, False, ZERO_ADDRESS, 0])

    def call(self, sender, name, *args):
        if name == "chairperson":
            return self.chairperson
        if name == "proposals":
            return tuple(self.proposals[args[0]])
        if name == "voters":
            return tuple(self._voter(args[0]))
        if name == "winningProposal":
            return max(range(len(self.proposals)), key=lambda i: (self.proposals[i][1], -i))
        if name == "winnerName":
            return self.proposals[self.call(sender, "winningProposal")][0]
        raise KeyError(name)

    def send(self, sender, name, *args, open_voting=False):
        if name == "giveRightToVote":
            if sender.lower() != self.chairperson.lower() and not open_voting:
                raise Revert("Only chairperson can give right to vote.")
            voter = self._voter(args[0])
            if voter[1]:
                raise Revert("The voter already voted.")
            voter[0] = 1
            return []
        if name == "vote":
            voter = self._voter(sender)
            if voter[1]:
                raise Revert("Already voted.")
            voter[1] = True
            voter[3] = args[0]
            self.proposals[args[0]][1] += voter[0]
            return []
        raise KeyError(name)


class InstructorState:
    def __init__(self, sender: str):
        self.name, self.age, self.salary = b"\x00" * 32, 0, 0

    def call(self, sender, name, *args):
        if name == "getInstructor":
            return (self.name, self.age, self.salary)
        raise KeyError(name)

    def send(self, sender, name, *args, open_voting=False):
        if name == "setInstructor":
            self.name, self.age, self.salary = bytes(args[0]), args[1], args[2]
            return [((SETTER_EVENT_SIGNATURE, HexBytes(self.name)), abi_encode(["uint256", "uint256"], [self.age, self.salary]))]
        raise KeyError(name)


class FakeLedger:
    """
    One block per transaction. Fault switches let tests make the ledger misbehave:

        code_override   bytes returned by eth_getCode instead of the deployed runtime
        open_voting     giveRightToVote is no longer restricted to the chairperson
        strip_topics    logs are reported without their argument topics
        drop_logs       eth_getLogs returns nothing
        ignore_block_range  eth_getLogs disregards fromBlock / toBlock
        sticky_filters  eth_uninstallFilter always reports success
    """

    def __init__(self):
        self.contracts: Dict[str, Any] = {}
        self.code: Dict[str, HexBytes] = {}
        self.transactions: Dict[bytes, Dict[str, Any]] = {}
        self.receipts: Dict[bytes, Receipt] = {}
        self.blocks: List[Dict[str, Any]] = [{"number": 0, "hash": HexBytes(keccak(b"block-0")), "transactions": []}]
        self._nonce = itertools.count(1)
        self.code_override: Optional[bytes] = None
        self.open_voting = False
        self.strip_topics = False
        self.drop_logs = False
        self.ignore_block_range = False
        self.sticky_filters = False
        self.filters: Dict[str, Dict[str, Any]] = {}

    @property
    def height(self) -> int:
        return len(self.blocks) - 1

    def _commit(self, sender: str, to: Optional[str], data: bytes, status: int,
                contract_address: Optional[str] = None, events=()) -> Receipt:
        nonce = next(self._nonce)
        tx_hash = HexBytes(keccak(b"tx-%d" % nonce))
        number = len(self.blocks)
        block_hash = HexBytes(keccak(b"block-%d" % number))
        self.blocks.append({"number": number, "hash": block_hash, "transactions": [tx_hash]})
        self.transactions[bytes(tx_hash)] = {
            "hash": tx_hash, "from": sender, "to": to, "input": HexBytes(data),
            "blockNumber": number, "blockHash": block_hash, "transactionIndex": 0,
        }
        logs = []
        for i, (topics, log_data) in enumerate(events):
            if self.strip_topics:
                topics = topics[:1]
            logs.append(LogEntry(
                address=to, topics=tuple(topics), data=HexBytes(log_data), block_number=number,
                block_hash=block_hash, transaction_hash=tx_hash, transaction_index=0, log_index=i,
            ))
        receipt = Receipt(
            transaction_hash=tx_hash, contract_address=contract_address, logs=tuple(logs), status=status,
            block_number=number, block_hash=block_hash, transaction_index=0, from_address=sender,
        )
        self.receipts[bytes(tx_hash)] = receipt
        return receipt

    def deploy(self, sender: str, fixture, constructor_args) -> Receipt:
        address = to_checksum_address(keccak(b"contract-%d" % len(self.contracts))[-20:])
        if fixture.name == "Ballot":
            self.contracts[address] = BallotState(sender, *constructor_args)
        else:
            self.contracts[address] = InstructorState(sender)
        self.code[address] = fixture.runtime_bytecode
        return self._commit(sender, None, bytes(fixture.deploy_bytecode), 1, contract_address=address)

    def block_ref(self, ref, default: int) -> int:
        if ref is None:
            return default
        if ref == "earliest":
            return 0
        if ref in ("latest", "pending"):
            return self.height
        if isinstance(ref, str):
            return int(ref, 16)
        return int(ref)

    def contract(self, address: str):
        try:
            return self.contracts[to_checksum_address(address)]
        except KeyError:
            raise CallFailedError(f"no contract at {address}") from None


class FakeSession:
    def __init__(self, ledger: FakeLedger, identity: str, endpoint: str):
        self.ledger = ledger
        self.identity = identity
        self.endpoint = endpoint
        self.closed = False

    def default_identity(self) -> str:
        return self.identity

    def close(self):
        self.closed = True

    def deploy(self, fixture, constructor_args=()) -> DeployedContract:
        receipt = self.ledger.deploy(self.identity, fixture, constructor_args)
        return DeployedContract(address=receipt.contract_address, deploy_tx_hash=receipt.transaction_hash)

    def call(self, address, abi, function_name, *args):
        return self.ledger.contract(address).call(self.identity, function_name, *args)

    def send(self, address, abi, function_name, *args) -> str:
        contract = self.ledger.contract(address)
        try:
            events = contract.send(self.identity, function_name, *args, open_voting=self.ledger.open_voting)
        except Revert as e:
            raise TransactionRejectedError(f"{function_name} reverted: {e}") from e
        receipt = self.ledger._commit(self.identity, to_checksum_address(address), b"", 1, events=events)
        return receipt.transaction_hash.to_0x_hex()

    def get_transaction_receipt(self, tx_hash) -> Optional[Receipt]:
        return self.ledger.receipts.get(bytes(HexBytes(tx_hash)))

    def get_code(self, address) -> HexBytes:
        if self.ledger.code_override is not None:
            return HexBytes(self.ledger.code_override)
        return self.ledger.code.get(to_checksum_address(address), HexBytes(b""))

    def get_transaction(self, tx_hash):
        return self.ledger.transactions[bytes(HexBytes(tx_hash))]

    def get_block(self, block_number, full_transactions=False):
        return self.ledger.blocks[block_number]

    def block_number(self) -> int:
        return self.ledger.height

    def get_logs(self, filter_params) -> List[LogEntry]:
        if self.ledger.drop_logs:
            return []
        address = filter_params.get("address")
        block_hash = filter_params.get("blockHash")
        first = self.ledger.block_ref(filter_params.get("fromBlock"), self.ledger.height)
        last = self.ledger.block_ref(filter_params.get("toBlock"), self.ledger.height)
        found = []
        for receipt in self.ledger.receipts.values():
            for entry in receipt.logs:
                if address and entry.address.lower() != address.lower():
                    continue
                if block_hash and entry.block_hash != HexBytes(block_hash):
                    continue
                if not block_hash and not self.ledger.ignore_block_range and not first <= entry.block_number <= last:
                    continue
                found.append(entry)
        return found

    def new_filter(self, filter_params) -> str:
        filter_id = hex(len(self.ledger.filters) + 1)
        self.ledger.filters[filter_id] = dict(filter_params)
        return filter_id

    def uninstall_filter(self, filter_id) -> bool:
        if self.ledger.sticky_filters:
            return True
        return self.ledger.filters.pop(filter_id, None) is not None


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def session_a(ledger):
    return FakeSession(ledger, IDENTITY_A, "http://proxy-a")


@pytest.fixture
def session_b(ledger):
    return FakeSession(ledger, IDENTITY_B, "http://proxy-b")


class HtmlHandler(BaseHTTPRequestHandler):
    def do_POST(self):
        self.rfile.read(int(self.headers.get("Content-Length", 0)))
        body = b"<html>not a proxy</html>"
        self.send_response(200)
        self.send_header("Content-Type", "text/html")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        pass


@pytest.fixture
def html_endpoint():
    """A local HTTP server that answers every POST with an HTML page."""
    server = HTTPServer(("127.0.0.1", 0), HtmlHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.server_address[1]}"
    server.shutdown()
    server.server_close()
