"""
Scenario catalogue.

Each scenario deploys its own contract instance through session A and then
drives reads and mutations through sessions A and B, which front the same
ledger under different identities.
"""

from typing import Any, Callable, Dict, Mapping, Tuple

from hexbytes import HexBytes

from .abi import events
from .fixtures import BALLOT, INSTRUCTOR, ContractFixture, encode_bytes32
from .scenario import Scenario

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

PROPOSALS = ("a", "b")

INSTRUCTOR_NAME = "Sam"
INSTRUCTOR_AGE = 25
INSTRUCTOR_SALARY = 30000


def _same_address(x, y) -> bool:
    return x is not None and y is not None and x.lower() == y.lower()


def _tx_hash_of(entry) -> HexBytes:
    # blocks list hashes, or full transaction objects when asked for them
    if isinstance(entry, Mapping):
        return HexBytes(entry["hash"])
    return HexBytes(entry)


# -------------------------
# deploy / code roundtrip
# -------------------------
def scenario_deploy_code(sc: Scenario, a, b):
    names = [encode_bytes32(p) for p in PROPOSALS]
    deployed = sc.deploy(a, [names])

    code_b = sc.read(b, "eth_getCode from session B", lambda: b.get_code(deployed.address))
    sc.assert_equal("runtime code seen by session B", bytes(code_b), bytes(sc.fixture.runtime_bytecode))

    code_a = sc.read(a, "eth_getCode from session A again", lambda: a.get_code(deployed.address))
    sc.assert_equal("runtime code is unchanged", bytes(code_a), bytes(code_b))

    receipt = sc.read(a, "deploy receipt", lambda: a.get_transaction_receipt(deployed.deploy_tx_hash))
    sc.assert_equal("receipt transactionHash", receipt.transaction_hash, deployed.deploy_tx_hash)
    if receipt.from_address is not None:
        sc.assert_true("receipt from is session A", _same_address(receipt.from_address, a.identity),
                       actual=receipt.from_address)

    receipt_b = sc.read(b, "deploy receipt from session B", lambda: b.get_transaction_receipt(deployed.deploy_tx_hash))
    sc.assert_true("session B sees the deploy receipt", receipt_b is not None)
    sc.assert_equal("contractAddress seen by session B", receipt_b.contract_address, deployed.address)


# -------------------------
# voting across two identities
# -------------------------
def scenario_voting(sc: Scenario, a, b):
    name_a, name_b = (encode_bytes32(p) for p in PROPOSALS)
    sc.deploy(a, [[name_a, name_b]])

    chairperson = sc.call(a, "chairperson")
    sc.assert_true("chairperson is session A", _same_address(chairperson, a.identity), actual=chairperson)

    initial = sc.call(a, "proposals", 0)
    sc.assert_equal("initial proposals(0)", initial, (name_a, 0))
    sc.assert_equal("initial proposals(1)", sc.call(a, "proposals", 1), (name_b, 0))
    sc.assert_equal("proposals(0) read twice is identical", sc.call(a, "proposals", 0), initial)

    # only the chairperson may grant voting rights
    voter_b_before = sc.call(a, "voters", b.identity)
    sc.assert_equal("session B starts without voting weight", voter_b_before, (0, False, ZERO_ADDRESS, 0))
    sc.send_rejected(b, "giveRightToVote", b.identity, label="session B grants itself the right to vote")
    sc.assert_equal("voters(B) unchanged after rejected grant", sc.call(b, "voters", b.identity), voter_b_before)
    sc.assert_equal("proposals(0) unchanged after rejected grant", sc.call(b, "proposals", 0), (name_a, 0))

    sc.send(a, "vote", 0)
    sc.assert_equal("proposals(0) after A votes (A)", sc.call(a, "proposals", 0), (name_a, 1))
    sc.assert_equal("proposals(0) after A votes (B)", sc.call(b, "proposals", 0), (name_a, 1))
    sc.assert_equal("proposals(1) after A votes", sc.call(a, "proposals", 1), (name_b, 0))

    sc.send(a, "giveRightToVote", b.identity)
    sc.assert_equal("voters(B) after grant", sc.call(b, "voters", b.identity), (1, False, ZERO_ADDRESS, 0))

    sc.send(b, "vote", 0)
    sc.assert_equal("proposals(0) after B votes (A)", sc.call(a, "proposals", 0), (name_a, 2))
    sc.assert_equal("proposals(0) after B votes (B)", sc.call(b, "proposals", 0), (name_a, 2))
    sc.assert_equal("proposals(1) unchanged", sc.call(b, "proposals", 1), (name_b, 0))
    sc.assert_equal("winningProposal", sc.call(b, "winningProposal"), 0)
    sc.assert_equal("winnerName", sc.call(a, "winnerName"), name_a)


# -------------------------
# event decoding
# -------------------------
def _set_instructor(sc: Scenario, a):
    name = encode_bytes32(INSTRUCTOR_NAME)
    tx_hash = sc.send(a, "setInstructor", name, INSTRUCTOR_AGE, INSTRUCTOR_SALARY)
    receipt = sc.read(a, "setInstructor receipt", lambda: a.get_transaction_receipt(tx_hash))
    sc.assert_true("setInstructor receipt is available", receipt is not None)
    expected_args = {"name": name, "age": INSTRUCTOR_AGE, "salary": INSTRUCTOR_SALARY}
    return receipt, expected_args


def scenario_instructor_events(sc: Scenario, a, b):
    sc.deploy(a)
    known = sc.fixture.known_event_signature
    computed = {ev.signature: HexBytes(ev.topic) for ev in events(sc.fixture.entries)}
    sc.assert_equal("computed Setter signature hash", computed.get(sc.fixture.known_event), known)

    receipt, expected_args = _set_instructor(sc, a)
    sc.assert_equal("setInstructor receipt has no contractAddress", receipt.contract_address, None)
    sc.assert_equal("setInstructor emits one log", len(receipt.logs), 1)
    entry = receipt.logs[0]
    sc.assert_equal("log address is the contract", entry.address, sc.contract.address)
    sc.assert_equal("topics[0] is the Setter signature", entry.topics[0] if entry.topics else None, known)
    sc.assert_log_decoded("Setter log decodes", receipt.logs, "Setter", expected_args)

    receipt_b = sc.read(b, "setInstructor receipt from session B", lambda: b.get_transaction_receipt(receipt.transaction_hash))
    sc.assert_equal("receipt logs seen by session B", receipt_b.logs if receipt_b else None, receipt.logs)

    expected = (expected_args["name"], INSTRUCTOR_AGE, INSTRUCTOR_SALARY)
    sc.assert_equal("getInstructor (A)", sc.call(a, "getInstructor"), expected)
    sc.assert_equal("getInstructor (B)", sc.call(b, "getInstructor"), expected)


# -------------------------
# deploy transaction detail
# -------------------------
def scenario_deploy_transaction(sc: Scenario, a, b):
    deployed = sc.deploy(a)
    deploy_code = bytes(sc.fixture.deploy_bytecode)

    tx = sc.read(a, "eth_getTransactionByHash(deploy)", lambda: a.get_transaction(deployed.deploy_tx_hash))
    tx_input = bytes(HexBytes(tx["input"]))
    sc.assert_true("transaction input contains the deploy bytecode", deploy_code in tx_input,
                   actual=f"{len(tx_input)} byte input")

    block_number = tx["blockNumber"]
    tx_index = tx["transactionIndex"]
    block = sc.read(a, f"eth_getBlockByNumber({block_number})", lambda: a.get_block(block_number))
    sc.assert_equal("block number", block["number"], block_number)
    transactions = list(block["transactions"])
    sc.assert_true("block has an entry at transactionIndex", 0 <= tx_index < len(transactions),
                   actual=f"index {tx_index} of {len(transactions)}")
    sc.assert_equal("block transactions[transactionIndex]", _tx_hash_of(transactions[tx_index]),
                    HexBytes(deployed.deploy_tx_hash))

    height = sc.read(a, "eth_blockNumber", a.block_number)
    sc.assert_true("eth_blockNumber is at least the deploy block", height >= block_number, actual=height)

    tx_b = sc.read(b, "eth_getTransactionByHash(deploy) from session B", lambda: b.get_transaction(deployed.deploy_tx_hash))
    sc.assert_equal("transaction input seen by session B", HexBytes(tx_b["input"]), HexBytes(tx["input"]))
    sc.assert_equal("transaction block seen by session B", tx_b["blockNumber"], block_number)


# -------------------------
# log queries
# -------------------------
def scenario_log_queries(sc: Scenario, a, b):
    deployed = sc.deploy(a)
    decoder = sc.fixture.event_decoder
    deploy_receipt = sc.read(a, "deploy receipt", lambda: a.get_transaction_receipt(deployed.deploy_tx_hash))
    sc.assert_true("deploy receipt is available", deploy_receipt is not None)

    # installed before the log exists, removed at the end
    filter_id = sc.read(b, "eth_newFilter by address", lambda: b.new_filter({"address": deployed.address}))
    sc.assert_true("eth_newFilter returns an id", bool(filter_id), actual=filter_id)

    receipt, expected_args = _set_instructor(sc, a)

    height = sc.read(b, "eth_blockNumber", b.block_number)
    sc.assert_true("eth_blockNumber is at least the receipt block", height >= receipt.block_number, actual=height)
    block = sc.read(b, f"eth_getBlockByNumber({receipt.block_number})", lambda: b.get_block(receipt.block_number))
    sc.assert_equal("block number", block["number"], receipt.block_number)

    queries = (
        ("by address", {"address": deployed.address, "fromBlock": "earliest", "toBlock": "latest"}),
        ("by blockHash", {"address": deployed.address, "blockHash": receipt.block_hash.to_0x_hex()}),
    )
    for label, params in queries:
        logs = sc.read(b, f"eth_getLogs {label}", lambda: b.get_logs(params))
        sc.assert_equal(f"eth_getLogs {label}: one log", len(logs), 1)
        entry = logs[0]
        sc.assert_equal(f"eth_getLogs {label}: address", entry.address, deployed.address)
        sc.assert_equal(f"eth_getLogs {label}: topics", entry.topics, receipt.logs[0].topics)
        sc.assert_equal(f"eth_getLogs {label}: blockNumber", entry.block_number, receipt.block_number)
        sc.assert_equal(f"eth_getLogs {label}: blockHash", entry.block_hash, receipt.block_hash)
        sc.assert_equal(f"eth_getLogs {label}: transactionHash", entry.transaction_hash, receipt.transaction_hash)
        sc.assert_equal(f"eth_getLogs {label}: transactionIndex", entry.transaction_index, receipt.transaction_index)
        sc.assert_equal(f"eth_getLogs {label}: logIndex", entry.log_index, 0)
        sc.assert_log_decoded(f"eth_getLogs {label}: Setter decodes", logs, "Setter", expected_args)
        sc.assert_equal(f"eth_getLogs {label}: decodes like the receipt", decoder.decode(logs), decoder.decode(receipt.logs))

    empty_queries = (
        ("genesis block", {"fromBlock": "earliest", "toBlock": 0}),
        ("deploy block", {"address": deployed.address, "fromBlock": deploy_receipt.block_number,
                          "toBlock": deploy_receipt.block_number}),
    )
    for label, params in empty_queries:
        logs = sc.read(b, f"eth_getLogs {label}", lambda: b.get_logs(params))
        sc.assert_equal(f"eth_getLogs {label}: no logs", logs, [])

    removed = sc.read(b, "eth_uninstallFilter", lambda: b.uninstall_filter(filter_id))
    sc.assert_equal("first eth_uninstallFilter returns true", removed, True)
    removed_again = sc.read(b, "eth_uninstallFilter again", lambda: b.uninstall_filter(filter_id))
    sc.assert_equal("second eth_uninstallFilter returns false", removed_again, False)


SCENARIOS: Dict[str, Tuple[ContractFixture, Callable[..., Any]]] = {
    "deploy_code": (BALLOT, scenario_deploy_code),
    "voting": (BALLOT, scenario_voting),
    "instructor_events": (INSTRUCTOR, scenario_instructor_events),
    "deploy_transaction": (INSTRUCTOR, scenario_deploy_transaction),
    "log_queries": (INSTRUCTOR, scenario_log_queries),
}
