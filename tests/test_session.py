import json
from unittest.mock import MagicMock

import pytest
import requests
from eth_abi import encode as abi_encode
from eth_utils import to_checksum_address
from hexbytes import HexBytes
from web3.exceptions import TransactionNotFound, Web3RPCError

from proxy_conformance.errors import (
    CallFailedError,
    DeploymentMismatchError,
    NoAccountError,
    ProxyConnectionError,
    ReceiptTimeoutError,
    TransactionRejectedError,
)
from proxy_conformance.fixtures import BALLOT, INSTRUCTOR, encode_bytes32
from proxy_conformance.session import Session

ACCOUNT = "0x" + "a1" * 20
CONTRACT = to_checksum_address("0x" + "cd" * 20)
TX_HASH = "0x" + "11" * 32


def receipt(status=1, contract_address=None, logs=()):
    return {
        "transactionHash": HexBytes(TX_HASH),
        "contractAddress": contract_address,
        "status": status,
        "blockNumber": 7,
        "blockHash": HexBytes("0x" + "22" * 32),
        "transactionIndex": 0,
        "from": ACCOUNT,
        "logs": list(logs),
    }


@pytest.fixture
def w3():
    w3 = MagicMock()
    w3.eth.accounts = [ACCOUNT]
    w3.provider.make_request.return_value = {"jsonrpc": "2.0", "id": 1, "result": TX_HASH}
    return w3


@pytest.fixture
def session(w3):
    return Session("http://proxy", w3, receipt_timeout=0.05, poll_interval=0.001)


def sent_tx(w3):
    method, params = w3.provider.make_request.call_args.args
    assert method == "eth_sendTransaction"
    return params[0]


def test_default_identity_is_first_account(session, w3):
    w3.eth.accounts = [ACCOUNT, "0x" + "b2" * 20]
    assert session.default_identity() == to_checksum_address(ACCOUNT)
    assert session.identity == to_checksum_address(ACCOUNT)


def test_no_accounts(session, w3):
    w3.eth.accounts = []
    with pytest.raises(NoAccountError):
        session.default_identity()


def test_deploy_appends_encoded_constructor_args(session, w3):
    w3.eth.get_transaction_receipt.return_value = receipt(contract_address=CONTRACT)
    names = [encode_bytes32("a"), encode_bytes32("b")]

    deployed = session.deploy(BALLOT, [names])

    tx = sent_tx(w3)
    assert "to" not in tx
    assert tx["from"] == to_checksum_address(ACCOUNT)
    assert HexBytes(tx["data"]) == BALLOT.deploy_bytecode + abi_encode(["bytes32[]"], [names])
    assert deployed.address == CONTRACT
    assert deployed.deploy_tx_hash == HexBytes(TX_HASH)


def test_deploy_without_constructor(session, w3):
    w3.eth.get_transaction_receipt.return_value = receipt(contract_address=CONTRACT)
    session.deploy(INSTRUCTOR)
    assert HexBytes(sent_tx(w3)["data"]) == INSTRUCTOR.deploy_bytecode


def test_deploy_with_wrong_argument_count(session):
    with pytest.raises(ValueError):
        session.deploy(BALLOT)


def test_deploy_receipt_without_address(session, w3):
    w3.eth.get_transaction_receipt.return_value = receipt()
    with pytest.raises(DeploymentMismatchError):
        session.deploy(INSTRUCTOR)


def test_deploy_failed_status(session, w3):
    w3.eth.get_transaction_receipt.return_value = receipt(status=0)
    with pytest.raises(TransactionRejectedError):
        session.deploy(INSTRUCTOR)


def test_proxy_refuses_transaction(session, w3):
    w3.provider.make_request.return_value = {"jsonrpc": "2.0", "id": 1,
                                             "error": {"code": -32000, "message": "endorsement failure"}}
    with pytest.raises(TransactionRejectedError, match="endorsement failure"):
        session.send(CONTRACT, BALLOT.abi_json, "vote", 0)


def test_receipt_polling_until_available(session, w3):
    w3.eth.get_transaction_receipt.side_effect = [
        TransactionNotFound("pending"),
        Web3RPCError("not yet committed"),
        receipt(),
    ]
    r = session.wait_for_receipt(TX_HASH)
    assert r.transaction_hash == HexBytes(TX_HASH)
    assert w3.eth.get_transaction_receipt.call_count == 3


def test_receipt_timeout(session, w3):
    w3.eth.get_transaction_receipt.side_effect = TransactionNotFound("pending")
    with pytest.raises(ReceiptTimeoutError) as info:
        session.wait_for_receipt(TX_HASH)
    assert info.value.tx_hash == TX_HASH


def test_receipt_dumped_to_artifact_dir(w3, tmp_path):
    session = Session("http://proxy", w3, artifact_dir=tmp_path)
    w3.eth.get_transaction_receipt.return_value = receipt()
    session.wait_for_receipt(TX_HASH)
    assert (tmp_path / "receipts" / f"{TX_HASH}.json").exists()


def test_send_encodes_call_and_waits(session, w3):
    fn = w3.eth.contract.return_value.get_function_by_name.return_value.return_value
    fn._encode_transaction_data.return_value = "0x0121b93f" + "00" * 32
    w3.eth.get_transaction_receipt.return_value = receipt()

    assert session.send(CONTRACT, BALLOT.abi_json, "vote", 0) == TX_HASH

    tx = sent_tx(w3)
    assert tx["to"] == CONTRACT
    assert tx["data"].startswith("0x0121b93f")
    w3.eth.contract.return_value.get_function_by_name.assert_called_with("vote")


def test_send_reverted(session, w3):
    w3.eth.get_transaction_receipt.return_value = receipt(status=0)
    with pytest.raises(TransactionRejectedError, match="reverted"):
        session.send(CONTRACT, BALLOT.abi_json, "vote", 0)


def test_send_refuses_read_only_function(session):
    with pytest.raises(ValueError):
        session.send(CONTRACT, BALLOT.abi_json, "proposals", 0)


def test_call_returns_tuple_for_multiple_outputs(session, w3):
    fn = w3.eth.contract.return_value.get_function_by_name.return_value.return_value
    fn.call.return_value = [encode_bytes32("a"), 0]
    assert session.call(CONTRACT, BALLOT.abi_json, "proposals", 0) == (encode_bytes32("a"), 0)
    fn.call.assert_called_with({"from": to_checksum_address(ACCOUNT)})


def test_call_refuses_mutating_function(session):
    with pytest.raises(ValueError):
        session.call(CONTRACT, BALLOT.abi_json, "vote", 0)


def test_call_failure(session, w3):
    fn = w3.eth.contract.return_value.get_function_by_name.return_value.return_value
    fn.call.side_effect = Web3RPCError("execution reverted")
    with pytest.raises(CallFailedError):
        session.call(CONTRACT, BALLOT.abi_json, "chairperson")


def test_connection_lost(session, w3):
    w3.eth.get_code.side_effect = requests.ConnectionError("refused")
    with pytest.raises(ProxyConnectionError, match="eth_getCode"):
        session.get_code(CONTRACT)


def test_get_logs_converts_entries(session, w3):
    w3.eth.get_logs.return_value = [{
        "address": CONTRACT.lower(),
        "topics": ["0x" + "33" * 32],
        "data": "0x",
        "blockNumber": "0x7",
        "blockHash": "0x" + "22" * 32,
        "transactionHash": TX_HASH,
        "transactionIndex": "0x0",
        "logIndex": "0x0",
    }]
    (entry,) = session.get_logs({"address": CONTRACT})
    assert entry.address == CONTRACT
    assert entry.block_number == 7
    assert entry.topics == (HexBytes("0x" + "33" * 32),)


def test_close_is_idempotent(w3):
    http = MagicMock()
    with Session("http://proxy", w3, http_session=http) as session:
        pass
    session.close()
    assert session.closed
    http.close.assert_called_once()


def test_non_json_reply_is_a_connection_error(session, w3):
    w3.eth.get_code.side_effect = json.JSONDecodeError("Could not decode", "<html>", 0)
    with pytest.raises(ProxyConnectionError, match="eth_getCode"):
        session.get_code(CONTRACT)


def test_connect_unreachable():
    with pytest.raises(ProxyConnectionError, match="127.0.0.1:1"):
        Session.connect("http://127.0.0.1:1", request_timeout=2)


def test_connect_to_something_that_is_not_a_proxy(html_endpoint, monkeypatch):
    opened = []

    class RecordingSession(requests.Session):
        def __init__(self):
            super().__init__()
            self.was_closed = False
            opened.append(self)

        def close(self):
            self.was_closed = True
            super().close()

    monkeypatch.setattr(requests, "Session", RecordingSession)
    with pytest.raises(ProxyConnectionError, match=html_endpoint):
        Session.connect(html_endpoint, request_timeout=5)
    assert opened[0].was_closed


def test_new_filter_returns_id(session, w3):
    w3.eth.filter.return_value.filter_id = "0x1"
    assert session.new_filter({"address": CONTRACT}) == "0x1"
    w3.eth.filter.assert_called_with({"address": CONTRACT})


def test_uninstall_filter(session, w3):
    w3.eth.uninstall_filter.side_effect = [True, False]
    assert session.uninstall_filter("0x1") is True
    assert session.uninstall_filter("0x1") is False


def test_new_filter_rejected(session, w3):
    w3.eth.filter.side_effect = Web3RPCError("method not found")
    with pytest.raises(CallFailedError, match="eth_newFilter"):
        session.new_filter({"address": CONTRACT})
