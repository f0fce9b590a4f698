"""
Deployment verification.

Only the post-deployment runtime code is compared to the fixture. The deploy
bytecode carries constructor logic and encoded constructor arguments and is
never expected to equal what ends up on chain.
"""

from typing import Any, Optional, Sequence

from hexbytes import HexBytes

from .abi import AbiFunction
from .errors import DeploymentMismatchError
from .fixtures import ContractFixture
from .model import DeployedContract
from .reporting import log


def _short(code: bytes, n: int = 16) -> str:
    h = HexBytes(code).to_0x_hex()
    return h if len(h) <= 2 + 2 * n else f"{h[:2 + 2 * n]}... ({len(code)} bytes)"


def first_difference(a: bytes, b: bytes) -> Optional[int]:
    for i, (x, y) in enumerate(zip(a, b)):
        if x != y:
            return i
    if len(a) != len(b):
        return min(len(a), len(b))
    return None


def missing_selectors(code: bytes, fixture: ContractFixture):
    """Signatures of fixture functions whose 4-byte selector does not occur in code."""
    return [f.signature for f in fixture.entries if isinstance(f, AbiFunction) and f.selector not in code]


def check_runtime_code(session, address: str, fixture: ContractFixture):
    """Fetch the code at address through session and require byte equality with the fixture's runtime code."""
    code = session.get_code(address)
    if bytes(code) != bytes(fixture.runtime_bytecode):
        offset = first_difference(bytes(code), bytes(fixture.runtime_bytecode))
        msg = (
            f"runtime code of {fixture.name} at {address} (via {session.endpoint}) differs from fixture "
            f"at byte {offset}: got {_short(code)}, expected {_short(fixture.runtime_bytecode)}"
        )
        missing = missing_selectors(bytes(code), fixture)
        if missing:
            msg += f"; selectors missing: {', '.join(missing)}"
        raise DeploymentMismatchError(msg)
    return code


def verify_deploy(session, fixture: ContractFixture, constructor_args: Sequence[Any] = ()) -> DeployedContract:
    deployed = session.deploy(fixture, constructor_args)

    receipt = session.get_transaction_receipt(deployed.deploy_tx_hash)
    if receipt is None or not receipt.contract_address:
        raise DeploymentMismatchError(
            f"receipt of {fixture.name} deployment {deployed.deploy_tx_hash.to_0x_hex()} has no contractAddress"
        )
    if receipt.contract_address.lower() != deployed.address.lower():
        raise DeploymentMismatchError(
            f"receipt contractAddress changed between reads: {deployed.address} then {receipt.contract_address}"
        )

    check_runtime_code(session, receipt.contract_address, fixture)
    log(f"{fixture.name} deployed at {deployed.address} (tx {deployed.deploy_tx_hash.to_0x_hex()}), runtime code matches", "SUCCESS")
    return deployed
