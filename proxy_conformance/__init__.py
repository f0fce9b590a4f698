"""
Conformance harness for an Ethereum JSON-RPC proxy fronting a non-Ethereum ledger.
"""

from .errors import HarnessError, ScenarioFailure
from .events import DecodedEvent, EventDecoder, decode_logs
from .fixtures import BALLOT, INSTRUCTOR, ContractFixture, load_artifact
from .scenario import Scenario, ScenarioState
from .session import Session, connect
from .verifier import verify_deploy

__version__ = "0.1.0"
