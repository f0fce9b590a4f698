"""
Scenario orchestration.

A scenario is a fixed, strictly sequential list of steps against one deployed
contract instance, driven through one or more sessions:

    NotStarted -> Deploying -> Deployed -> {Reading | Mutating}* -> Completed

Any failing step moves the scenario to Failed (terminal) and halts it at once
by raising ScenarioFailure; no later step runs.
"""

import enum
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from .abi import parse_abi
from .errors import AssertionMismatchError, ScenarioFailure, TransactionRejectedError
from .events import DecodedEvent, EventDecoder
from .fixtures import ContractFixture
from .model import DeployedContract, LogEntry
from .reporting import log, save_json
from .verifier import verify_deploy


class ScenarioState(enum.Enum):
    NOT_STARTED = "NotStarted"
    DEPLOYING = "Deploying"
    DEPLOYED = "Deployed"
    READING = "Reading"
    MUTATING = "Mutating"
    COMPLETED = "Completed"
    FAILED = "Failed"


_TRANSITIONS = {
    ScenarioState.NOT_STARTED: {ScenarioState.DEPLOYING},
    ScenarioState.DEPLOYING: {ScenarioState.DEPLOYED},
    ScenarioState.DEPLOYED: {ScenarioState.READING, ScenarioState.MUTATING, ScenarioState.COMPLETED},
    ScenarioState.READING: {ScenarioState.READING, ScenarioState.MUTATING, ScenarioState.COMPLETED},
    ScenarioState.MUTATING: {ScenarioState.READING, ScenarioState.MUTATING, ScenarioState.COMPLETED},
    ScenarioState.COMPLETED: set(),
    ScenarioState.FAILED: set(),
}


@dataclass
class Step:
    index: int
    kind: str
    label: str
    identity: Optional[str] = None
    expected: Any = None
    actual: Any = None
    outcome: str = "pending"
    error: Optional[str] = None


@dataclass
class Scenario:
    name: str
    fixture: ContractFixture
    artifact_dir: Optional[Path] = None
    state: ScenarioState = ScenarioState.NOT_STARTED
    steps: List[Step] = field(default_factory=list)
    contract: Optional[DeployedContract] = None
    failure: Optional[ScenarioFailure] = None

    # -------------------------
    # state machine
    # -------------------------
    def _transition(self, new: ScenarioState):
        if new not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"scenario {self.name!r}: illegal transition {self.state.value} -> {new.value}")
        self.state = new

    def _require_contract(self) -> DeployedContract:
        if self.contract is None:
            raise RuntimeError(f"scenario {self.name!r}: no contract deployed yet")
        return self.contract

    @contextmanager
    def _step(self, kind: str, label: str, session=None, state: Optional[ScenarioState] = None):
        if self.state in (ScenarioState.COMPLETED, ScenarioState.FAILED):
            raise RuntimeError(f"scenario {self.name!r} already {self.state.value}")
        step = Step(index=len(self.steps), kind=kind, label=label,
                    identity=session.identity if session is not None else None)
        self.steps.append(step)
        log(f"{self.name} #{step.index} {kind}: {label}")
        try:
            if state is not None:
                self._transition(state)
            yield step
        except Exception as e:
            step.outcome = "failed"
            step.error = f"{type(e).__name__}: {e}"
            if isinstance(e, AssertionMismatchError):
                step.expected, step.actual = e.expected, e.actual
            self.state = ScenarioState.FAILED
            self.failure = ScenarioFailure(self.name, step.index, label, e)
            raise self.failure from e
        step.outcome = "ok"

    # -------------------------
    # steps
    # -------------------------
    def deploy(self, session, constructor_args: Sequence[Any] = (), label: Optional[str] = None) -> DeployedContract:
        with self._step("deploy", label or f"deploy {self.fixture.name}", session, ScenarioState.DEPLOYING) as step:
            self.contract = verify_deploy(session, self.fixture, constructor_args)
            step.actual = self.contract
            self._transition(ScenarioState.DEPLOYED)
        return self.contract

    def call(self, session, function_name: str, *args, label: Optional[str] = None):
        contract = self._require_contract()
        with self._step("call", label or f"{function_name}{args}", session, ScenarioState.READING) as step:
            step.actual = session.call(contract.address, self.fixture.abi_json, function_name, *args)
        return step.actual

    def send(self, session, function_name: str, *args, label: Optional[str] = None) -> str:
        contract = self._require_contract()
        with self._step("send", label or f"{function_name}{args}", session, ScenarioState.MUTATING) as step:
            step.actual = session.send(contract.address, self.fixture.abi_json, function_name, *args)
        return step.actual

    def send_rejected(self, session, function_name: str, *args, label: Optional[str] = None) -> TransactionRejectedError:
        """A mutating call that must be refused by the proxy or revert."""
        contract = self._require_contract()
        with self._step("send-rejected", label or f"{function_name}{args} is rejected", session,
                        ScenarioState.MUTATING) as step:
            step.expected = "rejected"
            try:
                tx_hash = session.send(contract.address, self.fixture.abi_json, function_name, *args)
            except TransactionRejectedError as e:
                step.actual = f"rejected: {e}"
                log(f"{function_name} from {session.identity} rejected as expected", "SUCCESS")
                return e
            raise AssertionMismatchError(f"{function_name} from {session.identity}", "rejected", f"accepted ({tx_hash})")

    def read(self, session, label: str, fn: Callable[[], Any]):
        """Any other read through a session (code, receipts, blocks, logs)."""
        with self._step("read", label, session, ScenarioState.READING) as step:
            step.actual = fn()
        return step.actual

    def assert_equal(self, label: str, actual: Any, expected: Any):
        with self._step("assert-equal", label) as step:
            step.expected, step.actual = expected, actual
            if actual != expected:
                raise AssertionMismatchError(label, expected, actual)

    def assert_true(self, label: str, condition: bool, actual: Any = None):
        with self._step("assert-true", label) as step:
            step.expected, step.actual = True, actual if actual is not None else condition
            if not condition:
                raise AssertionMismatchError(label, True, step.actual)

    def assert_log_decoded(self, label: str, logs: Sequence[LogEntry], expected_event_name: str,
                           expected_args: Dict[str, Any], abi=None, index: int = 0) -> DecodedEvent:
        decoder = self.fixture.event_decoder if abi is None else EventDecoder(parse_abi(abi))
        with self._step("assert-log-decoded", label) as step:
            step.expected = {"event_name": expected_event_name, "args": expected_args}
            decoded = decoder.decode(logs)
            if index >= len(decoded):
                raise AssertionMismatchError(label, f"at least {index + 1} logs", f"{len(decoded)} logs")
            event = decoded[index]
            step.actual = event
            if event.event_name != expected_event_name:
                raise AssertionMismatchError(f"{label}: event name", expected_event_name, event.event_name)
            if event.args != expected_args:
                raise AssertionMismatchError(f"{label}: args", expected_args, event.args)
        return event

    # -------------------------
    # driver
    # -------------------------
    def run(self, body: Callable[..., None], *sessions) -> "Scenario":
        log(f"SCENARIO {self.name}: starting ({self.fixture.name})")
        try:
            try:
                body(self, *sessions)
            except ScenarioFailure:
                raise
            except Exception as e:
                # raised between steps; attribute it to the last step that ran
                self.state = ScenarioState.FAILED
                last = self.steps[-1] if self.steps else None
                self.failure = ScenarioFailure(
                    self.name, last.index if last else -1, last.label if last else "<before first step>", e
                )
                raise self.failure from e
            self._transition(ScenarioState.COMPLETED)
            log(f"SCENARIO {self.name}: completed {len(self.steps)} steps", "SUCCESS")
        except ScenarioFailure as failure:
            log(str(failure), "FAIL", err=True)
            if failure.expected is not None or failure.actual is not None:
                log(f"  expected: {failure.expected!r}", err=True)
                log(f"  actual:   {failure.actual!r}", err=True)
            raise
        finally:
            self.save()
        return self

    def summary(self) -> Dict[str, Any]:
        return {
            "scenario": self.name,
            "fixture": self.fixture.name,
            "state": self.state.value,
            "contract": self.contract,
            "steps": self.steps,
            "failure": str(self.failure) if self.failure else None,
        }

    def save(self):
        if self.artifact_dir is not None:
            save_json(self.summary(), Path(self.artifact_dir) / f"{self.name}.json")
